"""
Unit Tests for MqttPublisher using Fake Implementations
========================================================

No MQTT broker required: FakeMessageBroker implements the MessageBroker
protocol and acknowledges connect() through on_connect.
"""

import logging

import pytest

from fakes import FakeMessageBroker, FakeReasonCode

from onvif2mqtt.bridge.config import MQTTConfig
from onvif2mqtt.bridge.publisher import MqttPublisher, PublisherConnectionError


@pytest.fixture
def broker():
    return FakeMessageBroker()


@pytest.fixture
def publisher(broker):
    return MqttPublisher(MQTTConfig(host="broker.local", base_topic="home/cams", qos=1), client=broker)


class TestSetup:
    def test_last_will_is_retained_off(self, publisher, broker):
        assert broker.will == ("home/cams/status", "OFF", 1, True)

    def test_credentials_only_when_configured(self, broker):
        MqttPublisher(MQTTConfig(), client=broker)
        assert broker.credentials is None

        other = FakeMessageBroker()
        MqttPublisher(MQTTConfig(username="bridge", password="secret"), client=other)
        assert other.credentials == ("bridge", "secret")

    def test_callbacks_assigned(self, publisher, broker):
        assert broker.on_connect == publisher._on_connect
        assert broker.on_disconnect == publisher._on_disconnect


class TestConnection:
    def test_connect(self, publisher, broker):
        publisher.connect(timeout=1)
        assert broker.connected
        assert broker.loop_running
        assert publisher.is_connected

    def test_connect_timeout(self):
        broker = FakeMessageBroker(ack_connect=False)
        publisher = MqttPublisher(MQTTConfig(), client=broker)

        with pytest.raises(PublisherConnectionError, match="did not acknowledge"):
            publisher.connect(timeout=0.05)
        assert not broker.loop_running

    def test_connect_refused(self):
        broker = FakeMessageBroker(ack_connect=False)
        publisher = MqttPublisher(MQTTConfig(), client=broker)
        publisher._on_connect(broker, None, {}, FakeReasonCode(is_failure=True, name="Not authorized"), None)
        assert not publisher.is_connected

    def test_unreachable_broker(self):
        broker = FakeMessageBroker(raise_on_connect=ConnectionRefusedError("refused"))
        publisher = MqttPublisher(MQTTConfig(), client=broker)

        with pytest.raises(PublisherConnectionError, match="Cannot reach"):
            publisher.connect(timeout=0.05)

    def test_disconnect(self, publisher, broker):
        publisher.connect(timeout=1)
        publisher.disconnect()

        assert not broker.connected
        assert not broker.loop_running
        assert not publisher.is_connected

    def test_on_disconnect_clears_state(self, publisher, broker):
        publisher.connect(timeout=1)
        publisher._on_disconnect(broker, None, {}, FakeReasonCode(name="Unspecified error"), None)
        assert not publisher.is_connected


class TestPublish:
    def test_device_message(self, publisher, broker):
        publisher.publish("cam1", "motion", "ON")
        assert broker.published == [("home/cams/cam1/motion", "ON", 1, False)]

    def test_retained_device_message(self, publisher, broker):
        publisher.publish("cam1", "last_event", "motion", retain=True)
        assert broker.published == [("home/cams/cam1/last_event", "motion", 1, True)]

    def test_service_status(self, publisher, broker):
        publisher.publish_service_status("ON")
        assert broker.published == [("home/cams/status", "ON", 1, True)]

    def test_service_status_waits_when_asked(self, publisher, broker):
        publisher.publish_service_status("OFF", wait_timeout=2.0)
        assert broker.results[0].wait_timeouts == [2.0]

    def test_service_status_rejects_other_states(self, publisher):
        with pytest.raises(ValueError):
            publisher.publish_service_status("MAYBE")

    def test_failed_return_code_logged(self, caplog):
        broker = FakeMessageBroker(fail_publish=True)
        publisher = MqttPublisher(MQTTConfig(), client=broker)

        with caplog.at_level(logging.WARNING):
            result = publisher.publish("cam1", "motion", "ON")

        assert result.rc == 1
        assert any(getattr(r, "event", None) == "publish_failed" for r in caplog.records)

    def test_publish_exception_logged(self, caplog):
        broker = FakeMessageBroker(raise_on_publish=ValueError("payload too large"))
        publisher = MqttPublisher(MQTTConfig(), client=broker)

        with caplog.at_level(logging.ERROR):
            result = publisher.publish("cam1", "motion", "ON")

        assert result is None
        assert any(getattr(r, "event", None) == "publish_error" for r in caplog.records)

    def test_unconfirmed_status_logged(self, caplog):
        broker = FakeMessageBroker()
        publisher = MqttPublisher(MQTTConfig(), client=broker)

        original_publish = broker.publish

        def publish(*args, **kwargs):
            result = original_publish(*args, **kwargs)
            result.wait_error = RuntimeError("not connected")
            return result

        broker.publish = publish

        with caplog.at_level(logging.WARNING):
            publisher.publish_service_status("OFF", wait_timeout=0.1)

        assert any(getattr(r, "event", None) == "status_publish_unconfirmed" for r in caplog.records)
