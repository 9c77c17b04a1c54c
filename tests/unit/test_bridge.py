"""
Bridge Lifecycle and End-to-End Tests
=====================================

End-to-end scenarios run the real SubscriptionGroup, PublicationPipeline and
MqttPublisher against FakeDeviceClient and FakeMessageBroker.
"""

import logging
import os
import signal
import threading

import pytest

from fakes import FakeDeviceClient, FakeMessageBroker, RecordingPublisher, make_event, wait_until

from onvif2mqtt.bridge import (
    Bridge,
    BridgeConfig,
    BridgeState,
    DeviceConfig,
    MqttPublisher,
    PublishTemplate,
)
from onvif2mqtt.events.schema import EventKind

WINDOW = 0.05


def make_config(*names, templates=(), debounce_seconds=WINDOW):
    return BridgeConfig(
        devices=tuple(DeviceConfig(name=name, hostname=f"{name}.local") for name in names),
        templates=tuple(templates),
        debounce_seconds=debounce_seconds,
        shutdown_timeout=0.5,
    )


def make_bridge(config, publisher=None, client=None):
    return Bridge(
        config,
        publisher if publisher is not None else RecordingPublisher(),
        client if client is not None else FakeDeviceClient(),
        install_process_hooks=False,
    )


def wait_settled(bridge):
    for kind in EventKind:
        dispatcher = bridge.group.dispatcher_for(kind)
        if dispatcher is not None:
            assert dispatcher.wait_idle()


@pytest.fixture
def broker():
    return FakeMessageBroker()


@pytest.fixture
def client():
    return FakeDeviceClient()


@pytest.fixture
def mqtt_bridge(broker, client):
    config = make_config(
        "cam1",
        templates=[PublishTemplate(subtopic="{eventType}/json", template='{"device": "{onvifDeviceId}", "active": {eventState}}')],
    )
    bridge = make_bridge(config, MqttPublisher(config.mqtt, client=broker), client)
    bridge.start()
    wait_settled(bridge)
    broker.published.clear()
    yield bridge
    bridge.shutdown()


class TestLifecycle:
    def test_start_order(self, client):
        publisher = RecordingPublisher()
        bridge = make_bridge(make_config("cam1", "cam2"), publisher, client)

        report = bridge.start()

        assert publisher.connect_calls == 1
        assert publisher.status_values() == ["ON"]
        assert report.subscribed == ["cam1", "cam2"]
        assert bridge.state == BridgeState.RUNNING
        bridge.shutdown()

    def test_initial_motion_off_published(self):
        publisher = RecordingPublisher()
        bridge = make_bridge(make_config("cam1", "cam2"), publisher)
        bridge.start()
        wait_settled(bridge)

        assert publisher.messages_for("cam1", "motion") == [("cam1", "motion", "OFF", False)]
        assert publisher.messages_for("cam2", "motion") == [("cam2", "motion", "OFF", False)]
        bridge.shutdown()

    def test_start_twice_rejected(self):
        bridge = make_bridge(make_config("cam1"))
        bridge.start()
        with pytest.raises(RuntimeError):
            bridge.start()
        bridge.shutdown()

    def test_connect_failure_propagates(self):
        publisher = RecordingPublisher(fail_connect=True)
        bridge = make_bridge(make_config("cam1"), publisher)

        with pytest.raises(ConnectionError):
            bridge.start()
        assert publisher.status_values() == []

    def test_one_failed_device_does_not_block_start(self):
        client = FakeDeviceClient(fail_for={"cam1"})
        bridge = make_bridge(make_config("cam1", "cam2"), client=client)

        report = bridge.start()

        assert report.subscribed == ["cam2"]
        assert list(report.failed) == ["cam1"]
        bridge.shutdown()


class TestShutdown:
    def test_status_off_once(self, client):
        publisher = RecordingPublisher()
        bridge = make_bridge(make_config("cam1"), publisher, client)
        bridge.start()

        assert bridge.shutdown() is True
        assert bridge.shutdown() is False

        assert publisher.status_values() == ["ON", "OFF"]
        assert publisher.statuses[-1] == ("OFF", 0.5)
        assert publisher.disconnect_calls == 1
        assert client.active_devices == []
        assert bridge.state == BridgeState.STOPPED

    def test_concurrent_triggers(self):
        publisher = RecordingPublisher()
        bridge = make_bridge(make_config("cam1"), publisher)
        bridge.start()

        results = []
        threads = [threading.Thread(target=lambda: results.append(bridge.shutdown())) for _ in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(results) == [False, False, False, False, True]
        assert publisher.status_values().count("OFF") == 1

    def test_signals(self):
        publisher = RecordingPublisher()
        bridge = make_bridge(make_config("cam1"), publisher)
        bridge.start()

        bridge._signal_handler(signal.SIGINT, None)
        bridge._signal_handler(signal.SIGTERM, None)

        assert publisher.status_values() == ["ON", "OFF"]

    def test_shutdown_before_start(self):
        publisher = RecordingPublisher()
        bridge = make_bridge(make_config("cam1"), publisher)

        assert bridge.shutdown() is True
        assert publisher.status_values() == []
        assert bridge.join(timeout=0)

    def test_shutdown_during_start(self):
        class InterruptingClient(FakeDeviceClient):
            def subscribe(self, device_config, on_event):
                if not self.subscribe_calls:
                    bridge.shutdown("SIGTERM")
                return super().subscribe(device_config, on_event)

        publisher = RecordingPublisher()
        client = InterruptingClient()
        bridge = make_bridge(make_config("cam1", "cam2"), publisher, client)

        bridge.start()

        assert publisher.status_values() == ["ON", "OFF"]
        assert publisher.disconnect_calls == 1
        assert bridge.state == BridgeState.STOPPED
        assert client.active_devices == []
        assert client.subscribe_calls == ["cam1"]
        assert bridge.join(timeout=0)

    def test_join_returns_after_shutdown(self):
        bridge = make_bridge(make_config("cam1"))
        bridge.start()
        assert bridge.join(timeout=0.01) is False

        threading.Timer(0.02, bridge.shutdown).start()
        assert bridge.join(timeout=2)

    def test_pending_events_dropped_on_shutdown(self, client):
        publisher = RecordingPublisher()
        bridge = make_bridge(make_config("cam1", debounce_seconds=10), publisher, client)
        bridge.start()

        client.emit("cam1", IsMotion=True)
        bridge.shutdown()

        assert publisher.messages == []

    def test_reconfigure_after_shutdown_ignored(self):
        bridge = make_bridge(make_config("cam1"))
        bridge.start()
        bridge.shutdown()

        assert bridge.reconfigure(make_config("cam2")) is None


class TestReconfigure:
    def test_device_set_replaced(self, client):
        publisher = RecordingPublisher()
        bridge = make_bridge(make_config("A"), publisher, client)
        bridge.start()
        wait_settled(bridge)
        stale_callback = client.callbacks["A"]

        report = bridge.reconfigure(make_config("B"))
        wait_settled(bridge)
        publisher.clear()

        stale_callback("A", make_event("A", IsMotion=True))
        client.emit("B", IsMotion=True)
        wait_settled(bridge)

        assert report.subscribed == ["B"]
        assert publisher.messages_for("A") == []
        assert publisher.messages_for("B", "motion") == [("B", "motion", "ON", False)]
        assert bridge.config.device_names() == ["B"]
        bridge.shutdown()

    def test_new_templates_apply(self, client):
        publisher = RecordingPublisher()
        bridge = make_bridge(make_config("cam1", debounce_seconds=0), publisher, client)
        bridge.start()

        bridge.reconfigure(make_config("cam1", debounce_seconds=0, templates=[PublishTemplate(subtopic="raw", template="{eventState}")]))
        publisher.clear()
        client.emit("cam1", IsMotion=True)

        assert publisher.messages_for("cam1") == [
            ("cam1", "motion", "ON", False),
            ("cam1", "raw", "true", False),
        ]
        bridge.shutdown()

    def test_config_file_change(self, tmp_path, client):
        path = tmp_path / "config.yml"
        path.write_text("onvif:\n  - name: A\n    hostname: a.local\ndebounce_seconds: 0\n", encoding="utf-8")
        config = BridgeConfig.from_yaml(path)

        bridge = Bridge(
            config,
            RecordingPublisher(),
            client,
            config_path=path,
            watch_interval=0.01,
            install_process_hooks=False,
        )
        bridge.start()
        try:
            path.write_text("onvif:\n  - name: B\n    hostname: b.local\ndebounce_seconds: 0\n", encoding="utf-8")
            os.utime(path, (2_000_000_000, 2_000_000_000))

            assert wait_until(lambda: client.active_devices == ["B"])
        finally:
            bridge.shutdown()


class TestEndToEnd:
    def test_motion_on(self, mqtt_bridge, broker, client):
        client.emit("cam1", IsMotion=True)
        wait_settled(mqtt_bridge)

        assert broker.published == [
            ("onvif2mqtt/cam1/motion", "ON", 0, False),
            ("onvif2mqtt/cam1/motion/json", '{"device": "cam1", "active": true}', 0, False),
        ]

    def test_burst_publishes_final_state_only(self, mqtt_bridge, broker, client):
        client.emit("cam1", IsMotion=False)
        client.emit("cam1", IsMotion=True)
        wait_settled(mqtt_bridge)

        assert [(t, p) for t, p, _, _ in broker.published if t == "onvif2mqtt/cam1/motion"] == [
            ("onvif2mqtt/cam1/motion", "ON")
        ]

    def test_malformed_event(self, mqtt_bridge, broker, client, caplog):
        with caplog.at_level(logging.WARNING):
            client.emit("cam1", Foo=1)
            wait_settled(mqtt_bridge)

        assert broker.published == []
        warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
        assert [getattr(r, "event", None) for r in warnings] == ["event_malformed"]

    def test_service_status_topics(self, broker, client):
        config = make_config("cam1")
        bridge = make_bridge(config, MqttPublisher(config.mqtt, client=broker), client)
        bridge.start()
        bridge.shutdown()
        bridge.shutdown()

        statuses = [(p, q, r) for t, p, q, r in broker.published if t == "onvif2mqtt/status"]
        assert statuses == [("ON", 1, True), ("OFF", 1, True)]
        assert not broker.loop_running
