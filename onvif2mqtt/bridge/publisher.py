"""
MQTT Publisher
==============

Transport side of the bridge: publishes device state messages and the
retained service status to an MQTT broker with paho-mqtt.

Publishes are fire-and-forget. paho queues the message and returns an
MQTTMessageInfo immediately; a failed return code is logged, never retried
here (paho reconnects and redelivers QoS>0 messages on its own).
"""

import threading
from typing import Any, Optional

import paho.mqtt.client as mqtt

from onvif2mqtt.bridge.config import MQTTConfig
from onvif2mqtt.events.protocol import status_topic, topic_for_device
from onvif2mqtt.interfaces import MessageBroker
from onvif2mqtt.logging_utils import get_component_logger

logger = get_component_logger(__name__, "publisher")

SERVICE_ON = "ON"
SERVICE_OFF = "OFF"
STATUS_QOS = 1


class PublisherConnectionError(ConnectionError):
    """Broker did not accept the connection in time."""
    pass


class MqttPublisher:
    """
    Publisher for device events and service status.

    Args:
        config: MQTTConfig with broker and topic settings
        client: MQTT client (MessageBroker protocol). A paho client is
            created from config when omitted.

    Example:
        >>> publisher = MqttPublisher(MQTTConfig(host="localhost"))
        >>> publisher.connect(timeout=10)
        >>> publisher.publish_service_status("ON")
        >>> publisher.publish("front_door", "motion", "ON")
        # -> onvif2mqtt/front_door/motion = ON
    """

    def __init__(self, config: MQTTConfig, client: Optional[MessageBroker] = None):
        self.config = config
        self.client = client if client is not None else self._create_client()
        self._connected = threading.Event()

        # Broker announces OFF if we vanish without a clean disconnect
        self.client.will_set(
            status_topic(self.config.base_topic), SERVICE_OFF, qos=STATUS_QOS, retain=True
        )

        if self.config.username:
            self.client.username_pw_set(self.config.username, self.config.password)

        self.client.on_connect = self._on_connect
        self.client.on_disconnect = self._on_disconnect

    def _create_client(self) -> mqtt.Client:
        return mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=self.config.client_id,
        )

    # ========================================================================
    # Connection
    # ========================================================================

    def connect(self, timeout: float = 10.0) -> None:
        """
        Connect to the broker and start the network loop.

        Raises:
            PublisherConnectionError: If the broker does not acknowledge in time
        """
        logger.info(
            f"Connecting to MQTT broker at {self.config.host}:{self.config.port}",
            extra={
                "event": "mqtt_connection_start",
                "mqtt_host": self.config.host,
                "mqtt_port": self.config.port,
            },
        )

        try:
            self.client.connect(self.config.host, self.config.port, keepalive=self.config.keepalive)
            self.client.loop_start()
        except OSError as e:
            raise PublisherConnectionError(
                f"Cannot reach MQTT broker {self.config.host}:{self.config.port}: {e}"
            ) from e

        if not self._connected.wait(timeout=timeout):
            self.client.loop_stop()
            raise PublisherConnectionError(
                f"MQTT broker {self.config.host}:{self.config.port} did not acknowledge within {timeout}s"
            )

    def disconnect(self) -> None:
        logger.info("Disconnecting from MQTT broker", extra={"event": "mqtt_disconnect"})
        try:
            self.client.disconnect()
        finally:
            self.client.loop_stop()
            self._connected.clear()

    @property
    def is_connected(self) -> bool:
        return self._connected.is_set()

    # ========================================================================
    # Publishing
    # ========================================================================

    def publish(self, device_id: str, subtopic: str, body: str, retain: bool = False) -> Any:
        """
        Publish one device message to {base_topic}/{device_id}/{subtopic}.

        Returns:
            MQTTMessageInfo (or the client's equivalent), None if publish raised
        """
        topic = topic_for_device(device_id, subtopic, self.config.base_topic)
        return self._publish(topic, body, qos=self.config.qos, retain=retain)

    def publish_service_status(self, state: str, wait_timeout: Optional[float] = None) -> Any:
        """
        Publish the retained service status ("ON" / "OFF").

        Args:
            state: SERVICE_ON or SERVICE_OFF
            wait_timeout: If set, block up to this many seconds for the
                broker to acknowledge the publish

        Raises:
            ValueError: If state is not ON/OFF
        """
        if state not in (SERVICE_ON, SERVICE_OFF):
            raise ValueError(f"Service status must be ON or OFF, got {state!r}")

        topic = status_topic(self.config.base_topic)
        result = self._publish(topic, state, qos=STATUS_QOS, retain=True)

        if result is not None and wait_timeout is not None:
            try:
                result.wait_for_publish(timeout=wait_timeout)
            except (RuntimeError, ValueError) as e:
                # paho raises when the client is not connected or the queue is full
                logger.warning(
                    f"Service status {state} not confirmed: {e}",
                    extra={"event": "status_publish_unconfirmed", "status": state},
                )

        logger.info(
            f"Service status {state}",
            extra={"event": "service_status_published", "status": state, "mqtt_topic": topic},
        )
        return result

    def _publish(self, topic: str, payload: str, qos: int, retain: bool) -> Any:
        try:
            result = self.client.publish(topic, payload, qos=qos, retain=retain)
        except Exception as e:
            logger.error(
                f"Error publishing to {topic}: {e}",
                extra={"event": "publish_error", "mqtt_topic": topic, "error_type": type(e).__name__},
            )
            return None

        if result.rc != mqtt.MQTT_ERR_SUCCESS:
            logger.warning(
                f"Failed to publish to {topic}: {mqtt.error_string(result.rc)}",
                extra={"event": "publish_failed", "mqtt_topic": topic, "return_code": result.rc},
            )
        else:
            logger.debug(
                f"Published {payload!r} to {topic}",
                extra={"event": "published", "mqtt_topic": topic, "retained": retain},
            )
        return result

    # ========================================================================
    # paho callbacks (VERSION2 signatures)
    # ========================================================================

    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        if not reason_code.is_failure:
            logger.info(
                "Connected to MQTT broker",
                extra={"event": "broker_connected", "mqtt_host": self.config.host},
            )
            self._connected.set()
        else:
            logger.error(
                f"MQTT broker refused connection: {reason_code}",
                extra={"event": "broker_connection_failed", "reason_code": str(reason_code)},
            )

    def _on_disconnect(self, client, userdata, flags, reason_code, properties=None):
        self._connected.clear()
        logger.warning(
            f"Disconnected from MQTT broker: {reason_code}",
            extra={"event": "broker_disconnected", "reason_code": str(reason_code)},
        )
