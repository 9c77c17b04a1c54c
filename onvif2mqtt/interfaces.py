"""
Interfaces for Dependency Injection
====================================

Protocols for the collaborators the bridge core talks to.

This allows:
- Testing with fake implementations (no MQTT broker, no camera needed)
- Swapping implementations (another MQTT client, another ONVIF library)
- Clear contracts at the core's boundary
"""

from typing import Any, Callable, Hashable, Optional, Protocol

from onvif2mqtt.events.schema import RawEvent

RawEventCallback = Callable[[str, RawEvent], None]
"""on_event(device_id, raw_event) registered with a device client"""


class MessageBroker(Protocol):
    """
    Protocol for the MQTT client used by MqttPublisher.

    Concrete implementation: paho.mqtt.client.Client
    Test implementation: FakeMessageBroker (see tests/unit/fakes.py)
    """

    def publish(
        self, topic: str, payload: str, qos: int = 0, retain: bool = False
    ) -> Any:
        """
        Publish message to topic.

        Returns:
            MQTTMessageInfo or equivalent (result.rc == 0 for success)
        """
        ...

    def connect(self, host: str, port: int, keepalive: int = 60) -> Any:
        """Connect to broker."""
        ...

    def disconnect(self) -> Any:
        """Disconnect from broker."""
        ...

    def loop_start(self) -> Any:
        """Start background network loop (threaded)."""
        ...

    def loop_stop(self) -> Any:
        """Stop background network loop."""
        ...

    def will_set(
        self, topic: str, payload: Optional[str] = None, qos: int = 0, retain: bool = False
    ) -> None:
        """Register the last-will message sent by the broker on unclean disconnect."""
        ...

    def username_pw_set(self, username: Optional[str], password: Optional[str] = None) -> None:
        """Set broker credentials."""
        ...


class EventPublisher(Protocol):
    """
    Protocol for the transport publisher used by the publication pipeline.

    Concrete implementation: onvif2mqtt.bridge.publisher.MqttPublisher
    Test implementation: RecordingPublisher (see tests/unit/fakes.py)
    """

    def connect(self, timeout: float = 10.0) -> None:
        """Connect to the transport. Raises on failure."""
        ...

    def publish(self, device_id: str, subtopic: str, body: str, retain: bool = False) -> Any:
        """Fire-and-forget publish of one device message."""
        ...

    def publish_service_status(self, state: str, wait_timeout: Optional[float] = None) -> Any:
        """Publish the retained "ON"/"OFF" service status."""
        ...

    def disconnect(self) -> None:
        """Disconnect from the transport."""
        ...


class DeviceClient(Protocol):
    """
    Protocol for the camera event client.

    Concrete implementation: onvif2mqtt.devices.onvif_client.OnvifDeviceClient
    Test implementation: FakeDeviceClient (see tests/unit/fakes.py)
    """

    def subscribe(self, device_config: Any, on_event: RawEventCallback) -> Hashable:
        """
        Start delivering events of one device to on_event.

        Must not block on the device connection itself.

        Returns:
            Opaque handle for unsubscribe()
        """
        ...

    def unsubscribe(self, handle: Hashable) -> None:
        """Stop delivering events and release every device-side resource."""
        ...
