"""
onvif2mqtt - ONVIF camera events as MQTT sensors
================================================

Usage:
    from onvif2mqtt.bridge import Bridge, BridgeConfig, MqttPublisher
    from onvif2mqtt.devices.onvif_client import OnvifDeviceClient

    config = BridgeConfig.from_yaml("config.yml")
    bridge = Bridge(config, MqttPublisher(config.mqtt), OnvifDeviceClient())
    bridge.start()
    bridge.join()
"""

from onvif2mqtt.events import EventKind, RawEvent, SimpleItem, classify

__version__ = "0.1.0"

__all__ = [
    "EventKind",
    "RawEvent",
    "SimpleItem",
    "classify",
]
