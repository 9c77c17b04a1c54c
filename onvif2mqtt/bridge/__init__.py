"""
ONVIF to MQTT Bridge
====================

Subscribes to camera events and republishes them as MQTT sensor messages.
"""

from onvif2mqtt.bridge.bridge import Bridge, BridgeState
from onvif2mqtt.bridge.config import (
    BridgeConfig,
    ConfigValidationError,
    DeviceConfig,
    MQTTConfig,
    PublishTemplate,
)
from onvif2mqtt.bridge.config_watcher import ConfigWatcher
from onvif2mqtt.bridge.debounce import DebouncedDispatcher
from onvif2mqtt.bridge.pipeline import PublicationPipeline
from onvif2mqtt.bridge.publisher import MqttPublisher, PublisherConnectionError
from onvif2mqtt.bridge.subscription_group import BuildReport, SubscriptionGroup
from onvif2mqtt.bridge.templates import TemplateRenderError, render

__all__ = [
    "Bridge",
    "BridgeState",
    "BridgeConfig",
    "MQTTConfig",
    "DeviceConfig",
    "PublishTemplate",
    "ConfigValidationError",
    "ConfigWatcher",
    "DebouncedDispatcher",
    "PublicationPipeline",
    "MqttPublisher",
    "PublisherConnectionError",
    "SubscriptionGroup",
    "BuildReport",
    "TemplateRenderError",
    "render",
]
