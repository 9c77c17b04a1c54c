"""
Bridge Configuration
=====================

Configuration dataclasses for the ONVIF to MQTT bridge, loaded from YAML.

Rich config objects: validation in __post_init__() plus small behaviors
(dotted lookup, change detection, status serialization).
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import yaml


class ConfigValidationError(ValueError):
    """Error in configuration validation."""
    pass


@dataclass(frozen=True)
class MQTTConfig:
    """MQTT broker configuration."""

    host: str = "localhost"
    port: int = 1883
    username: Optional[str] = None
    password: Optional[str] = None
    client_id: str = "onvif2mqtt"
    base_topic: str = "onvif2mqtt"
    """Prefix for every topic: {base_topic}/{device}/{subtopic} and {base_topic}/status"""
    qos: int = 0
    """QoS for device messages (service status always uses QoS 1)"""
    keepalive: int = 60

    def __post_init__(self):
        if not self.host:
            raise ConfigValidationError("mqtt.host cannot be empty")

        if not (1 <= self.port <= 65535):
            raise ConfigValidationError(f"Invalid MQTT port: {self.port}")

        if self.qos not in {0, 1, 2}:
            raise ConfigValidationError(f"MQTT QoS must be 0, 1, or 2, got {self.qos}")

        if not self.base_topic or self.base_topic.endswith("/"):
            raise ConfigValidationError(
                f"mqtt.base_topic must be non-empty without trailing '/', got {self.base_topic!r}"
            )

        if self.keepalive <= 0:
            raise ConfigValidationError(f"mqtt.keepalive must be > 0, got {self.keepalive}")


@dataclass(frozen=True)
class DeviceConfig:
    """
    One ONVIF camera.

    Only `name` is meaningful to the bridge core; connection parameters are
    consumed by the device client.
    """

    name: str
    hostname: str
    port: int = 80
    username: Optional[str] = None
    password: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.name, str) or not self.name.strip():
            raise ConfigValidationError("onvif device name must be a non-empty string")

        if "/" in self.name or "+" in self.name or "#" in self.name:
            raise ConfigValidationError(
                f"onvif device name {self.name!r} cannot contain MQTT topic characters (/ + #)"
            )

        if not self.hostname:
            raise ConfigValidationError(f"onvif device {self.name!r} requires a hostname")

        if not (1 <= self.port <= 65535):
            raise ConfigValidationError(f"Invalid port for onvif device {self.name!r}: {self.port}")


@dataclass(frozen=True)
class PublishTemplate:
    """
    Operator-defined extra publish per event.

    Patterns may use {onvifDeviceId}, {eventType} and {eventState}.
    """

    subtopic: str
    template: str
    retain: bool = False

    def __post_init__(self):
        if not isinstance(self.subtopic, str) or not self.subtopic:
            raise ConfigValidationError("template subtopic must be a non-empty string")

        if not isinstance(self.template, str):
            raise ConfigValidationError(
                f"template body must be a string, got {type(self.template).__name__}"
            )

        if not isinstance(self.retain, bool):
            raise ConfigValidationError(
                f"template retain must be true or false, got {self.retain!r}"
            )


@dataclass(frozen=True)
class BridgeConfig:
    """
    Main configuration for the bridge.

    Loaded from YAML and validated at construction. Immutable; a reload
    produces a new instance.
    """

    mqtt: MQTTConfig = field(default_factory=MQTTConfig)
    devices: Tuple[DeviceConfig, ...] = ()
    templates: Tuple[PublishTemplate, ...] = ()

    debounce_seconds: float = 0.5
    """Trailing-edge debounce window per device and event kind (0 = disabled)"""

    shutdown_timeout: float = 2.0
    """Maximum wait for the OFF status publish on shutdown"""

    def __post_init__(self):
        names = [device.name for device in self.devices]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ConfigValidationError(f"Duplicate onvif device names: {duplicates}")

        if self.debounce_seconds < 0:
            raise ConfigValidationError(
                f"debounce_seconds cannot be negative, got {self.debounce_seconds}"
            )

        if self.shutdown_timeout <= 0:
            raise ConfigValidationError(
                f"shutdown_timeout must be > 0, got {self.shutdown_timeout}"
            )

    # ========================================================================
    # Loading
    # ========================================================================

    @classmethod
    def from_yaml(cls, yaml_path: Union[str, Path]) -> "BridgeConfig":
        """
        Load configuration from a YAML file.

        Example YAML:
            mqtt:
              host: localhost
              port: 1883
              base_topic: onvif2mqtt

            onvif:
              - name: front_door
                hostname: 192.168.1.20
                port: 80
                username: admin
                password: secret

            api:
              templates:
                - subtopic: "{eventType}/json"
                  template: '{"device": "{onvifDeviceId}", "active": {eventState}}'
                  retain: false

        Raises:
            ConfigValidationError: If the file is not valid YAML or fails validation
        """
        try:
            with open(yaml_path, encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigValidationError(f"Invalid YAML in {yaml_path}: {e}") from e

        return cls.from_dict(data or {})

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BridgeConfig":
        """Build configuration from the parsed YAML mapping."""
        if not isinstance(data, dict):
            raise ConfigValidationError(
                f"Configuration root must be a mapping, got {type(data).__name__}"
            )

        try:
            mqtt_config = MQTTConfig(**(data.get("mqtt") or {}))

            devices = tuple(DeviceConfig(**device) for device in (data.get("onvif") or []))

            api = data.get("api") or {}
            templates = tuple(
                PublishTemplate(**template) for template in (api.get("templates") or [])
            )

            debounce_seconds = float(data.get("debounce_seconds", 0.5))
            shutdown_timeout = float(data.get("shutdown_timeout", 2.0))
        except ConfigValidationError:
            raise
        except (TypeError, ValueError) as e:
            # Unknown/missing keys in a section, or non-numeric timings
            raise ConfigValidationError(f"Invalid configuration section: {e}") from e

        return cls(
            mqtt=mqtt_config,
            devices=devices,
            templates=templates,
            debounce_seconds=debounce_seconds,
            shutdown_timeout=shutdown_timeout,
        )

    # ========================================================================
    # Behavior: Lookup
    # ========================================================================

    def to_dict(self) -> Dict[str, Any]:
        """Serialize back to the YAML layout."""
        return {
            "mqtt": {
                "host": self.mqtt.host,
                "port": self.mqtt.port,
                "username": self.mqtt.username,
                "password": self.mqtt.password,
                "client_id": self.mqtt.client_id,
                "base_topic": self.mqtt.base_topic,
                "qos": self.mqtt.qos,
                "keepalive": self.mqtt.keepalive,
            },
            "onvif": [
                {
                    "name": device.name,
                    "hostname": device.hostname,
                    "port": device.port,
                    "username": device.username,
                    "password": device.password,
                }
                for device in self.devices
            ],
            "api": {
                "templates": [
                    {"subtopic": t.subtopic, "template": t.template, "retain": t.retain}
                    for t in self.templates
                ]
            },
            "debounce_seconds": self.debounce_seconds,
            "shutdown_timeout": self.shutdown_timeout,
        }

    def get(self, path: str, default: Any = None) -> Any:
        """
        Dotted-path lookup over the YAML layout.

        Example:
            >>> BridgeConfig().get("mqtt.port")
            1883
            >>> BridgeConfig().get("api.templates")
            []
        """
        node: Any = self.to_dict()
        for key in path.split("."):
            if not isinstance(node, dict) or key not in node:
                return default
            node = node[key]
        return node

    # ========================================================================
    # Behavior: Change detection
    # ========================================================================

    def device_names(self) -> List[str]:
        return [device.name for device in self.devices]

    def affects_subscriptions(self, other: "BridgeConfig") -> bool:
        """
        True when switching to `other` requires rebuilding the device subscriptions.
        """
        return (
            self.devices != other.devices
            or self.templates != other.templates
            or self.debounce_seconds != other.debounce_seconds
        )

    def to_status_dict(self) -> dict:
        """Public summary for logs and the check-config command (no passwords)."""
        return {
            "mqtt_host": self.mqtt.host,
            "mqtt_port": self.mqtt.port,
            "base_topic": self.mqtt.base_topic,
            "devices": self.device_names(),
            "template_count": len(self.templates),
            "debounce_seconds": self.debounce_seconds,
        }
