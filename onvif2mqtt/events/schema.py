"""
Event Schema for the ONVIF Bridge
==================================

Event kinds and the device-native raw event model delivered by device clients.
"""

from enum import Enum
from typing import Any, Dict, List, Mapping

from pydantic import BaseModel, Field

MOTION_FIELD = "IsMotion"
STATE_FIELD = "State"


class MalformedEventError(ValueError):
    """Raw event payload carries neither an IsMotion nor a State field."""
    pass


class EventKind(str, Enum):
    """Semantic event kinds. The value is the canonical MQTT subtopic."""

    MOTION = "motion"
    MOTION_REGION = "motion_region"
    MOTION_VIDEO = "motion_video"
    PEOPLE = "people"
    ANIMAL = "animal"
    VEHICLE = "vehicle"

    def __str__(self) -> str:
        return self.value


class SimpleItem(BaseModel):
    """One name/value pair of an ONVIF notification payload"""

    name: str = Field(description="Item name (e.g. IsMotion)")
    value: Any = Field(default=None, description="Item value as delivered by the device")


class RawEvent(BaseModel):
    """Unclassified notification as delivered by a device client"""

    device_id: str = Field(description="Configured device name")
    topic: str = Field(description="Namespaced topic, e.g. tns1:RuleEngine/CellMotionDetector/Motion")
    simple_items: List[SimpleItem] = Field(default_factory=list, description="Payload data items")

    def values(self) -> Dict[str, Any]:
        """
        Coalesce the simple items into a dict.

        Duplicate names resolve last-write-wins. ONVIF string booleans
        ("true"/"false") become bool.
        """
        return {item.name: coerce_value(item.value) for item in self.simple_items}

    model_config = {
        "json_schema_extra": {
            "example": {
                "device_id": "front_door",
                "topic": "tns1:RuleEngine/CellMotionDetector/Motion",
                "simple_items": [{"name": "IsMotion", "value": "true"}],
            }
        }
    }


def coerce_value(value: Any) -> Any:
    """Convert ONVIF xsd:boolean strings to bool, leave anything else untouched."""
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered == "true":
            return True
        if lowered == "false":
            return False
    return value


def observed_state(values: Mapping[str, Any]) -> bool:
    """
    Extract the boolean observed state from event values.

    IsMotion takes precedence over State.

    Raises:
        MalformedEventError: If neither field is present
    """
    if MOTION_FIELD in values:
        return _as_bool(values[MOTION_FIELD])
    if STATE_FIELD in values:
        return _as_bool(values[STATE_FIELD])
    raise MalformedEventError(
        f"Event carries neither '{MOTION_FIELD}' nor '{STATE_FIELD}': {sorted(values)}"
    )


def sensor_state(state: bool) -> str:
    """Boolean to MQTT sensor payload."""
    return "ON" if state else "OFF"


def _as_bool(value: Any) -> bool:
    value = coerce_value(value)
    if isinstance(value, str):
        # xsd:boolean also allows the lexical forms "1" and "0"
        return value.strip() not in ("", "0")
    return bool(value)
