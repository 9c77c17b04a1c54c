"""
Event Protocol for the ONVIF Bridge
====================================

Event kinds, raw event schema, topic classification and MQTT topic utilities.
"""

from onvif2mqtt.events.protocol import (
    NAMESPACE_DELIMITER,
    TOPIC_KINDS,
    classify,
    status_topic,
    topic_for_device,
)
from onvif2mqtt.events.schema import (
    EventKind,
    MalformedEventError,
    RawEvent,
    SimpleItem,
    observed_state,
    sensor_state,
)

__all__ = [
    "EventKind",
    "RawEvent",
    "SimpleItem",
    "MalformedEventError",
    "observed_state",
    "sensor_state",
    "NAMESPACE_DELIMITER",
    "TOPIC_KINDS",
    "classify",
    "topic_for_device",
    "status_topic",
]
