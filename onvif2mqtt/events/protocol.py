"""
ONVIF / MQTT Protocol Utilities
================================

Classification of ONVIF notification topics into event kinds, and the MQTT
topic naming conventions used by the bridge.
"""

from types import MappingProxyType
from typing import Mapping, Optional

from onvif2mqtt.events.schema import EventKind

NAMESPACE_DELIMITER = ":"

TOPIC_KINDS: Mapping[str, EventKind] = MappingProxyType({
    "RuleEngine/MotionRegionDetector/Motion": EventKind.MOTION_REGION,
    "RuleEngine/MotionRegionDetector/Motion//.": EventKind.MOTION_REGION,
    "RuleEngine/CellMotionDetector/Motion": EventKind.MOTION,
    "RuleEngine/CellMotionDetector/Motion//.": EventKind.MOTION,
    # Some firmware ships the misspelt topic
    "VideoSoure/MotionAlarm": EventKind.MOTION_VIDEO,
    "VideoSource/MotionAlarm": EventKind.MOTION_VIDEO,
    "RuleEngine/MyRuleDetector/PeopleDetect": EventKind.PEOPLE,
    "RuleEngine/MyRuleDetector/DogCatDetect": EventKind.ANIMAL,
    "RuleEngine/MyRuleDetector/VehicleDetect": EventKind.VEHICLE,
})
"""Event type (topic without namespace) -> EventKind"""

STATUS_SUBTOPIC = "status"


def classify(topic: str) -> Optional[EventKind]:
    """
    Map an ONVIF topic to its event kind.

    The namespace prefix is discarded, so only the event type decides.

    Args:
        topic: Namespaced topic (e.g. "tns1:RuleEngine/CellMotionDetector/Motion")

    Returns:
        EventKind, or None when the topic is not recognised

    Examples:
        >>> classify("tns1:RuleEngine/CellMotionDetector/Motion")
        <EventKind.MOTION: 'motion'>
        >>> classify("tns1:RuleEngine/TamperDetector/Tamper") is None
        True
    """
    if not isinstance(topic, str):
        return None

    _namespace, delimiter, event_type = topic.partition(NAMESPACE_DELIMITER)
    if not delimiter:
        return None

    return TOPIC_KINDS.get(event_type)


def topic_for_device(device_id: str, subtopic: str, base_topic: str = "onvif2mqtt") -> str:
    """
    MQTT topic for a device event.

    Examples:
        >>> topic_for_device("front_door", "motion")
        'onvif2mqtt/front_door/motion'
    """
    return f"{base_topic}/{device_id}/{subtopic}"


def status_topic(base_topic: str = "onvif2mqtt") -> str:
    """
    MQTT topic for the service status.

    Examples:
        >>> status_topic("home/cams")
        'home/cams/status'
    """
    return f"{base_topic}/{STATUS_SUBTOPIC}"
