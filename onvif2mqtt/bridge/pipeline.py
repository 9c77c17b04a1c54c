"""
Publication Pipeline
====================

Turns one debounced, classified event into MQTT messages:

1. The fixed sensor message: {base}/{device}/{kind} = ON | OFF
2. One message per operator template, rendered with
   {onvifDeviceId}, {eventType} and {eventState}

Template publishes are independent: a template that fails to render or
publish is logged and the remaining templates are still attempted.
"""

from typing import Any, Callable, Dict, Mapping, Sequence

from onvif2mqtt.bridge.config import PublishTemplate
from onvif2mqtt.bridge.templates import TemplateRenderError, render
from onvif2mqtt.events.schema import EventKind, MalformedEventError, observed_state, sensor_state
from onvif2mqtt.interfaces import EventPublisher
from onvif2mqtt.logging_utils import get_component_logger

logger = get_component_logger(__name__, "pipeline")

TemplatesProvider = Callable[[], Sequence[PublishTemplate]]


class PublicationPipeline:
    """
    Publication decision logic invoked once per debounced event.

    Args:
        publisher: Transport publisher (EventPublisher protocol)
        templates_provider: Returns the templates to apply, read on every
            event so a configuration reload takes effect immediately

    Example:
        >>> pipeline = PublicationPipeline(publisher, lambda: config.templates)
        >>> pipeline.on_classified_event("cam1", EventKind.MOTION, {"IsMotion": True})
        # -> onvif2mqtt/cam1/motion = ON, plus one message per template
    """

    def __init__(self, publisher: EventPublisher, templates_provider: TemplatesProvider):
        self.publisher = publisher
        self.templates_provider = templates_provider

    def handler_for(self, kind: EventKind) -> Callable[[str, Dict[str, Any]], None]:
        """Handler with the (device_id, values) signature used by SubscriptionGroup."""

        def _handle(device_id: str, values: Dict[str, Any]) -> None:
            self.on_classified_event(device_id, kind, values)

        _handle.__name__ = f"on_{kind.value}_detected"
        return _handle

    def on_classified_event(
        self, device_id: str, kind: EventKind, values: Mapping[str, Any]
    ) -> None:
        try:
            state = observed_state(values)
        except MalformedEventError as e:
            logger.warning(
                f"Dropping malformed {kind.value} event from {device_id}: {e}",
                extra={"event": "event_malformed", "device_id": device_id, "event_kind": kind.value},
            )
            return

        self._publish(device_id, kind.value, sensor_state(state), retain=False)

        self.publish_templates(device_id, kind, state)

        logger.info(
            f"{device_id} {kind.value} -> {sensor_state(state)}",
            extra={
                "event": "state_published",
                "device_id": device_id,
                "event_kind": kind.value,
                "state": state,
            },
        )

    def publish_templates(self, device_id: str, kind: EventKind, state: bool) -> int:
        """
        Render and publish every configured template.

        Returns:
            Number of templates published without error
        """
        templates = self.templates_provider() or ()
        values = {
            "onvifDeviceId": device_id,
            "eventType": kind.value,
            "eventState": state,
        }

        published = 0
        for template in templates:
            try:
                subtopic = render(template.subtopic, values)
                body = render(template.template, values)
            except TemplateRenderError as e:
                logger.error(
                    f"Cannot render template {template.subtopic!r}: {e}",
                    extra={"event": "template_render_failed", "device_id": device_id},
                )
                continue

            if self._publish(device_id, subtopic, body, retain=template.retain):
                published += 1

        return published

    def _publish(self, device_id: str, subtopic: str, body: str, retain: bool) -> bool:
        try:
            self.publisher.publish(device_id, subtopic, body, retain=retain)
        except Exception as e:
            logger.error(
                f"Publish to {device_id}/{subtopic} failed: {e}",
                extra={
                    "event": "publish_failed",
                    "device_id": device_id,
                    "subtopic": subtopic,
                    "error_type": type(e).__name__,
                },
            )
            return False
        return True
