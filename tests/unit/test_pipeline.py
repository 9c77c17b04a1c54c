"""
Unit tests for PublicationPipeline
"""

import logging
from types import SimpleNamespace

import pytest

from fakes import RecordingPublisher

from onvif2mqtt.bridge.config import PublishTemplate
from onvif2mqtt.bridge.pipeline import PublicationPipeline
from onvif2mqtt.events.schema import EventKind


@pytest.fixture
def publisher():
    return RecordingPublisher()


def make_pipeline(publisher, templates=()):
    return PublicationPipeline(publisher, lambda: templates)


class TestFixedPublish:
    def test_motion_on(self, publisher):
        make_pipeline(publisher).on_classified_event("cam1", EventKind.MOTION, {"IsMotion": True})
        assert publisher.messages == [("cam1", "motion", "ON", False)]

    def test_state_off(self, publisher):
        make_pipeline(publisher).on_classified_event("cam1", EventKind.VEHICLE, {"State": False})
        assert publisher.messages == [("cam1", "vehicle", "OFF", False)]

    def test_malformed_values_publish_nothing(self, publisher, caplog):
        with caplog.at_level(logging.WARNING):
            make_pipeline(publisher).on_classified_event("cam1", EventKind.MOTION, {"Foo": 1})

        assert publisher.messages == []
        assert [getattr(r, "event", None) for r in caplog.records if r.levelno == logging.WARNING] == ["event_malformed"]

    def test_handler_for(self, publisher):
        handler = make_pipeline(publisher).handler_for(EventKind.PEOPLE)
        handler("cam2", {"State": True})
        assert publisher.messages == [("cam2", "people", "ON", False)]


class TestTemplates:
    def test_templates_published_after_fixed_message(self, publisher):
        templates = (
            PublishTemplate(subtopic="{eventType}/json", template='{"device": "{onvifDeviceId}", "active": {eventState}}'),
            PublishTemplate(subtopic="last_event", template="{eventType}", retain=True),
        )
        make_pipeline(publisher, templates).on_classified_event("cam1", EventKind.MOTION, {"IsMotion": True})

        assert publisher.messages == [
            ("cam1", "motion", "ON", False),
            ("cam1", "motion/json", '{"device": "cam1", "active": true}', False),
            ("cam1", "last_event", "motion", True),
        ]

    def test_templates_provider_read_per_event(self, publisher):
        current = {"templates": ()}
        pipeline = PublicationPipeline(publisher, lambda: current["templates"])

        pipeline.on_classified_event("cam1", EventKind.MOTION, {"IsMotion": True})
        current["templates"] = (PublishTemplate(subtopic="state", template="{eventState}"),)
        pipeline.on_classified_event("cam1", EventKind.MOTION, {"IsMotion": False})

        assert publisher.messages_for("cam1", "state") == [("cam1", "state", "false", False)]

    def test_render_error_does_not_stop_siblings(self, publisher, caplog):
        templates = (
            SimpleNamespace(subtopic="broken", template=42, retain=False),
            PublishTemplate(subtopic="ok", template="{eventState}"),
        )

        with caplog.at_level(logging.ERROR):
            count = make_pipeline(publisher, templates).publish_templates("cam1", EventKind.MOTION, True)

        assert count == 1
        assert publisher.messages == [("cam1", "ok", "true", False)]
        assert any(getattr(r, "event", None) == "template_render_failed" for r in caplog.records)

    def test_publish_error_does_not_stop_siblings(self, caplog):
        publisher = RecordingPublisher(fail_subtopics={"first"})
        templates = (
            PublishTemplate(subtopic="first", template="x"),
            PublishTemplate(subtopic="second", template="y"),
        )

        with caplog.at_level(logging.ERROR):
            make_pipeline(publisher, templates).on_classified_event("cam1", EventKind.MOTION, {"IsMotion": True})

        assert [m[1] for m in publisher.messages] == ["motion", "second"]
        assert any(getattr(r, "event", None) == "publish_failed" for r in caplog.records)

    def test_no_templates(self, publisher):
        pipeline = PublicationPipeline(publisher, lambda: None)
        assert pipeline.publish_templates("cam1", EventKind.MOTION, True) == 0
