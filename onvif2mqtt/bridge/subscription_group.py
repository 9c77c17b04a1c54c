"""
Subscription Group
==================

Owns the live set of per-device event subscriptions and routes classified
events to one debounced handler per event kind.

Rebuilds are atomic from the caller's point of view: the generation counter
is bumped before anything is torn down, so callbacks registered for the old
device set are ignored from the moment build() starts.
"""

import functools
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Hashable, Iterable, List, Optional

from onvif2mqtt.bridge.config import DeviceConfig
from onvif2mqtt.bridge.debounce import DebouncedDispatcher
from onvif2mqtt.events.protocol import classify
from onvif2mqtt.events.schema import (
    MOTION_FIELD,
    EventKind,
    MalformedEventError,
    RawEvent,
    observed_state,
)
from onvif2mqtt.interfaces import DeviceClient
from onvif2mqtt.logging_utils import generate_trace_id, get_component_logger, trace_context

logger = get_component_logger(__name__, "subscription_group")

EventHandler = Callable[[str, Dict[str, Any]], None]
"""handler(device_id, values)"""


@dataclass
class BuildReport:
    """Outcome of one build(): devices subscribed and devices that failed."""

    subscribed: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed


class SubscriptionGroup:
    """
    Live device subscriptions plus the per-kind handler table.

    Args:
        device_client: Client that delivers raw events (DeviceClient protocol)
        debounce_seconds: Debounce window applied per device and kind

    Example:
        >>> group = SubscriptionGroup(OnvifDeviceClient(), debounce_seconds=0.5)
        >>> group.set_handler(EventKind.MOTION, pipeline.handler_for(EventKind.MOTION))
        >>> report = group.build(config.devices)
        >>> report.failed
        {}
    """

    def __init__(self, device_client: DeviceClient, debounce_seconds: float = 0.5):
        self.device_client = device_client
        self.debounce_seconds = debounce_seconds

        self._handlers: Dict[EventKind, EventHandler] = {}
        self._dispatchers: Dict[EventKind, DebouncedDispatcher] = {}
        self._handles: Dict[str, Hashable] = {}
        self._generation = 0

        # Reentrant: device clients may deliver synchronously from subscribe()
        self._lock = threading.RLock()

    # ========================================================================
    # Public: handlers
    # ========================================================================

    def set_handler(self, kind: EventKind, handler: EventHandler) -> None:
        """
        Replace the handler for one event kind.

        Takes effect for the next forwarded event.

        Raises:
            TypeError: If kind is not an EventKind
        """
        if not isinstance(kind, EventKind):
            raise TypeError(f"kind must be an EventKind, got {type(kind).__name__}")

        with self._lock:
            self._handlers[kind] = handler

            dispatcher = self._dispatchers.get(kind)
            if dispatcher is not None and not dispatcher.closed:
                dispatcher.replace_handler(handler)
            else:
                self._dispatchers[kind] = self._make_dispatcher(kind, handler)

    def dispatcher_for(self, kind: EventKind) -> Optional[DebouncedDispatcher]:
        with self._lock:
            return self._dispatchers.get(kind)

    # ========================================================================
    # Public: lifecycle
    # ========================================================================

    def build(
        self,
        device_configs: Iterable[DeviceConfig],
        debounce_seconds: Optional[float] = None,
    ) -> BuildReport:
        """
        Replace every subscription with one per entry of device_configs.

        Tears the old set down first (timers cancelled, handles released),
        then subscribes each device and dispatches a synthetic
        motion=false event for it. A device that fails to subscribe is
        logged and skipped; the others still subscribe.

        Args:
            device_configs: Devices of the new set
            debounce_seconds: New debounce window (None keeps the current one)

        Returns:
            BuildReport with subscribed and failed device names
        """
        report = BuildReport()

        with self._lock:
            self._generation += 1
            generation = self._generation
            stale = self._detach_locked()

        self._release(stale)

        with self._lock:
            if generation != self._generation:
                logger.info(
                    "Subscription group build superseded before subscribing",
                    extra={"event": "group_build_superseded", "generation": generation},
                )
                return report

            if debounce_seconds is not None:
                self.debounce_seconds = debounce_seconds

            self._dispatchers = {
                kind: self._make_dispatcher(kind, handler)
                for kind, handler in self._handlers.items()
            }

            for device in device_configs:
                # destroy() may run from inside subscribe() (signal handler on this thread)
                if generation != self._generation:
                    break

                on_event = functools.partial(self.on_raw_event, generation=generation)

                try:
                    handle = self.device_client.subscribe(device, on_event)
                except Exception as e:
                    report.failed[device.name] = str(e)
                    logger.error(
                        f"Failed to subscribe to {device.name}: {e}",
                        extra={
                            "event": "device_subscribe_failed",
                            "device_id": device.name,
                            "error_type": type(e).__name__,
                        },
                    )
                    continue

                self._handles[device.name] = handle
                report.subscribed.append(device.name)

                logger.info(
                    f"Subscribed to {device.name}",
                    extra={"event": "device_subscribed", "device_id": device.name},
                )

                # Every configured device starts out quiescent
                self._route_locked(EventKind.MOTION, device.name, {MOTION_FIELD: False})

        logger.info(
            f"Subscription group built with {len(report.subscribed)} devices",
            extra={
                "event": "group_built",
                "generation": generation,
                "subscribed": report.subscribed,
                "failed": sorted(report.failed),
            },
        )
        return report

    def destroy(self) -> None:
        """Release every subscription and pending timer without rebuilding."""
        with self._lock:
            self._generation += 1
            stale = self._detach_locked()
            self._dispatchers = {}

        self._release(stale)
        logger.info("Subscription group destroyed", extra={"event": "group_destroyed"})

    @property
    def devices(self) -> List[str]:
        with self._lock:
            return list(self._handles)

    @property
    def generation(self) -> int:
        return self._generation

    def is_subscribed(self, device_id: str) -> bool:
        with self._lock:
            return device_id in self._handles

    # ========================================================================
    # Raw event entry point (called by device clients)
    # ========================================================================

    def on_raw_event(
        self, device_id: str, raw_event: RawEvent, generation: Optional[int] = None
    ) -> None:
        """
        Classify a raw event and route it to the handler of its kind.

        Unclassified events are dropped at debug level; malformed events
        (no IsMotion/State) are dropped with a warning and never reach
        the debounce table.
        """
        with trace_context(generate_trace_id("evt")):
            if generation is not None and generation != self._generation:
                logger.debug(
                    f"Dropping event from stale subscription of {device_id}",
                    extra={"event": "stale_event_dropped", "device_id": device_id},
                )
                return

            kind = classify(raw_event.topic)
            if kind is None:
                logger.debug(
                    f"Unclassified topic from {device_id}: {raw_event.topic}",
                    extra={
                        "event": "event_unclassified",
                        "device_id": device_id,
                        "topic": raw_event.topic,
                    },
                )
                return

            values = raw_event.values()

            try:
                observed_state(values)
            except MalformedEventError as e:
                logger.warning(
                    f"Malformed {kind.value} event from {device_id}: {e}",
                    extra={
                        "event": "event_malformed",
                        "device_id": device_id,
                        "topic": raw_event.topic,
                    },
                )
                return

            logger.debug(
                f"ONVIF event received from {device_id}",
                extra={
                    "event": "event_received",
                    "device_id": device_id,
                    "event_kind": kind.value,
                    "values": values,
                },
            )

            with self._lock:
                if generation is not None and generation != self._generation:
                    return
                self._route_locked(kind, device_id, values)

    # ========================================================================
    # Private
    # ========================================================================

    def _make_dispatcher(self, kind: EventKind, handler: EventHandler) -> DebouncedDispatcher:
        return DebouncedDispatcher(handler, self.debounce_seconds, name=kind.value)

    def _route_locked(self, kind: EventKind, device_id: str, values: Dict[str, Any]) -> None:
        dispatcher = self._dispatchers.get(kind)
        if dispatcher is None:
            logger.debug(
                f"No handler registered for {kind.value}",
                extra={"event": "handler_missing", "event_kind": kind.value},
            )
            return
        dispatcher(device_id, values)

    def _detach_locked(self) -> Dict[str, Hashable]:
        for dispatcher in self._dispatchers.values():
            dispatcher.close()

        stale = dict(self._handles)
        self._handles.clear()
        return stale

    def _release(self, handles: Dict[str, Hashable]) -> None:
        # Called without the lock: unsubscribe may join a delivery thread blocked on it
        for device_id, handle in handles.items():
            try:
                self.device_client.unsubscribe(handle)
            except Exception as e:
                logger.warning(
                    f"Failed to unsubscribe {device_id}: {e}",
                    extra={
                        "event": "device_unsubscribe_failed",
                        "device_id": device_id,
                        "error_type": type(e).__name__,
                    },
                )
            else:
                logger.debug(
                    f"Unsubscribed {device_id}",
                    extra={"event": "device_unsubscribed", "device_id": device_id},
                )
