"""
ONVIF Device Client
===================

Delivers camera events through ONVIF PullPoint subscriptions
(onvif-zeep-async).

Each subscribed device gets a daemon thread running its own asyncio loop:

    connect → update_xaddrs → create PullPoint → PullMessages (repeat)

Notifications are converted to RawEvent and handed to the subscriber's
callback on that thread. Connection and subscription errors are logged and
the loop reconnects after a fixed delay until unsubscribe() is called.
"""

import asyncio
import datetime
import itertools
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from onvif import ONVIFCamera
from onvif.exceptions import ONVIFError
from onvif.util import stringify_onvif_error
from zeep.exceptions import Fault, TransportError, ValidationError, XMLParseError

from onvif2mqtt.bridge.config import DeviceConfig
from onvif2mqtt.events.schema import RawEvent, SimpleItem
from onvif2mqtt.interfaces import RawEventCallback
from onvif2mqtt.logging_utils import get_component_logger

logger = get_component_logger(__name__, "onvif_client")

SUBSCRIPTION_TIME = datetime.timedelta(minutes=10)
PULLPOINT_POLL_TIME = datetime.timedelta(seconds=2)
PULLPOINT_MESSAGE_LIMIT = 100

CREATE_ERRORS = (ONVIFError, Fault, asyncio.TimeoutError, XMLParseError, ValidationError)
PULL_ERRORS = (XMLParseError, TransportError, asyncio.TimeoutError)
UNSUBSCRIBE_ERRORS = (XMLParseError, Fault, TimeoutError, TransportError)


class DeviceSubscriptionError(RuntimeError):
    """A device subscription could not be started or released."""
    pass


def to_raw_event(device_id: str, msg: Any) -> Optional[RawEvent]:
    """
    Convert one PullMessages notification to a RawEvent.

    Returns:
        RawEvent, or None if the notification carries no topic
    """
    topic = getattr(getattr(msg, "Topic", None), "_value_1", None)
    if not topic:
        return None

    message = getattr(getattr(msg, "Message", None), "_value_1", None)
    data = getattr(message, "Data", None)
    items = getattr(data, "SimpleItem", None) or []
    if not isinstance(items, (list, tuple)):
        items = [items]

    simple_items = [
        SimpleItem(name=item.Name, value=item.Value)
        for item in items
        if getattr(item, "Name", None)
    ]
    return RawEvent(device_id=device_id, topic=str(topic).strip(), simple_items=simple_items)


@dataclass
class _Subscription:
    device: DeviceConfig
    on_event: RawEventCallback
    stop_event: threading.Event = field(default_factory=threading.Event)
    thread: Optional[threading.Thread] = None


class OnvifDeviceClient:
    """
    PullPoint-based implementation of the DeviceClient protocol.

    Args:
        reconnect_delay: Seconds to wait before reconnecting a failed device
        join_timeout: Seconds unsubscribe() waits for the device thread
        poll_time: PullMessages timeout
        message_limit: PullMessages message limit

    Example:
        >>> client = OnvifDeviceClient()
        >>> handle = client.subscribe(device, lambda device_id, event: print(event.topic))
        >>> client.unsubscribe(handle)
    """

    def __init__(
        self,
        reconnect_delay: float = 10.0,
        join_timeout: float = 1.0,
        poll_time: datetime.timedelta = PULLPOINT_POLL_TIME,
        message_limit: int = PULLPOINT_MESSAGE_LIMIT,
    ):
        self.reconnect_delay = reconnect_delay
        self.join_timeout = join_timeout
        self.poll_time = poll_time
        self.message_limit = message_limit

        self._subscriptions: Dict[int, _Subscription] = {}
        self._handles = itertools.count(1)
        self._lock = threading.Lock()

    def subscribe(self, device_config: DeviceConfig, on_event: RawEventCallback) -> int:
        """Start the pull loop of one device. Returns an opaque handle."""
        subscription = _Subscription(device=device_config, on_event=on_event)
        subscription.thread = threading.Thread(
            target=self._run,
            args=(subscription,),
            daemon=True,
            name=f"onvif-{device_config.name}",
        )

        with self._lock:
            handle = next(self._handles)
            self._subscriptions[handle] = subscription

        try:
            subscription.thread.start()
        except RuntimeError as e:
            with self._lock:
                self._subscriptions.pop(handle, None)
            raise DeviceSubscriptionError(
                f"Cannot start event thread for {device_config.name}: {e}"
            ) from e

        return handle

    def unsubscribe(self, handle: int) -> None:
        """
        Stop delivering events for handle.

        No event is delivered once this returns. The PullPoint is released
        by the device thread; if that takes longer than join_timeout the
        thread finishes it in the background.

        Raises:
            DeviceSubscriptionError: If handle is unknown
        """
        with self._lock:
            subscription = self._subscriptions.pop(handle, None)

        if subscription is None:
            raise DeviceSubscriptionError(f"Unknown subscription handle {handle!r}")

        subscription.stop_event.set()
        if subscription.thread is not None and subscription.thread is not threading.current_thread():
            subscription.thread.join(timeout=self.join_timeout)
            if subscription.thread.is_alive():
                logger.debug(
                    f"Event thread of {subscription.device.name} still releasing PullPoint",
                    extra={"event": "device_release_pending", "device_id": subscription.device.name},
                )

    @property
    def active_handles(self):
        with self._lock:
            return list(self._subscriptions)

    # ========================================================================
    # Device thread
    # ========================================================================

    def _run(self, subscription: _Subscription) -> None:
        device_id = subscription.device.name

        while not subscription.stop_event.is_set():
            try:
                asyncio.run(self._monitor(subscription))
            except Exception as e:
                logger.error(
                    f"Event monitoring of {device_id} failed: {e}",
                    extra={"event": "device_monitor_error", "device_id": device_id},
                    exc_info=True,
                )

            if subscription.stop_event.wait(self.reconnect_delay):
                break

            logger.info(
                f"Reconnecting to {device_id}",
                extra={"event": "device_reconnect", "device_id": device_id},
            )

        logger.debug(
            f"Event thread of {device_id} exited",
            extra={"event": "device_thread_exited", "device_id": device_id},
        )

    async def _monitor(self, subscription: _Subscription) -> None:
        device = subscription.device
        camera = ONVIFCamera(
            device.hostname,
            device.port,
            device.username or "",
            device.password or "",
        )
        manager = None

        try:
            await camera.update_xaddrs()

            try:
                manager = await camera.create_pullpoint_manager(
                    SUBSCRIPTION_TIME,
                    lambda: logger.warning(
                        f"PullPoint subscription of {device.name} lost, renewing",
                        extra={"event": "pullpoint_lost", "device_id": device.name},
                    ),
                )
                await manager.set_synchronization_point()
            except CREATE_ERRORS as err:
                logger.error(
                    f"Cannot create PullPoint subscription on {device.name}: "
                    f"{stringify_onvif_error(err)}",
                    extra={"event": "pullpoint_create_failed", "device_id": device.name},
                )
                return

            logger.info(
                f"PullPoint subscription active on {device.name}",
                extra={"event": "pullpoint_active", "device_id": device.name},
            )
            await self._pull_loop(subscription, manager)

        except ONVIFError as err:
            logger.error(
                f"ONVIF error on {device.name}: {stringify_onvif_error(err)}",
                extra={"event": "onvif_error", "device_id": device.name},
            )
        finally:
            if manager is not None and not manager.closed:
                try:
                    await manager.shutdown()
                except UNSUBSCRIBE_ERRORS as err:
                    logger.warning(
                        f"Failed to release PullPoint of {device.name}: "
                        f"{stringify_onvif_error(err)}",
                        extra={"event": "pullpoint_release_failed", "device_id": device.name},
                    )
            await camera.close()

    async def _pull_loop(self, subscription: _Subscription, manager) -> None:
        device_id = subscription.device.name
        service = manager.get_service()

        while not subscription.stop_event.is_set() and not manager.closed:
            try:
                response = await service.PullMessages(
                    {"MessageLimit": self.message_limit, "Timeout": self.poll_time}
                )
            except Fault as err:
                logger.warning(
                    f"PullMessages fault on {device_id}: {stringify_onvif_error(err)}",
                    extra={"event": "pull_fault", "device_id": device_id},
                )
                manager.resume()
                await asyncio.sleep(1)
                continue
            except PULL_ERRORS as err:
                logger.warning(
                    f"Transient PullMessages error on {device_id}: {stringify_onvif_error(err)}",
                    extra={"event": "pull_transient_error", "device_id": device_id},
                )
                await asyncio.sleep(1)
                continue

            for msg in (getattr(response, "NotificationMessage", None) or []):
                if subscription.stop_event.is_set():
                    return
                self._deliver(subscription, msg)

    def _deliver(self, subscription: _Subscription, msg: Any) -> None:
        device_id = subscription.device.name
        raw_event = to_raw_event(device_id, msg)
        if raw_event is None:
            return

        try:
            subscription.on_event(device_id, raw_event)
        except Exception as e:
            logger.error(
                f"Event callback failed for {device_id}: {e}",
                extra={"event": "event_callback_failed", "device_id": device_id},
                exc_info=True,
            )
