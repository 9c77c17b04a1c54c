"""
Debounced Dispatcher
====================

Trailing-edge debounce of state updates, keyed by device id.

Cameras flap: a single walk past the driveway can produce a dozen
IsMotion true/false notifications in a second. The dispatcher collapses
every burst for one device into the last observed value and forwards it
once the device has been quiet for `wait_seconds`.

One dispatcher instance per event kind, so motion and people updates for
the same camera debounce independently.
"""

import queue
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from onvif2mqtt.logging_utils import get_component_logger

logger = get_component_logger(__name__, "debounce")

StateHandler = Callable[[str, Any], None]

_UNSET = object()
_STOP = object()


@dataclass
class _DebounceSlot:
    """Per-device debounce state. Only timing and values, never handler outcome."""

    pending_value: Any = _UNSET
    timer: Optional[threading.Timer] = None
    generation: int = 0
    last_dispatched: Any = _UNSET


class DebouncedDispatcher:
    """
    Callable wrapper that debounces `handler(device_id, value)` per device.

    Released values are forwarded by a single worker thread, in release order,
    so updates for one device always reach the handler in sequence.

    Args:
        handler: Wrapped handler, called as handler(device_id, value)
        wait_seconds: Quiet period before the last value is forwarded.
            0 forwards synchronously on the calling thread.
        name: Label used for the worker thread and logs

    Example:
        >>> dispatcher = DebouncedDispatcher(pipeline.handler_for(EventKind.MOTION), 0.5, "motion")
        >>> dispatcher("front_door", {"IsMotion": False})
        >>> dispatcher("front_door", {"IsMotion": True})   # only this one is forwarded
        >>> dispatcher.close()
    """

    def __init__(self, handler: StateHandler, wait_seconds: float = 0.5, name: str = "dispatcher"):
        if wait_seconds < 0:
            raise ValueError(f"wait_seconds cannot be negative, got {wait_seconds}")

        self.name = name
        self.wait_seconds = wait_seconds

        self._handler = handler
        self._slots: Dict[str, _DebounceSlot] = {}
        self._lock = threading.Lock()
        self._closed = False

        self._queue: "queue.Queue[Any]" = queue.Queue()
        self._worker: Optional[threading.Thread] = None

    def __call__(self, device_id: str, value: Any) -> None:
        with self._lock:
            if self._closed:
                logger.debug(
                    f"Dispatcher '{self.name}' closed, dropping update for {device_id}",
                    extra={"event": "debounce_closed_drop", "device_id": device_id},
                )
                return

            slot = self._slots.setdefault(device_id, _DebounceSlot())
            if slot.timer is not None:
                slot.timer.cancel()
                slot.timer = None

            slot.generation += 1

            if self.wait_seconds == 0:
                slot.pending_value = _UNSET
                slot.last_dispatched = value
                handler = self._handler
            else:
                slot.pending_value = value
                timer = threading.Timer(
                    self.wait_seconds, self._release, args=(device_id, slot.generation)
                )
                timer.daemon = True
                slot.timer = timer
                self._ensure_worker()
                timer.start()
                return

        self._forward(handler, device_id, value)

    # ========================================================================
    # Public: lifecycle and inspection
    # ========================================================================

    def replace_handler(self, handler: StateHandler) -> None:
        """Forward subsequent releases to `handler`."""
        with self._lock:
            self._handler = handler

    def cancel_all(self) -> int:
        """
        Cancel every pending timer, dropping the values they held.

        Returns:
            Number of cancelled timers
        """
        cancelled = 0
        with self._lock:
            for slot in self._slots.values():
                if slot.timer is not None:
                    slot.timer.cancel()
                    slot.timer = None
                    slot.pending_value = _UNSET
                    slot.generation += 1
                    cancelled += 1
        return cancelled

    def close(self, timeout: Optional[float] = 1.0) -> None:
        """
        Cancel pending timers and stop the worker.

        Nothing is forwarded after close() returns, except a handler call
        already in progress on the worker.
        """
        cancelled = self.cancel_all()

        with self._lock:
            if self._closed:
                return
            self._closed = True
            worker = self._worker

        if worker is not None:
            self._queue.put(_STOP)
            if worker is not threading.current_thread():
                worker.join(timeout)

        logger.debug(
            f"Dispatcher '{self.name}' closed",
            extra={"event": "debounce_closed", "cancelled_timers": cancelled},
        )

    @property
    def closed(self) -> bool:
        return self._closed

    def is_pending(self, device_id: str) -> bool:
        """True while a value for device_id waits for its window to elapse."""
        with self._lock:
            slot = self._slots.get(device_id)
            return slot is not None and slot.timer is not None

    def last_dispatched(self, device_id: str, default: Any = None) -> Any:
        """Last value released for device_id (regardless of handler outcome)."""
        with self._lock:
            slot = self._slots.get(device_id)
            if slot is None or slot.last_dispatched is _UNSET:
                return default
            return slot.last_dispatched

    def wait_idle(self, timeout: float = 5.0) -> bool:
        """
        Block until no timer is pending and every released value was handled.

        Returns:
            True if idle before the timeout
        """
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            with self._lock:
                pending = any(slot.timer is not None for slot in self._slots.values())
            if not pending and self._queue.unfinished_tasks == 0:
                return True
            time.sleep(0.005)
        return False

    # ========================================================================
    # Private
    # ========================================================================

    def _ensure_worker(self) -> None:
        # Caller holds self._lock
        if self._worker is None:
            self._worker = threading.Thread(
                target=self._forward_loop, name=f"debounce-{self.name}", daemon=True
            )
            self._worker.start()

    def _release(self, device_id: str, generation: int) -> None:
        """Timer callback: hand the pending value to the worker if still current."""
        with self._lock:
            slot = self._slots.get(device_id)
            if self._closed or slot is None or slot.generation != generation:
                return
            if slot.pending_value is _UNSET:
                return

            value = slot.pending_value
            slot.pending_value = _UNSET
            slot.timer = None
            slot.last_dispatched = value
            self._queue.put((device_id, value))

    def _forward_loop(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                if self._closed:
                    continue

                device_id, value = item
                with self._lock:
                    handler = self._handler
                self._forward(handler, device_id, value)
            finally:
                self._queue.task_done()

    def _forward(self, handler: StateHandler, device_id: str, value: Any) -> None:
        try:
            handler(device_id, value)
        except Exception as e:
            logger.error(
                f"Handler for '{self.name}' failed on {device_id}: {e}",
                extra={
                    "event": "debounce_handler_failed",
                    "device_id": device_id,
                    "error_type": type(e).__name__,
                },
                exc_info=True,
            )
