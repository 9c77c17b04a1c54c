"""
Configuration Watcher
=====================

Polls the YAML configuration file and notifies the bridge when the
device list or publish templates change, so subscriptions can be rebuilt
without restarting the process.
"""

import os
import threading
from pathlib import Path
from typing import Callable, Optional, Union

from onvif2mqtt.bridge.config import BridgeConfig, ConfigValidationError
from onvif2mqtt.logging_utils import generate_trace_id, get_component_logger, trace_context

logger = get_component_logger(__name__, "config_watcher")


class ConfigWatcher:
    """
    Background poller for configuration changes.

    Args:
        path: YAML configuration file
        on_change: Called with the new BridgeConfig when devices,
            templates or the debounce window changed
        current: Configuration currently in use (loaded from path if None)
        interval: Poll interval in seconds

    Usage:
        >>> watcher = ConfigWatcher("config.yml", bridge.reconfigure, current=config)
        >>> watcher.start()
        >>> # Later...
        >>> watcher.stop()
    """

    def __init__(
        self,
        path: Union[str, Path],
        on_change: Callable[[BridgeConfig], None],
        current: Optional[BridgeConfig] = None,
        interval: float = 2.0,
    ):
        self.path = Path(path)
        self.on_change = on_change
        self.interval = interval

        self.current = current if current is not None else BridgeConfig.from_yaml(self.path)
        self._last_mtime = self._mtime()

        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

    def start(self) -> None:
        """Start polling in a daemon thread."""
        if self._thread is not None:
            return

        self._thread = threading.Thread(target=self._watch_loop, daemon=True, name="ConfigWatcher")
        self._thread.start()

        logger.info(
            f"Watching {self.path} for changes (interval: {self.interval}s)",
            extra={"event": "config_watch_started", "config_path": str(self.path)},
        )

    def stop(self) -> None:
        """Stop polling."""
        if self._thread:
            self._stop_event.set()
            if self._thread is not threading.current_thread():
                self._thread.join(timeout=5)
            self._thread = None
            logger.info("Config watcher stopped", extra={"event": "config_watch_stopped"})

    def check(self) -> bool:
        """
        Reload the file if it changed on disk.

        Returns:
            True if on_change was invoked
        """
        mtime = self._mtime()
        if mtime is None or mtime == self._last_mtime:
            return False
        self._last_mtime = mtime

        with trace_context(generate_trace_id("reload")):
            try:
                new_config = BridgeConfig.from_yaml(self.path)
            except (ConfigValidationError, OSError) as e:
                logger.error(
                    f"Ignoring invalid configuration change: {e}",
                    extra={"event": "config_reload_invalid", "config_path": str(self.path)},
                )
                return False

            if new_config.mqtt != self.current.mqtt:
                logger.warning(
                    "MQTT settings changed; restart required to apply them",
                    extra={"event": "config_reload_mqtt_ignored"},
                )

            if not self.current.affects_subscriptions(new_config):
                self.current = new_config
                logger.debug(
                    "Configuration changed without affecting subscriptions",
                    extra={"event": "config_reload_noop"},
                )
                return False

            self.current = new_config
            logger.info(
                "Configuration changed, rebuilding subscriptions",
                extra={"event": "config_reloaded", **new_config.to_status_dict()},
            )
            self.on_change(new_config)
            return True

    # ========================================================================
    # Private
    # ========================================================================

    def _mtime(self) -> Optional[float]:
        try:
            return os.stat(self.path).st_mtime
        except OSError:
            return None

    def _watch_loop(self) -> None:
        while not self._stop_event.wait(timeout=self.interval):
            try:
                self.check()
            except Exception as e:
                logger.error(
                    f"Error applying configuration change: {e}",
                    extra={"event": "config_reload_error"},
                    exc_info=True,
                )
