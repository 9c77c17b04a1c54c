"""
Bridge - Main Orchestrator
==========================

Wires the publisher, subscription group and publication pipeline together,
rebuilds subscriptions on configuration changes and announces the service
status on startup and shutdown.

Thin by intent: event handling lives in SubscriptionGroup and
PublicationPipeline; this class only owns lifecycle and ordering.
"""

import atexit
import signal
import threading
from enum import Enum
from pathlib import Path
from typing import Optional, Union

from onvif2mqtt.bridge.config import BridgeConfig
from onvif2mqtt.bridge.config_watcher import ConfigWatcher
from onvif2mqtt.bridge.pipeline import PublicationPipeline
from onvif2mqtt.bridge.publisher import SERVICE_OFF, SERVICE_ON
from onvif2mqtt.bridge.subscription_group import BuildReport, SubscriptionGroup
from onvif2mqtt.events.schema import EventKind
from onvif2mqtt.interfaces import DeviceClient, EventPublisher
from onvif2mqtt.logging_utils import get_component_logger

logger = get_component_logger(__name__, "bridge")


class BridgeState(str, Enum):
    UNINITIALIZED = "uninitialized"
    RUNNING = "running"
    STOPPED = "stopped"


class Bridge:
    """
    ONVIF to MQTT bridge lifecycle.

    Responsibilities:
    - Startup ordering: connect → status ON → handlers → subscriptions
    - Rebuild on configuration change (running → running)
    - Idempotent shutdown: status OFF exactly once, bounded wait

    Args:
        config: BridgeConfig in effect at startup
        publisher: Transport publisher (EventPublisher protocol)
        device_client: Camera event client (DeviceClient protocol)
        config_path: YAML file to watch for changes (None = no hot reload)
        watch_interval: Poll interval of the config watcher in seconds
        connect_timeout: Seconds to wait for the broker on startup
        install_process_hooks: Register SIGINT/SIGTERM handlers and an atexit hook

    Example:
        >>> config = BridgeConfig.from_yaml("config.yml")
        >>> bridge = Bridge(config, MqttPublisher(config.mqtt), OnvifDeviceClient(),
        ...                 config_path="config.yml")
        >>> bridge.start()
        >>> bridge.join()  # Blocks until SIGINT/SIGTERM
    """

    def __init__(
        self,
        config: BridgeConfig,
        publisher: EventPublisher,
        device_client: DeviceClient,
        config_path: Optional[Union[str, Path]] = None,
        watch_interval: float = 2.0,
        connect_timeout: float = 10.0,
        install_process_hooks: bool = True,
    ):
        self.config = config
        self.publisher = publisher
        self.device_client = device_client
        self.config_path = config_path
        self.watch_interval = watch_interval
        self.connect_timeout = connect_timeout
        self.install_process_hooks = install_process_hooks

        self.pipeline = PublicationPipeline(publisher, lambda: self.config.templates)
        self.group = SubscriptionGroup(device_client, debounce_seconds=config.debounce_seconds)
        self.config_watcher: Optional[ConfigWatcher] = None

        self.state = BridgeState.UNINITIALIZED
        self.last_build: Optional[BuildReport] = None

        self._lock = threading.RLock()
        self._shutdown_lock = threading.Lock()
        self._shutdown_started = False
        self._status_on = False
        self._stopped = threading.Event()

    # ========================================================================
    # Lifecycle
    # ========================================================================

    def start(self) -> BuildReport:
        """
        Start the bridge.

        Order:
        1. Connect publisher (raises if the broker is unreachable)
        2. Publish service status ON
        3. Register one handler per event kind
        4. Build device subscriptions
        5. Install shutdown hooks and start the config watcher
        """
        with self._lock:
            if self.state != BridgeState.UNINITIALIZED:
                raise RuntimeError(f"Bridge cannot start from state {self.state.value}")

            logger.info(
                f"Starting bridge with {len(self.config.devices)} devices",
                extra={"event": "bridge_start", **self.config.to_status_dict()},
            )

            self.publisher.connect(timeout=self.connect_timeout)
            self.publisher.publish_service_status(SERVICE_ON)
            self._status_on = True

            report = self._wire(self.config)
            if self._shutdown_started:
                # Shutdown ran while the group was building; drop what the build added after it
                self.group.destroy()
                logger.warning(
                    "Shutdown requested during startup",
                    extra={"event": "bridge_start_aborted"},
                )
                return report
            self.state = BridgeState.RUNNING

        if self.install_process_hooks:
            self._install_process_hooks()

        if self.config_path is not None:
            self.config_watcher = ConfigWatcher(
                self.config_path,
                self.reconfigure,
                current=self.config,
                interval=self.watch_interval,
            )
            self.config_watcher.start()

        logger.info(
            "Bridge running",
            extra={"event": "bridge_running", "subscribed": report.subscribed},
        )
        return report

    def reconfigure(self, new_config: BridgeConfig) -> Optional[BuildReport]:
        """
        Atomically replace the device set with the one in new_config.

        Returns:
            BuildReport of the rebuild, None if the bridge is not running
        """
        with self._lock:
            if self.state != BridgeState.RUNNING:
                logger.warning(
                    f"Ignoring reconfiguration in state {self.state.value}",
                    extra={"event": "reconfigure_ignored", "state": self.state.value},
                )
                return None

            self.config = new_config
            report = self._wire(new_config)

        logger.info(
            "Bridge reconfigured",
            extra={
                "event": "bridge_reconfigured",
                "subscribed": report.subscribed,
                "failed": sorted(report.failed),
            },
        )
        return report

    def shutdown(self, reason: str = "requested") -> bool:
        """
        Publish status OFF and release every resource.

        Safe to call from several signal handlers and threads: only the first
        call does the work.

        Returns:
            True for the call that performed the shutdown
        """
        with self._shutdown_lock:
            if self._shutdown_started:
                return False
            self._shutdown_started = True

        logger.info(
            f"Shutting down ({reason})",
            extra={"event": "bridge_shutdown", "reason": reason},
        )

        if self.config_watcher is not None:
            self.config_watcher.stop()

        with self._lock:
            announced = self._status_on
            self.state = BridgeState.STOPPED

        if announced:
            try:
                self.publisher.publish_service_status(
                    SERVICE_OFF, wait_timeout=self.config.shutdown_timeout
                )
            except Exception as e:
                logger.error(
                    f"Could not publish service status OFF: {e}",
                    extra={"event": "status_off_failed", "error_type": type(e).__name__},
                )

            self.group.destroy()

            try:
                self.publisher.disconnect()
            except Exception as e:
                logger.warning(
                    f"Error disconnecting publisher: {e}",
                    extra={"event": "publisher_disconnect_failed"},
                )

        self._stopped.set()
        logger.info("Bridge stopped", extra={"event": "bridge_stopped"})
        return True

    def join(self, timeout: Optional[float] = None) -> bool:
        """Block until shutdown completes. Returns False on timeout."""
        return self._stopped.wait(timeout)

    @property
    def is_running(self) -> bool:
        return self.state == BridgeState.RUNNING

    # ========================================================================
    # Private
    # ========================================================================

    def _wire(self, config: BridgeConfig) -> BuildReport:
        # Handlers first so the synthetic motion=false of each device is published
        for kind in EventKind:
            self.group.set_handler(kind, self.pipeline.handler_for(kind))

        self.last_build = self.group.build(config.devices, debounce_seconds=config.debounce_seconds)
        return self.last_build

    def _install_process_hooks(self) -> None:
        if threading.current_thread() is threading.main_thread():
            signal.signal(signal.SIGINT, self._signal_handler)
            signal.signal(signal.SIGTERM, self._signal_handler)
        else:
            logger.warning(
                "Not on main thread, signal handlers not installed",
                extra={"event": "signal_handlers_skipped"},
            )

        atexit.register(self.shutdown, "interpreter exit")

    def _signal_handler(self, signum, frame):
        logger.info(
            f"Received signal {signum}",
            extra={"event": "signal_received", "signal": signum},
        )
        self.shutdown(reason=signal.Signals(signum).name)
