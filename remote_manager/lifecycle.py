# -*- coding: utf-8 -*-
from __future__ import annotations

import enum
import threading
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from remote_manager.autostart import apply_autostart
from remote_manager.config_paths import Config, ConfigStore, get_logger, validate_port
from remote_manager.errors import BindError, ConfigIOError
from remote_manager.net_info import NetworkInfoProbe
from remote_manager.power import DryRunExecutor, PowerActionExecutor
from remote_manager.server import DEFAULT_HOST, ControlServer

logger = get_logger(__name__)

Notifier = Callable[[str, str], None]


class LifecycleState(enum.Enum):
    UNINITIALIZED = "uninitialized"
    CONFIG_LOADED = "config_loaded"
    SERVER_RUNNING = "server_running"
    SERVER_STOPPED = "server_stopped"


@dataclass
class ServiceContext:
    """Everything one running service instance owns."""

    store: ConfigStore
    server: ControlServer
    probe: NetworkInfoProbe = field(default_factory=NetworkInfoProbe)


def build_context(host: str = DEFAULT_HOST, dry_run: bool = False,
                  store: Optional[ConfigStore] = None) -> ServiceContext:
    executor = DryRunExecutor() if dry_run else PowerActionExecutor()
    return ServiceContext(
        store=store or ConfigStore(),
        server=ControlServer(executor, host=host),
    )


def _log_notice(title: str, message: str) -> None:
    logger.info("%s: %s", title, message)


def _log_error(context: str, details: str) -> None:
    logger.error("%s: %s", context, details)


class LifecycleController:
    """Wires settings into the control server and applies settings changes.

    All transitions run under one lock, so a port change is seen by other
    callers either entirely before or entirely after it happens.
    """

    def __init__(self, context: ServiceContext,
                 notify: Notifier = _log_notice,
                 notify_error: Notifier = _log_error,
                 autostart: Callable[[bool], bool] = apply_autostart):
        self.context = context
        self._notify = notify
        self._notify_error = notify_error
        self._autostart = autostart
        self._lock = threading.RLock()
        self._state = LifecycleState.UNINITIALIZED
        self._exit_callbacks: List[Callable[[], None]] = []
        self.exit_event = threading.Event()

    @property
    def state(self) -> LifecycleState:
        with self._lock:
            if self._state is LifecycleState.SERVER_RUNNING and not self.context.server.is_running:
                logger.warning("Control server accept loop is no longer running")
                self._state = LifecycleState.SERVER_STOPPED
            return self._state

    @property
    def config(self) -> Config:
        return self.context.store.current

    def enable_fail_closed(self, grace_seconds: Optional[float] = None) -> None:
        """Stop the service when the probe finds no internet connection."""
        probe = self.context.probe
        probe.on_unreachable = self.shutdown_service
        if grace_seconds is not None:
            probe.grace_seconds = grace_seconds

    def _ensure_loaded(self) -> Config:
        if self._state is LifecycleState.UNINITIALIZED:
            self.context.store.load()
            self._state = LifecycleState.CONFIG_LOADED
        return self.context.store.current

    def _persist(self, setter: Callable[..., Config], *args) -> Config:
        try:
            return setter(*args)
        except ConfigIOError as exc:
            self._notify_error("Failed to save settings", str(exc))
            return self.context.store.current

    def initialize(self, port_override: Optional[int] = None) -> Config:
        """Load settings and start the server. Bind failures are reported, not raised."""
        with self._lock:
            config = self._ensure_loaded()
            if port_override is not None and port_override != config.port:
                config = self._persist(self.context.store.set_port, validate_port(port_override))
            try:
                self.context.server.start(config.port)
            except BindError as exc:
                self._state = LifecycleState.SERVER_STOPPED
                self._notify_error("Failed to start HTTP server", str(exc))
                return config
            self._state = LifecycleState.SERVER_RUNNING

        if self.context.probe.on_unreachable is not None:
            threading.Thread(target=self.context.probe.discover, name="StartupNetworkCheck", daemon=True).start()
        if config.show_on_boot:
            self.announce()
        return config

    def change_port(self, port: object) -> Config:
        """Validate, persist and rebind. Raises ValidationError or BindError.

        A failed rebind leaves the server stopped; the previous listener is
        not brought back.
        """
        new_port = validate_port(port)
        with self._lock:
            self._ensure_loaded()
            server = self.context.server
            if server.is_running and server.port == new_port:
                logger.info("The port number has not changed.")
                return self.context.store.current
            config = self._persist(self.context.store.set_port, new_port)
            try:
                server.restart(new_port)
            except BindError as exc:
                self._state = LifecycleState.SERVER_STOPPED
                self._notify_error("Failed to start HTTP server", str(exc))
                raise
            self._state = LifecycleState.SERVER_RUNNING
            logger.info("Control server moved to port %s", new_port)
            return config

    def set_auto_start(self, enabled: bool) -> Config:
        with self._lock:
            self._ensure_loaded()
            config = self._persist(self.context.store.set_auto_start, enabled)
        if not self._autostart(enabled):
            self._notify_error("Failed to update start at login", "See the log file for details.")
        return config

    def set_show_on_boot(self, enabled: bool) -> Config:
        with self._lock:
            self._ensure_loaded()
            return self._persist(self.context.store.set_show_on_boot, enabled)

    def describe_endpoint(self) -> str:
        address = self.context.probe.discover()
        port = self.context.server.port
        if port is None:
            return f"{address} (server stopped)"
        return f"{address}:{port}"

    def announce(self) -> None:
        self._notify("Remote Manager", f"Listening on {self.describe_endpoint()}")

    def add_exit_callback(self, callback: Callable[[], None]) -> None:
        self._exit_callbacks.append(callback)

    def shutdown_service(self) -> None:
        """Stop the server and release the process to exit."""
        with self._lock:
            if self.exit_event.is_set():
                return
            logger.info("Shutting down Remote Manager service")
            self.context.probe.cancel()
            self.context.server.stop()
            self._state = LifecycleState.SERVER_STOPPED
            self.exit_event.set()
        for callback in list(self._exit_callbacks):
            try:
                callback()
            except Exception:
                logger.exception("Exit callback %s failed", getattr(callback, "__name__", callback))

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self.exit_event.wait(timeout)
