"""Shared pytest fixtures for Remote Manager tests."""
from __future__ import annotations

import os
import socket
import sys
import tempfile
import threading
from pathlib import Path
from typing import Callable, List, Optional

import pytest

# Ensure configuration paths stay inside a temporary directory so tests remain
# hermetic even when they exercise the real helpers (logging is configured at
# import time).
_TEST_CONFIG_ROOT = Path(tempfile.mkdtemp(prefix="remote-manager-tests-"))
_BASE_DIR_VAR = "APPDATA" if sys.platform.startswith("win") else "XDG_CONFIG_HOME"
os.environ.setdefault(_BASE_DIR_VAR, str(_TEST_CONFIG_ROOT))

from remote_manager.errors import ExecError  # noqa: E402
from remote_manager.power import HEALTH_MESSAGE, PowerCommand  # noqa: E402


class FakeExecutor:
    """Stands in for the native power facility."""

    def __init__(self, error: Optional[BaseException] = None):
        self.error = error
        self.calls: List[PowerCommand] = []
        self._lock = threading.Lock()

    def execute(self, command: PowerCommand) -> str:
        with self._lock:
            self.calls.append(command)
        if command is PowerCommand.HEALTH:
            return HEALTH_MESSAGE
        if self.error is not None:
            raise self.error
        return "Reboot initiated" if command is PowerCommand.REBOOT else "Shutdown initiated"


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Point the config base directory at a per-test folder."""
    config_home = tmp_path / "config"
    config_home.mkdir()
    monkeypatch.setenv(_BASE_DIR_VAR, str(config_home))
    return config_home


@pytest.fixture
def app_dir(isolated_config):
    from remote_manager.config_paths import get_config_dir

    return get_config_dir()


@pytest.fixture
def free_port() -> Callable[[], int]:
    """Factory returning a currently unused TCP port on localhost."""
    def _pick() -> int:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.bind(("127.0.0.1", 0))
            return sock.getsockname()[1]
    return _pick


@pytest.fixture
def fake_executor() -> FakeExecutor:
    return FakeExecutor()


@pytest.fixture
def failing_executor() -> FakeExecutor:
    return FakeExecutor(error=ExecError("Error initiating reboot: Access is denied."))


@pytest.fixture
def port_accepts() -> Callable[[int], bool]:
    """Whether something accepts TCP connections on localhost:port."""
    def _check(port: int, timeout: float = 1.0) -> bool:
        try:
            with socket.create_connection(("127.0.0.1", port), timeout=timeout):
                return True
        except OSError:
            return False
    return _check


@pytest.fixture
def make_server():
    """Build ControlServers bound to localhost and stop them after the test."""
    from remote_manager.server import ControlServer

    servers = []

    def _make(executor) -> ControlServer:
        server = ControlServer(executor, host="127.0.0.1")
        servers.append(server)
        return server

    yield _make
    for server in servers:
        server.stop()
