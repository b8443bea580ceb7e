from __future__ import annotations

import sys

import pytest

from remote_manager import power
from remote_manager.errors import ExecError
from remote_manager.power import DryRunExecutor, PowerActionExecutor, PowerCommand

pytestmark = pytest.mark.core_headless


@pytest.mark.parametrize("path, expected", [
    ("/api/reboot", PowerCommand.REBOOT),
    ("/api/shutdown", PowerCommand.SHUTDOWN),
    ("/api/health", PowerCommand.HEALTH),
    ("/api/health/", PowerCommand.HEALTH),
    ("/api/health?source=app", PowerCommand.HEALTH),
    ("/api/restart", None),
    ("/health", None),
    ("/", None),
    ("/API/reboot", None),
])
def test_command_from_path(path, expected):
    assert PowerCommand.from_path(path) is expected


def test_platform_commands_have_zero_grace_delay():
    windows = power.platform_commands("win32")
    assert windows[PowerCommand.REBOOT] == ["shutdown", "/r", "/t", "0"]
    assert windows[PowerCommand.SHUTDOWN] == ["shutdown", "/s", "/t", "0"]
    assert power.platform_commands("linux")[PowerCommand.SHUTDOWN] == ["systemctl", "poweroff"]
    assert power.platform_commands("darwin")[PowerCommand.REBOOT] == ["shutdown", "-r", "now"]


def test_health_never_runs_a_command(monkeypatch):
    def _boom(*args, **kwargs):
        raise AssertionError("subprocess must not be used for health checks")

    monkeypatch.setattr(power.subprocess, "run", _boom)
    assert PowerActionExecutor().execute(PowerCommand.HEALTH) == "OK"


def test_successful_command_returns_acknowledgement():
    executor = PowerActionExecutor(commands={
        PowerCommand.REBOOT: [sys.executable, "-c", "pass"],
        PowerCommand.SHUTDOWN: [sys.executable, "-c", "pass"],
    })
    assert executor.execute(PowerCommand.REBOOT) == "Reboot initiated"
    assert executor.execute(PowerCommand.SHUTDOWN) == "Shutdown initiated"


def test_missing_binary_is_reported_as_exec_error():
    executor = PowerActionExecutor(commands={
        PowerCommand.REBOOT: ["remote-manager-no-such-binary-xyz"],
        PowerCommand.SHUTDOWN: ["remote-manager-no-such-binary-xyz"],
    })
    with pytest.raises(ExecError) as excinfo:
        executor.execute(PowerCommand.REBOOT)
    assert str(excinfo.value).startswith("Error initiating reboot: ")


def test_non_zero_exit_carries_stderr():
    failing = [sys.executable, "-c", "import sys; sys.stderr.write('Access is denied.'); sys.exit(5)"]
    executor = PowerActionExecutor(commands={PowerCommand.REBOOT: failing, PowerCommand.SHUTDOWN: failing})
    with pytest.raises(ExecError) as excinfo:
        executor.execute(PowerCommand.SHUTDOWN)
    assert str(excinfo.value) == "Error initiating shutdown: Access is denied."


def test_timeout_is_reported_as_exec_error():
    slow = [sys.executable, "-c", "import time; time.sleep(5)"]
    executor = PowerActionExecutor(commands={PowerCommand.REBOOT: slow, PowerCommand.SHUTDOWN: slow},
                                   timeout=0.2)
    with pytest.raises(ExecError, match="did not finish"):
        executor.execute(PowerCommand.REBOOT)


def test_dry_run_executor_does_not_spawn(monkeypatch):
    def _boom(*args, **kwargs):
        raise AssertionError("dry run must not spawn processes")

    monkeypatch.setattr(power.subprocess, "run", _boom)
    assert DryRunExecutor().execute(PowerCommand.REBOOT) == "Reboot initiated"
