# -*- coding: utf-8 -*-
from __future__ import annotations

import enum
import subprocess
import sys
from typing import Dict, List, Optional

from remote_manager.config_paths import get_logger
from remote_manager.errors import ExecError

logger = get_logger(__name__)

COMMAND_TIMEOUT_SECONDS = 15.0
HEALTH_MESSAGE = "OK"


class PowerCommand(enum.Enum):
    REBOOT = "reboot"
    SHUTDOWN = "shutdown"
    HEALTH = "health"

    @classmethod
    def from_path(cls, path: str) -> Optional["PowerCommand"]:
        """Map ``/api/<name>`` to a command, ignoring query string and trailing slash."""
        path = path.split("?", 1)[0].split("#", 1)[0]
        if len(path) > 1:
            path = path.rstrip("/")
        prefix = "/api/"
        if not path.startswith(prefix):
            return None
        try:
            return cls(path[len(prefix):])
        except ValueError:
            return None


_SUCCESS_MESSAGES = {
    PowerCommand.REBOOT: "Reboot initiated",
    PowerCommand.SHUTDOWN: "Shutdown initiated",
}


def platform_commands(platform: str = sys.platform) -> Dict[PowerCommand, List[str]]:
    """Native argv for an immediate power transition on ``platform``."""
    if platform.startswith("win"):
        return {
            PowerCommand.REBOOT: ["shutdown", "/r", "/t", "0"],
            PowerCommand.SHUTDOWN: ["shutdown", "/s", "/t", "0"],
        }
    if platform == "darwin":
        return {
            PowerCommand.REBOOT: ["shutdown", "-r", "now"],
            PowerCommand.SHUTDOWN: ["shutdown", "-h", "now"],
        }
    return {
        PowerCommand.REBOOT: ["systemctl", "reboot"],
        PowerCommand.SHUTDOWN: ["systemctl", "poweroff"],
    }


class PowerActionExecutor:
    """Runs the host's reboot/shutdown facility.

    ``execute`` returns the acknowledgement text on success and raises
    ExecError with the underlying diagnostic when the action could not be
    launched. Health checks never touch the OS.
    """

    def __init__(self, commands: Optional[Dict[PowerCommand, List[str]]] = None,
                 timeout: float = COMMAND_TIMEOUT_SECONDS):
        self.commands = commands if commands is not None else platform_commands()
        self.timeout = timeout

    def execute(self, command: PowerCommand) -> str:
        if command is PowerCommand.HEALTH:
            return HEALTH_MESSAGE
        argv = self.commands[command]
        logger.warning("Executing %s: %s", command.value, " ".join(argv))
        try:
            self._run(argv)
        except ExecError as exc:
            logger.error("Power action %s failed: %s", command.value, exc)
            raise ExecError(f"Error initiating {command.value}: {exc}") from exc
        return _SUCCESS_MESSAGES[command]

    def _run(self, argv: List[str]) -> None:
        try:
            result = subprocess.run(argv, capture_output=True, text=True, timeout=self.timeout)
        except subprocess.TimeoutExpired as exc:
            raise ExecError(f"{argv[0]} did not finish within {self.timeout:g}s") from exc
        except OSError as exc:
            raise ExecError(exc.strerror or str(exc)) from exc
        if result.returncode != 0:
            detail = (result.stderr or result.stdout or "").strip()
            raise ExecError(detail or f"{argv[0]} exited with status {result.returncode}")


class DryRunExecutor(PowerActionExecutor):
    """Logs power actions instead of running them (``--dry-run``)."""

    def _run(self, argv: List[str]) -> None:
        logger.info("Dry run: would execute %s", " ".join(argv))
