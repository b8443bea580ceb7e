# -*- coding: utf-8 -*-
from __future__ import annotations

import os
import shlex
import sys
from pathlib import Path
from typing import List, Optional

from remote_manager import APP_NAME
from remote_manager.config_paths import get_logger

logger = get_logger(__name__)

RUN_KEY = r"Software\Microsoft\Windows\CurrentVersion\Run"
DESKTOP_FILENAME = "remote-manager.desktop"


def launch_command() -> List[str]:
    if getattr(sys, "frozen", False):
        # Running from a bundled executable (PyInstaller)
        return [sys.executable]
    main_script = Path(__file__).resolve().parent.parent / "main.py"
    return [sys.executable, str(main_script)]


def get_autostart_dir() -> Path:
    base_dir = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    return base_dir / "autostart"


def _desktop_entry(command: List[str]) -> str:
    return "\n".join([
        "[Desktop Entry]",
        "Type=Application",
        f"Name={APP_NAME}",
        "Comment=Remote reboot/shutdown service",
        f"Exec={shlex.join(command)}",
        "X-GNOME-Autostart-enabled=true",
        "",
    ])


def _apply_windows(enabled: bool, command: List[str]) -> None:
    import winreg

    with winreg.OpenKey(winreg.HKEY_CURRENT_USER, RUN_KEY, 0, winreg.KEY_SET_VALUE) as key:
        if enabled:
            value = " ".join(f'"{part}"' for part in command)
            winreg.SetValueEx(key, APP_NAME, 0, winreg.REG_SZ, value)
        else:
            try:
                winreg.DeleteValue(key, APP_NAME)
            except FileNotFoundError:
                pass


def _apply_desktop_file(enabled: bool, command: List[str]) -> None:
    entry_path = get_autostart_dir() / DESKTOP_FILENAME
    if enabled:
        entry_path.parent.mkdir(parents=True, exist_ok=True)
        entry_path.write_text(_desktop_entry(command), encoding="utf-8")
    else:
        entry_path.unlink(missing_ok=True)


def apply_autostart(enabled: bool, command: Optional[List[str]] = None) -> bool:
    """Register or remove the login item. Returns False when the OS refused."""
    command = command or launch_command()
    try:
        if sys.platform.startswith("win"):
            _apply_windows(enabled, command)
        else:
            _apply_desktop_file(enabled, command)
    except OSError:
        logger.exception("Failed to %s start at login", "enable" if enabled else "disable")
        return False
    logger.info("Start at login %s", "enabled" if enabled else "disabled")
    return True


def is_autostart_registered() -> bool:
    if sys.platform.startswith("win"):
        import winreg

        try:
            with winreg.OpenKey(winreg.HKEY_CURRENT_USER, RUN_KEY) as key:
                winreg.QueryValueEx(key, APP_NAME)
            return True
        except OSError:
            return False
    return (get_autostart_dir() / DESKTOP_FILENAME).exists()
