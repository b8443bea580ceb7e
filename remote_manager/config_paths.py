# -*- coding: utf-8 -*-
from __future__ import annotations

import json
import logging
import os
import sys
import threading
from dataclasses import asdict, dataclass, replace
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Dict, Optional

from remote_manager import APP_NAME
from remote_manager.errors import ConfigIOError, ValidationError

CONFIG_FILENAME = "settings.json"
LEGACY_PORT_FILENAME = "port.txt"
LOG_DIR_NAME = "logs"

DEFAULT_PORT = 4433
MIN_PORT = 1
MAX_PORT = 65535


@dataclass(frozen=True)
class Config:
    port: int = DEFAULT_PORT
    show_on_boot: bool = False
    auto_start: bool = False

    def to_dict(self) -> Dict[str, object]:
        return asdict(self)


DEFAULT_CONFIG = Config()


def get_config_dir() -> Path:
    """
    All persistent data goes here:
      %APPDATA%/RemoteManager (Windows)
      $XDG_CONFIG_HOME/RemoteManager or ~/.config/RemoteManager (others)
    The logs/ subfolder is created alongside settings.json.
    """
    if sys.platform.startswith("win"):
        base_dir = Path(os.environ.get("APPDATA", Path.home() / "AppData" / "Roaming"))
    else:
        base_dir = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    config_dir = base_dir / APP_NAME
    config_dir.mkdir(parents=True, exist_ok=True)
    return config_dir


def get_logs_dir() -> Path:
    logs_dir = get_config_dir() / LOG_DIR_NAME
    logs_dir.mkdir(parents=True, exist_ok=True)
    return logs_dir


def get_config_file_path() -> Path:
    return get_config_dir() / CONFIG_FILENAME


def validate_port(value: object) -> int:
    """Return ``value`` as a port number or raise ValidationError."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"Port must be an integer, got {value!r}.")
    if value < MIN_PORT or value > MAX_PORT:
        raise ValidationError(f"Please enter a valid port number between {MIN_PORT} and {MAX_PORT}.")
    return value


def _coerce_port(raw: object) -> Optional[int]:
    if isinstance(raw, str):
        raw = raw.strip()
        if not raw.isdigit():
            return None
        raw = int(raw)
    try:
        return validate_port(raw)
    except ValidationError:
        return None


def _coerce_flag(raw: object) -> Optional[bool]:
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, str) and raw.strip().lower() in {"true", "false"}:
        return raw.strip().lower() == "true"
    return None


class ConfigStore:
    """Persisted service settings with validated setters.

    Every mutation is written through to disk immediately. A failed write
    raises ConfigIOError but leaves the in-memory value updated, so the
    running process keeps the new setting even if it is not persisted.
    """

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path is not None else get_config_file_path()
        self._lock = threading.RLock()
        self._config = DEFAULT_CONFIG

    @property
    def current(self) -> Config:
        with self._lock:
            return self._config

    def load(self) -> Config:
        with self._lock:
            if not self.path.exists():
                config = self._migrate_legacy_port_file()
                self._config = config
                try:
                    self.save(config)
                except ConfigIOError:
                    logger.warning("Continuing with default settings that could not be written")
                return config

            loaded: object = {}
            try:
                loaded = json.loads(self.path.read_text("utf-8-sig"))
            except (OSError, ValueError):
                logger.exception("Unable to read settings from %s; using defaults", self.path)
            if not isinstance(loaded, dict):
                logger.warning("Settings file %s does not hold an object; using defaults", self.path)
                loaded = {}

            self._config = self._parse(loaded)
            return self._config

    def _parse(self, data: Dict[str, object]) -> Config:
        values: Dict[str, object] = {}
        if "port" in data:
            port = _coerce_port(data["port"])
            if port is None:
                logger.warning("Invalid persisted port %r; falling back to %s", data["port"], DEFAULT_PORT)
            else:
                values["port"] = port
        for key in ("show_on_boot", "auto_start"):
            if key not in data:
                continue
            flag = _coerce_flag(data[key])
            if flag is None:
                logger.warning("Invalid persisted value for %s: %r; using default", key, data[key])
            else:
                values[key] = flag
        return replace(DEFAULT_CONFIG, **values)

    def _migrate_legacy_port_file(self) -> Config:
        legacy = self.path.parent / LEGACY_PORT_FILENAME
        if not legacy.exists():
            return DEFAULT_CONFIG
        try:
            port = _coerce_port(legacy.read_text("utf-8"))
        except OSError:
            logger.exception("Failed to load port from file %s", legacy)
            port = None
        if port is None:
            return DEFAULT_CONFIG
        logger.info("Migrating port %s from legacy %s", port, legacy)
        return replace(DEFAULT_CONFIG, port=port)

    def save(self, config: Config) -> None:
        """Overwrite the settings file with ``config`` in one step."""
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        payload = json.dumps(config.to_dict(), indent=2)
        with self._lock:
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                tmp_path.write_text(payload, encoding="utf-8")
                os.replace(tmp_path, self.path)
            except OSError as exc:
                logger.exception("Unable to save settings to %s", self.path)
                try:
                    tmp_path.unlink(missing_ok=True)
                except OSError:
                    logger.debug("Failed to remove partial settings file %s", tmp_path, exc_info=True)
                raise ConfigIOError(f"Failed to save settings to {self.path}: {exc}") from exc

    def _update(self, **changes: object) -> Config:
        with self._lock:
            self._config = replace(self._config, **changes)
            self.save(self._config)
            return self._config

    def set_port(self, port: object) -> Config:
        return self._update(port=validate_port(port))

    def set_auto_start(self, enabled: bool) -> Config:
        return self._update(auto_start=bool(enabled))

    def set_show_on_boot(self, enabled: bool) -> Config:
        return self._update(show_on_boot=bool(enabled))


LOGGER_NAME = "remote_manager"
_LOG_HANDLER: Optional[RotatingFileHandler] = None
_CONSOLE_HANDLER: Optional[logging.Handler] = None
_LOG_CONFIG_LOCK = threading.Lock()


def _configure_logging() -> logging.Logger:
    global _LOG_HANDLER, _CONSOLE_HANDLER

    with _LOG_CONFIG_LOCK:
        app_logger = logging.getLogger(LOGGER_NAME)
        if _LOG_HANDLER is None:
            logs_dir = get_logs_dir()
            handler = RotatingFileHandler(
                logs_dir / "remote-manager.log",
                maxBytes=1_048_576,
                backupCount=5,
                encoding="utf-8",
            )
            formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
            handler.setFormatter(formatter)
            handler.setLevel(logging.DEBUG)
            _LOG_HANDLER = handler

            root_logger = logging.getLogger()
            root_logger.addHandler(handler)
            if root_logger.level == logging.NOTSET or root_logger.level > logging.INFO:
                root_logger.setLevel(logging.INFO)

            if _CONSOLE_HANDLER is None:
                console_handler = logging.StreamHandler()
                console_handler.setLevel(logging.INFO)
                console_handler.setFormatter(formatter)
                root_logger.addHandler(console_handler)
                _CONSOLE_HANDLER = console_handler

            logging.captureWarnings(True)

        app_logger.setLevel(logging.INFO)
        app_logger.propagate = True
        return app_logger


_CONFIGURED_LOGGER = _configure_logging()


def get_logger(name: str = LOGGER_NAME) -> logging.Logger:
    logger = _CONFIGURED_LOGGER if name == LOGGER_NAME else logging.getLogger(name)
    if logger is not _CONFIGURED_LOGGER:
        _configure_logging()
    return logger


logger = get_logger(__name__)
