# -*- coding: utf-8 -*-
from __future__ import annotations


class RemoteManagerError(Exception):
    """Base class for errors raised by the host service."""


class ValidationError(RemoteManagerError, ValueError):
    """A setting was rejected before any state changed."""


class BindError(RemoteManagerError):
    """The HTTP listener could not be bound to the requested port."""

    def __init__(self, port: int, reason: str):
        super().__init__(f"Failed to start HTTP server on port {port}: {reason}")
        self.port = port
        self.reason = reason


class ExecError(RemoteManagerError):
    """A native power action could not be launched."""


class ConfigIOError(RemoteManagerError):
    """Settings could not be written to disk."""


class ProbeError(RemoteManagerError):
    """Network discovery failed."""
