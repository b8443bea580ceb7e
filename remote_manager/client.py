# -*- coding: utf-8 -*-
"""Client side of the control API, as used by the mobile/desktop controller."""
from __future__ import annotations

import http.client
from typing import Optional, Tuple

from remote_manager.config_paths import DEFAULT_PORT, get_logger

logger = get_logger(__name__)

CLIENT_TIMEOUT_SECONDS = 5.0
COMMANDS = ("reboot", "shutdown")


def parse_server_target(value: str) -> Tuple[str, int]:
    target = value.strip()
    if not target:
        raise ValueError("Server address cannot be empty.")
    if target.count(":") == 0:
        host = target
        port = DEFAULT_PORT
    else:
        host, port_str = target.rsplit(":", 1)
        host = host.strip()
        if not host:
            raise ValueError("Server host cannot be empty.")
        try:
            port = int(port_str.strip())
        except ValueError as exc:
            raise ValueError("Port must be a number.") from exc
    if port <= 0 or port > 65535:
        raise ValueError("Port must be between 1 and 65535.")
    return host, port


def _post(host: str, port: int, path: str, timeout: float) -> int:
    conn: Optional[http.client.HTTPConnection] = None
    try:
        conn = http.client.HTTPConnection(host, port, timeout=timeout)
        conn.request("POST", path, body=b"", headers={"Content-Length": "0"})
        response = conn.getresponse(); response.read()
        return response.status
    finally:
        if conn is not None:
            conn.close()


def test_connection(host: str, port: int, timeout: float = CLIENT_TIMEOUT_SECONDS) -> Tuple[bool, str]:
    """POST /api/health; any 200 counts as reachable."""
    try:
        status = _post(host, port, "/api/health", timeout)
    except (OSError, http.client.HTTPException) as exc:
        logger.warning("Connection test to %s:%s failed: %s", host, port, exc)
        return False, f"Error: {exc}"
    if status == 200:
        return True, "Connection successful"
    return False, f"Error: Response code {status}"


def send_command(host: str, port: int, command: str,
                 timeout: float = CLIENT_TIMEOUT_SECONDS) -> Tuple[bool, str]:
    if command not in COMMANDS:
        raise ValueError(f"Unknown command {command!r}; expected one of {', '.join(COMMANDS)}.")
    try:
        status = _post(host, port, f"/api/{command}", timeout)
    except (OSError, http.client.HTTPException) as exc:
        logger.warning("Sending %s to %s:%s failed: %s", command, host, port, exc)
        return False, f"Error: {exc}"
    if status == 200:
        return True, "Command sent successfully"
    return False, f"Error: Response code {status}"
