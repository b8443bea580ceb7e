# -*- coding: utf-8 -*-
from __future__ import annotations

import enum
import sys
import threading
from dataclasses import dataclass
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Optional, Protocol, Tuple

from remote_manager import APP_VERSION
from remote_manager.config_paths import get_logger
from remote_manager.errors import BindError, ExecError
from remote_manager.power import PowerCommand

logger = get_logger(__name__)

DEFAULT_HOST = "0.0.0.0"
POLL_INTERVAL_SECONDS = 0.2
JOIN_TIMEOUT_SECONDS = 5.0
REQUEST_TIMEOUT_SECONDS = 10.0
MAX_DRAIN_BYTES = 1_048_576

UNSUPPORTED_METHOD_MESSAGE = "Unsupported HTTP method"
INVALID_REQUEST_MESSAGE = "Invalid Request"


class Executor(Protocol):
    def execute(self, command: PowerCommand) -> str: ...


@dataclass(frozen=True)
class Response:
    status: int
    body: str


class ServerState(enum.Enum):
    STOPPED = "stopped"
    RUNNING = "running"


def route_request(method: str, path: str, executor: Executor) -> Response:
    """Turn one request line into a response; never raises."""
    if method.upper() != "POST":
        return Response(405, UNSUPPORTED_METHOD_MESSAGE)
    command = PowerCommand.from_path(path)
    if command is None:
        return Response(404, INVALID_REQUEST_MESSAGE)
    try:
        return Response(200, executor.execute(command))
    except ExecError as exc:
        return Response(500, str(exc))
    except Exception as exc:
        logger.exception("Unexpected failure while handling %s", command.value)
        return Response(500, f"Error initiating {command.value}: {exc}")


class PowerRequestHandler(BaseHTTPRequestHandler):
    server_version = f"RemoteManager/{APP_VERSION}"
    timeout = REQUEST_TIMEOUT_SECONDS

    def _drain_body(self) -> None:
        try:
            remaining = int(self.headers.get("Content-Length", "0"))
        except ValueError:
            remaining = 0
        remaining = min(max(remaining, 0), MAX_DRAIN_BYTES)
        while remaining > 0:
            chunk = self.rfile.read(min(65536, remaining))
            if not chunk:
                break
            remaining -= len(chunk)

    def _write(self, status: int, body: str, include_body: bool = True) -> None:
        payload = body.encode("utf-8")
        self.send_response_only(status)
        self.send_header("Content-Length", str(len(payload)))
        self.end_headers()
        if include_body:
            self.wfile.write(payload)

    def _respond(self) -> None:
        self._drain_body()
        response = route_request(self.command, self.path, self.server.executor)
        self._write(response.status, response.body, include_body=self.command != "HEAD")
        logger.info("%s %s %s -> %s", self.client_address[0], self.command, self.path, response.status)

    def __getattr__(self, name: str):
        # handle_one_request looks up do_<METHOD>; route every method, known or not
        if name.startswith("do_"):
            return self._respond
        raise AttributeError(name)

    def send_error(self, code, message=None, explain=None):
        """Malformed requests get the same plain-text shape as routed ones."""
        self.close_connection = True
        if message is None:
            message = self.responses.get(code, ("Error",))[0]
        self._write(code, message, include_body=self.command != "HEAD")
        logger.info("%s %r -> %s %s", self.client_address[0], self.requestline, int(code), message)

    def log_message(self, format, *args):
        logger.debug("%s - %s", self.address_string(), format % args)


class _ControlHTTPServer(HTTPServer):
    # SO_REUSEADDR lets a second socket bind a busy port on Windows.
    allow_reuse_address = not sys.platform.startswith("win")

    def __init__(self, address: Tuple[str, int], executor: Executor):
        self.executor = executor
        super().__init__(address, PowerRequestHandler)

    def handle_error(self, request, client_address):
        logger.exception("Unexpected error while serving %s", client_address)


class ControlServer:
    """Owns the single HTTP listener of the service.

    ``start``, ``stop`` and ``restart`` are serialized on one lock. Requests
    are served one at a time on a dedicated worker thread; ``stop`` shuts the
    accept loop down, closes the socket and joins the worker before it
    returns.
    """

    def __init__(self, executor: Executor, host: str = DEFAULT_HOST):
        self.executor = executor
        self.host = host
        self._lock = threading.RLock()
        self._httpd: Optional[_ControlHTTPServer] = None
        self._thread: Optional[threading.Thread] = None
        self._port: Optional[int] = None

    @property
    def state(self) -> ServerState:
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                return ServerState.RUNNING
            return ServerState.STOPPED

    @property
    def is_running(self) -> bool:
        return self.state is ServerState.RUNNING

    @property
    def port(self) -> Optional[int]:
        """Bound port while running, otherwise None."""
        with self._lock:
            return self._port if self.is_running else None

    def start(self, port: int) -> None:
        with self._lock:
            if self.is_running:
                logger.debug("Server start requested but already listening on port %s", self._port)
                return
            if self._httpd is not None:
                logger.warning("Accept loop on port %s exited unexpectedly; releasing listener", self._port)
                self._release()

            logger.info("Starting control server on %s:%s", self.host, port)
            try:
                httpd = _ControlHTTPServer((self.host, port), self.executor)
            except OSError as exc:
                logger.error("Server startup failed on port %s: %s", port, exc)
                raise BindError(port, exc.strerror or str(exc)) from exc

            self._httpd = httpd
            self._port = httpd.server_address[1]
            self._thread = threading.Thread(
                target=self._serve, args=(httpd,), name=f"ControlServer-{self._port}", daemon=True
            )
            self._thread.start()
            logger.info("Server running on port %s", self._port)

    def _serve(self, httpd: _ControlHTTPServer) -> None:
        try:
            httpd.serve_forever(poll_interval=POLL_INTERVAL_SECONDS)
        except Exception:
            logger.exception("Control server accept loop on port %s terminated", httpd.server_address[1])

    def stop(self) -> None:
        with self._lock:
            if self._httpd is None:
                return
            self._release()
            logger.info("Server stopped")

    def _release(self) -> None:
        httpd, thread = self._httpd, self._thread
        self._httpd = None
        self._thread = None
        self._port = None
        if thread is not None and thread.is_alive():
            try:
                httpd.shutdown()
            except Exception:
                logger.exception("Failed to stop HTTP accept loop cleanly")
        try:
            httpd.server_close()
        except OSError:
            logger.exception("Failed to close HTTP listener")
        if thread is not None:
            thread.join(timeout=JOIN_TIMEOUT_SECONDS)
            if thread.is_alive():
                logger.warning("Control server worker %s did not exit in time", thread.name)

    def restart(self, port: int) -> None:
        with self._lock:
            self.stop()
            self.start(port)
