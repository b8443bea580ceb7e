from __future__ import annotations

import socket

import pytest

import main
from remote_manager import system

pytestmark = pytest.mark.core_headless


def test_tray_crash_still_stops_the_listener(monkeypatch, free_port, port_accepts):
    port = free_port()
    started = []

    def _crashing_tray(controller):
        started.append(controller.context.server.port)
        raise RuntimeError("tray backend unavailable")

    monkeypatch.setattr(main, "run_tray", _crashing_tray)
    try:
        with pytest.raises(RuntimeError, match="tray backend unavailable"):
            main.main(["remote-manager", "--host", "127.0.0.1", "--port", str(port), "--dry-run"])
    finally:
        system.release_single_instance_lock()

    assert started == [port]
    assert not port_accepts(port)


def test_headless_exits_when_port_is_taken(monkeypatch, free_port):
    port = free_port()
    notices = []
    monkeypatch.setattr(main, "notify_error", lambda context, details: notices.append(context))
    blocker = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        blocker.bind(("127.0.0.1", port))
        blocker.listen(1)
        assert main.main(["remote-manager", "--host", "127.0.0.1", "--port", str(port),
                          "--dry-run", "--headless"]) == 1
    finally:
        blocker.close()
        system.release_single_instance_lock()

    assert notices == ["Failed to start HTTP server"]
