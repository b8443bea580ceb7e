from __future__ import annotations

import socket
import threading
import time
from types import SimpleNamespace

import pytest

from remote_manager import net_info
from remote_manager.errors import ProbeError
from remote_manager.net_info import ADDRESS_UNAVAILABLE, NO_INTERNET, NetworkInfoProbe

pytestmark = pytest.mark.core_headless


def _v4(address):
    return SimpleNamespace(family=socket.AF_INET, address=address)


def _v6(address):
    return SimpleNamespace(family=socket.AF_INET6, address=address)


def _online():
    return None


def _offline():
    raise ProbeError("DNS lookup of www.google.com failed: no route")


@pytest.mark.parametrize("name", [
    "VirtualBox Host-Only Network",
    "VMware Network Adapter VMnet8",
    "vboxnet0",
    "vEthernet (Hyper-V Virtual Ethernet Adapter)",
    "VMWARE-bridge",
])
def test_virtual_adapters_are_excluded(name):
    interfaces = {name: [_v4("192.168.56.1")], "Wi-Fi": [_v4("192.168.1.20")]}
    probe = NetworkInfoProbe(interfaces=lambda: interfaces, resolver=_online)
    assert probe.discover() == "192.168.1.20"


def test_loopback_and_ipv6_are_skipped():
    interfaces = {
        "lo": [_v4("127.0.0.1")],
        "eth0": [_v6("fe80::1"), _v4("10.0.0.7")],
    }
    assert NetworkInfoProbe(interfaces=lambda: interfaces, resolver=_online).discover() == "10.0.0.7"


def test_first_surviving_interface_wins():
    interfaces = {"eth0": [_v4("10.0.0.7")], "wlan0": [_v4("192.168.1.20")]}
    assert net_info.select_address(interfaces) == "10.0.0.7"


def test_no_usable_interface_returns_sentinel():
    interfaces = {"lo": [_v4("127.0.0.1")], "VirtualBox": [_v4("192.168.56.1")]}
    assert NetworkInfoProbe(interfaces=lambda: interfaces, resolver=_online).discover() == ADDRESS_UNAVAILABLE


def test_interface_enumeration_failure_returns_sentinel():
    def _broken():
        raise OSError("permission denied")

    assert NetworkInfoProbe(interfaces=_broken, resolver=_online).discover() == ADDRESS_UNAVAILABLE


def test_no_internet_returns_sentinel_without_policy():
    probe = NetworkInfoProbe(interfaces=lambda: {"eth0": [_v4("10.0.0.7")]}, resolver=_offline)
    assert probe.discover() == NO_INTERNET
    assert not probe.shutdown_pending


def test_fail_closed_policy_fires_after_grace():
    fired = threading.Event()
    probe = NetworkInfoProbe(
        interfaces=lambda: {"eth0": [_v4("10.0.0.7")]},
        resolver=_offline,
        on_unreachable=fired.set,
        grace_seconds=0.05,
    )
    assert probe.discover() == NO_INTERNET
    assert probe.shutdown_pending
    assert fired.wait(2.0)


def test_cancel_prevents_fail_closed_shutdown():
    fired = threading.Event()
    probe = NetworkInfoProbe(
        interfaces=lambda: {"eth0": [_v4("10.0.0.7")]},
        resolver=_offline,
        on_unreachable=fired.set,
        grace_seconds=0.3,
    )
    probe.discover()
    probe.cancel()
    assert not fired.wait(0.6)
    assert not probe.shutdown_pending


def test_resolve_with_timeout_gives_up(monkeypatch):
    def _slow_lookup(*args, **kwargs):
        time.sleep(1.0)
        return []

    monkeypatch.setattr(net_info.socket, "getaddrinfo", _slow_lookup)
    started = time.monotonic()
    with pytest.raises(ProbeError, match="timed out"):
        net_info.resolve_with_timeout("example.invalid", timeout=0.1)
    assert time.monotonic() - started < 0.9


def test_resolve_with_timeout_reports_lookup_failure(monkeypatch):
    def _failing_lookup(*args, **kwargs):
        raise socket.gaierror(-2, "Name or service not known")

    monkeypatch.setattr(net_info.socket, "getaddrinfo", _failing_lookup)
    with pytest.raises(ProbeError, match="failed"):
        net_info.resolve_with_timeout("example.invalid", timeout=1.0)
