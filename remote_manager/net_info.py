# -*- coding: utf-8 -*-
from __future__ import annotations

import ipaddress
import socket
import threading
from typing import Callable, Dict, Iterator, List, Optional, Sequence

import psutil

from remote_manager.config_paths import get_logger
from remote_manager.errors import ProbeError

logger = get_logger(__name__)

ADDRESS_UNAVAILABLE = "Not available"
NO_INTERNET = "No internet connection"

VIRTUAL_ADAPTER_PATTERNS = ("virtualbox", "vmware", "vbox", "virtual")
REACHABILITY_HOST = "www.google.com"
REACHABILITY_TIMEOUT_SECONDS = 1.5
FAIL_CLOSED_GRACE_SECONDS = 5.0

InterfaceMap = Dict[str, Sequence[object]]


def is_virtual_adapter(name: str) -> bool:
    lowered = name.lower()
    return any(pattern in lowered for pattern in VIRTUAL_ADAPTER_PATTERNS)


def _ipv4_address(addr: object) -> Optional[str]:
    if getattr(addr, "family", None) != socket.AF_INET:
        return None
    address = getattr(addr, "address", None)
    if not address:
        return None
    try:
        if ipaddress.ip_address(address).is_loopback:
            return None
    except ValueError:
        return None
    return address


def iter_candidate_addresses(interfaces: InterfaceMap) -> Iterator[str]:
    """Every address that passes the adapter filter, in interface order."""
    for name, addrs in interfaces.items():
        if is_virtual_adapter(name):
            logger.debug("Skipping virtual adapter %s", name)
            continue
        for addr in addrs:
            address = _ipv4_address(addr)
            if address:
                yield address


def select_address(interfaces: InterfaceMap) -> Optional[str]:
    """First non-loopback IPv4 address of the first physical-looking adapter."""
    return next(iter_candidate_addresses(interfaces), None)


def resolve_with_timeout(host: str = REACHABILITY_HOST,
                         timeout: float = REACHABILITY_TIMEOUT_SECONDS) -> None:
    """Resolve ``host`` or raise ProbeError once ``timeout`` expires."""
    outcome: List[BaseException] = []
    done = threading.Event()

    def _lookup() -> None:
        try:
            socket.getaddrinfo(host, None)
        except OSError as exc:
            outcome.append(exc)
        finally:
            done.set()

    threading.Thread(target=_lookup, name="ReachabilityCheck", daemon=True).start()
    if not done.wait(timeout):
        raise ProbeError(f"DNS lookup of {host} timed out after {timeout:g}s")
    if outcome:
        raise ProbeError(f"DNS lookup of {host} failed: {outcome[0]}")


class NetworkInfoProbe:
    """Finds the address clients should use to reach this machine.

    When ``on_unreachable`` is set the probe calls it after the grace delay
    whenever the reachability check fails; the service uses this to shut
    itself down on hosts without a usable network path.
    """

    def __init__(self,
                 interfaces: Callable[[], InterfaceMap] = psutil.net_if_addrs,
                 resolver: Callable[[], None] = resolve_with_timeout,
                 on_unreachable: Optional[Callable[[], None]] = None,
                 grace_seconds: float = FAIL_CLOSED_GRACE_SECONDS):
        self._interfaces = interfaces
        self._resolver = resolver
        self.on_unreachable = on_unreachable
        self.grace_seconds = grace_seconds
        self._timer_lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None

    def discover(self) -> str:
        try:
            interfaces = self._interfaces()
        except Exception:
            logger.exception("Failed to enumerate network interfaces")
            return ADDRESS_UNAVAILABLE
        address = select_address(interfaces)
        if address is None:
            logger.warning("No usable IPv4 interface found")
            return ADDRESS_UNAVAILABLE

        try:
            self._resolver()
        except ProbeError as exc:
            logger.warning("Internet reachability check failed: %s", exc)
            self._schedule_unreachable()
            return NO_INTERNET
        return address

    def _schedule_unreachable(self) -> None:
        if self.on_unreachable is None:
            return
        with self._timer_lock:
            if self._timer is not None:
                return
            logger.warning("No internet connection; stopping service in %gs", self.grace_seconds)
            self._timer = threading.Timer(self.grace_seconds, self.on_unreachable)
            self._timer.daemon = True
            self._timer.start()

    @property
    def shutdown_pending(self) -> bool:
        with self._timer_lock:
            return self._timer is not None

    def cancel(self) -> None:
        with self._timer_lock:
            timer, self._timer = self._timer, None
        if timer is not None:
            timer.cancel()
