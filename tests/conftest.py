"""Shared fixtures and fakes."""

import socket
from typing import Optional

import pytest

from nut_scanner._types import Device, ProtocolKind
from nut_scanner.config import ScannerConfig
from nut_scanner.limiter import ConcurrencyGate
from nut_scanner.probes.base import Probe, ScanContext
from nut_scanner.providers import (
    FileLimits,
    InterfaceAddress,
    InterfaceProvider,
    ResourceLimitProvider,
)
from nut_scanner.ranges import IPRangeRegistry


class FakeInterfaceProvider(InterfaceProvider):
    """Returns a fixed list of interface addresses."""

    def __init__(self, addresses=None, available=True, error=None):
        self._addresses = addresses or []
        self._available = available
        self._error = error
        self.calls = 0

    @property
    def available(self) -> bool:
        return self._available

    def addresses(self):
        self.calls += 1
        if self._error:
            raise self._error
        return list(self._addresses)


class FakeLimits(ResourceLimitProvider):
    def __init__(self, soft=None, hard=None):
        self._limits = FileLimits(soft=soft, hard=hard) if soft is not None else None

    def nofile_limits(self):
        return self._limits


class FakeProbe(Probe):
    """
    Probe returning canned devices.

    ``per_range`` maps a range start address to the devices found there;
    ``devices`` is returned when called without a range.
    """

    def __init__(
        self,
        kind: ProtocolKind,
        devices=None,
        per_range=None,
        available=True,
        error: Optional[Exception] = None,
        failing_starts=(),
    ):
        self._kind = kind
        self.devices = devices or []
        self.per_range = per_range or {}
        self._available = available
        self.error = error
        self.failing_starts = set(failing_starts)
        self.calls = []

    @property
    def kind(self) -> ProtocolKind:
        return self._kind

    @property
    def available(self) -> bool:
        return self._available

    async def scan(self, context, options, start=None, end=None):
        self.calls.append((start, end))
        if self.error:
            raise self.error
        if start in self.failing_starts:
            raise RuntimeError(f"probe failure at {start}")
        if start is None and end is None:
            return list(self.devices)
        return list(self.per_range.get(start, []))


def make_device(kind: ProtocolKind, port: str, **options) -> Device:
    return Device(kind=kind, driver=f"{kind.value}-driver", port=port, options=options)


def make_interface(
    address,
    netmask,
    family=socket.AF_INET,
    name="eth0",
    loopback=False,
    up=True,
    running=True,
    broadcast=True,
):
    return InterfaceAddress(
        interface=name,
        family=family,
        address=address,
        netmask=netmask,
        loopback=loopback,
        up=up,
        running=running,
        broadcast=broadcast,
    )


@pytest.fixture
def registry():
    return IPRangeRegistry()


@pytest.fixture
def scanner_config():
    """Config with a short timeout and nothing requested."""
    config = ScannerConfig()
    config.set_timeout(1)
    return config


@pytest.fixture
def scan_context():
    return ScanContext(timeout=1.0, gate=ConcurrencyGate(8))
