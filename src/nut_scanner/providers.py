"""
Platform capability providers.

The orchestration code never talks to the operating system directly. It asks
one of three small providers instead:

- InterfaceProvider: local network interface addresses and their flags
- ResourceLimitProvider: the open file descriptor limits of the process
- ConcurrencyProvider: how a probe is started and joined

Each has a working implementation for the current platform and a fallback
used where the facility does not exist.
"""

from __future__ import annotations

import asyncio
import logging
import socket
import sys
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import psutil

try:
    import resource
except ImportError:  # Windows has no rlimit support
    resource = None

from .exceptions import DispatchError, InterfaceEnumerationError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Network interfaces
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class InterfaceAddress:
    """One address assigned to a local network interface."""
    interface: str
    family: int  # socket.AF_INET or socket.AF_INET6
    address: str
    netmask: Optional[str]
    loopback: bool = False
    up: bool = False
    running: bool = False
    broadcast: bool = False

    def describe(self) -> str:
        flags = [
            name for name, value in (
                ("LOOPBACK", self.loopback),
                ("UP", self.up),
                ("RUNNING", self.running),
                ("BROADCAST", self.broadcast),
            ) if value
        ]
        return (
            f"Interface: {self.interface}\tAddress: {self.address}\t"
            f"Mask: {self.netmask}\tFlags: {' '.join(flags) or '-'}"
        )


class InterfaceProvider(ABC):
    """Lists local interface addresses."""

    @property
    def available(self) -> bool:
        return True

    @abstractmethod
    def addresses(self) -> list[InterfaceAddress]:
        """
        Return IPv4 and IPv6 addresses of all local interfaces.

        Raises InterfaceEnumerationError if the interfaces cannot be listed.
        """
        pass


class PsutilInterfaceProvider(InterfaceProvider):
    """Interface addresses and flags from psutil."""

    def addresses(self) -> list[InterfaceAddress]:
        try:
            all_addrs = psutil.net_if_addrs()
            all_stats = psutil.net_if_stats()
        except (OSError, RuntimeError) as e:
            raise InterfaceEnumerationError(
                f"Failed to list network interfaces for connected subnet scan: {e}"
            ) from e

        result = []
        for iface, addrs in all_addrs.items():
            stats = all_stats.get(iface)
            flags = set()
            if stats is not None:
                flags = {f for f in getattr(stats, "flags", "").split(",") if f}

            for addr in addrs:
                if addr.family not in (socket.AF_INET, socket.AF_INET6):
                    continue
                result.append(InterfaceAddress(
                    interface=iface,
                    family=addr.family,
                    # Link-local IPv6 addresses carry a zone suffix ("%eth0")
                    address=addr.address.split("%", 1)[0],
                    netmask=addr.netmask,
                    loopback="loopback" in flags,
                    up=bool(stats and stats.isup) or "up" in flags,
                    running="running" in flags,
                    broadcast="broadcast" in flags,
                ))

        return result


class NullInterfaceProvider(InterfaceProvider):
    """Used where interface enumeration is not supported."""

    @property
    def available(self) -> bool:
        return False

    def addresses(self) -> list[InterfaceAddress]:
        return []


def default_interface_provider() -> InterfaceProvider:
    # psutil reports interface flags on POSIX systems only
    if sys.platform == "win32":
        return NullInterfaceProvider()
    return PsutilInterfaceProvider()


# ---------------------------------------------------------------------------
# Resource limits
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FileLimits:
    """Soft and hard limits on open file descriptors."""
    soft: int
    hard: Optional[int] = None


class ResourceLimitProvider(ABC):
    """Reports how many file descriptors the process may open."""

    @abstractmethod
    def nofile_limits(self) -> Optional[FileLimits]:
        """Return the descriptor limits, or None if unknown or unlimited."""
        pass


class RlimitProvider(ResourceLimitProvider):
    """RLIMIT_NOFILE via the resource module."""

    def nofile_limits(self) -> Optional[FileLimits]:
        try:
            soft, hard = resource.getrlimit(resource.RLIMIT_NOFILE)
        except (OSError, ValueError) as e:
            logger.warning(f"getrlimit() failed ({e}), keeping default job limits")
            return None

        if soft == resource.RLIM_INFINITY or soft <= 0:
            return None
        if hard == resource.RLIM_INFINITY:
            hard = None
        return FileLimits(soft=soft, hard=hard)


class NullResourceLimitProvider(ResourceLimitProvider):
    """Used where descriptor limits cannot be queried."""

    def nofile_limits(self) -> Optional[FileLimits]:
        return None


def default_resource_limit_provider() -> ResourceLimitProvider:
    if resource is None:
        return NullResourceLimitProvider()
    return RlimitProvider()


# ---------------------------------------------------------------------------
# Concurrency
# ---------------------------------------------------------------------------

UnitFactory = Callable[[], Awaitable[None]]


class ConcurrencyProvider(ABC):
    """Starts and joins the per-protocol units of work."""

    @abstractmethod
    async def start(self, name: str, factory: UnitFactory) -> Any:
        """
        Start a unit and return a handle for join().

        Raises DispatchError if the unit could not be started.
        """
        pass

    @abstractmethod
    async def join(self, handle: Any) -> None:
        """Wait for a started unit; re-raises whatever the unit raised."""
        pass


class AsyncioConcurrency(ConcurrencyProvider):
    """One asyncio task per unit, all running in parallel."""

    async def start(self, name: str, factory: UnitFactory) -> asyncio.Task:
        try:
            return asyncio.get_running_loop().create_task(factory(), name=name)
        except RuntimeError as e:
            raise DispatchError(f"Could not start {name}: {e}") from e

    async def join(self, handle: asyncio.Task) -> None:
        await handle


class SequentialConcurrency(ConcurrencyProvider):
    """
    Runs each unit to completion as soon as it is started.

    Units therefore execute in dispatch order; join() only reports the
    outcome.
    """

    async def start(self, name: str, factory: UnitFactory) -> Optional[BaseException]:
        logger.debug(f"{name}: no parallel execution, running inline")
        try:
            await factory()
        except Exception as e:
            return e
        return None

    async def join(self, handle: Optional[BaseException]) -> None:
        if handle is not None:
            raise handle
