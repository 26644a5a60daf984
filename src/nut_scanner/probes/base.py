"""
Base classes for protocol probes.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, Optional

from .._types import Device, ProtocolKind
from ..limiter import ConcurrencyGate


@dataclass
class ScanContext:
    """
    Per-run settings shared by all probes.

    timeout is the per-operation network timeout in seconds; gate bounds the
    number of hosts or handles a probe works on at once.
    """
    timeout: float
    gate: ConcurrencyGate


class Probe(ABC):
    """Base class for protocol probes."""

    @property
    @abstractmethod
    def kind(self) -> ProtocolKind:
        """Protocol this probe scans."""
        pass

    @property
    def name(self) -> str:
        return self.kind.label

    @property
    def available(self) -> bool:
        """Whether the library or tool this probe relies on is installed."""
        return True

    @abstractmethod
    async def scan(
        self,
        context: ScanContext,
        options: Any,
        start: Optional[str] = None,
        end: Optional[str] = None,
    ) -> list[Device]:
        """
        Scan for devices.

        Range-scoped probes receive one address range per call; without a
        range they probe their default target, if they have one. Returns an
        empty list when nothing was found.
        """
        pass


async def scan_hosts(
    context: ScanContext,
    hosts: Iterable[str],
    query: Callable[[str], Awaitable[Any]],
) -> list[Any]:
    """
    Run query(host) for every address in hosts, holding a gate slot each.

    The slot is taken before the per-host task is created, so at most
    gate.size tasks exist at once and hosts is consumed lazily. Results
    that are neither None nor empty are returned in address order. The
    first unexpected error stops the fan-out and is re-raised once the
    running queries have finished.
    """
    found: dict[int, Any] = {}
    errors: list[BaseException] = []
    running: set[asyncio.Task] = set()

    async def run(index: int, host: str) -> None:
        try:
            result = await query(host)
            if result:
                found[index] = result
        except Exception as e:
            errors.append(e)
        finally:
            context.gate.release()

    try:
        for index, host in enumerate(hosts):
            await context.gate.acquire()
            if errors:
                context.gate.release()
                break
            task = asyncio.create_task(run(index, host))
            running.add(task)
            task.add_done_callback(running.discard)
        if running:
            await asyncio.gather(*running)
    except BaseException:
        for task in running:
            task.cancel()
        raise

    if errors:
        raise errors[0]
    return [found[index] for index in sorted(found)]
