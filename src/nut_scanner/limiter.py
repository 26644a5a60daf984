"""
Concurrency limiter.

Probes that fan out (one connection per address in a range) take a slot from
a counting gate before opening a socket or device handle. The gate size is
derived from the configured maximum and the process's file descriptor budget,
so a large scan does not run out of descriptors.

The gate only bounds work inside the probes: the per-protocol units are
always all dispatched.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional, Union

from .providers import ResourceLimitProvider, default_resource_limit_provider

logger = logging.getLogger(__name__)

DEFAULT_MAX_THREADS = 128

# stdin, stdout and stderr stay open for the whole run
RESERVE_FD_COUNT = 3

# Largest count the gate accepts (unsigned 32-bit maximum, minus one)
GATE_MAX_VALUE = 2**32 - 2


def _fd_bound(soft: int) -> int:
    if soft > RESERVE_FD_COUNT + 1:
        return soft - RESERVE_FD_COUNT
    return soft


def _exceeds_fd_budget(value: int, soft: Optional[int]) -> bool:
    return (
        soft is not None
        and soft > RESERVE_FD_COUNT
        and value > soft - RESERVE_FD_COUNT
    )


def resolve_max_concurrency(
    requested: Optional[Union[str, int]] = None,
    default: int = DEFAULT_MAX_THREADS,
    limits: Optional[ResourceLimitProvider] = None,
) -> int:
    """
    Work out how many probe operations may run at once.

    Args:
        requested: Explicit ceiling from the user (raw option value)
        default: Ceiling used when nothing valid was requested
        limits: Source of the file descriptor limits

    Returns:
        The gate size, between 1 and GATE_MAX_VALUE.
    """
    if limits is None:
        limits = default_resource_limit_provider()

    file_limits = limits.nofile_limits()
    soft = file_limits.soft if file_limits else None

    max_threads = default
    if _exceeds_fd_budget(max_threads, soft):
        max_threads = _fd_bound(soft)

    if requested is not None:
        try:
            value = int(str(requested).strip())
        except ValueError:
            value = 0

        if value <= 0:
            logger.warning(
                f"Requested max scanning thread count {requested} is out of range, "
                f"using default {max_threads}"
            )
        elif _exceeds_fd_budget(value, soft):
            logger.debug(f"Detected soft limit for file descriptor count is {soft}")
            logger.debug(f"Detected hard limit for file descriptor count is {file_limits.hard}")
            max_threads = _fd_bound(soft)
            logger.warning(
                f"Requested max scanning thread count {requested} exceeds the current "
                f"file descriptor count limit (minus reservation), constraining to {max_threads}"
            )
        else:
            max_threads = value

    if max_threads > GATE_MAX_VALUE:
        logger.warning(
            f"Limiting max scanning thread count {max_threads} to {GATE_MAX_VALUE}"
        )
        max_threads = GATE_MAX_VALUE

    return max_threads


class ConcurrencyGate:
    """
    Counting gate shared by all probes of one scan.

    A new gate is created for every run, so no state carries over from an
    earlier scan.
    """

    def __init__(self, size: int = DEFAULT_MAX_THREADS):
        if size < 1 or size > GATE_MAX_VALUE:
            raise ValueError(f"Gate size must be between 1 and {GATE_MAX_VALUE}, got {size}")
        self._size = size
        self._in_use = 0
        self._semaphore = asyncio.Semaphore(size)

    @property
    def size(self) -> int:
        return self._size

    @property
    def in_use(self) -> int:
        return self._in_use

    async def acquire(self) -> None:
        """Wait for a free slot."""
        await self._semaphore.acquire()
        self._in_use += 1

    def release(self) -> None:
        """Give a slot back; never blocks."""
        self._in_use -= 1
        self._semaphore.release()

    async def __aenter__(self) -> "ConcurrencyGate":
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.release()
