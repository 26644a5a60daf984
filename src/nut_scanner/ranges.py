"""
IP address range registry.

Ranges come from -s/-e pairs, CIDR masks and auto-detected subnets. They are
recorded in the order they were requested, iterated read-only by the probes,
and released in one go when the scan is over.
"""

from __future__ import annotations

import ipaddress
import logging
from typing import Iterator, Optional

from ._types import AddressRange
from .exceptions import MalformedInputError, RegistryFrozenError

logger = logging.getLogger(__name__)


class IPRangeRegistry:
    """Ordered collection of address ranges to scan."""

    def __init__(self):
        self._ranges: list[AddressRange] = []
        self._frozen = False

    def add_range(self, start: Optional[str] = None, end: Optional[str] = None) -> int:
        """
        Record a range and return the number of ranges known so far.

        A missing endpoint is copied from the other one, so a lone address
        becomes a single-host range. Calling with neither endpoint is a no-op.
        """
        if not start and not end:
            logger.debug("add_range: skip, no addresses were provided")
            return len(self._ranges)

        if self._frozen:
            raise RegistryFrozenError(
                f"Cannot add range [{start} .. {end}]: scan already dispatched"
            )

        if not start:
            logger.debug(f"add_range: only end address was provided, setting start to same: {end}")
            start = end
        if not end:
            logger.debug(f"add_range: only start address was provided, setting end to same: {start}")
            end = start

        self._ranges.append(AddressRange(start=start, end=end))
        logger.debug(f"Recorded IP address range #{len(self._ranges)}: [{start} .. {end}]")
        return len(self._ranges)

    def freeze(self) -> None:
        """Make the registry read-only for the duration of a scan."""
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def release_all(self) -> None:
        """Drop every recorded range and make the registry writable again."""
        logger.debug(f"Releasing {len(self._ranges)} IP address range(s)")
        self._ranges.clear()
        self._frozen = False

    @property
    def ranges(self) -> tuple[AddressRange, ...]:
        return tuple(self._ranges)

    def __len__(self) -> int:
        return len(self._ranges)

    def __iter__(self) -> Iterator[AddressRange]:
        return iter(tuple(self._ranges))


class RangeAccumulator:
    """
    Pairs up start/end addresses given in any order.

    Holds at most one pending start and one pending end. Whenever a pair is
    complete, or a slot is about to be overwritten, the pending addresses are
    flushed into the registry, so every address the user gave ends up in
    exactly one range.
    """

    def __init__(self, registry: IPRangeRegistry):
        self.registry = registry
        self.pending_start: Optional[str] = None
        self.pending_end: Optional[str] = None

    def set_start(self, address: str) -> None:
        if self.pending_start:
            # Save whatever we have: this one address, or a range with its end
            self.flush()

        self.pending_start = address
        if self.pending_end:
            self.flush()

    def set_end(self, address: str) -> None:
        if self.pending_end:
            self.flush()

        self.pending_end = address
        if self.pending_start:
            self.flush()

    def flush(self) -> int:
        """Push any pending endpoint(s) into the registry."""
        count = self.registry.add_range(self.pending_start, self.pending_end)
        self.pending_start = None
        self.pending_end = None
        return count

    @property
    def has_pending(self) -> bool:
        return bool(self.pending_start or self.pending_end)


def iter_addresses(start: str, end: str) -> Iterator[str]:
    """
    Yield every address from ``start`` to ``end`` inclusive.

    Reversed endpoints are swapped. Both endpoints must belong to the same
    address family.
    """
    try:
        first = ipaddress.ip_address(start)
        last = ipaddress.ip_address(end)
    except ValueError as e:
        raise MalformedInputError(f"{start}-{end}", str(e)) from e

    if first.version != last.version:
        raise MalformedInputError(f"{start}-{end}", "mixed address families")

    if int(first) > int(last):
        logger.debug(f"Range [{start} .. {end}] is reversed, swapping endpoints")
        first, last = last, first

    current = int(first)
    stop = int(last)
    factory = type(first)
    while current <= stop:
        yield str(factory(current))
        current += 1
