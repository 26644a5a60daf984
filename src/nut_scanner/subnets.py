"""
Subnet expansion.

Turns a CIDR specification, or the subnets of the host's own active network
interfaces, into address ranges in the registry.
"""

from __future__ import annotations

import ipaddress
import logging
import socket
from enum import Enum
from typing import Optional

from .exceptions import MalformedInputError
from .providers import InterfaceAddress, InterfaceProvider, default_interface_provider
from .ranges import IPRangeRegistry

logger = logging.getLogger(__name__)


class AutoScope(str, Enum):
    """Address families covered by connected subnet detection."""
    ALL = "auto"
    IPV4 = "auto4"
    IPV6 = "auto6"

    def matches(self, family: int) -> bool:
        if self is AutoScope.IPV4:
            return family == socket.AF_INET
        if self is AutoScope.IPV6:
            return family == socket.AF_INET6
        return family in (socket.AF_INET, socket.AF_INET6)


def cidr_to_range(cidr: str) -> tuple[str, str]:
    """
    Return the first and last usable host address of a CIDR network.

    Host bits in the address part are ignored ("192.168.1.7/24" is the
    192.168.1.0/24 network). Raises MalformedInputError if the string is not
    a valid network.
    """
    if not cidr or "/" not in cidr:
        raise MalformedInputError(cidr, "expected address/prefix")

    try:
        network = ipaddress.ip_network(cidr.strip(), strict=False)
    except ValueError as e:
        raise MalformedInputError(cidr, str(e)) from e

    first = network.network_address
    last = network.broadcast_address

    if network.version == 4:
        # Network and broadcast addresses are not hosts, except on /31 and /32
        if network.prefixlen <= 30:
            first += 1
            last -= 1
    elif network.prefixlen <= 126:
        # Skip the subnet-router anycast address; IPv6 has no broadcast
        first += 1

    return str(first), str(last)


def netmask_prefix_length(netmask: str) -> int:
    """Number of bits set in a dotted (IPv4) or colon (IPv6) netmask."""
    try:
        return bin(int(ipaddress.ip_address(netmask))).count("1")
    except ValueError as e:
        raise MalformedInputError(netmask, f"invalid netmask: {e}") from e


class SubnetExpander:
    """
    Feeds CIDR and auto-detected subnets into a range registry.

    Connected subnet detection is honoured once per expander; later auto
    requests are ignored with a warning.
    """

    def __init__(
        self,
        registry: IPRangeRegistry,
        interfaces: Optional[InterfaceProvider] = None,
    ):
        self.registry = registry
        self.interfaces = interfaces or default_interface_provider()
        self.auto_scope: Optional[AutoScope] = None

    def expand(self, spec: str) -> int:
        """
        Expand a -m argument: a CIDR, or one of auto/auto4/auto6.

        Returns the number of ranges added.
        """
        try:
            scope = AutoScope(spec.strip().lower())
        except ValueError:
            scope = None

        if scope is not None:
            return self.detect(scope)
        return self.add_cidr(spec)

    def add_cidr(self, cidr: str) -> int:
        logger.debug(f"Processing CIDR net/mask: {cidr}")
        start, end = cidr_to_range(cidr)
        logger.debug(f"Extracted IP address range from CIDR net/mask: {start} => {end}")
        self.registry.add_range(start, end)
        return 1

    def detect(self, scope: AutoScope = AutoScope.ALL) -> int:
        """
        Add the subnets of all active, non-loopback, broadcast-capable
        interfaces whose address family matches ``scope``.

        Raises InterfaceEnumerationError if the interfaces cannot be listed.
        """
        if self.auto_scope is not None:
            logger.warning("Duplicate request for connected subnet scan ignored")
            return 0
        self.auto_scope = scope

        if not self.interfaces.available:
            logger.debug("Local address detection is not supported on this platform")
            return 0

        added = 0
        for iface in self.interfaces.addresses():
            logger.debug(f"Discovering interfaces: {iface.describe()}")
            if not self._eligible(iface, scope):
                continue

            cidr = f"{iface.address}/{netmask_prefix_length(iface.netmask)}"
            added += self.add_cidr(cidr)

        logger.info(f"Connected subnet scan ({scope.value}) found {added} range(s)")
        return added

    @staticmethod
    def _eligible(iface: InterfaceAddress, scope: AutoScope) -> bool:
        # TODO: rule out link-local ranges too, they can be huge on IPv6
        return (
            not iface.loopback
            and iface.up
            and iface.running
            and iface.broadcast
            and bool(iface.netmask)
            and scope.matches(iface.family)
        )
