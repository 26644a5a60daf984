"""
nut-scanner - Power device discovery for Network UPS Tools.

Scans USB buses, SNMP agents, NetXML cards, upsd servers, DNS-SD
announcements, IPMI power supplies and serial ports for power devices, and
prints ups.conf sections for what it finds.

Architecture:
    cli - option parsing, address range collection, output
    scanner_service - dispatches one unit per protocol, joins in order
    probes - one module per protocol
"""

__version__ = "2.8.3"

from ._types import (
    AddressRange,
    Device,
    ProtocolKind,
    merge_device_lists,
)
from .exceptions import (
    ConfigurationError,
    MalformedInputError,
    ScannerError,
)

__all__ = [
    "__version__",
    "AddressRange",
    "Device",
    "ProtocolKind",
    "merge_device_lists",
    "ConfigurationError",
    "MalformedInputError",
    "ScannerError",
]
