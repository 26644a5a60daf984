"""
Type definitions for the power device scanner.

These dataclasses define the core domain model: the protocol kinds a scan
can cover, the devices the probes report, the address ranges they iterate
over, and the per-protocol option payloads handed to each probe.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class ProtocolKind(str, Enum):
    """Probe types, in the fixed order they are dispatched and reported."""
    USB = "usb"
    SNMP = "snmp"
    XML_HTTP = "xml"
    NUT_OLD = "nut_old"
    NUT_SIMULATION = "nut_simulation"
    AVAHI = "avahi"
    IPMI = "ipmi"
    EATON_SERIAL = "eaton_serial"

    @property
    def label(self) -> str:
        """Human readable name used in progress messages."""
        return _LABELS[self]

    @property
    def tag(self) -> str:
        """Upper-case tag used by the parsable output format."""
        return _TAGS[self]

    @property
    def range_scoped(self) -> bool:
        """Whether the probe iterates over the registered address ranges."""
        return self in RANGE_SCOPED_KINDS

    @property
    def has_default_target(self) -> bool:
        """Whether the probe still runs once when no range was registered."""
        return self in DEFAULT_TARGET_KINDS


_LABELS = {
    ProtocolKind.USB: "USB",
    ProtocolKind.SNMP: "SNMP",
    ProtocolKind.XML_HTTP: "XML/HTTP",
    ProtocolKind.NUT_OLD: "NUT bus (old)",
    ProtocolKind.NUT_SIMULATION: "NUT simulation devices",
    ProtocolKind.AVAHI: "NUT bus (avahi)",
    ProtocolKind.IPMI: "IPMI",
    ProtocolKind.EATON_SERIAL: "SERIAL",
}

_TAGS = {
    ProtocolKind.USB: "USB",
    ProtocolKind.SNMP: "SNMP",
    ProtocolKind.XML_HTTP: "XML",
    ProtocolKind.NUT_OLD: "NUT",
    ProtocolKind.NUT_SIMULATION: "NUT_SIMULATION",
    ProtocolKind.AVAHI: "AVAHI",
    ProtocolKind.IPMI: "IPMI",
    ProtocolKind.EATON_SERIAL: "EATON_SERIAL",
}

RANGE_SCOPED_KINDS = frozenset({
    ProtocolKind.SNMP,
    ProtocolKind.XML_HTTP,
    ProtocolKind.NUT_OLD,
    ProtocolKind.IPMI,
})

# XML/HTTP falls back to a broadcast query, IPMI to the local BMC
DEFAULT_TARGET_KINDS = frozenset({
    ProtocolKind.XML_HTTP,
    ProtocolKind.IPMI,
})

# A complete scan never touches serial ports
COMPLETE_SCAN_KINDS = tuple(
    kind for kind in ProtocolKind if kind is not ProtocolKind.EATON_SERIAL
)


@dataclass(frozen=True)
class AddressRange:
    """An inclusive range of IP addresses; start == end for a single host."""
    start: str
    end: str

    @property
    def is_single(self) -> bool:
        return self.start == self.end

    def __str__(self) -> str:
        return f"[{self.start} .. {self.end}]"


@dataclass
class Device:
    """
    A device reported by a probe.

    The core never looks inside: driver, port and options are rendered as-is
    into the ups.conf or parsable output.
    """
    kind: ProtocolKind
    driver: str
    port: str
    options: dict[str, str] = field(default_factory=dict)


def merge_device_lists(first: list[Device], second: list[Device]) -> list[Device]:
    """
    Append ``second`` after ``first``.

    The merge never reorders, interleaves or deduplicates; an empty operand
    leaves the other one unchanged.
    """
    if not second:
        return first
    if not first:
        return second
    return [*first, *second]


# ---------------------------------------------------------------------------
# Per-protocol options
# ---------------------------------------------------------------------------

MAX_LINK_DETAIL_LEVEL = 3


@dataclass
class UsbOptions:
    """
    USB scan options.

    link_detail_level:
        -1  library defaults (no explicit request)
         0  no bus/port identity
         1  bus and busport
         2  bus, busport and device
         3  as 2, plus bcdDevice
    """
    link_detail_level: int = -1

    def request(self) -> int:
        """Register one more USB request, raising the detail level up to 3."""
        if self.link_detail_level < MAX_LINK_DETAIL_LEVEL:
            self.link_detail_level += 1
        return self.link_detail_level

    def ensure_minimal(self) -> None:
        """A complete scan reports at least the minimal detail level."""
        if self.link_detail_level < 0:
            self.link_detail_level = 0

    @property
    def uses_defaults(self) -> bool:
        return self.link_detail_level < 0

    @property
    def report_bus(self) -> bool:
        return self.link_detail_level >= 1

    @property
    def report_busport(self) -> bool:
        return self.link_detail_level >= 1

    @property
    def report_device(self) -> bool:
        return self.link_detail_level >= 2

    @property
    def report_bcd_device(self) -> bool:
        return self.link_detail_level >= 3


@dataclass
class SnmpOptions:
    """SNMP v1 community or SNMP v3 USM credentials."""
    community: Optional[str] = None
    sec_level: Optional[str] = None  # noAuthNoPriv, authNoPriv, authPriv
    sec_name: Optional[str] = None
    auth_password: Optional[str] = None
    priv_password: Optional[str] = None
    auth_protocol: Optional[str] = None  # MD5, SHA, SHA256, SHA384, SHA512
    priv_protocol: Optional[str] = None  # DES, AES, AES192, AES256

    @property
    def is_v3(self) -> bool:
        return self.sec_level is not None


@dataclass
class XmlHttpOptions:
    """NetXML (XML/HTTP) scan options."""
    port_http: int = 80
    port_udp: int = 4679
    timeout: float = 5.0
    peername: Optional[str] = None


@dataclass
class NutOptions:
    """Options for the legacy upsd connect probe."""
    port: Optional[int] = None


@dataclass
class IpmiOptions:
    """IPMI over LAN credentials and session parameters."""
    username: Optional[str] = None
    password: Optional[str] = None
    authentication_type: str = "MD5"
    ipmi_version: str = "1.5"
    cipher_suite_id: int = 3
    privilege_level: str = "ADMINISTRATOR"


@dataclass
class SimulationOptions:
    """Where the NUT simulation (dummy-ups) files live."""
    confpath: Optional[str] = None


@dataclass
class AvahiOptions:
    """DNS-SD service type browsed for upsd instances."""
    service_type: str = "_nut._tcp.local."


@dataclass
class SerialOptions:
    """Serial ports to probe for Eaton devices."""
    ports: list[str] = field(default_factory=list)
