"""
Protocol probes.

Each probe implements the same interface:
- async scan(context, options, start=None, end=None) -> list[Device]

Probes:
- USB: local USB buses (pyusb)
- SNMP: sysObjectID of every address in a range (pysnmp)
- XML/HTTP: NetXML UDP query, broadcast or per address
- NUT (old): LIST UPS on upsd servers
- NUT simulation: dummy-ups definition files
- Avahi: announced upsd services (zeroconf)
- IPMI: power supplies known to a BMC (ipmitool)
- Eaton serial: Q1 query on serial ports (pyserial)
"""

from __future__ import annotations

from .._types import ProtocolKind
from .base import Probe, ScanContext
from .avahi import AvahiProbe
from .eaton_serial import EatonSerialProbe
from .ipmi import IpmiProbe
from .nut_old import NutOldProbe
from .nut_simulation import NutSimulationProbe
from .snmp import SnmpProbe
from .usb import UsbProbe
from .xml_http import XmlHttpProbe


def default_probes() -> dict[ProtocolKind, Probe]:
    """One probe per protocol kind, in dispatch order."""
    probes: list[Probe] = [
        UsbProbe(),
        SnmpProbe(),
        XmlHttpProbe(),
        NutOldProbe(),
        NutSimulationProbe(),
        AvahiProbe(),
        IpmiProbe(),
        EatonSerialProbe(),
    ]
    return {probe.kind: probe for probe in probes}


__all__ = [
    "Probe",
    "ScanContext",
    "AvahiProbe",
    "EatonSerialProbe",
    "IpmiProbe",
    "NutOldProbe",
    "NutSimulationProbe",
    "SnmpProbe",
    "UsbProbe",
    "XmlHttpProbe",
    "default_probes",
]
