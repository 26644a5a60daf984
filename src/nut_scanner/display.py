"""
Result display.

Renders device lists either as ups.conf sections, ready to paste into the
NUT configuration, or as one machine-parsable line per device.
"""

from __future__ import annotations

import sys
from collections import defaultdict
from typing import Callable, TextIO

from ._types import Device, ProtocolKind
from .config import DisplayFormat

# Section name prefix per protocol: [nutdev-usb1], [nutdev-snmp2], ...
SECTION_PREFIXES = {
    ProtocolKind.USB: "usb",
    ProtocolKind.SNMP: "snmp",
    ProtocolKind.XML_HTTP: "xml",
    ProtocolKind.NUT_OLD: "nut",
    ProtocolKind.NUT_SIMULATION: "simulation",
    ProtocolKind.AVAHI: "avahi",
    ProtocolKind.IPMI: "ipmi",
    ProtocolKind.EATON_SERIAL: "serial",
}


def quote_value(value: str) -> str:
    """Double-quote a value, escaping backslashes and quotes."""
    escaped = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


class DeviceDisplay:
    """
    Writes device lists to a stream.

    Section numbers keep counting per protocol across calls, so reporting
    several lists never produces duplicate section names.
    """

    def __init__(self, stream: TextIO = None):
        self.stream = stream or sys.stdout
        self._counters: dict[ProtocolKind, int] = defaultdict(int)

    def _section_name(self, device: Device) -> str:
        self._counters[device.kind] += 1
        return f"nutdev-{SECTION_PREFIXES[device.kind]}{self._counters[device.kind]}"

    def ups_conf(self, devices: list[Device]) -> None:
        for device in devices:
            self.stream.write(f"[{self._section_name(device)}]\n")
            self.stream.write(f"\tdriver = {quote_value(device.driver)}\n")
            self.stream.write(f"\tport = {quote_value(device.port)}\n")
            for key, value in device.options.items():
                self.stream.write(f"\t{key} = {quote_value(value)}\n")

    def ups_conf_with_sanity_check(self, devices: list[Device]) -> None:
        """ups.conf output followed by comments about suspicious entries."""
        self.ups_conf(devices)

        by_serial: dict[str, list[Device]] = defaultdict(list)
        for device in devices:
            serial = device.options.get("serial", "").strip()
            if serial:
                by_serial[serial].append(device)

        for serial, shared in by_serial.items():
            if len(shared) < 2:
                continue
            self.stream.write(
                f"# WARNING: {len(shared)} devices report the same serial number {quote_value(serial)}:\n"
            )
            for device in shared:
                self.stream.write(f"#\tdriver = {quote_value(device.driver)}, port = {quote_value(device.port)}\n")
            self.stream.write("# Consider distinguishing them by bus/port or vendor/product options.\n")

    def parsable(self, devices: list[Device]) -> None:
        for device in devices:
            fields = [
                f"driver={quote_value(device.driver)}",
                f"port={quote_value(device.port)}",
            ]
            fields.extend(f"{key}={quote_value(value)}" for key, value in device.options.items())
            self.stream.write(f"{device.kind.tag}:{','.join(fields)}\n")

    def formatter(self, display_format: DisplayFormat) -> Callable[[list[Device]], None]:
        return {
            DisplayFormat.UPS_CONF_SANITY: self.ups_conf_with_sanity_check,
            DisplayFormat.UPS_CONF: self.ups_conf,
            DisplayFormat.PARSABLE: self.parsable,
        }[display_format]
