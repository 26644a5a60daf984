"""
Scanner configuration.

Settings come from environment variables or a YAML file; command line
options are applied on top by the CLI.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

import yaml

from ._types import (
    COMPLETE_SCAN_KINDS,
    AvahiOptions,
    IpmiOptions,
    NutOptions,
    ProtocolKind,
    SerialOptions,
    SimulationOptions,
    SnmpOptions,
    UsbOptions,
    XmlHttpOptions,
)
from .exceptions import ConfigurationError
from .probes.eaton_serial import parse_port_list
from .probes.ipmi import AUTH_TYPES

logger = logging.getLogger(__name__)

DEFAULT_NETWORK_TIMEOUT = 5  # seconds

SNMP_SEC_LEVELS = ("noAuthNoPriv", "authNoPriv", "authPriv")


class DisplayFormat(str, Enum):
    """How scan results are printed."""
    UPS_CONF_SANITY = "conf_sanity"  # ups.conf with sanity-check comments
    UPS_CONF = "conf"
    PARSABLE = "parsable"


# YAML "scan" list entries
_SCAN_NAMES = {
    "usb": ProtocolKind.USB,
    "snmp": ProtocolKind.SNMP,
    "xml": ProtocolKind.XML_HTTP,
    "oldnut": ProtocolKind.NUT_OLD,
    "nut_old": ProtocolKind.NUT_OLD,
    "nut_simulation": ProtocolKind.NUT_SIMULATION,
    "simulation": ProtocolKind.NUT_SIMULATION,
    "avahi": ProtocolKind.AVAHI,
    "ipmi": ProtocolKind.IPMI,
    "eaton_serial": ProtocolKind.EATON_SERIAL,
    "serial": ProtocolKind.EATON_SERIAL,
}


def parse_timeout(value) -> float:
    """Seconds from a config value; non-positive or garbage means the default."""
    try:
        timeout = float(value)
    except (TypeError, ValueError):
        timeout = 0
    if timeout <= 0:
        logger.warning(f"Illegal timeout value {value!r}, using default {DEFAULT_NETWORK_TIMEOUT}s")
        return float(DEFAULT_NETWORK_TIMEOUT)
    return timeout


@dataclass
class ScannerConfig:
    """Everything a scan run needs to know."""

    # Protocols requested (empty = complete scan)
    protocols: set[ProtocolKind] = field(default_factory=set)
    complete_scan: bool = False

    # Network behaviour
    timeout: float = float(DEFAULT_NETWORK_TIMEOUT)
    max_threads: Optional[str] = None  # raw -T / threads value

    # Address ranges, applied before any command line ranges
    ip_ranges: list[tuple[Optional[str], Optional[str]]] = field(default_factory=list)
    mask_cidrs: list[str] = field(default_factory=list)

    # Per-protocol options
    usb: UsbOptions = field(default_factory=UsbOptions)
    snmp: SnmpOptions = field(default_factory=SnmpOptions)
    xml: XmlHttpOptions = field(default_factory=XmlHttpOptions)
    nut: NutOptions = field(default_factory=NutOptions)
    simulation: SimulationOptions = field(default_factory=SimulationOptions)
    avahi: AvahiOptions = field(default_factory=AvahiOptions)
    ipmi: IpmiOptions = field(default_factory=IpmiOptions)
    serial: SerialOptions = field(default_factory=SerialOptions)

    # Output
    display_format: DisplayFormat = DisplayFormat.UPS_CONF_SANITY
    quiet: bool = False
    debug_level: int = 0

    # Logging
    log_level: str = "INFO"

    def options_for(self, kind: ProtocolKind):
        """Option payload handed to the probe of ``kind``."""
        return {
            ProtocolKind.USB: self.usb,
            ProtocolKind.SNMP: self.snmp,
            ProtocolKind.XML_HTTP: self.xml,
            ProtocolKind.NUT_OLD: self.nut,
            ProtocolKind.NUT_SIMULATION: self.simulation,
            ProtocolKind.AVAHI: self.avahi,
            ProtocolKind.IPMI: self.ipmi,
            ProtocolKind.EATON_SERIAL: self.serial,
        }[kind]

    def set_timeout(self, value) -> None:
        self.timeout = parse_timeout(value)
        self.xml.timeout = self.timeout

    def request(self, kind: ProtocolKind) -> None:
        """Mark a protocol as requested."""
        self.protocols.add(kind)
        if kind is ProtocolKind.USB:
            self.usb.request()

    def allowed_protocols(self) -> set[ProtocolKind]:
        """
        Protocols to scan.

        Nothing requested means a complete scan, which covers everything but
        serial ports.
        """
        allowed = set(self.protocols)
        if self.complete_scan or not allowed:
            allowed.update(COMPLETE_SCAN_KINDS)
        return allowed

    @classmethod
    def from_env(cls) -> "ScannerConfig":
        """Load configuration from environment variables."""
        config = cls()

        if timeout := os.getenv("NUT_SCANNER_TIMEOUT"):
            config.set_timeout(timeout)

        config.max_threads = os.getenv("NUT_SCANNER_THREADS") or None

        cidrs = os.getenv("NUT_SCANNER_MASK_CIDR", "")
        config.mask_cidrs = [c.strip() for c in cidrs.split(",") if c.strip()]

        if community := os.getenv("NUT_SCANNER_COMMUNITY"):
            config.snmp.community = community

        config.simulation.confpath = os.getenv("NUT_CONFPATH")

        config.log_level = os.getenv("NUT_SCANNER_LOG_LEVEL", "INFO")

        return config

    @classmethod
    def from_yaml(cls, path: Path) -> "ScannerConfig":
        """Load configuration from YAML file."""
        if not path.exists():
            logger.warning(f"Config file not found: {path}, using defaults")
            return cls()

        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Cannot parse config file {path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file {path} must contain a mapping")

        try:
            return cls._from_mapping(data)
        except (AttributeError, TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid value in config file {path}: {e}") from e

    @classmethod
    def _from_mapping(cls, data: dict) -> "ScannerConfig":
        config = cls()

        if "timeout" in data:
            config.set_timeout(data["timeout"])

        if "threads" in data:
            config.max_threads = str(data["threads"])

        for item in data.get("ranges", []) or []:
            config.ip_ranges.append((item.get("start"), item.get("end")))

        cidrs = data.get("mask_cidr", [])
        if isinstance(cidrs, str):
            cidrs = [cidrs]
        config.mask_cidrs = list(cidrs or [])

        for name in data.get("scan", []) or []:
            kind = _SCAN_NAMES.get(str(name).lower())
            if kind is None:
                logger.warning(f"Unknown scan type in config: {name}")
                continue
            config.request(kind)

        if "snmp" in data:
            s = data["snmp"]
            config.snmp.community = s.get("community")
            config.snmp.sec_level = s.get("sec_level")
            config.snmp.sec_name = s.get("sec_name")
            config.snmp.auth_password = s.get("auth_password")
            config.snmp.priv_password = s.get("priv_password")
            config.snmp.auth_protocol = s.get("auth_protocol")
            config.snmp.priv_protocol = s.get("priv_protocol")

        if "ipmi" in data:
            i = data["ipmi"]
            config.ipmi.username = i.get("username")
            config.ipmi.password = i.get("password")
            config.ipmi.authentication_type = str(i.get("auth_type", "MD5")).upper()
            if "cipher_suite_id" in i:
                config.ipmi.cipher_suite_id = int(i["cipher_suite_id"])
                config.ipmi.ipmi_version = "2.0"

        if "xml" in data:
            x = data["xml"]
            config.xml.port_http = int(x.get("port_http", 80))
            config.xml.port_udp = int(x.get("port_udp", 4679))

        if "nut" in data and data["nut"].get("port"):
            config.nut.port = int(data["nut"]["port"])

        if "serial" in data:
            ports = data["serial"].get("ports", [])
            if isinstance(ports, str):
                ports = parse_port_list(ports)
            config.serial.ports = list(ports)
            if config.serial.ports:
                config.request(ProtocolKind.EATON_SERIAL)

        if "simulation" in data:
            config.simulation.confpath = data["simulation"].get("confpath")

        if "display" in data:
            try:
                config.display_format = DisplayFormat(data["display"])
            except ValueError:
                logger.warning(f"Unknown display format in config: {data['display']}")

        config.log_level = data.get("log_level", "INFO")

        return config

    def validate(self) -> list[str]:
        """Validate configuration, returning list of errors."""
        errors = []

        if self.snmp.sec_level is not None:
            if self.snmp.sec_level not in SNMP_SEC_LEVELS:
                errors.append(
                    f"Invalid SNMPv3 security level: {self.snmp.sec_level} "
                    f"(allowed: {', '.join(SNMP_SEC_LEVELS)})"
                )
            if not self.snmp.sec_name:
                errors.append("SNMPv3 security level set but no security name given")
            if self.snmp.sec_level in ("authNoPriv", "authPriv") and not self.snmp.auth_password:
                errors.append(f"SNMPv3 {self.snmp.sec_level} requires an authentication pass phrase")
            if self.snmp.sec_level == "authPriv" and not self.snmp.priv_password:
                errors.append("SNMPv3 authPriv requires a privacy pass phrase")

        if self.ipmi.authentication_type not in AUTH_TYPES:
            logger.warning(
                f"Unknown authentication type ({self.ipmi.authentication_type}). Defaulting to MD5"
            )
            self.ipmi.authentication_type = "MD5"

        if ProtocolKind.EATON_SERIAL in self.protocols and not self.serial.ports:
            errors.append("Serial scan requested but no serial ports given")

        return errors
