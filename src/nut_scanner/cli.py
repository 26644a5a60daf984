"""
nut-scanner command line.

Parses the options, builds the address range registry, runs the scan and
prints the devices found in the selected format.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional, TextIO

from . import __version__
from ._types import ProtocolKind
from .config import DisplayFormat, ScannerConfig
from .display import DeviceDisplay
from .exceptions import ConfigurationError, InterfaceEnumerationError
from .limiter import DEFAULT_MAX_THREADS
from .probes import Probe, default_probes
from .probes.eaton_serial import parse_port_list
from .providers import InterfaceProvider
from .ranges import IPRangeRegistry, RangeAccumulator
from .scanner_service import NutScannerService
from .subnets import SubnetExpander

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_BAD_OPTION = 2

ERROR_WARNING = (
    "WARNING: Some error has occurred while processing 'nut-scanner' command-line\n"
    "arguments, see more details above the usage help text.\n"
)

# Order of the -a listing; OLDNUT needs no library and is always listed first
_AVAILABLE_BUSES = (
    (ProtocolKind.USB, "USB"),
    (ProtocolKind.SNMP, "SNMP"),
    (ProtocolKind.XML_HTTP, "XML"),
    (ProtocolKind.AVAHI, "AVAHI"),
    (ProtocolKind.IPMI, "IPMI"),
)

# Protocols whose option is refused when the backing library is missing
_LIBRARY_BACKED = {
    ProtocolKind.USB: "-U",
    ProtocolKind.SNMP: "-S",
    ProtocolKind.XML_HTTP: "-M",
    ProtocolKind.AVAHI: "-A",
    ProtocolKind.IPMI: "-I",
    ProtocolKind.EATON_SERIAL: "-E",
}


class ScannerArgumentParser(argparse.ArgumentParser):
    """Prints the whole help text before any option error."""

    def error(self, message):
        self.print_help(sys.stderr)
        sys.stderr.write(f"\n{self.prog}: error: {message}\n\n{ERROR_WARNING}")
        sys.exit(EXIT_BAD_OPTION)


class AddressAction(argparse.Action):
    """Keeps -s, -e and -m in command line order."""

    def __call__(self, parser, namespace, values, option_string=None):
        ops = list(getattr(namespace, "address_ops", None) or [])
        ops.append((self.const, values))
        setattr(namespace, "address_ops", ops)


def build_parser(probes: Optional[dict[ProtocolKind, Probe]] = None) -> ScannerArgumentParser:
    notes = []
    for kind, probe in (probes or {}).items():
        if not probe.available:
            notes.append(f"* Options for {kind.label} devices scan not enabled: library not detected.")
    notes.append("Note: many scanning options depend on further loadable libraries.")

    parser = ScannerArgumentParser(
        prog="nut-scanner",
        description="Detect power devices (UPS, PDU, ...) and print ups.conf sections for them",
        epilog="\n".join(notes),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.set_defaults(address_ops=[])

    scans = parser.add_argument_group("scan selection")
    scans.add_argument("-C", "--complete_scan", action="store_true",
                       help="Scan all available devices except serial ports (default)")
    scans.add_argument("-U", "--usb_scan", action="count", default=0,
                       help="Scan USB devices. Repeat to report bus, port and device details")
    scans.add_argument("-S", "--snmp_scan", action="store_true",
                       help="Scan SNMP devices using built-in mapping definitions")
    scans.add_argument("-M", "--xml_scan", action="store_true", help="Scan XML/HTTP devices")
    scans.add_argument("-O", "--oldnut_scan", action="store_true",
                       help="Scan NUT devices (old method, upsd LIST UPS)")
    scans.add_argument("-A", "--avahi_scan", action="store_true",
                       help="Scan NUT devices (DNS-SD method)")
    scans.add_argument("-n", "--nut_simulation_scan", action="store_true",
                       help="Scan for NUT simulated devices (.dev files in $NUT_CONFPATH)")
    scans.add_argument("-I", "--ipmi_scan", action="store_true", help="Scan IPMI devices")
    scans.add_argument("-E", "--eaton_serial", metavar="PORTS",
                       help="Scan serial Eaton devices (Q1) on a list of serial ports")
    scans.add_argument("-T", "--thread", metavar="N",
                       help=f"Limit the amount of scanning operations running simultaneously "
                            f"(default: {DEFAULT_MAX_THREADS})")

    network = parser.add_argument_group("network specific options")
    network.add_argument("-t", "--timeout", metavar="SECONDS",
                         help="Network operation timeout (default 5)")
    network.add_argument("-s", "--start_ip", action=AddressAction, const="start",
                         metavar="IP", help="First IP address to scan")
    network.add_argument("-e", "--end_ip", action=AddressAction, const="end",
                         metavar="IP", help="Last IP address to scan")
    network.add_argument("-m", "--mask_cidr", action=AddressAction, const="mask",
                         metavar="CIDR",
                         help="Range of IP addresses in CIDR notation, or auto/auto4/auto6 "
                              "to scan the subnets of local interfaces")

    snmp = parser.add_argument_group("SNMP specific options")
    snmp.add_argument("-c", "--community", help="SNMP v1 community name (default = public)")
    snmp.add_argument("-l", "--secLevel", dest="sec_level",
                      help="SNMPv3 security level (noAuthNoPriv, authNoPriv, authPriv)")
    snmp.add_argument("-u", "--secName", dest="sec_name", help="SNMPv3 security name")
    snmp.add_argument("-w", "--authProtocol", dest="auth_protocol",
                      help="SNMPv3 authentication protocol (MD5, SHA, SHA256, SHA384, SHA512)")
    snmp.add_argument("-W", "--authPassword", dest="auth_password",
                      help="SNMPv3 authentication pass phrase")
    snmp.add_argument("-x", "--privProtocol", dest="priv_protocol",
                      help="SNMPv3 privacy protocol (DES, AES, AES192, AES256)")
    snmp.add_argument("-X", "--privPassword", dest="priv_password",
                      help="SNMPv3 privacy pass phrase")

    ipmi = parser.add_argument_group("IPMI over LAN specific options")
    ipmi.add_argument("-b", "--username", help="IPMI over LAN user name")
    ipmi.add_argument("-B", "--password", help="IPMI over LAN password")
    ipmi.add_argument("-d", "--authType", dest="auth_type",
                      help="IPMI 1.5 authentication type (NONE, STRAIGHT_PASSWORD_KEY, MD2, MD5)")
    ipmi.add_argument("-L", "--cipher_suite_id", type=int,
                      help="IPMI 2.0 cipher suite ID (default 3)")

    nut = parser.add_argument_group("NUT specific options")
    nut.add_argument("-p", "--port", type=int, help="Port number of remote NUT upsd")

    display = parser.add_argument_group("display specific options")
    display.add_argument("-Q", "--disp_nut_conf_with_sanity_check", dest="display_format",
                         action="store_const", const=DisplayFormat.UPS_CONF_SANITY,
                         help="ups.conf format with sanity-check warnings as comments (default)")
    display.add_argument("-N", "--disp_nut_conf", dest="display_format",
                         action="store_const", const=DisplayFormat.UPS_CONF,
                         help="ups.conf format")
    display.add_argument("-P", "--disp_parsable", dest="display_format",
                         action="store_const", const=DisplayFormat.PARSABLE,
                         help="Parsable format")

    misc = parser.add_argument_group("miscellaneous options")
    misc.add_argument("-q", "--quiet", action="store_true", help="Display only scan result")
    misc.add_argument("-D", "--nut_debug_level", action="count", default=0,
                      help="Raise the debugging level")
    misc.add_argument("-V", "--version", action="store_true", help="Display NUT version")
    misc.add_argument("-a", "--available", action="store_true",
                      help="Display available bus that can be scanned")
    misc.add_argument("--config", type=str, help="Path to YAML config file")

    return parser


def configure_logging(config: ScannerConfig) -> None:
    if config.debug_level > 0:
        level = logging.DEBUG
    else:
        level = getattr(logging, str(config.log_level).upper(), logging.INFO)

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
        force=True,
    )


def build_config(args: argparse.Namespace) -> ScannerConfig:
    """Load the config file or environment, then apply command line options."""
    if args.config:
        config = ScannerConfig.from_yaml(Path(args.config))
    else:
        config = ScannerConfig.from_env()

    if args.timeout is not None:
        config.set_timeout(args.timeout)
    if args.thread is not None:
        config.max_threads = args.thread

    if args.complete_scan:
        config.complete_scan = True
    for _ in range(args.usb_scan):
        config.request(ProtocolKind.USB)
    if args.snmp_scan:
        config.request(ProtocolKind.SNMP)
    if args.xml_scan:
        config.request(ProtocolKind.XML_HTTP)
    if args.oldnut_scan:
        config.request(ProtocolKind.NUT_OLD)
    if args.avahi_scan:
        config.request(ProtocolKind.AVAHI)
    if args.nut_simulation_scan:
        config.request(ProtocolKind.NUT_SIMULATION)
    if args.ipmi_scan:
        config.request(ProtocolKind.IPMI)
    if args.eaton_serial is not None:
        config.serial.ports = parse_port_list(args.eaton_serial)
        config.request(ProtocolKind.EATON_SERIAL)

    for name in ("community", "sec_level", "sec_name", "auth_protocol",
                 "auth_password", "priv_protocol", "priv_password"):
        value = getattr(args, name)
        if value is not None:
            setattr(config.snmp, name, value)

    if args.username is not None:
        config.ipmi.username = args.username
    if args.password is not None:
        config.ipmi.password = args.password
    if args.auth_type is not None:
        config.ipmi.authentication_type = args.auth_type.upper()
    if args.cipher_suite_id is not None:
        config.ipmi.cipher_suite_id = args.cipher_suite_id
        # Cipher suites only exist in IPMI 2.0
        config.ipmi.ipmi_version = "2.0"

    if args.port is not None:
        config.nut.port = args.port

    if args.display_format is not None:
        config.display_format = args.display_format
    config.quiet = args.quiet
    config.debug_level = args.nut_debug_level

    # Nothing requested: complete scan, reporting at least minimal USB details
    if config.complete_scan or not config.protocols:
        config.usb.ensure_minimal()

    return config


def collect_ranges(
    config: ScannerConfig,
    address_ops: list[tuple[str, str]],
    registry: IPRangeRegistry,
    interfaces: Optional[InterfaceProvider] = None,
) -> int:
    """
    Fill the registry: ranges from the config file first, then -s/-e/-m in
    the order they were given.

    Returns the number of ranges recorded.
    """
    expander = SubnetExpander(registry, interfaces)
    accumulator = RangeAccumulator(registry)

    for start, end in config.ip_ranges:
        registry.add_range(start, end)
    for cidr in config.mask_cidrs:
        expander.expand(cidr)

    for op, value in address_ops:
        if op == "start":
            accumulator.set_start(value)
        elif op == "end":
            accumulator.set_end(value)
        else:
            # A lone -s or -e before -m is scanned as a single address
            if accumulator.has_pending:
                accumulator.flush()
            expander.expand(value)

    if accumulator.has_pending:
        accumulator.flush()

    return len(registry)


def list_available(probes: dict[ProtocolKind, Probe], stream: TextIO) -> None:
    stream.write("OLDNUT\n")
    for kind, name in _AVAILABLE_BUSES:
        probe = probes.get(kind)
        if probe is not None and probe.available:
            stream.write(f"{name}\n")
    serial_probe = probes.get(ProtocolKind.EATON_SERIAL)
    if serial_probe is not None and serial_probe.available:
        stream.write("EATON_SERIAL\n")


def run_scan(
    config: ScannerConfig,
    registry: IPRangeRegistry,
    probes: dict[ProtocolKind, Probe],
    stream: Optional[TextIO] = None,
) -> None:
    """Scan, then print every protocol's devices in report order."""
    service = NutScannerService(config, probes=probes, registry=registry)
    results = asyncio.run(service.run())

    display = DeviceDisplay(stream)
    service.report(results, display.formatter(config.display_format))


def main(
    argv: Optional[list[str]] = None,
    probes: Optional[dict[ProtocolKind, Probe]] = None,
    interfaces: Optional[InterfaceProvider] = None,
    stream: Optional[TextIO] = None,
) -> int:
    """Entry point for nut-scanner."""
    probes = probes if probes is not None else default_probes()
    stream = stream or sys.stdout

    parser = build_parser(probes)
    args = parser.parse_args(argv)

    if args.version:
        stream.write(f"Network UPS Tools - nut-scanner {__version__}\n")
        return EXIT_SUCCESS
    if args.available:
        list_available(probes, stream)
        return EXIT_SUCCESS

    try:
        config = build_config(args)
        configure_logging(config)

        for kind, option in _LIBRARY_BACKED.items():
            probe = probes.get(kind)
            if kind in config.protocols and (probe is None or not probe.available):
                logger.warning(
                    f"{option} requested but {kind.label} scanning is not available "
                    f"in this installation, ignored"
                )

        errors = config.validate()
        if errors:
            raise ConfigurationError("; ".join(errors))

        registry = IPRangeRegistry()
        count = collect_ranges(config, args.address_ops, registry, interfaces)
        logger.debug(f"{count} IP address range(s) to scan")
    except InterfaceEnumerationError as e:
        logger.error(str(e))
        return EXIT_FAILURE
    except ConfigurationError as e:
        parser.print_help(sys.stderr)
        sys.stderr.write(f"\nnut-scanner: error: {e}\n\n{ERROR_WARNING}")
        return EXIT_BAD_OPTION

    try:
        run_scan(config, registry, probes, stream)
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return EXIT_FAILURE

    return EXIT_SUCCESS


if __name__ == "__main__":
    sys.exit(main())
