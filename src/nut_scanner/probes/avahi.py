"""
DNS-SD (avahi) probe.

upsd instances announce themselves as _nut._tcp services; the TXT record
"device_list" names the UPS each one serves, separated by semicolons.
"""

from __future__ import annotations

import asyncio
import logging
import socket
import threading
import time
from typing import Optional

try:
    from zeroconf import ServiceBrowser, Zeroconf
    ZEROCONF_AVAILABLE = True
except ImportError:
    ZEROCONF_AVAILABLE = False

from .._types import AvahiOptions, Device, ProtocolKind
from .base import Probe, ScanContext
from .nut_old import DEFAULT_UPSD_PORT

logger = logging.getLogger(__name__)


class _ServiceCollector:
    """ServiceBrowser listener keeping resolved services by name."""

    def __init__(self, resolve_timeout_ms: int):
        self.lock = threading.Lock()
        self.services = {}
        self.resolve_timeout_ms = resolve_timeout_ms

    def add_service(self, zeroconf, service_type, name):
        info = zeroconf.get_service_info(service_type, name, timeout=self.resolve_timeout_ms)
        if info:
            with self.lock:
                self.services[name] = info

    def update_service(self, zeroconf, service_type, name):
        self.add_service(zeroconf, service_type, name)

    def remove_service(self, zeroconf, service_type, name):
        with self.lock:
            self.services.pop(name, None)


def _decode(value) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value or ""


def devices_from_service(
    host: str,
    port: int,
    properties: dict,
) -> list[Device]:
    """Build nutclient devices from a resolved service's TXT record."""
    decoded = {_decode(k): _decode(v) for k, v in properties.items()}
    names = [n for n in decoded.get("device_list", "").split(";") if n]
    if not names:
        logger.debug(f"upsd service at {host}:{port} does not list its devices")
        return []

    address = host if ":" not in host else f"[{host}]"
    suffix = f":{port}" if port and port != DEFAULT_UPSD_PORT else ""
    return [
        Device(
            kind=ProtocolKind.AVAHI,
            driver="nutclient",
            port=f"{name}@{address}{suffix}",
        )
        for name in names
    ]


class AvahiProbe(Probe):
    """Browses the local network for announced upsd instances."""

    @property
    def kind(self) -> ProtocolKind:
        return ProtocolKind.AVAHI

    @property
    def available(self) -> bool:
        return ZEROCONF_AVAILABLE

    async def scan(
        self,
        context: ScanContext,
        options: Optional[AvahiOptions] = None,
        start: Optional[str] = None,
        end: Optional[str] = None,
    ) -> list[Device]:
        if not ZEROCONF_AVAILABLE:
            logger.error("zeroconf not available")
            return []

        options = options or AvahiOptions()
        loop = asyncio.get_running_loop()
        async with context.gate:
            # zeroconf's browser runs its own threads; wait for it off the loop
            return await loop.run_in_executor(
                None, self._browse, options.service_type, context.timeout
            )

    def _browse(self, service_type: str, timeout: float) -> list[Device]:
        zc = Zeroconf()
        collector = _ServiceCollector(resolve_timeout_ms=int(timeout * 1000))
        try:
            ServiceBrowser(zc, service_type, collector)
            time.sleep(timeout)
            with collector.lock:
                services = [collector.services[name] for name in sorted(collector.services)]
        finally:
            zc.close()

        devices = []
        for info in services:
            host = (info.server or "").rstrip(".")
            if not host and info.addresses:
                raw = info.addresses[0]
                family = socket.AF_INET if len(raw) == 4 else socket.AF_INET6
                host = socket.inet_ntop(family, raw)
            if not host:
                continue
            devices.extend(devices_from_service(host, info.port, info.properties or {}))

        logger.debug(f"DNS-SD browse of {service_type} found {len(devices)} device(s)")
        return devices
