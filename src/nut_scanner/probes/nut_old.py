"""
Legacy NUT upsd probe.

Connects to the upsd port of every address in a range, asks for the list of
UPS it serves and reports each one as a nutclient device.
"""

from __future__ import annotations

import asyncio
import logging
import re
import shlex
from typing import Optional

from .._types import Device, NutOptions, ProtocolKind
from ..ranges import iter_addresses
from .base import Probe, ScanContext, scan_hosts

logger = logging.getLogger(__name__)

DEFAULT_UPSD_PORT = 3493

_UPS_LINE = re.compile(r"^UPS\s+(\S+)\s*(.*)$")


def parse_list_ups(lines: list[str]) -> list[tuple[str, str]]:
    """
    Parse the body of a LIST UPS reply.

    Returns (name, description) pairs in reply order.
    """
    result = []
    for line in lines:
        match = _UPS_LINE.match(line.strip())
        if not match:
            continue
        name, rest = match.groups()
        try:
            words = shlex.split(rest)
        except ValueError:
            words = [rest.strip('"')]
        result.append((name, words[0] if words else ""))
    return result


class NutOldProbe(Probe):
    """Queries upsd servers with LIST UPS."""

    @property
    def kind(self) -> ProtocolKind:
        return ProtocolKind.NUT_OLD

    async def scan(
        self,
        context: ScanContext,
        options: Optional[NutOptions] = None,
        start: Optional[str] = None,
        end: Optional[str] = None,
    ) -> list[Device]:
        if not start and not end:
            logger.debug("No address range given, nothing to query")
            return []

        port = (options and options.port) or DEFAULT_UPSD_PORT
        per_host = await scan_hosts(
            context,
            iter_addresses(start or end, end or start),
            lambda host: self._query_host(context, host, port),
        )

        devices = [device for found in per_host for device in found]
        logger.debug(f"upsd query of [{start} .. {end}] found {len(devices)} UPS")
        return devices

    async def _query_host(self, context: ScanContext, host: str, port: int) -> list[Device]:
        try:
            lines = await asyncio.wait_for(
                self._list_ups(host, port),
                timeout=context.timeout,
            )
        except (OSError, asyncio.TimeoutError) as e:
            logger.debug(f"No upsd at {host}:{port}: {e!r}")
            return []

        devices = []
        for name, description in parse_list_ups(lines):
            address = host if ":" not in host else f"[{host}]"
            target = f"{name}@{address}"
            if port != DEFAULT_UPSD_PORT:
                target = f"{target}:{port}"

            options = {}
            if description:
                options["desc"] = description
            devices.append(Device(
                kind=self.kind,
                driver="nutclient",
                port=target,
                options=options,
            ))
        return devices

    async def _list_ups(self, host: str, port: int) -> list[str]:
        reader, writer = await asyncio.open_connection(host, port)
        try:
            writer.write(b"LIST UPS\n")
            await writer.drain()

            lines = []
            started = False
            while True:
                raw = await reader.readline()
                if not raw:
                    break
                line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
                if line.startswith("ERR"):
                    logger.debug(f"upsd at {host}:{port} answered {line}")
                    break
                if line == "BEGIN LIST UPS":
                    started = True
                    continue
                if line == "END LIST UPS":
                    break
                if started:
                    lines.append(line)

            try:
                writer.write(b"LOGOUT\n")
                await writer.drain()
            except OSError as e:
                logger.debug(f"LOGOUT from {host}:{port} failed: {e!r}")
            return lines
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except OSError as e:
                logger.debug(f"Closing connection to {host}:{port} failed: {e!r}")
