"""
XML/HTTP (NetXML) probe.

NetXML capable cards answer a <SCAN_REQUEST/> datagram on UDP port 4679 with
an XML document describing the product. Without an address range the request
is broadcast on the local network; with a range every address is asked in
turn.
"""

from __future__ import annotations

import asyncio
import logging
import xml.etree.ElementTree as ET
from typing import Optional

from .._types import Device, ProtocolKind, XmlHttpOptions
from ..ranges import iter_addresses
from .base import Probe, ScanContext, scan_hosts

logger = logging.getLogger(__name__)

SCAN_REQUEST = b"<SCAN_REQUEST/>"
BROADCAST_ADDRESS = "255.255.255.255"


class _ReplyCollector(asyncio.DatagramProtocol):
    """Collects (address, payload) replies in arrival order."""

    def __init__(self):
        self.replies: list[tuple[str, bytes]] = []
        self.first_reply: asyncio.Future = asyncio.get_running_loop().create_future()

    def datagram_received(self, data: bytes, addr) -> None:
        self.replies.append((addr[0], data))
        if not self.first_reply.done():
            self.first_reply.set_result(addr[0])

    def error_received(self, exc: Exception) -> None:
        logger.debug(f"NetXML datagram error: {exc!r}")


def parse_scan_reply(address: str, payload: bytes, options: XmlHttpOptions) -> Optional[Device]:
    """Turn a SCAN_REQUEST answer into a device, or None if it is not one."""
    try:
        root = ET.fromstring(payload)
    except ET.ParseError as e:
        logger.debug(f"Ignoring non-XML reply from {address}: {e}")
        return None

    product = root if root.tag == "PRODUCT_INFO" else root.find(".//PRODUCT_INFO")
    if product is None:
        logger.debug(f"Reply from {address} has no PRODUCT_INFO")
        return None

    host = address if ":" not in address else f"[{address}]"
    port = f"http://{host}"
    if options.port_http != 80:
        port = f"{port}:{options.port_http}"

    device_options = {}
    description = " ".join(
        value for value in (product.get("manufacturer"), product.get("name")) if value
    )
    if description:
        device_options["desc"] = description
    if product.get("serial"):
        device_options["serial"] = product.get("serial")

    return Device(
        kind=ProtocolKind.XML_HTTP,
        driver="netxml-ups",
        port=port,
        options=device_options,
    )


class XmlHttpProbe(Probe):
    """Finds NetXML devices by UDP query."""

    @property
    def kind(self) -> ProtocolKind:
        return ProtocolKind.XML_HTTP

    async def scan(
        self,
        context: ScanContext,
        options: Optional[XmlHttpOptions] = None,
        start: Optional[str] = None,
        end: Optional[str] = None,
    ) -> list[Device]:
        options = options or XmlHttpOptions(timeout=context.timeout)

        if not start and not end:
            if options.peername:
                async with context.gate:
                    device = await self._query_host(options.peername, options)
                return [device] if device else []
            return await self._broadcast(context, options)

        return await scan_hosts(
            context,
            iter_addresses(start or end, end or start),
            lambda host: self._query_host(host, options),
        )

    async def _broadcast(self, context: ScanContext, options: XmlHttpOptions) -> list[Device]:
        loop = asyncio.get_running_loop()
        async with context.gate:
            try:
                transport, collector = await loop.create_datagram_endpoint(
                    _ReplyCollector,
                    local_addr=("0.0.0.0", 0),
                    allow_broadcast=True,
                )
            except OSError as e:
                logger.error(f"Cannot open NetXML broadcast socket: {e}")
                return []

            try:
                transport.sendto(SCAN_REQUEST, (BROADCAST_ADDRESS, options.port_udp))
                # Replies keep coming until the timeout expires
                await asyncio.sleep(options.timeout)
            finally:
                transport.close()

        devices = []
        seen = set()
        for address, payload in collector.replies:
            if address in seen:
                continue
            seen.add(address)
            device = parse_scan_reply(address, payload, options)
            if device:
                devices.append(device)

        logger.debug(f"NetXML broadcast got {len(collector.replies)} reply(ies)")
        return devices

    async def _query_host(self, host: str, options: XmlHttpOptions) -> Optional[Device]:
        loop = asyncio.get_running_loop()
        try:
            transport, collector = await loop.create_datagram_endpoint(
                _ReplyCollector,
                remote_addr=(host, options.port_udp),
            )
        except OSError as e:
            logger.debug(f"Cannot query {host}: {e}")
            return None

        try:
            transport.sendto(SCAN_REQUEST)
            await asyncio.wait_for(collector.first_reply, timeout=options.timeout)
        except asyncio.TimeoutError:
            logger.debug(f"No NetXML answer from {host}")
            return None
        finally:
            transport.close()

        return parse_scan_reply(host, collector.replies[0][1], options)
