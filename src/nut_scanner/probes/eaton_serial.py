"""
Eaton serial probe.

Sends a Megatec Q1 status query to each requested serial port and reports
the ports that answer with a well-formed status line.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Optional

try:
    import serial
    SERIAL_AVAILABLE = True
except ImportError:
    SERIAL_AVAILABLE = False
    serial = None

from .._types import Device, ProtocolKind, SerialOptions
from .base import Probe, ScanContext

logger = logging.getLogger(__name__)

Q1_BAUDRATE = 2400
Q1_QUERY = b"Q1\r"

# "(MMM.M NNN.N PPP.P QQQ RR.R S.SS TT.T b7b6b5b4b3b2b1b0"
_Q1_REPLY = re.compile(rb"^\(\d{3}\.\d (?:\d{3}\.\d ){2}\d{3} \d{2}\.\d \d\.\d{2} \d{2}\.\d [01]{8}")


def parse_port_list(spec: str) -> list[str]:
    """
    Split a port list ("ttyS0,ttyUSB0 /dev/ttyS1") into device paths.

    Bare names are taken relative to /dev.
    """
    ports = []
    for item in re.split(r"[,\s]+", spec or ""):
        if not item:
            continue
        path = item if item.startswith("/") else f"/dev/{item}"
        if path not in ports:
            ports.append(path)
    return ports


def is_q1_reply(data: bytes) -> bool:
    return bool(_Q1_REPLY.match(data.strip()))


class EatonSerialProbe(Probe):
    """Finds Q1 speaking UPS on serial ports."""

    @property
    def kind(self) -> ProtocolKind:
        return ProtocolKind.EATON_SERIAL

    @property
    def available(self) -> bool:
        return SERIAL_AVAILABLE

    async def scan(
        self,
        context: ScanContext,
        options: Optional[SerialOptions] = None,
        start: Optional[str] = None,
        end: Optional[str] = None,
    ) -> list[Device]:
        if not SERIAL_AVAILABLE:
            logger.error("pyserial not available")
            return []

        ports = (options and options.ports) or []
        if not ports:
            logger.warning("No serial ports given, nothing to scan")
            return []

        results = await asyncio.gather(
            *(self._probe_port(context, port) for port in ports)
        )
        return [device for device in results if device is not None]

    async def _probe_port(self, context: ScanContext, port: str) -> Optional[Device]:
        loop = asyncio.get_running_loop()
        async with context.gate:
            answered = await loop.run_in_executor(None, self._query_q1, port, context.timeout)

        if not answered:
            return None
        return Device(kind=self.kind, driver="blazer_ser", port=port)

    def _query_q1(self, port: str, timeout: float) -> bool:
        try:
            with serial.Serial(port, Q1_BAUDRATE, timeout=timeout, write_timeout=timeout) as conn:
                conn.reset_input_buffer()
                conn.write(Q1_QUERY)
                reply = conn.read_until(b"\r", 64)
        except (serial.SerialException, OSError) as e:
            logger.debug(f"Cannot query {port}: {e}")
            return False

        if not is_q1_reply(reply):
            logger.debug(f"{port}: no Q1 answer ({reply!r})")
            return False
        return True
