"""
IPMI probe.

Lists the power supply sensors of a BMC with ipmitool, either the local one
(no address range) or remote ones over IPMI-over-LAN, and reports one
nut-ipmipsu device per power supply.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
from typing import Optional

from .._types import Device, IpmiOptions, ProtocolKind
from ..ranges import iter_addresses
from .base import Probe, ScanContext, scan_hosts

logger = logging.getLogger(__name__)

IPMITOOL = "ipmitool"

# A LAN session gets -N per attempt plus one retry (-R 1) and the session setup
COMMAND_TIMEOUT_FACTOR = 3

# IPMI entity id of power supplies
POWER_SUPPLY_ENTITY = "10"

AUTH_TYPES = ("NONE", "STRAIGHT_PASSWORD_KEY", "MD2", "MD5")

# ipmitool spells some authentication types differently
_IPMITOOL_AUTH = {
    "NONE": "NONE",
    "STRAIGHT_PASSWORD_KEY": "PASSWORD",
    "MD2": "MD2",
    "MD5": "MD5",
}


def parse_power_supplies(output: str) -> list[int]:
    """
    Extract power supply instance numbers from `ipmitool -c sdr type` output.

    Lines look like "PS1 Status,c8h,ok,10.1,Presence detected".
    """
    instances = []
    for line in output.splitlines():
        fields = line.split(",")
        if len(fields) < 4:
            continue
        entity = fields[3].strip()
        entity_id, _, instance = entity.partition(".")
        if entity_id != POWER_SUPPLY_ENTITY or not instance.isdigit():
            continue
        number = int(instance)
        if number not in instances:
            instances.append(number)
    return instances


def build_command(options: IpmiOptions, host: Optional[str], timeout: float) -> list[str]:
    """ipmitool command line listing power supply sensors."""
    cmd = [IPMITOOL]
    if host:
        lanplus = options.ipmi_version == "2.0"
        cmd.extend(["-I", "lanplus" if lanplus else "lan", "-H", host])
        if options.username:
            cmd.extend(["-U", options.username])
        if options.password:
            cmd.extend(["-P", options.password])
        cmd.extend(["-L", options.privilege_level])
        if lanplus:
            cmd.extend(["-C", str(options.cipher_suite_id)])
        else:
            cmd.extend(["-A", _IPMITOOL_AUTH.get(options.authentication_type, "MD5")])
        cmd.extend(["-N", str(max(1, int(timeout))), "-R", "1"])
    cmd.extend(["-c", "sdr", "type", "Power Supply"])
    return cmd


class IpmiProbe(Probe):
    """Finds IPMI managed power supplies."""

    @property
    def kind(self) -> ProtocolKind:
        return ProtocolKind.IPMI

    @property
    def available(self) -> bool:
        return shutil.which(IPMITOOL) is not None

    async def scan(
        self,
        context: ScanContext,
        options: Optional[IpmiOptions] = None,
        start: Optional[str] = None,
        end: Optional[str] = None,
    ) -> list[Device]:
        options = options or IpmiOptions()

        if not start and not end:
            async with context.gate:
                return await self._query(context, options, None)

        per_host = await scan_hosts(
            context,
            iter_addresses(start or end, end or start),
            lambda host: self._query(context, options, host),
        )
        return [device for found in per_host for device in found]

    async def _query(
        self,
        context: ScanContext,
        options: IpmiOptions,
        host: Optional[str],
    ) -> list[Device]:
        cmd = build_command(options, host, context.timeout)
        target = host or "local BMC"

        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            logger.error(f"Cannot run {IPMITOOL}: {e}")
            return []

        # ipmitool's own -N only covers LAN sessions, not /dev/ipmi0
        deadline = context.timeout * (COMMAND_TIMEOUT_FACTOR if host else 1)
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=deadline)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            logger.debug(f"{IPMITOOL} did not answer for {target} within {deadline}s")
            return []

        if proc.returncode != 0:
            logger.debug(f"{IPMITOOL} failed for {target}: {stderr.decode(errors='replace').strip()}")
            return []

        devices = []
        for instance in parse_power_supplies(stdout.decode(errors="replace")):
            port = f"id{instance}" if host is None else f"id{instance}@{host}"
            device_options = {}
            if host is not None:
                if options.username:
                    device_options["username"] = options.username
                if options.password:
                    device_options["password"] = options.password
                device_options["authtype"] = options.authentication_type
                if options.ipmi_version == "2.0":
                    device_options["cipher_suite_id"] = str(options.cipher_suite_id)
            devices.append(Device(
                kind=self.kind,
                driver="nut-ipmipsu",
                port=port,
                options=device_options,
            ))

        logger.debug(f"{target}: {len(devices)} power supply(ies)")
        return devices
