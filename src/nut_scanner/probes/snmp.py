"""
SNMP probe.

Reads sysObjectID from every address in a range and matches it against the
MIB roots of known UPS and PDU families. Agents that do not identify as a
known family but implement the UPS-MIB (RFC 1628) are reported with the
"ietf" mapping.
"""

from __future__ import annotations

import logging
from typing import Optional

try:
    from pysnmp.hlapi.v3arch import asyncio as snmp_api
    SNMP_AVAILABLE = True
except ImportError:
    SNMP_AVAILABLE = False
    snmp_api = None

from .._types import Device, ProtocolKind, SnmpOptions
from ..ranges import iter_addresses
from .base import Probe, ScanContext, scan_hosts

logger = logging.getLogger(__name__)

SNMP_PORT = 161
DEFAULT_COMMUNITY = "public"

SYS_OBJECT_ID = "1.3.6.1.2.1.1.2.0"
UPS_IDENT_MANUFACTURER = "1.3.6.1.2.1.33.1.1.1.0"

# sysObjectID prefix -> snmp-ups "mibs" value
SNMP_MIB_ROOTS = {
    "1.3.6.1.4.1.705.1": "mge",
    "1.3.6.1.4.1.534.1": "pw",
    "1.3.6.1.4.1.534.6.6.7": "eaton_epdu",
    "1.3.6.1.4.1.318.1": "apcc",
    "1.3.6.1.4.1.232.165.3": "cpqpower",
    "1.3.6.1.4.1.3808.1.1.1": "cyberpower",
    "1.3.6.1.4.1.850.1": "tripplite",
    "1.3.6.1.4.1.2254.2.4": "delta_ups",
    "1.3.6.1.4.1.13742": "raritan",
    "1.3.6.1.2.1.33": "ietf",
}

AUTH_PROTOCOLS = {
    "MD5": "USM_AUTH_HMAC96_MD5",
    "SHA": "USM_AUTH_HMAC96_SHA",
    "SHA256": "USM_AUTH_HMAC192_SHA256",
    "SHA384": "USM_AUTH_HMAC256_SHA384",
    "SHA512": "USM_AUTH_HMAC384_SHA512",
}

PRIV_PROTOCOLS = {
    "DES": "USM_PRIV_CBC56_DES",
    "AES": "USM_PRIV_CFB128_AES",
    "AES192": "USM_PRIV_CFB192_AES",
    "AES256": "USM_PRIV_CFB256_AES",
}


def match_mib(sys_object_id: str) -> Optional[str]:
    """Return the mibs value for the longest known prefix of an OID."""
    best = None
    for root, mib in SNMP_MIB_ROOTS.items():
        if sys_object_id == root or sys_object_id.startswith(root + "."):
            if best is None or len(root) > len(best[0]):
                best = (root, mib)
    return best[1] if best else None


def device_options(options: SnmpOptions, mib: str) -> dict[str, str]:
    """Options written to ups.conf for an SNMP device."""
    result = {"mibs": mib}
    if not options.is_v3:
        result["community"] = options.community or DEFAULT_COMMUNITY
        return result

    result["snmp_version"] = "v3"
    result["secLevel"] = options.sec_level
    if options.sec_name:
        result["secName"] = options.sec_name
    if options.auth_password:
        result["authPassword"] = options.auth_password
    if options.priv_password:
        result["privPassword"] = options.priv_password
    if options.auth_protocol:
        result["authProtocol"] = options.auth_protocol
    if options.priv_protocol:
        result["privProtocol"] = options.priv_protocol
    return result


class SnmpProbe(Probe):
    """Identifies SNMP managed UPS and PDU."""

    @property
    def kind(self) -> ProtocolKind:
        return ProtocolKind.SNMP

    @property
    def available(self) -> bool:
        return SNMP_AVAILABLE

    async def scan(
        self,
        context: ScanContext,
        options: Optional[SnmpOptions] = None,
        start: Optional[str] = None,
        end: Optional[str] = None,
    ) -> list[Device]:
        if not SNMP_AVAILABLE:
            logger.error("pysnmp not available")
            return []
        if not start and not end:
            logger.debug("No address range given, nothing to query")
            return []

        options = options or SnmpOptions()
        engine = snmp_api.SnmpEngine()
        auth = self._auth_data(options)
        try:
            return await scan_hosts(
                context,
                iter_addresses(start or end, end or start),
                lambda host: self._query_host(context, engine, auth, host, options),
            )
        finally:
            engine.close_dispatcher()

    def _auth_data(self, options: SnmpOptions):
        if not options.is_v3:
            return snmp_api.CommunityData(options.community or DEFAULT_COMMUNITY, mpModel=0)

        auth_protocol = snmp_api.USM_AUTH_NONE
        priv_protocol = snmp_api.USM_PRIV_NONE
        if options.sec_level in ("authNoPriv", "authPriv"):
            name = AUTH_PROTOCOLS.get((options.auth_protocol or "MD5").upper())
            if name is None:
                logger.warning(f"Unknown SNMPv3 authentication protocol {options.auth_protocol}, using MD5")
                name = AUTH_PROTOCOLS["MD5"]
            auth_protocol = getattr(snmp_api, name)
        if options.sec_level == "authPriv":
            name = PRIV_PROTOCOLS.get((options.priv_protocol or "DES").upper())
            if name is None:
                logger.warning(f"Unknown SNMPv3 privacy protocol {options.priv_protocol}, using DES")
                name = PRIV_PROTOCOLS["DES"]
            priv_protocol = getattr(snmp_api, name)

        return snmp_api.UsmUserData(
            options.sec_name or "",
            authKey=options.auth_password,
            privKey=options.priv_password,
            authProtocol=auth_protocol,
            privProtocol=priv_protocol,
        )

    async def _query_host(
        self,
        context: ScanContext,
        engine,
        auth,
        host: str,
        options: SnmpOptions,
    ) -> Optional[Device]:
        try:
            target_cls = snmp_api.Udp6TransportTarget if ":" in host else snmp_api.UdpTransportTarget
            target = await target_cls.create(
                (host, SNMP_PORT), timeout=context.timeout, retries=0
            )
            sys_object_id = await self._get(engine, auth, target, SYS_OBJECT_ID)
            mib = match_mib(sys_object_id) if sys_object_id else None
            if mib is None and sys_object_id:
                if await self._get(engine, auth, target, UPS_IDENT_MANUFACTURER):
                    mib = "ietf"
        except Exception as e:
            logger.debug(f"SNMP query of {host} failed: {e!r}")
            return None

        if mib is None:
            if sys_object_id:
                logger.debug(f"{host}: sysObjectID {sys_object_id} is not a known power device")
            return None

        return Device(
            kind=self.kind,
            driver="snmp-ups",
            port=host,
            options=device_options(options, mib),
        )

    async def _get(self, engine, auth, target, oid: str) -> Optional[str]:
        error_indication, error_status, _, var_binds = await snmp_api.get_cmd(
            engine,
            auth,
            target,
            snmp_api.ContextData(),
            snmp_api.ObjectType(snmp_api.ObjectIdentity(oid)),
        )
        if error_indication or error_status:
            return None
        for _, value in var_binds:
            text = value.prettyPrint()
            if text and "No Such" not in text:
                return text
        return None
