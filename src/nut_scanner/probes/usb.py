"""
USB probe.

Enumerates the USB buses and reports devices from known UPS vendors, with
as much bus/port identity as the requested link detail level asks for.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

try:
    import usb.core
    import usb.util
    USB_AVAILABLE = True
except ImportError:
    USB_AVAILABLE = False
    usb = None

from .._types import Device, ProtocolKind, UsbOptions
from .base import Probe, ScanContext

logger = logging.getLogger(__name__)

# Vendor id -> driver; a (vendor, product) entry takes precedence
USB_VENDOR_DRIVERS = {
    0x0463: "usbhid-ups",  # MGE / Eaton
    0x047C: "usbhid-ups",  # Dell
    0x050D: "usbhid-ups",  # Belkin
    0x051D: "usbhid-ups",  # APC
    0x0592: "usbhid-ups",  # Powerware
    0x06DA: "nutdrv_qx",   # Phoenixtec
    0x0764: "usbhid-ups",  # Cyber Power Systems
    0x09AE: "usbhid-ups",  # Tripp Lite
    0x0D9F: "usbhid-ups",  # PowerCOM
    0x10AF: "usbhid-ups",  # Liebert
    0x2B2D: "usbhid-ups",  # Ablerex
}

USB_PRODUCT_DRIVERS = {
    (0x0665, 0x5161): "nutdrv_qx",  # Cypress serial-to-USB (Megatec Q1)
    (0x0001, 0x0000): "nutdrv_qx",  # Fiskars/Powerware "unknown" Q1
    (0x09AE, 0x0001): "tripplite_usb",
    (0x0D9F, 0x0002): "bcmxcp_usb",
}


def driver_for(vendor_id: int, product_id: int) -> Optional[str]:
    return USB_PRODUCT_DRIVERS.get((vendor_id, product_id)) or USB_VENDOR_DRIVERS.get(vendor_id)


def _string(dev: Any, index: Optional[int]) -> Optional[str]:
    if not index:
        return None
    try:
        return usb.util.get_string(dev, index)
    except (ValueError, usb.core.USBError, NotImplementedError) as e:
        # Reading descriptors usually needs write access to the device node
        logger.debug(f"Cannot read string descriptor {index}: {e}")
        return None


def device_from_usb(dev: Any, options: UsbOptions, strings: dict[str, Optional[str]]) -> Optional[Device]:
    """Build a Device from a pyusb device object and its string descriptors."""
    driver = driver_for(dev.idVendor, dev.idProduct)
    if driver is None:
        return None

    device_options = {
        "vendorid": f"{dev.idVendor:04X}",
        "productid": f"{dev.idProduct:04X}",
    }
    for key in ("product", "serial", "vendor"):
        if strings.get(key):
            device_options[key] = strings[key].strip()

    if options.report_bus:
        device_options["bus"] = f"{dev.bus:03d}"
    if options.report_busport and getattr(dev, "port_number", None):
        device_options["busport"] = f"{dev.port_number:03d}"
    if options.report_device:
        device_options["device"] = f"{dev.address:03d}"
    if options.report_bcd_device:
        device_options["bcdDevice"] = f"{dev.bcdDevice:04x}"

    return Device(kind=ProtocolKind.USB, driver=driver, port="auto", options=device_options)


class UsbProbe(Probe):
    """Finds UPS attached to local USB buses."""

    @property
    def kind(self) -> ProtocolKind:
        return ProtocolKind.USB

    @property
    def available(self) -> bool:
        return USB_AVAILABLE

    async def scan(
        self,
        context: ScanContext,
        options: Optional[UsbOptions] = None,
        start: Optional[str] = None,
        end: Optional[str] = None,
    ) -> list[Device]:
        if not USB_AVAILABLE:
            logger.error("pyusb not available")
            return []

        options = options or UsbOptions()
        if options.uses_defaults:
            logger.debug("Using default USB link detail level settings")

        loop = asyncio.get_running_loop()
        async with context.gate:
            # pyusb is synchronous
            return await loop.run_in_executor(None, self._enumerate, options)

    def _enumerate(self, options: UsbOptions) -> list[Device]:
        devices = []
        try:
            found = list(usb.core.find(find_all=True))
        except usb.core.NoBackendError as e:
            logger.error(f"No USB backend available: {e}")
            return devices

        for dev in found:
            if driver_for(dev.idVendor, dev.idProduct) is None:
                continue
            strings = {
                "product": _string(dev, dev.iProduct),
                "serial": _string(dev, dev.iSerialNumber),
                "vendor": _string(dev, dev.iManufacturer),
            }
            device = device_from_usb(dev, options, strings)
            if device:
                devices.append(device)

        logger.debug(f"USB enumeration found {len(devices)} power device(s)")
        return devices
