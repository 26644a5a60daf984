"""
NUT simulation devices.

Every *.dev or *.seq file in the NUT configuration directory can be served by
the dummy-ups driver, so each one is reported as a device.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

from .._types import Device, ProtocolKind, SimulationOptions
from .base import Probe, ScanContext

logger = logging.getLogger(__name__)

DEFAULT_CONFPATH = "/etc/nut"
SIMULATION_SUFFIXES = (".dev", ".seq")


class NutSimulationProbe(Probe):
    """Lists dummy-ups definition files."""

    @property
    def kind(self) -> ProtocolKind:
        return ProtocolKind.NUT_SIMULATION

    async def scan(
        self,
        context: ScanContext,
        options: Optional[SimulationOptions] = None,
        start: Optional[str] = None,
        end: Optional[str] = None,
    ) -> list[Device]:
        confpath = Path(
            (options and options.confpath)
            or os.getenv("NUT_CONFPATH")
            or DEFAULT_CONFPATH
        )

        if not confpath.is_dir():
            logger.debug(f"Simulation directory {confpath} does not exist")
            return []

        devices = []
        try:
            entries = sorted(confpath.iterdir())
        except OSError as e:
            logger.error(f"Failed to list {confpath}: {e}")
            return devices

        for entry in entries:
            if entry.suffix not in SIMULATION_SUFFIXES or not entry.is_file():
                continue
            devices.append(Device(
                kind=self.kind,
                driver="dummy-ups",
                port=entry.name,
            ))

        logger.debug(f"Found {len(devices)} simulation file(s) in {confpath}")
        return devices
