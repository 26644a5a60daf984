"""
Scanner Service - scan orchestration.

Dispatches one unit of work per requested protocol, lets the units run in
parallel, joins them in a fixed order and hands the collected devices to a
formatter, again in that order.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from ._types import Device, ProtocolKind, merge_device_lists
from .config import ScannerConfig
from .exceptions import DispatchError
from .limiter import ConcurrencyGate, resolve_max_concurrency
from .probes import Probe, ScanContext, default_probes
from .providers import AsyncioConcurrency, ConcurrencyProvider, ResourceLimitProvider
from .ranges import IPRangeRegistry

logger = logging.getLogger(__name__)

Formatter = Callable[[list[Device]], None]


@dataclass
class ScanJob:
    """Bookkeeping for one protocol during a run."""
    kind: ProtocolKind
    probe: Optional[Probe]
    options: Any
    allowed: bool
    available: bool
    handle: Any = None
    started: bool = False
    result: list[Device] = field(default_factory=list)


class NutScannerService:
    """
    Runs a scan over every requested protocol.

    The registry must hold all address ranges before run() is called; it is
    frozen while probes iterate it and emptied when the run is over.
    """

    def __init__(
        self,
        config: ScannerConfig,
        probes: Optional[dict[ProtocolKind, Probe]] = None,
        registry: Optional[IPRangeRegistry] = None,
        concurrency: Optional[ConcurrencyProvider] = None,
        limits: Optional[ResourceLimitProvider] = None,
    ):
        self.config = config
        self.probes = probes if probes is not None else default_probes()
        self.registry = registry if registry is not None else IPRangeRegistry()
        self.concurrency = concurrency or AsyncioConcurrency()
        self.limits = limits

    def _progress(self, message: str) -> None:
        # Progress lines go away with -q but remain visible in debug output
        level = logging.DEBUG if self.config.quiet else logging.INFO
        logger.log(level, message)

    def _make_jobs(self) -> list[ScanJob]:
        allowed = self.config.allowed_protocols()
        jobs = []
        for kind in ProtocolKind:
            probe = self.probes.get(kind)
            jobs.append(ScanJob(
                kind=kind,
                probe=probe,
                options=self.config.options_for(kind),
                allowed=kind in allowed,
                available=probe is not None and probe.available,
            ))
        return jobs

    async def run(self) -> dict[ProtocolKind, list[Device]]:
        """
        Scan every allowed, available protocol.

        Returns the devices found per protocol, keyed in report order. A
        protocol that was skipped or failed maps to an empty list.
        """
        gate = ConcurrencyGate(
            resolve_max_concurrency(self.config.max_threads, limits=self.limits)
        )
        context = ScanContext(timeout=self.config.timeout, gate=gate)
        logger.debug(f"Scan gate allows {gate.size} parallel operation(s)")

        self.registry.freeze()
        try:
            jobs = self._make_jobs()
            for job in jobs:
                await self._dispatch(job, context)

            for job in jobs:
                await self._join(job)

            return {job.kind: job.result for job in jobs}
        finally:
            self.registry.release_all()

    async def _dispatch(self, job: ScanJob, context: ScanContext) -> None:
        label = job.kind.label

        if not (job.allowed and job.available):
            logger.debug(f"{label} SCAN: not requested or supported, SKIPPED")
            return

        if job.kind.range_scoped and not job.kind.has_default_target and not len(self.registry):
            self._progress(f"No IP range(s) requested, skipping {label}")
            job.available = False
            return

        self._progress(f"Scanning {label} bus.")
        try:
            job.handle = await self.concurrency.start(
                f"nut-scanner-{job.kind.value}",
                lambda: self._run_unit(job, context),
            )
        except DispatchError as e:
            logger.warning(f"Failed to start {label} scan: {e}")
            job.available = False
            return
        job.started = True

    async def _run_unit(self, job: ScanJob, context: ScanContext) -> None:
        """Call the probe once, or once per range, and collect its devices."""
        if not job.kind.range_scoped or not len(self.registry):
            job.result = await job.probe.scan(context, job.options) or []
            return

        for address_range in self.registry:
            try:
                found = await job.probe.scan(
                    context, job.options, address_range.start, address_range.end
                )
            except Exception as e:
                logger.error(f"{job.kind.label} scan of {address_range} failed: {e}")
                continue
            if found:
                logger.debug(f"{job.kind.label}: {len(found)} device(s) in {address_range}")
            job.result = merge_device_lists(job.result, found or [])

    async def _join(self, job: ScanJob) -> None:
        if not job.started:
            return
        try:
            await self.concurrency.join(job.handle)
        except Exception as e:
            logger.error(f"{job.kind.label} scan failed: {e}")
        logger.debug(f"{job.kind.label} scan finished with {len(job.result)} device(s)")

    @staticmethod
    def report(results: dict[ProtocolKind, list[Device]], formatter: Formatter) -> None:
        """Pass each protocol's devices to ``formatter`` in report order, then drop them."""
        for kind in ProtocolKind:
            formatter(results.get(kind, []))
        results.clear()
