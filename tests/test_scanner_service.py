"""Tests for the scanner service."""

import logging

import pytest

from nut_scanner._types import ProtocolKind
from nut_scanner.exceptions import DispatchError
from nut_scanner.providers import ConcurrencyProvider, SequentialConcurrency
from nut_scanner.scanner_service import NutScannerService

from conftest import FakeLimits, FakeProbe, make_device


def all_probes(*replacements):
    """A quiet fake probe for every protocol, with optional replacements."""
    probes = {kind: FakeProbe(kind) for kind in ProtocolKind}
    for probe in replacements:
        probes[probe.kind] = probe
    return probes


def make_service(config, probes, registry, concurrency=None):
    return NutScannerService(
        config,
        probes=probes,
        registry=registry,
        concurrency=concurrency,
        limits=FakeLimits(soft=1024),
    )


class FailingConcurrency(ConcurrencyProvider):
    """Refuses to start units for some protocols."""

    def __init__(self, refuse):
        self.refuse = refuse
        self.inner = SequentialConcurrency()

    async def start(self, name, factory):
        if any(name.endswith(kind.value) for kind in self.refuse):
            raise DispatchError(f"cannot start {name}")
        return await self.inner.start(name, factory)

    async def join(self, handle):
        await self.inner.join(handle)


class TestDispatch:
    """Tests for which probes run and how."""

    @pytest.mark.asyncio
    async def test_complete_scan_skips_serial(self, scanner_config, registry):
        """Nothing requested: every kind but serial is dispatched."""
        probes = all_probes()
        service = make_service(scanner_config, probes, registry)

        await service.run()

        assert probes[ProtocolKind.USB].calls == [(None, None)]
        assert probes[ProtocolKind.NUT_SIMULATION].calls == [(None, None)]
        assert probes[ProtocolKind.EATON_SERIAL].calls == []

    @pytest.mark.asyncio
    async def test_only_requested_kinds(self, scanner_config, registry):
        scanner_config.request(ProtocolKind.NUT_SIMULATION)
        probes = all_probes()

        await make_service(scanner_config, probes, registry).run()

        assert probes[ProtocolKind.NUT_SIMULATION].calls == [(None, None)]
        for kind in ProtocolKind:
            if kind is not ProtocolKind.NUT_SIMULATION:
                assert probes[kind].calls == []

    @pytest.mark.asyncio
    async def test_unavailable_probe_skipped(self, scanner_config, registry, caplog):
        probes = all_probes(FakeProbe(ProtocolKind.USB, available=False))

        with caplog.at_level(logging.DEBUG):
            results = await make_service(scanner_config, probes, registry).run()

        assert probes[ProtocolKind.USB].calls == []
        assert results[ProtocolKind.USB] == []
        assert "USB SCAN: not requested or supported, SKIPPED" in caplog.text

    @pytest.mark.asyncio
    async def test_range_kinds_without_ranges(self, scanner_config, registry, caplog):
        """SNMP and old NUT need ranges; XML/HTTP and IPMI fall back to their default target."""
        probes = all_probes()

        with caplog.at_level(logging.INFO):
            await make_service(scanner_config, probes, registry).run()

        assert probes[ProtocolKind.SNMP].calls == []
        assert probes[ProtocolKind.NUT_OLD].calls == []
        assert probes[ProtocolKind.XML_HTTP].calls == [(None, None)]
        assert probes[ProtocolKind.IPMI].calls == [(None, None)]
        assert "No IP range(s) requested, skipping SNMP" in caplog.text
        assert "No IP range(s) requested, skipping NUT bus (old)" in caplog.text

    @pytest.mark.asyncio
    async def test_range_kinds_called_per_range(self, scanner_config, registry):
        registry.add_range("10.0.0.1", "10.0.0.4")
        registry.add_range("10.0.1.9")
        probes = all_probes()

        await make_service(scanner_config, probes, registry).run()

        expected = [("10.0.0.1", "10.0.0.4"), ("10.0.1.9", "10.0.1.9")]
        for kind in (ProtocolKind.SNMP, ProtocolKind.XML_HTTP, ProtocolKind.NUT_OLD, ProtocolKind.IPMI):
            assert probes[kind].calls == expected
        # Not range scoped: called once without a range
        assert probes[ProtocolKind.AVAHI].calls == [(None, None)]

    @pytest.mark.asyncio
    async def test_failed_start_disables_kind(self, scanner_config, registry, caplog):
        probes = all_probes(
            FakeProbe(ProtocolKind.USB, devices=[make_device(ProtocolKind.USB, "auto")])
        )
        concurrency = FailingConcurrency(refuse={ProtocolKind.USB})

        with caplog.at_level(logging.WARNING):
            results = await make_service(scanner_config, probes, registry, concurrency).run()

        assert results[ProtocolKind.USB] == []
        assert probes[ProtocolKind.USB].calls == []
        assert probes[ProtocolKind.NUT_SIMULATION].calls == [(None, None)]
        assert "Failed to start USB scan" in caplog.text

    @pytest.mark.asyncio
    async def test_quiet_moves_progress_to_debug(self, scanner_config, registry, caplog):
        scanner_config.quiet = True
        scanner_config.request(ProtocolKind.USB)

        with caplog.at_level(logging.INFO):
            await make_service(scanner_config, all_probes(), registry).run()

        assert "Scanning USB bus." not in caplog.text


class TestAggregation:
    """Tests for collecting and ordering results."""

    @pytest.mark.asyncio
    async def test_results_keyed_in_report_order(self, scanner_config, registry):
        results = await make_service(scanner_config, all_probes(), registry).run()
        assert list(results) == list(ProtocolKind)

    @pytest.mark.asyncio
    async def test_per_range_results_appended_in_range_order(self, scanner_config, registry):
        registry.add_range("10.0.0.1", "10.0.0.2")
        registry.add_range("10.0.0.9")
        first = [make_device(ProtocolKind.SNMP, "10.0.0.1"), make_device(ProtocolKind.SNMP, "10.0.0.2")]
        second = [make_device(ProtocolKind.SNMP, "10.0.0.9")]
        probes = all_probes()
        probes[ProtocolKind.SNMP] = FakeProbe(
            ProtocolKind.SNMP, per_range={"10.0.0.1": first, "10.0.0.9": second}
        )

        results = await make_service(scanner_config, probes, registry).run()

        assert [d.port for d in results[ProtocolKind.SNMP]] == ["10.0.0.1", "10.0.0.2", "10.0.0.9"]

    @pytest.mark.asyncio
    async def test_failing_range_does_not_stop_others(self, scanner_config, registry, caplog):
        registry.add_range("10.0.0.1")
        registry.add_range("10.0.0.2")
        registry.add_range("10.0.0.3")
        probes = all_probes()
        probes[ProtocolKind.NUT_OLD] = FakeProbe(
            ProtocolKind.NUT_OLD,
            per_range={
                "10.0.0.1": [make_device(ProtocolKind.NUT_OLD, "ups@10.0.0.1")],
                "10.0.0.3": [make_device(ProtocolKind.NUT_OLD, "ups@10.0.0.3")],
            },
            failing_starts={"10.0.0.2"},
        )

        with caplog.at_level(logging.ERROR):
            results = await make_service(scanner_config, probes, registry).run()

        assert [d.port for d in results[ProtocolKind.NUT_OLD]] == ["ups@10.0.0.1", "ups@10.0.0.3"]
        assert "[10.0.0.2 .. 10.0.0.2] failed" in caplog.text

    @pytest.mark.asyncio
    async def test_failing_probe_yields_empty_result(self, scanner_config, registry):
        probes = all_probes()
        probes[ProtocolKind.AVAHI] = FakeProbe(ProtocolKind.AVAHI, error=RuntimeError("mdns down"))
        probes[ProtocolKind.NUT_SIMULATION] = FakeProbe(
            ProtocolKind.NUT_SIMULATION,
            devices=[make_device(ProtocolKind.NUT_SIMULATION, "sim.dev")],
        )

        results = await make_service(scanner_config, probes, registry).run()

        assert results[ProtocolKind.AVAHI] == []
        assert [d.port for d in results[ProtocolKind.NUT_SIMULATION]] == ["sim.dev"]

    @pytest.mark.asyncio
    async def test_sequential_concurrency_same_results(self, scanner_config, registry):
        """Without parallel units the results are identical."""
        registry.add_range("10.0.0.1")
        probes = all_probes()
        probes[ProtocolKind.SNMP] = FakeProbe(
            ProtocolKind.SNMP, per_range={"10.0.0.1": [make_device(ProtocolKind.SNMP, "10.0.0.1")]}
        )

        results = await make_service(
            scanner_config, probes, registry, SequentialConcurrency()
        ).run()

        assert [d.port for d in results[ProtocolKind.SNMP]] == ["10.0.0.1"]


class TestRegistryLifecycle:

    @pytest.mark.asyncio
    async def test_registry_released_after_run(self, scanner_config, registry):
        registry.add_range("10.0.0.1")
        await make_service(scanner_config, all_probes(), registry).run()

        assert len(registry) == 0
        assert not registry.frozen

    @pytest.mark.asyncio
    async def test_registry_frozen_during_run(self, scanner_config, registry):
        registry.add_range("10.0.0.1")
        seen = []

        class RecordingProbe(FakeProbe):
            async def scan(self, context, options, start=None, end=None):
                seen.append(registry.frozen)
                return []

        probes = all_probes()
        probes[ProtocolKind.SNMP] = RecordingProbe(ProtocolKind.SNMP)

        await make_service(scanner_config, probes, registry).run()

        assert seen == [True]


class TestReport:
    """Tests for NutScannerService.report."""

    def test_reports_every_kind_in_order_then_clears(self):
        results = {kind: [make_device(kind, f"{kind.value}-port")] for kind in reversed(list(ProtocolKind))}
        seen = []

        NutScannerService.report(results, lambda devices: seen.append([d.kind for d in devices]))

        assert seen == [[kind] for kind in ProtocolKind]
        assert results == {}

    def test_missing_kinds_reported_empty(self):
        seen = []
        NutScannerService.report({}, lambda devices: seen.append(devices))
        assert seen == [[] for _ in ProtocolKind]
