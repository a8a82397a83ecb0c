"""
Unit tests for the fetch cycle (STORY-103, STORY-108).

Tests verify:
- Successful meters produce one row and one latest_fetch update each.
- Absent results are warned about and never reach either batch.
- Intervals are closed concurrently and results keep device order.
- An adapter that raises is treated like an absent result.
- Insert and update failures are logged and do not stop the cycle.
- Zero devices: no batches and no log beyond the opening notice.

CHANGELOG:
- 2026-10-05: Initial creation (STORY-103)
- 2026-10-11: CycleResult assertions (STORY-108)

TODO:
- None
"""

import asyncio
import logging
from datetime import UTC, datetime

import pytest
from fakes import FakeAdapter, RecordingSink

from fetcher.src.cycle import Reading, build_batches, run_fetch_cycle, summary_line
from fetcher.src.device import IntervalReading
from fetcher.src.registry import DeviceRegistry

_LOGGER = "fetcher.test.cycle"

# 2026-01-15 12:00:00 in Europe/Berlin.
_TS = datetime(2026, 1, 15, 11, 0, 0, tzinfo=UTC).timestamp()


def _registry(*adapters: FakeAdapter) -> DeviceRegistry:
    registry = DeviceRegistry()
    for adapter in adapters:
        registry._by_name[adapter.name] = adapter
    return registry


@pytest.fixture()
def log() -> logging.Logger:
    logger = logging.getLogger(_LOGGER)
    logger.setLevel(logging.INFO)
    return logger


class TestSuccessAndAbsent:
    @pytest.mark.asyncio()
    async def test_success_and_absent(self, sink: RecordingSink, log, caplog) -> None:
        a = FakeAdapter(5, "A", result=IntervalReading(_TS, 7200, 120.5))
        b = FakeAdapter(6, "B", result=None)

        with caplog.at_level(logging.INFO, logger=_LOGGER):
            result = await run_fetch_cycle(_registry(a, b), sink, log=log)

        assert result.readings == [Reading(5, "2026-01-15 12:00:00", 7200, 120.5)]
        assert result.fetched == [5]
        assert result.failed == ["B"]
        assert sink.inserted == [[Reading(5, "2026-01-15 12:00:00", 7200, 120.5)]]
        assert sink.marked == [5]

        messages = [r.getMessage() for r in caplog.records]
        warnings = [r.getMessage() for r in caplog.records if r.levelno == logging.WARNING]
        assert messages[0] == "Closing fetch intervals..."
        assert warnings == ["Meter B: no data due to a connection error"]
        assert "Consumption: A=120.50Wh;" in messages

    @pytest.mark.asyncio()
    async def test_every_device_closed_once(self, sink, log) -> None:
        adapters = [
            FakeAdapter(i, f"m{i}", result=IntervalReading(_TS, 900, float(i)))
            for i in range(1, 4)
        ]
        await run_fetch_cycle(_registry(*adapters), sink, log=log)

        assert [a.close_calls for a in adapters] == [1, 1, 1]
        assert [row.meter_id for row in sink.inserted[0]] == [1, 2, 3]
        assert sink.marked == [1, 2, 3]

    @pytest.mark.asyncio()
    async def test_raising_adapter_counts_as_absent(self, sink, log, caplog) -> None:
        a = FakeAdapter(1, "A", result=RuntimeError("socket closed"))
        b = FakeAdapter(2, "B", result=IntervalReading(_TS, 900, 3.0))

        with caplog.at_level(logging.WARNING, logger=_LOGGER):
            result = await run_fetch_cycle(_registry(a, b), sink, log=log)

        assert result.failed == ["A"]
        assert result.fetched == [2]
        warnings = [r.getMessage() for r in caplog.records if r.levelno == logging.WARNING]
        assert warnings == ["Meter A: no data, closing interval raised RuntimeError('socket closed')"]

    @pytest.mark.asyncio()
    async def test_one_warning_per_failed_meter(self, sink, log, caplog) -> None:
        a = FakeAdapter(1, "A", result=RuntimeError("socket closed"))
        b = FakeAdapter(2, "B", result=None)

        with caplog.at_level(logging.WARNING, logger=_LOGGER):
            await run_fetch_cycle(_registry(a, b), sink, log=log)

        warned = [r.getMessage().split(":")[0] for r in caplog.records]
        assert warned == ["Meter A", "Meter B"]


class TestConcurrency:
    @pytest.mark.asyncio()
    async def test_slow_device_does_not_misattribute(self, sink, log) -> None:
        """Completion order differs from device order; rows stay paired."""
        release = asyncio.Event()
        started: list[str] = []

        class SlowAdapter(FakeAdapter):
            async def close_interval(self):
                started.append(self.name)
                await release.wait()
                return IntervalReading(_TS, 900, 1.0)

        class FastAdapter(FakeAdapter):
            async def close_interval(self):
                started.append(self.name)
                release.set()
                return IntervalReading(_TS, 900, 2.0)

        slow = SlowAdapter(1, "slow")
        fast = FastAdapter(2, "fast")
        result = await asyncio.wait_for(
            run_fetch_cycle(_registry(slow, fast), sink, log=log), timeout=5
        )

        assert started == ["slow", "fast"]
        assert [(r.meter_id, r.consumption) for r in result.readings] == [(1, 1.0), (2, 2.0)]

    @pytest.mark.asyncio()
    async def test_cycle_holds_registry_lock(self, sink, log) -> None:
        seen: list[bool] = []
        registry = _registry()

        class LockWatcher(FakeAdapter):
            async def close_interval(self):
                seen.append(registry.lock.locked())
                return None

        registry._by_name["p"] = LockWatcher(1, "p")
        await run_fetch_cycle(registry, sink, log=log)

        assert seen == [True]
        assert not registry.lock.locked()


class TestPersistenceFailures:
    @pytest.mark.asyncio()
    async def test_insert_failure_still_marks_fetched(self, log, caplog) -> None:
        sink = RecordingSink(fail_insert=True)
        a = FakeAdapter(1, "A", result=IntervalReading(_TS, 900, 1.0))

        with caplog.at_level(logging.WARNING, logger=_LOGGER):
            result = await run_fetch_cycle(_registry(a), sink, log=log)

        assert sink.inserted == []
        assert sink.marked == [1]
        assert len(result.readings) == 1
        assert any("[1]" in r.getMessage() for r in caplog.records)

    @pytest.mark.asyncio()
    async def test_update_failure_does_not_abort_others(self, log, caplog) -> None:
        sink = RecordingSink(fail_mark=frozenset({1}))
        adapters = [
            FakeAdapter(1, "A", result=IntervalReading(_TS, 900, 1.0)),
            FakeAdapter(2, "B", result=IntervalReading(_TS, 900, 2.0)),
        ]

        with caplog.at_level(logging.WARNING, logger=_LOGGER):
            await run_fetch_cycle(_registry(*adapters), sink, log=log)

        assert sink.marked == [2]
        assert any("(1) Error updating latest_fetch" in r.getMessage() for r in caplog.records)


class TestEmptyCycles:
    @pytest.mark.asyncio()
    async def test_zero_devices(self, sink, log, caplog) -> None:
        with caplog.at_level(logging.DEBUG, logger=_LOGGER):
            result = await run_fetch_cycle(_registry(), sink, log=log)

        assert result.readings == []
        assert result.fetched == []
        assert sink.inserted == []
        assert sink.marked == []
        assert [r.getMessage() for r in caplog.records] == ["Closing fetch intervals..."]

    @pytest.mark.asyncio()
    async def test_all_absent_skips_summary(self, sink, log, caplog) -> None:
        with caplog.at_level(logging.INFO, logger=_LOGGER):
            await run_fetch_cycle(_registry(FakeAdapter(1, "A")), sink, log=log)

        messages = [r.getMessage() for r in caplog.records]
        assert not any(m.startswith("Consumption:") for m in messages)
        assert sink.inserted == []


class TestHelpers:
    def test_build_batches_uses_timezone(self) -> None:
        a = FakeAdapter(1, "A")
        batches = build_batches([a], [IntervalReading(_TS, 900, 1.0)], tz="UTC")
        assert batches.readings[0].interval_start == "2026-01-15 11:00:00"

    def test_build_batches_rejects_length_mismatch(self) -> None:
        with pytest.raises(ValueError):
            build_batches([FakeAdapter(1, "A")], [])

    def test_summary_line_rounds(self) -> None:
        devices = [FakeAdapter(1, "A"), FakeAdapter(2, "B"), FakeAdapter(3, "C")]
        results = [IntervalReading(_TS, 900, 1.005), None, IntervalReading(_TS, 900, 42)]
        assert summary_line(devices, results) == "Consumption: A=1.00Wh; C=42.00Wh;"

    def test_summary_line_empty(self) -> None:
        assert summary_line([FakeAdapter(1, "A")], [None]) is None

    @pytest.mark.asyncio()
    async def test_defaults_to_session_logger(self, sink, caplog) -> None:
        with caplog.at_level(logging.INFO, logger="fetcher.fetch"):
            await run_fetch_cycle(_registry(), sink)

        assert [r.name for r in caplog.records] == ["fetcher.fetch"]
