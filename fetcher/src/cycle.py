"""
Fetch cycle: close every meter's interval and persist the results.

One cycle runs per quarter-hour boundary (plus one final flush when
collection is stopped). It:

1. Closes the open interval on every registered meter concurrently and
   waits for all of them. Results are paired with meters by position.
2. Turns each reading into a ``meter_readings`` row with the interval
   start localized to the configured zone, and queues the meter for a
   ``latest_fetch`` update. Meters without a reading get a warning.
3. Writes all rows with one multi-row insert, then updates
   ``latest_fetch`` once per meter.

Nothing is retried. Failed meters and failed writes are logged and the
cycle carries on; the data of a failed insert is lost.

CHANGELOG:
- 2026-10-05: Initial creation (STORY-103)
- 2026-10-11: Return CycleResult for status reporting (STORY-108)
- 2026-10-20: One warning per failed meter (STORY-110)

TODO:
- None
"""

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import NamedTuple, Protocol

from fetcher.src.device import DeviceAdapter, IntervalReading
from fetcher.src.logging_config import get_current_logger
from fetcher.src.registry import DeviceRegistry
from fetcher.src.timefmt import DEFAULT_TIMEZONE, format_unix_time


class Reading(NamedTuple):
    """One ``meter_readings`` row, in column order."""

    meter_id: int
    interval_start: str
    interval_length: int
    consumption: float


class PersistenceSink(Protocol):
    """Storage the fetch cycle hands its batches to."""

    async def insert_readings(self, rows: Sequence[Reading]) -> None: ...

    async def mark_fetched(self, meter_id: int) -> None: ...


@dataclass
class CycleResult:
    """Batches produced by one cycle.

    Attributes:
        readings: Rows submitted for insertion.
        fetched: Meter ids queued for a ``latest_fetch`` update.
        failed: Names of meters that produced no reading.
    """

    readings: list[Reading] = field(default_factory=list)
    fetched: list[int] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


async def _close_all(
    devices: Sequence[DeviceAdapter],
) -> tuple[list[IntervalReading | None], dict[str, BaseException]]:
    """Close every interval concurrently.

    Returns:
        One result per device in device order, and the exceptions raised
        by adapters keyed by meter name (those results are ``None``).
    """
    outcomes = await asyncio.gather(
        *(device.close_interval() for device in devices),
        return_exceptions=True,
    )
    results: list[IntervalReading | None] = []
    errors: dict[str, BaseException] = {}
    for device, outcome in zip(devices, outcomes, strict=True):
        if isinstance(outcome, BaseException):
            errors[device.name] = outcome
            results.append(None)
        else:
            results.append(outcome)
    return results, errors


def build_batches(
    devices: Sequence[DeviceAdapter],
    results: Sequence[IntervalReading | None],
    tz: str = DEFAULT_TIMEZONE,
) -> CycleResult:
    """Pair results with their devices and split them into batches.

    Args:
        devices: Meters in the order their intervals were closed.
        results: One outcome per device, same order.
        tz: Zone used to localize interval start timestamps.

    Returns:
        A CycleResult whose lists keep the device order.
    """
    batches = CycleResult()
    for device, result in zip(devices, results, strict=True):
        if result is None:
            batches.failed.append(device.name)
            continue
        batches.readings.append(
            Reading(
                meter_id=device.id,
                interval_start=format_unix_time(result.timestamp, tz),
                interval_length=result.duration,
                consumption=result.consumption,
            )
        )
        batches.fetched.append(device.id)
    return batches


def summary_line(
    devices: Sequence[DeviceAdapter],
    results: Sequence[IntervalReading | None],
) -> str | None:
    """Format ``Consumption: a=1.00Wh; b=2.50Wh;`` or ``None`` if empty."""
    fragments = [
        f"{device.name}={float(result.consumption):.2f}Wh;"
        for device, result in zip(devices, results, strict=True)
        if result is not None
    ]
    if not fragments:
        return None
    return "Consumption: " + " ".join(fragments)


async def _persist(
    sink: PersistenceSink,
    batches: CycleResult,
    log: logging.Logger,
) -> None:
    if batches.readings:
        try:
            await sink.insert_readings(batches.readings)
        except Exception:
            log.warning(
                "Error inserting readings for meters %s",
                [row.meter_id for row in batches.readings],
                exc_info=True,
            )
        else:
            log.info("Inserted %d readings into meter_readings", len(batches.readings))

    if batches.fetched:
        for meter_id in batches.fetched:
            try:
                await sink.mark_fetched(meter_id)
            except Exception:
                log.warning(
                    "(%s) Error updating latest_fetch", meter_id, exc_info=True
                )
        log.info("Updated latest_fetch for meters in meters table")


async def run_fetch_cycle(
    registry: DeviceRegistry,
    sink: PersistenceSink,
    *,
    tz: str = DEFAULT_TIMEZONE,
    log: logging.Logger | None = None,
) -> CycleResult:
    """Run one complete fetch cycle over the current registry.

    The registry lock is held for the whole cycle so refreshes wait
    until every interval has been closed and persisted.

    Args:
        registry: Source of the meters to close.
        sink: Storage for readings and ``latest_fetch`` updates.
        tz: Zone for interval start timestamps.
        log: Logger to write to. Defaults to the current fetch session.

    Returns:
        The batches produced (for reporting; already persisted).
    """
    log = log or get_current_logger()
    log.info("Closing fetch intervals...")

    async with registry.lock:
        devices = registry.all()
        results, errors = await _close_all(devices)
        batches = build_batches(devices, results, tz)

        for name in batches.failed:
            if name in errors:
                log.warning("Meter %s: no data, closing interval raised %r", name, errors[name])
            else:
                log.warning("Meter %s: no data due to a connection error", name)

        line = summary_line(devices, results)
        if line is not None:
            log.info(line)

        await _persist(sink, batches, log)

    return batches
