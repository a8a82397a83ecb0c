"""
Quarter-hour fetch scheduler.

Two states:

- **Idle**: no wake-up armed (``armed_until is None``).
- **Armed**: a background task sleeps until the next wall-clock boundary
  (:00, :15, :30, :45), runs a fetch cycle, computes the next boundary and
  sleeps again. It never leaves Armed on its own.

``start()`` arms from Idle. ``stop()`` runs one final cycle to flush the
intervals that are open right now, then cancels the task and returns to
Idle. Both are no-ops in the wrong state and report that by returning
``False``. The scheduler counts as Armed until the final flush of a
``stop()`` has finished, so a concurrent ``start()`` or ``stop()`` is a
no-op. Cycles never overlap: the scheduled chain and the final flush
share one lock.

CHANGELOG:
- 2026-10-06: Initial creation (STORY-105)
- 2026-10-11: Keep last cycle result for status reporting (STORY-108)
- 2026-10-20: Stay Armed during the final flush; re-check state after firing (STORY-110)

TODO:
- None
"""

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

from fetcher.src.cycle import CycleResult, PersistenceSink, run_fetch_cycle
from fetcher.src.registry import DeviceRegistry
from fetcher.src.timefmt import DEFAULT_TIMEZONE

logger = logging.getLogger(__name__)

BOUNDARY_MINUTES = 15


def delay_until_next_boundary(now: datetime) -> int:
    """Milliseconds from *now* to the next quarter-hour boundary.

    A time exactly on a boundary schedules the following one, so the
    result is always > 0.

    Args:
        now: Current wall-clock time.

    Returns:
        Delay in whole milliseconds.
    """
    seconds_to_minute = (60 - now.second) % 60
    minutes_remaining = (
        BOUNDARY_MINUTES
        - now.minute % BOUNDARY_MINUTES
        - (0 if seconds_to_minute == 0 else 1)
    )
    return (
        minutes_remaining * 60_000
        + seconds_to_minute * 1000
        - now.microsecond // 1000
    )


def next_boundary(now: datetime) -> datetime:
    """Return the first quarter-hour boundary strictly after *now*."""
    floor = now.replace(
        minute=now.minute - now.minute % BOUNDARY_MINUTES,
        second=0,
        microsecond=0,
    )
    return floor + timedelta(minutes=BOUNDARY_MINUTES)


class FetchScheduler:
    """Arms quarter-hour fetch cycles until stopped.

    Args:
        registry: Meters to close on each cycle.
        sink: Storage for cycle batches.
        tz: Zone for wall-clock alignment and reading timestamps.
        clock: Returns the current time; defaults to now in *tz*.
        sleep: Coroutine used to wait; defaults to ``asyncio.sleep``.
    """

    def __init__(
        self,
        registry: DeviceRegistry,
        sink: PersistenceSink,
        *,
        tz: str = DEFAULT_TIMEZONE,
        clock: Callable[[], datetime] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._registry = registry
        self._sink = sink
        self._tz = tz
        self._clock = clock or (lambda: datetime.now(tz=ZoneInfo(tz)))
        self._sleep = sleep
        self._task: asyncio.Task | None = None
        self._stopping = False
        self._cycle_lock = asyncio.Lock()

        self.armed_until: datetime | None = None
        self.last_result: CycleResult | None = None
        self.last_cycle_at: datetime | None = None

    @property
    def is_armed(self) -> bool:
        return self._task is not None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def start(self) -> bool:
        """Arm the scheduler.

        Returns:
            ``True`` if it was Idle and is now Armed, ``False`` if it was
            already Armed (nothing changes).
        """
        if self.is_armed:
            logger.info("Fetch scheduler already armed until %s", self.armed_until)
            return False
        self._task = asyncio.create_task(self._run(), name="fetch-scheduler")
        return True

    async def stop(self) -> bool:
        """Flush with one final cycle, then disarm.

        Returns:
            ``True`` if it was Armed and is now Idle, ``False`` if it was
            already Idle or another stop is flushing (no cycle is run).
        """
        task = self._task
        if task is None or self._stopping:
            return False
        # The chain checks this flag and will not run or arm another cycle.
        self._stopping = True
        try:
            await self.fire()
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        finally:
            self._task = None
            self.armed_until = None
            self._stopping = False
        logger.info("Fetch scheduler stopped")
        return True

    async def fire(self) -> CycleResult | None:
        """Run one fetch cycle; errors are logged, never raised."""
        async with self._cycle_lock:
            try:
                result = await run_fetch_cycle(self._registry, self._sink, tz=self._tz)
            except Exception:
                logger.exception("Unexpected error in fetch cycle")
                return None
            self.last_result = result
            self.last_cycle_at = self._clock()
            return result

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _run(self) -> None:
        me = asyncio.current_task()
        previous: datetime | None = None
        while True:
            now = self._clock()
            # A slightly early wake-up must not re-arm for the same boundary.
            if previous is not None and now < previous:
                now = previous
            delay_ms = delay_until_next_boundary(now)
            self.armed_until = next_boundary(now)
            logger.info(
                "Scheduled next fetch at %s (in %d:%02d min)",
                self.armed_until.strftime("%H:%M:%S"),
                delay_ms // 60_000,
                delay_ms % 60_000 // 1000,
            )
            await self._sleep(delay_ms / 1000)

            if not self._owns_chain(me):
                return
            previous = self.armed_until
            await self.fire()
            if not self._owns_chain(me):
                return

    def _owns_chain(self, task: asyncio.Task | None) -> bool:
        return self._task is task and not self._stopping
