"""
Relational storage for fetch cycles and the registry source.

- ``SqlPersistenceSink.insert_readings``: one multi-row INSERT into
  ``meter_readings``.
- ``SqlPersistenceSink.mark_fetched``: set ``meters.latest_fetch`` to the
  database's current time for one meter.
- ``load_active_meters``: the active rows of ``meters`` as descriptors.

Writes are best-effort: each call commits on its own and there is no
cross-call transaction. Errors propagate to the caller, which logs them.

CHANGELOG:
- 2026-10-04: Initial creation (STORY-104)

TODO:
- None
"""

from collections.abc import Sequence

from sqlalchemy import func, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fetcher.src.cycle import Reading
from fetcher.src.db.models import Meter, MeterReading
from fetcher.src.device import MeterDescriptor
from fetcher.src.timefmt import parse_local_time


class SqlPersistenceSink:
    """PersistenceSink backed by an async SQLAlchemy session factory.

    Args:
        session_factory: Factory producing AsyncSession instances.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def insert_readings(self, rows: Sequence[Reading]) -> None:
        """Insert all *rows* with a single multi-row INSERT.

        An empty sequence is a no-op.
        """
        if not rows:
            return
        values = [
            {
                "meter_id": row.meter_id,
                "timestamp_start": parse_local_time(row.interval_start),
                "interval_length": row.interval_length,
                "consumption": row.consumption,
            }
            for row in rows
        ]
        async with self._session_factory() as session:
            await session.execute(insert(MeterReading).values(values))
            await session.commit()

    async def mark_fetched(self, meter_id: int) -> None:
        """Set ``latest_fetch`` of one meter to the database's now()."""
        stmt = (
            update(Meter)
            .where(Meter.id == meter_id)
            .values(latest_fetch=func.now())
        )
        async with self._session_factory() as session:
            await session.execute(stmt)
            await session.commit()


async def load_active_meters(
    session_factory: async_sessionmaker[AsyncSession],
) -> list[MeterDescriptor]:
    """Return every active meter ordered by id.

    Args:
        session_factory: Factory producing AsyncSession instances.

    Returns:
        list[MeterDescriptor]: One descriptor per active meter.
    """
    stmt = select(Meter).where(Meter.active.is_(True)).order_by(Meter.id)
    async with session_factory() as session:
        result = await session.execute(stmt)
        meters = result.scalars().all()
    return [
        MeterDescriptor(id=m.id, name=m.name, address=m.address, active=m.active)
        for m in meters
    ]
