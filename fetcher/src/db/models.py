"""
SQLAlchemy ORM models for the fetcher database.

Defines the meters table (the registry source) and the meter_readings
table that every fetch cycle appends to.

CHANGELOG:
- 2026-10-04: Initial creation (STORY-104)

TODO:
- None
"""

import datetime

from sqlalchemy import Boolean, DateTime, Double, ForeignKey, Integer, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for all fetcher ORM models."""

    pass


class Meter(Base):
    """A consumption meter reachable on the plant network.

    Attributes:
        id: Surrogate key, referenced by readings.
        name: Unique meter name; the registry keys adapters by it.
        address: Host (optionally ``host:port``) of the meter.
        active: Only active meters are collected.
        latest_fetch: When a reading was last stored for this meter.
    """

    __tablename__ = "meters"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    address: Mapped[str] = mapped_column(Text, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    latest_fetch: Mapped[datetime.datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    def __repr__(self) -> str:
        return f"Meter(id={self.id!r}, name={self.name!r}, address={self.address!r})"


class MeterReading(Base):
    """Consumption measured by one meter over one closed interval.

    ``timestamp_start`` is local wall-clock time (no zone) in the
    configured fetch timezone.
    """

    __tablename__ = "meter_readings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    meter_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("meters.id"), nullable=False,
    )
    timestamp_start: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=False), nullable=False,
    )
    interval_length: Mapped[int] = mapped_column(Integer, nullable=False)
    consumption: Mapped[float] = mapped_column(Double, nullable=False)

    def __repr__(self) -> str:
        return (
            f"MeterReading(meter_id={self.meter_id!r}, "
            f"timestamp_start={self.timestamp_start!r}, consumption={self.consumption!r})"
        )
