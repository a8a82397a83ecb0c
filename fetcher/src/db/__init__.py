"""
Database package for SQLAlchemy models and session management.

CHANGELOG:
- 2026-10-04: Initial creation (STORY-104)

TODO:
- None
"""

from fetcher.src.db.models import Base, Meter, MeterReading
from fetcher.src.db.session import (
    create_engine,
    create_session_factory,
    dispose_engine,
    init_engine,
)

__all__ = [
    "Base",
    "Meter",
    "MeterReading",
    "create_engine",
    "create_session_factory",
    "dispose_engine",
    "init_engine",
]
