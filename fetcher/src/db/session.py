"""
Async database engine and session factory.

Uses SQLAlchemy 2.x async engine with the asyncpg driver. The engine is
created lazily from settings and shared by the persistence sink and the
registry source.

CHANGELOG:
- 2026-10-04: Initial creation (STORY-104)
- 2026-10-12: Add dispose_engine() for shutdown (STORY-109)

TODO:
- None
"""

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from fetcher.src.config import get_settings

# Module-level singletons, initialized lazily via init_engine().
async_engine: AsyncEngine | None = None
async_session_factory: async_sessionmaker[AsyncSession] | None = None


def create_engine(database_url: str | None = None) -> AsyncEngine:
    """Create an async SQLAlchemy engine.

    Args:
        database_url: Connection string. Read from settings when omitted.

    Returns:
        AsyncEngine: Configured async engine.
    """
    if database_url is None:
        database_url = get_settings().database_url
    return create_async_engine(database_url, echo=False, pool_pre_ping=True)


def create_session_factory(engine: AsyncEngine | None = None) -> async_sessionmaker[AsyncSession]:
    """Create an async session factory.

    Args:
        engine: Optional async engine. If not provided, creates one from config.

    Returns:
        async_sessionmaker: Factory for creating AsyncSession instances.
    """
    if engine is None:
        engine = create_engine()
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


def init_engine(database_url: str | None = None) -> async_sessionmaker[AsyncSession]:
    """Initialize the module-level engine and session factory.

    Safe to call multiple times; subsequent calls return the existing factory.
    """
    global async_engine, async_session_factory  # noqa: PLW0603
    if async_engine is None:
        async_engine = create_engine(database_url)
        async_session_factory = create_session_factory(async_engine)
    assert async_session_factory is not None, "Session factory not initialized"
    return async_session_factory


async def dispose_engine() -> None:
    """Close pooled connections and forget the module-level engine."""
    global async_engine, async_session_factory  # noqa: PLW0603
    if async_engine is not None:
        await async_engine.dispose()
    async_engine = None
    async_session_factory = None
