"""Async engine, session factory and schema bootstrap."""

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from moodfeed.config import config
from moodfeed.logging import get_logger

logger = get_logger(__name__)

# Seconds a writer waits on a locked SQLite database before failing
SQLITE_BUSY_TIMEOUT = 15

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


class Base(DeclarativeBase):
    """Declarative base for moodfeed tables."""


def _enable_sqlite_wal(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute(f"PRAGMA busy_timeout={SQLITE_BUSY_TIMEOUT * 1000}")
    cursor.close()


def build_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create an engine; SQLite files get WAL so item tasks can write concurrently."""
    engine = create_async_engine(database_url, echo=echo, pool_pre_ping=True)
    if engine.dialect.name == "sqlite" and ":memory:" not in database_url:
        event.listen(engine.sync_engine, "connect", _enable_sqlite_wal)
    return engine


def get_engine() -> AsyncEngine:
    """Process-wide engine for ``DATABASE_URL``, created on first use."""
    global _engine

    if _engine is None:
        logger.info(f"Creating database engine for {config.database_url}")
        _engine = build_engine(config.database_url, echo=config.log_level == "DEBUG")

    return _engine


def make_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to ``engine``; objects stay usable after commit."""
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _session_factory

    if _session_factory is None:
        _session_factory = make_session_factory(get_engine())

    return _session_factory


async def create_tables(engine: AsyncEngine) -> None:
    """Create missing tables. Existing tables are left alone."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_engine() -> None:
    """Dispose the process-wide engine and forget the session factory."""
    global _engine, _session_factory

    if _engine is None:
        return

    logger.info("Closing database engine")
    await _engine.dispose()
    _engine = None
    _session_factory = None
