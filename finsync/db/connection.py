"""Database connection and session management for finsync.

Provides async SQLAlchemy session management with connection pooling.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Any

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from finsync.config import get_config
from finsync.db.models import Base

# Global engine instance
_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None

# Anything that opens a session the way get_session does
SessionScope = Callable[[], AbstractAsyncContextManager[AsyncSession]]


def get_engine() -> AsyncEngine:
    """Get or create singleton async engine.

    Raises:
        KeyError: If DATABASE_URL is not configured
    """
    global _engine

    if _engine is None:
        db_config = get_config().db

        engine_kwargs: dict[str, Any] = {"echo": db_config.echo}

        # SQLite doesn't support connection pooling parameters
        if "sqlite" not in db_config.url.lower():
            engine_kwargs.update(
                {
                    "pool_size": db_config.pool_size,
                    "max_overflow": db_config.pool_max_overflow,
                    "pool_timeout": db_config.pool_timeout,
                    "pool_pre_ping": True,  # Verify connections before using
                    "pool_recycle": 3600,  # Recycle connections after 1 hour
                }
            )

        _engine = create_async_engine(db_config.url, **engine_kwargs)
        if _engine.dialect.name == "sqlite":
            enable_sqlite_savepoints(_engine)

    return _engine


def enable_sqlite_savepoints(engine: AsyncEngine) -> None:
    """Let SQLAlchemy emit BEGIN itself so SAVEPOINT works on SQLite.

    The sqlite3 driver otherwise defers BEGIN and a released savepoint
    commits the enclosing transaction.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get or create session factory."""
    global _session_factory

    if _session_factory is None:
        _session_factory = async_sessionmaker(
            get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,  # Don't expire objects after commit
        )

    return _session_factory


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Get async database session (context manager).

    Commits when the block exits normally and rolls back on error.

    Usage:
        async with get_session() as session:
            result = await session.execute(query)
    """
    session = get_session_factory()()

    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


async def init_db() -> None:
    """Initialize database (create all tables).

    Note: For production, use migrations instead.
    This is a convenience function for development/testing.
    """
    engine = get_engine()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Close database engine and dispose connections.

    Call this on application shutdown.
    """
    global _engine, _session_factory

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None
