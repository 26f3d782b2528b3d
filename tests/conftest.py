"""Pytest configuration and fixtures for finsync tests.

Provides a SQLite database per test and Services wired to fakes.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from fakes import FakeQontoClient, FakeSleep, FakeVisionClient, RecordingScheduler
from finsync.clickup.client import ClickUpClient
from finsync.config import AppConfig, DBConfig, QontoConfig, VisionConfig, reset_config
from finsync.core.rate_limit_queue import RateLimitedCallQueue
from finsync.core.scheduler import ClassificationScheduler
from finsync.core.services import Services, build_services
from finsync.db.connection import enable_sqlite_savepoints
from finsync.db.models import Base


@pytest.fixture(autouse=True)
def test_env(monkeypatch):
    """Isolate every test from the developer's environment."""
    monkeypatch.setenv("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
    for name in (
        "QONTO_API_KEY",
        "ANTHROPIC_API_KEY",
        "CLICKUP_API_TOKEN",
        "CLICKUP_SPACE_ID",
        "CLASSIFICATION_SCHEDULER",
        "VISION_DOCUMENT_MODE",
    ):
        monkeypatch.delenv(name, raising=False)
    reset_config()
    yield
    reset_config()


@pytest_asyncio.fixture()
async def engine(tmp_path):
    """File-backed SQLite so separate sessions see each other's commits."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'finsync.db'}")
    enable_sqlite_savepoints(engine)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def session_scope(session_factory):
    """Same contract as finsync.db.connection.get_session, bound to the test DB."""

    @asynccontextmanager
    async def scope() -> AsyncGenerator[AsyncSession, None]:
        session = session_factory()
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    return scope


@pytest_asyncio.fixture()
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    session = session_factory()
    try:
        yield session
    finally:
        await session.close()


@pytest.fixture
def app_config() -> AppConfig:
    return AppConfig(
        db=DBConfig(url="sqlite+aiosqlite:///:memory:"),
        qonto=QontoConfig(api_key="org-login:secret"),
        vision=VisionConfig(api_key="test-key", min_delay_seconds=15.0),
    )


@pytest.fixture
def make_services(app_config, session_scope):
    """Build Services bound to the test DB, with fakes for every external call.

    The call queue keeps the configured min delay but never really sleeps.
    """

    def factory(
        qonto: FakeQontoClient | None = None,
        clickup: ClickUpClient | None = None,
        vision: FakeVisionClient | None = None,
        scheduler: ClassificationScheduler | None = None,
        config: AppConfig | None = None,
    ) -> Services:
        config = config or app_config
        queue = RateLimitedCallQueue(min_delay=config.vision.min_delay_seconds, sleep=FakeSleep())
        return build_services(
            config,
            session_scope=session_scope,
            call_queue=queue,
            qonto=qonto or FakeQontoClient(),
            clickup=clickup,
            vision_client=vision or FakeVisionClient(),
            scheduler=scheduler or RecordingScheduler(),
        )

    return factory
