"""Shared pytest fixtures for engagement core tests.

Unit tests run against a temporary SQLite file through aiosqlite, one fresh
database per test. Integration tests (marked `integration`) use PostgreSQL from
either TEST_DATABASE_URL (must name a *_test database) or a testcontainers
PostgreSQL started once per session.
"""

from __future__ import annotations

import os
from collections.abc import AsyncGenerator, Iterator
from datetime import UTC, datetime, timedelta
from pathlib import Path
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from sqlalchemy import make_url, text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from src.config.settings import ProgressSettings
from src.constants import DB_SCHEMA
from src.milestones.registry import MilestoneRegistry, build_default_registry
from src.milestones.validator import TransitionValidator
from src.progress.database import ensure_schema, make_session_factory
from src.progress.ledger import ProgressLedger
from src.progress.models import Base
from src.progress.orchestrator import ProgressOrchestrator
from src.progress.unit_of_work import sqlalchemy_uow_factory

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)


class FakeClock:
    """Deterministic clock; advance() moves time forward."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def registry() -> MilestoneRegistry:
    return build_default_registry()


@pytest.fixture
def progress_settings() -> ProgressSettings:
    return ProgressSettings(
        history_default_limit=50,
        history_max_limit=500,
        note_max_length=500,
        max_commit_attempts=3,
        commit_timeout_s=10.0,
    )


# ---------------------------------------------------------------------------
# SQLite (unit tests)
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def sqlite_engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'engagements.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(sqlite_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return make_session_factory(sqlite_engine)


@pytest.fixture
def event_sink() -> AsyncMock:
    sink = AsyncMock()
    sink.publish = AsyncMock()
    return sink


@pytest.fixture
def ledger(session_factory, registry, progress_settings, clock) -> ProgressLedger:
    return ProgressLedger(session_factory, registry, progress_settings, clock=clock)


@pytest.fixture
def orchestrator(
    session_factory, registry, ledger, progress_settings, event_sink, clock
) -> ProgressOrchestrator:
    return ProgressOrchestrator(
        sqlalchemy_uow_factory(session_factory),
        registry,
        TransitionValidator(registry),
        ledger,
        progress_settings,
        event_sink=event_sink,
        clock=clock,
    )


# ---------------------------------------------------------------------------
# PostgreSQL (integration tests)
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def pg_url() -> Iterator[str]:
    """Async URL from TEST_DATABASE_URL, else a throwaway postgres:16 container."""
    url = os.getenv("TEST_DATABASE_URL")
    if url:
        database = make_url(url).database or ""
        if not database.endswith("_test"):
            raise RuntimeError(f"TEST_DATABASE_URL must name a *_test database, got {database!r}")
        yield url
        return

    from testcontainers.postgres import PostgresContainer

    with PostgresContainer("postgres:16", dbname="engagements_test", driver="asyncpg") as pg:
        yield pg.get_connection_url()


@pytest_asyncio.fixture
async def pg_engine(pg_url: str) -> AsyncGenerator[AsyncEngine, None]:
    """Engine pinned to the engagements schema; the schema is dropped after each test."""
    engine = create_async_engine(
        pg_url,
        connect_args={"server_settings": {"search_path": f"{DB_SCHEMA}, public"}},
    )
    await ensure_schema(engine, DB_SCHEMA)

    yield engine

    async with engine.begin() as conn:
        await conn.execute(text(f"DROP SCHEMA IF EXISTS {DB_SCHEMA} CASCADE"))
    await engine.dispose()


@pytest.fixture
def pg_session_factory(pg_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return make_session_factory(pg_engine)
