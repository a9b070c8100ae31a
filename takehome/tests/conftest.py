"""
Shared fixtures for the take-home test suite.

Nothing here touches the network, Redis or PostgreSQL:
  - remote rule fetches are AsyncMocks
  - the shared cache tier is left out (redis_client=None) unless a test injects a mock
  - the snapshot store runs on an in-memory aiosqlite database
"""
from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from takehome.database import Base
from takehome.rules.provider import RuleSetProvider
from takehome.rules.schemas import RuleSet
from takehome.tests.demo_profiles import ILLUSTRATIVE_RULES


class FakeClock:
    """Controllable epoch-seconds clock for TTL tests."""

    def __init__(self, start: float = 1_750_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def illustrative_ruleset() -> RuleSet:
    return RuleSet.model_validate(ILLUSTRATIVE_RULES)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def remote_unavailable() -> AsyncMock:
    """Remote source not configured — fetch returns None."""
    return AsyncMock(return_value=None)


@pytest.fixture
def provider(remote_unavailable: AsyncMock, clock: FakeClock) -> RuleSetProvider:
    """Memory-only provider resolving from the bundled documents."""
    return RuleSetProvider(ttl_seconds=3600, remote_fetch=remote_unavailable, clock=clock)


@pytest_asyncio.fixture
async def session_factory():
    """In-memory SQLite with every ORM table created."""
    import takehome.models  # noqa: F401  (registers RuleSetSnapshotORM)

    engine = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    yield factory
    await engine.dispose()
