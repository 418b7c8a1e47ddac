"""Pytest configuration and shared fixtures."""

from datetime import timedelta

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from pricescout.models import Base
from pricescout.services.cache_service import InMemoryCacheBackend, SearchCache
from tests.fakes import ManualClock


@pytest.fixture
def anyio_backend():
    """Use asyncio as the async backend for tests."""
    return "asyncio"


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def memory_cache(clock) -> SearchCache:
    return SearchCache(
        InMemoryCacheBackend(clock=clock),
        default_ttl=timedelta(hours=6),
        stale_retention=timedelta(hours=24),
        clock=clock,
    )


@pytest_asyncio.fixture
async def session_factory():
    """Session factory over an in-memory SQLite database."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest_asyncio.fixture
async def test_db(session_factory):
    """Create an in-memory SQLite database session for testing."""
    async with session_factory() as session:
        yield session
