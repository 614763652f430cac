"""Global pytest configuration and fixtures.

Redis is replaced by fakeredis and the metadata store by a per-test
SQLite file, so the suite runs without external services.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Iterator
from pathlib import Path

import fakeredis
import pytest
from fakeredis import FakeServer, aioredis
from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from cachewire.cache.metrics import CacheMetrics
from cachewire.cache.store import CacheStore
from cachewire.events.bus import InvalidationEventBus
from cachewire.persistence.metadata import MetadataRegistry
from cachewire.persistence.tables import Base
from cachewire.tenancy.context import clear_tenant


@pytest.fixture(autouse=True)
def _reset_tenant() -> Iterator[None]:
    """Never leak a tenant context between tests."""
    clear_tenant()
    yield
    clear_tenant()


@pytest.fixture
def redis_server() -> FakeServer:
    """Shared in-memory Redis server."""
    return FakeServer()


@pytest.fixture
def redis_client(redis_server: FakeServer) -> aioredis.FakeRedis:
    """Async client bound to the fake server."""
    return aioredis.FakeRedis(server=redis_server)


@pytest.fixture
def sync_redis(redis_server: FakeServer) -> fakeredis.FakeRedis:
    """Sync client on the same server, for seeding and inspection."""
    return fakeredis.FakeRedis(server=redis_server)


@pytest.fixture
def cache_metrics() -> CacheMetrics:
    return CacheMetrics()


@pytest.fixture
def store(redis_client: aioredis.FakeRedis, cache_metrics: CacheMetrics) -> CacheStore:
    """CacheStore over fakeredis with default TTLs."""
    return CacheStore(redis_client, metrics=cache_metrics)


@pytest.fixture
def database_path(tmp_path: Path) -> Path:
    """SQLite file with the metadata schema created."""
    path = tmp_path / "metadata.db"
    engine = create_engine(f"sqlite:///{path}")
    Base.metadata.create_all(engine)
    engine.dispose()
    return path


@pytest.fixture
def session_factory(database_path: Path) -> Iterator[async_sessionmaker[AsyncSession]]:
    """Async sessions on the test database."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{database_path}", poolclass=NullPool)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def registry(session_factory: async_sessionmaker[AsyncSession]) -> MetadataRegistry:
    return MetadataRegistry(session_factory)


@pytest.fixture
async def bus() -> AsyncIterator[InvalidationEventBus]:
    """Event bus without running background tasks."""
    event_bus = InvalidationEventBus(instance_id="test")
    yield event_bus
    await event_bus.stop()
