"""Fixtures for API tests.

The application runs inside TestClient's own event loop, so every
service handed to it is created without touching the test loop.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator

import fakeredis
import pytest
from fastapi.testclient import TestClient

from cachewire.api.app import create_app
from cachewire.cache.store import CacheEntry, CacheStore
from cachewire.events.bus import InvalidationEventBus
from cachewire.persistence.metadata import MetadataRegistry


@pytest.fixture
def event_bus() -> InvalidationEventBus:
    return InvalidationEventBus(instance_id="test")


@pytest.fixture
def client(
    store: CacheStore, registry: MetadataRegistry, event_bus: InvalidationEventBus
) -> Iterator[TestClient]:
    """Client for the full application, sending tenant t1 by default."""
    app = create_app(cache_store=store, metadata_registry=registry, event_bus=event_bus)
    with TestClient(app, headers={"X-Tenant-ID": "t1"}) as test_client:
        yield test_client


Seeder = Callable[..., None]


@pytest.fixture
def seed(sync_redis: fakeredis.FakeRedis) -> Seeder:
    """Write cache entries directly under physical keys."""

    def write(physical_key: str, value: object, ttl: int = 300) -> None:
        sync_redis.set(physical_key, CacheEntry.create(value, ttl).to_bytes(), ex=ttl)

    return write
