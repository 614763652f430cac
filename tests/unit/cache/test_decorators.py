"""Tests for the caching decorators."""

import pytest

from cachewire.cache.decorators import cached, default_key, invalidates
from cachewire.cache.store import CacheStore
from cachewire.events.bus import InvalidationEventBus
from cachewire.events.schemas import EventType
from cachewire.tenancy.context import TenantScope


class TestCached:
    """Test the cached decorator."""

    async def test_result_cached_per_tenant(self, store: CacheStore) -> None:
        """The wrapped function runs once per tenant."""
        calls: list[str] = []

        @cached(store, key="dash:stats", ttl=60)
        async def dashboard_stats() -> dict[str, int]:
            calls.append("run")
            return {"patients": len(calls)}

        with TenantScope("t1"):
            assert await dashboard_stats() == {"patients": 1}
            assert await dashboard_stats() == {"patients": 1}
        with TenantScope("t2"):
            assert await dashboard_stats() == {"patients": 2}

        assert len(calls) == 2
        assert await store.get("dash:stats", tenant_id="t1") == {"patients": 1}

    async def test_key_fn(self, store: CacheStore) -> None:
        """Keys can be derived from the call's arguments."""

        @cached(store, key_fn=lambda user_id: f"user:{user_id}")
        async def load_user(user_id: int) -> dict[str, int]:
            return {"id": user_id}

        with TenantScope("t1"):
            await load_user(7)
        assert await store.get("user:7", tenant_id="t1") == {"id": 7}

    async def test_store_factory(self, store: CacheStore) -> None:
        """The store may be supplied lazily."""

        @cached(lambda: store, key="k")
        async def value() -> int:
            return 1

        with TenantScope("t1"):
            assert await value() == 1
        assert await store.exists("k", tenant_id="t1")

    def test_default_key(self) -> None:
        """Default keys combine the function name and arguments."""

        async def report(year: int, month: int = 1) -> None:
            pass

        key = default_key(report, (2024,), {"month": 3})
        assert key.endswith("report:2024:month=3")


class TestInvalidates:
    """Test the invalidates decorator."""

    async def test_tags_dropped_after_success(self, store: CacheStore) -> None:
        """Tagged entries are removed once the function returns."""
        await store.set("dash:stats", 1, tenant_id="t1", tags=["dashboard"])

        @invalidates(store, tags=["dashboard"])
        async def create_appointment() -> str:
            return "created"

        with TenantScope("t1"):
            assert await create_appointment() == "created"
        assert not await store.exists("dash:stats", tenant_id="t1")

    async def test_nothing_dropped_on_failure(self, store: CacheStore) -> None:
        """A failing function leaves the cache untouched."""
        await store.set("dash:stats", 1, tenant_id="t1", tags=["dashboard"])

        @invalidates(store, tags=["dashboard"])
        async def create_appointment() -> None:
            raise RuntimeError("boom")

        with TenantScope("t1"), pytest.raises(RuntimeError):
            await create_appointment()
        assert await store.exists("dash:stats", tenant_id="t1")

    async def test_pattern_dropped(self, store: CacheStore) -> None:
        """Keys matching the pattern are removed within the tenant."""
        await store.set("user:1", 1, tenant_id="t1")
        await store.set("user:1", 1, tenant_id="t2")

        @invalidates(store, pattern="user:*")
        async def update_users() -> None:
            return None

        with TenantScope("t1"):
            await update_users()
        assert not await store.exists("user:1", tenant_id="t1")
        assert await store.exists("user:1", tenant_id="t2")

    async def test_subscribers_notified(self, store: CacheStore, bus: InvalidationEventBus) -> None:
        """Each tag and the pattern are published to the tenant's subscribers."""
        subscriber = bus.subscribe("t1")

        @invalidates(store, tags=["dashboard"], pattern="user:*", bus=bus)
        async def change() -> None:
            return None

        with TenantScope("t1"):
            await change()

        first = await subscriber.next_event(timeout=1)
        second = await subscriber.next_event(timeout=1)
        assert first is not None and second is not None
        assert (first.type, first.pattern) == (EventType.INVALIDATE_TYPE, "dashboard")
        assert (second.type, second.pattern) == (EventType.INVALIDATE, "user:*")
