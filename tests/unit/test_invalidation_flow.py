"""End-to-end invalidation flow across the cache and the event bus."""

from cachewire.cache.store import CacheStore
from cachewire.events.bus import InvalidationEventBus
from cachewire.events.schemas import EventType


class TestInvalidationFlow:
    """Cache write, tag invalidation and subscriber notification."""

    async def test_dashboard_invalidation(
        self, store: CacheStore, bus: InvalidationEventBus
    ) -> None:
        """A tag invalidation empties the cache and notifies the tenant first."""
        subscriber = bus.subscribe("t1")
        other = bus.subscribe("t2")

        assert await store.set(
            "dash:stats", {"total": 10}, tenant_id="t1", ttl=300, tags=["dashboard"]
        )
        assert await store.get("dash:stats", tenant_id="t1") == {"total": 10}

        assert await store.invalidate_by_tags(["dashboard"], tenant_id="t1") == 1
        bus.invalidate("t1", "dashboard")
        assert await store.get("dash:stats", tenant_id="t1") is None

        bus.heartbeat()
        first = await subscriber.next_event(timeout=1)
        second = await subscriber.next_event(timeout=1)

        assert first is not None and second is not None
        assert first.to_message()["type"] == "invalidate"
        assert first.to_message()["pattern"] == "dashboard"
        assert first.to_message()["tenantId"] == "t1"
        assert second.type is EventType.HEARTBEAT

        only = await other.next_event(timeout=1)
        assert only is not None
        assert only.type is EventType.HEARTBEAT
