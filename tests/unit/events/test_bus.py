"""Tests for the invalidation event bus."""

import asyncio
import threading
import time

import pytest

from cachewire.events.bus import InvalidationEventBus, Subscriber, SubscriberState
from cachewire.events.schemas import EventType, InvalidationEvent


async def drain(subscriber: Subscriber) -> list[InvalidationEvent]:
    """Collect everything currently queued for a subscriber."""
    events: list[InvalidationEvent] = []
    while subscriber.pending:
        event = await subscriber.next_event(timeout=0.1)
        if event is None:
            break
        events.append(event)
    return events


class TestSubscribe:
    """Test subscriber registration."""

    async def test_subscribe_registers_active(self, bus: InvalidationEventBus) -> None:
        """New subscribers are active and counted."""
        subscriber = bus.subscribe("t1", user_id="u1")

        assert subscriber.state is SubscriberState.ACTIVE
        assert len(bus) == 1
        assert bus.get_subscriber(subscriber.subscriber_id) is subscriber

    async def test_unsubscribe_is_idempotent(self, bus: InvalidationEventBus) -> None:
        """Repeated and unknown unsubscribes are harmless."""
        subscriber = bus.subscribe("t1")

        assert bus.unsubscribe(subscriber.subscriber_id)
        assert not bus.unsubscribe(subscriber.subscriber_id)
        assert not bus.unsubscribe("unknown")
        assert subscriber.state is SubscriberState.CLOSED
        assert len(bus) == 0

    async def test_unsubscribe_ends_stream(self, bus: InvalidationEventBus) -> None:
        """A closed subscriber's stream finishes after its queued events."""
        subscriber = bus.subscribe("t1")
        bus.invalidate("t1", "dashboard")
        bus.unsubscribe(subscriber.subscriber_id)

        received = [event async for event in subscriber.stream()]
        assert [e.pattern for e in received] == ["dashboard"]

    async def test_stats(self, bus: InvalidationEventBus) -> None:
        """Stats group subscribers by tenant."""
        bus.subscribe("t1")
        bus.subscribe("t1")
        bus.subscribe("t2")

        stats = bus.stats()
        assert stats["totalSubscribers"] == 3
        assert stats["subscribersByTenant"] == {"t1": 2, "t2": 1}

    async def test_to_dict(self, bus: InvalidationEventBus) -> None:
        """Subscriber info is serializable."""
        subscriber = bus.subscribe("t1", user_id="u1", event_types=[EventType.UPDATE])
        info = subscriber.to_dict()

        assert info["tenantId"] == "t1"
        assert info["userId"] == "u1"
        assert info["state"] == "active"
        assert info["eventTypes"] == ["update"]


class TestPublish:
    """Test tenant-scoped fan-out."""

    async def test_events_scoped_to_tenant(self, bus: InvalidationEventBus) -> None:
        """Only the publishing tenant's subscribers receive the event."""
        s1 = bus.subscribe("t1")
        s2 = bus.subscribe("t2")

        assert bus.invalidate("t1", "dashboard") == 1

        assert [e.pattern for e in await drain(s1)] == ["dashboard"]
        assert await drain(s2) == []

    async def test_every_tenant_subscriber_receives(self, bus: InvalidationEventBus) -> None:
        """All subscribers of the tenant get the event."""
        subscribers = [bus.subscribe("t1") for _ in range(3)]

        assert bus.update("t1", "user:1") == 3
        for subscriber in subscribers:
            assert len(await drain(subscriber)) == 1

    async def test_order_preserved(self, bus: InvalidationEventBus) -> None:
        """Events arrive in publish order."""
        subscriber = bus.subscribe("t1")
        for i in range(5):
            bus.invalidate("t1", f"key:{i}")

        assert [e.pattern for e in await drain(subscriber)] == [f"key:{i}" for i in range(5)]

    async def test_event_type_filter(self, bus: InvalidationEventBus) -> None:
        """Filtered subscribers only get the requested types."""
        subscriber = bus.subscribe("t1", event_types=[EventType.DELETE])

        bus.invalidate("t1", "a")
        bus.delete("t1", "b")

        assert [(e.type, e.pattern) for e in await drain(subscriber)] == [(EventType.DELETE, "b")]

    async def test_event_fields(self, bus: InvalidationEventBus) -> None:
        """Published events carry tenant, pattern, metadata and origin."""
        subscriber = bus.subscribe("t1")
        bus.invalidate_type("t1", "appointments", metadata={"by": "u1"})

        (event,) = await drain(subscriber)
        assert event.type is EventType.INVALIDATE_TYPE
        assert event.tenant_id == "t1"
        assert event.metadata == {"by": "u1"}
        assert event.origin == "test"

    async def test_no_subscribers(self, bus: InvalidationEventBus) -> None:
        """Publishing with nobody listening delivers nothing."""
        assert bus.invalidate("t1", "x") == 0
        assert bus.events_published == 1

    async def test_publish_from_other_thread(self, bus: InvalidationEventBus) -> None:
        """Events published off the loop thread still arrive."""
        subscriber = bus.subscribe("t1")

        thread = threading.Thread(target=bus.invalidate, args=("t1", "threaded"))
        thread.start()
        thread.join()

        event = await subscriber.next_event(timeout=1)
        assert event is not None
        assert event.pattern == "threaded"

    async def test_unsubscribe_from_other_thread_keeps_earlier_events(
        self, bus: InvalidationEventBus
    ) -> None:
        """An off-loop disconnect ends the stream after events already published."""
        subscriber = bus.subscribe("t1")

        def publish_then_leave() -> None:
            bus.invalidate("t1", "last")
            bus.unsubscribe(subscriber.subscriber_id)

        await asyncio.to_thread(publish_then_leave)

        received = [event async for event in subscriber.stream()]
        assert [e.pattern for e in received] == ["last"]
        assert subscriber.state is SubscriberState.CLOSED

    async def test_listeners_called(self, bus: InvalidationEventBus) -> None:
        """Listeners see every locally published event."""
        seen: list[InvalidationEvent] = []
        bus.add_listener(seen.append)

        bus.invalidate("t1", "x")
        assert [e.pattern for e in seen] == ["x"]

    async def test_listener_failure_ignored(self, bus: InvalidationEventBus) -> None:
        """A failing listener does not affect delivery."""

        def broken(event: InvalidationEvent) -> None:
            raise RuntimeError("listener down")

        bus.add_listener(broken)
        bus.subscribe("t1")
        assert bus.invalidate("t1", "x") == 1

    async def test_unknown_event_type_rejected(self, bus: InvalidationEventBus) -> None:
        """Publishing an unknown type is a caller error."""
        with pytest.raises(ValueError):
            bus.publish("t1", "explode", "x")


class TestDeliveryFailure:
    """Test isolation of failing subscribers."""

    async def test_full_queue_drops_only_that_subscriber(self) -> None:
        """A stalled subscriber is removed while others keep receiving."""
        bus = InvalidationEventBus(queue_size=2)
        slow = bus.subscribe("t1")
        fast = bus.subscribe("t1")

        for i in range(2):
            bus.invalidate("t1", f"k{i}")
        await drain(fast)

        assert bus.invalidate("t1", "k2") == 1
        assert slow.state is SubscriberState.ERRORED
        assert bus.get_subscriber(slow.subscriber_id) is None
        assert bus.get_subscriber(fast.subscriber_id) is fast
        assert bus.delivery_failures == 1

        await bus.stop()

    async def test_errored_stream_drains_then_ends(self) -> None:
        """An errored subscriber's stream yields what was queued, then stops."""
        bus = InvalidationEventBus(queue_size=1)
        subscriber = bus.subscribe("t1")
        bus.invalidate("t1", "a")
        bus.invalidate("t1", "b")

        received = [event async for event in subscriber.stream()]
        assert [e.pattern for e in received] == ["a"]

    async def test_overflow_from_other_thread(self) -> None:
        """A burst from a worker thread errors only the stalled subscriber."""
        bus = InvalidationEventBus(queue_size=1)
        stalled = bus.subscribe("t1")
        other = bus.subscribe("t2")

        def burst() -> None:
            for i in range(3):
                bus.invalidate("t1", f"k{i}")

        await asyncio.to_thread(burst)
        for _ in range(3):
            await asyncio.sleep(0)

        assert stalled.state is SubscriberState.ERRORED
        assert bus.get_subscriber(stalled.subscriber_id) is None
        assert bus.delivery_failures >= 1

        assert bus.invalidate("t1", "after") == 0
        assert bus.invalidate("t2", "x") == 1
        assert other.is_active

        received = [event async for event in stalled.stream()]
        assert [e.pattern for e in received] == ["k0"]

    async def test_close_never_fails_on_full_queue(self) -> None:
        """Closing makes room for the end of stream marker."""
        bus = InvalidationEventBus(queue_size=1)
        subscriber = bus.subscribe("t1")
        subscriber._queue.put_nowait(InvalidationEvent.heartbeat())
        subscriber._queue.put_nowait(InvalidationEvent.heartbeat())

        subscriber.close(SubscriberState.ERRORED)

        received = [event async for event in subscriber.stream()]
        assert len(received) == 1


class TestHeartbeat:
    """Test heartbeats."""

    async def test_heartbeat_reaches_every_tenant(self, bus: InvalidationEventBus) -> None:
        """Heartbeats go to all subscribers regardless of tenant or filter."""
        s1 = bus.subscribe("t1")
        s2 = bus.subscribe("t2", event_types=[EventType.UPDATE])

        assert bus.heartbeat() == 2
        for subscriber in (s1, s2):
            (event,) = await drain(subscriber)
            assert event.type is EventType.HEARTBEAT

    async def test_consuming_heartbeats_keeps_subscriber(self) -> None:
        """A client reading only heartbeats survives the reaper."""
        bus = InvalidationEventBus(heartbeat_interval=0.01, reap_interval=0.05, idle_timeout=0.1)
        subscriber = bus.subscribe("t1")
        await bus.start()
        try:
            received = 0
            deadline = time.monotonic() + 0.4
            while time.monotonic() < deadline:
                event = await subscriber.next_event(timeout=0.05)
                if event is not None:
                    received += 1
            assert received > 0
            assert subscriber.state is SubscriberState.ACTIVE
        finally:
            await bus.stop()

    async def test_unread_heartbeats_do_not_keep_subscriber(self) -> None:
        """Queued but unread heartbeats are not client activity."""
        bus = InvalidationEventBus()
        subscriber = bus.subscribe("t1")
        before = subscriber.last_activity
        bus.heartbeat()

        assert subscriber.last_activity == before
        assert bus.reap(now=before + bus.idle_timeout + 1) == 1

    async def test_heartbeat_loop(self) -> None:
        """The background task sends heartbeats on its interval."""
        bus = InvalidationEventBus(heartbeat_interval=0.01, reap_interval=60)
        subscriber = bus.subscribe("t1")
        await bus.start()
        try:
            event = await subscriber.next_event(timeout=1)
        finally:
            await bus.stop()

        assert event is not None
        assert event.type is EventType.HEARTBEAT
        assert subscriber.state is SubscriberState.CLOSED


class TestReaper:
    """Test idle subscriber reaping."""

    async def test_idle_subscriber_reaped(self, bus: InvalidationEventBus) -> None:
        """Subscribers idle past the timeout are closed and removed."""
        subscriber = bus.subscribe("t1")

        assert bus.reap(now=time.monotonic() + bus.idle_timeout + 1) == 1
        assert subscriber.state is SubscriberState.REAPED
        assert len(bus) == 0
        assert bus.stats()["reaped"] == 1

    async def test_active_subscriber_kept(self, bus: InvalidationEventBus) -> None:
        """Recent activity postpones reaping."""
        subscriber = bus.subscribe("t1")
        assert bus.reap() == 0
        assert subscriber.is_active

    async def test_consumed_event_counts_as_activity(self, bus: InvalidationEventBus) -> None:
        """Reading an event resets the idle clock."""
        subscriber = bus.subscribe("t1")
        subscriber.last_activity -= 1000
        bus.invalidate("t1", "x")

        assert await subscriber.next_event(timeout=1) is not None
        assert bus.reap(now=time.monotonic() + 1) == 0

    async def test_reaped_subscriber_gets_nothing(self, bus: InvalidationEventBus) -> None:
        """No events are delivered after reaping."""
        subscriber = bus.subscribe("t1")
        bus.reap(now=time.monotonic() + bus.idle_timeout + 1)

        assert bus.invalidate("t1", "x") == 0
        assert await subscriber.next_event(timeout=0.05) is None

    async def test_stop_closes_everyone(self) -> None:
        """Stopping the bus ends every stream."""
        bus = InvalidationEventBus()
        subscriber = bus.subscribe("t1")
        await bus.start()
        await bus.stop()

        assert subscriber.state is SubscriberState.CLOSED
        assert await asyncio.wait_for(subscriber.next_event(), timeout=1) is None
