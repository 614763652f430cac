"""In-process invalidation event bus.

Fans invalidation events out to the subscribers of one tenant:
- InvalidationEventBus: subscriber registry, publish, heartbeat and reaper
- Subscriber: one connected client with a bounded outbound queue

Publishing never awaits. Each subscriber has its own FIFO queue, so per
subscriber the delivery order is the publish order. A subscriber whose
queue is full (its transport has stalled) fails delivery, is marked
ERRORED and dropped; the remaining subscribers are unaffected.

Delivery is best-effort and single-process: there is no replay, no
acknowledgement and no retry, and a publish on one instance reaches only
the subscribers connected to that instance unless a RedisEventRelay is
attached (see cachewire.events.relay).

Example:
    bus = InvalidationEventBus()
    await bus.start()

    subscriber = bus.subscribe("acme", user_id="u1")
    bus.publish("acme", EventType.INVALIDATE, "dashboard")

    async for event in subscriber.stream():
        ...
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections.abc import AsyncIterator, Callable, Iterable
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from cachewire.errors import SubscriberDeliveryError
from cachewire.events.schemas import EventType, InvalidationEvent
from cachewire.observability.metrics import record_event_published, set_active_subscribers

logger = logging.getLogger(__name__)

DEFAULT_HEARTBEAT_INTERVAL = 30.0
DEFAULT_REAP_INTERVAL = 300.0
DEFAULT_IDLE_TIMEOUT = 600.0
DEFAULT_QUEUE_SIZE = 100

EventListener = Callable[[InvalidationEvent], None]

# Queue marker that ends a subscriber's stream
_CLOSED = object()


class SubscriberState(str, Enum):
    """Lifecycle of a subscriber. CLOSED, REAPED and ERRORED are terminal."""

    CONNECTING = "connecting"
    ACTIVE = "active"
    CLOSED = "closed"
    REAPED = "reaped"
    ERRORED = "errored"


_TERMINAL = (SubscriberState.CLOSED, SubscriberState.REAPED, SubscriberState.ERRORED)


def _running_loop() -> asyncio.AbstractEventLoop | None:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


class Subscriber:
    """A connected client receiving one tenant's events.

    Created by InvalidationEventBus.subscribe, which must run inside the
    event loop that will consume the stream. A reconnecting client gets a
    new Subscriber; a closed one is never reopened.
    """

    def __init__(
        self,
        tenant_id: str,
        user_id: str | None = None,
        event_types: Iterable[EventType] | None = None,
        queue_size: int = DEFAULT_QUEUE_SIZE,
    ):
        self.subscriber_id = str(uuid4())
        self.tenant_id = tenant_id
        self.user_id = user_id
        self.event_types = frozenset(event_types) if event_types else None
        self.connected_at = datetime.now(UTC)
        self.last_activity = time.monotonic()
        self.state = SubscriberState.CONNECTING
        self.delivered = 0

        # Leave room for the close marker on top of the event capacity
        self._capacity = queue_size
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=queue_size + 1)
        self._loop = asyncio.get_running_loop()

    @property
    def is_active(self) -> bool:
        return self.state is SubscriberState.ACTIVE

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def wants(self, event: InvalidationEvent) -> bool:
        """Whether this subscriber should receive the event."""
        if event.type is EventType.HEARTBEAT:
            return True
        if event.tenant_id != self.tenant_id:
            return False
        return self.event_types is None or event.type in self.event_types

    def touch(self) -> None:
        """Record client activity, postponing idle reaping."""
        self.last_activity = time.monotonic()

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        """Event loop that owns the queue and consumes the stream."""
        return self._loop

    def deliver(self, event: InvalidationEvent) -> None:
        """Queue an event for the client.

        Must run on the subscriber's loop; InvalidationEventBus.dispatch
        hands off-loop deliveries to it.

        Raises:
            SubscriberDeliveryError: If the subscriber is no longer active
                or its queue is full.
        """
        if not self.is_active:
            raise SubscriberDeliveryError(self.subscriber_id, f"subscriber is {self.state.value}")
        if self._queue.qsize() >= self._capacity:
            raise SubscriberDeliveryError(self.subscriber_id, "outbound queue is full")
        self._queue.put_nowait(event)
        self.delivered += 1

    def close(self, state: SubscriberState = SubscriberState.CLOSED) -> None:
        """Move to a terminal state and end the stream. Idempotent, never raises.

        Called off the subscriber's loop, the transition is applied on the
        loop after any deliveries already handed to it.
        """
        if _running_loop() is self._loop:
            self._finish(state)
            return
        try:
            self._loop.call_soon_threadsafe(self._finish, state)
        except RuntimeError:
            # Loop already closed; nobody is left to read the stream
            if self.state not in _TERMINAL:
                self.state = state

    def _finish(self, state: SubscriberState) -> None:
        if self.state in _TERMINAL:
            return
        self.state = state
        if self._queue.full():
            # Drop the oldest event so the marker always fits
            self._queue.get_nowait()
        self._queue.put_nowait(_CLOSED)

    async def next_event(self, timeout: float | None = None) -> InvalidationEvent | None:
        """Next queued event, or None on timeout or once the stream ended.

        Taking an event off the queue counts as client activity.
        """
        if self._queue.empty() and not self.is_active:
            return None
        try:
            item = await asyncio.wait_for(self._queue.get(), timeout=timeout)
        except TimeoutError:
            return None
        if item is _CLOSED:
            return None
        self.touch()
        return item  # type: ignore[no-any-return]

    async def stream(self) -> AsyncIterator[InvalidationEvent]:
        """Yield events until the subscriber leaves the ACTIVE state.

        Events queued before the close are still yielded. Every event taken,
        heartbeats included, refreshes ``last_activity``; a client that stops
        reading is reaped once it has been idle for the timeout.
        """
        while True:
            if self._queue.empty() and not self.is_active:
                return
            item = await self._queue.get()
            if item is _CLOSED:
                return
            self.touch()
            yield item

    def to_dict(self) -> dict[str, Any]:
        idle = time.monotonic() - self.last_activity
        return {
            "subscriberId": self.subscriber_id,
            "tenantId": self.tenant_id,
            "userId": self.user_id,
            "state": self.state.value,
            "connectedAt": self.connected_at.isoformat(),
            "idleSeconds": round(idle, 1),
            "eventTypes": sorted(t.value for t in self.event_types) if self.event_types else None,
            "delivered": self.delivered,
            "pending": self.pending,
        }


class InvalidationEventBus:
    """Registry of connected subscribers with tenant-scoped fan-out.

    One instance is created per process and injected where needed. The
    registry lock is held only to insert, remove or snapshot subscribers,
    never across an await, so publish may run from any thread.
    """

    def __init__(
        self,
        heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL,
        reap_interval: float = DEFAULT_REAP_INTERVAL,
        idle_timeout: float = DEFAULT_IDLE_TIMEOUT,
        queue_size: int = DEFAULT_QUEUE_SIZE,
        instance_id: str | None = None,
    ):
        self.heartbeat_interval = heartbeat_interval
        self.reap_interval = reap_interval
        self.idle_timeout = idle_timeout
        self.queue_size = queue_size
        self.instance_id = instance_id

        self._subscribers: dict[str, Subscriber] = {}
        self._lock = threading.Lock()
        self._listeners: list[EventListener] = []
        self._tasks: list[asyncio.Task[None]] = []
        self._running = False

        self.events_published = 0
        self.deliveries = 0
        self.delivery_failures = 0
        self.reaped = 0

    # -------------------------------------------------------------------------
    # Registry
    # -------------------------------------------------------------------------

    def _snapshot(self) -> list[Subscriber]:
        with self._lock:
            return list(self._subscribers.values())

    def _remove(self, subscriber_id: str) -> Subscriber | None:
        with self._lock:
            subscriber = self._subscribers.pop(subscriber_id, None)
            count = len(self._subscribers)
        set_active_subscribers(count)
        return subscriber

    def subscribe(
        self,
        tenant_id: str,
        user_id: str | None = None,
        event_types: Iterable[EventType] | None = None,
    ) -> Subscriber:
        """Register a new ACTIVE subscriber for a tenant.

        Args:
            tenant_id: Tenant whose events the subscriber receives
            user_id: Connected user, informational only
            event_types: Restrict delivery to these event types
        """
        subscriber = Subscriber(tenant_id, user_id, event_types, queue_size=self.queue_size)
        with self._lock:
            self._subscribers[subscriber.subscriber_id] = subscriber
            subscriber.state = SubscriberState.ACTIVE
            count = len(self._subscribers)
        set_active_subscribers(count)
        logger.info(
            "Subscriber %s connected for tenant %s",
            subscriber.subscriber_id,
            tenant_id,
            extra={"user_id": user_id},
        )
        return subscriber

    def unsubscribe(self, subscriber_id: str) -> bool:
        """Remove a subscriber and close its stream.

        Safe to call repeatedly and for unknown ids.

        Returns:
            True if the subscriber was registered.
        """
        subscriber = self._remove(subscriber_id)
        if subscriber is None:
            return False
        subscriber.close(SubscriberState.CLOSED)
        logger.info("Subscriber %s disconnected", subscriber_id)
        return True

    def get_subscriber(self, subscriber_id: str) -> Subscriber | None:
        with self._lock:
            return self._subscribers.get(subscriber_id)

    def add_listener(self, listener: EventListener) -> None:
        """Register a callback for every locally published event."""
        self._listeners.append(listener)

    # -------------------------------------------------------------------------
    # Fan-out
    # -------------------------------------------------------------------------

    def publish(
        self,
        tenant_id: str,
        event_type: EventType | str,
        pattern: str,
        metadata: dict[str, Any] | None = None,
    ) -> int:
        """Build an event and deliver it to the tenant's subscribers.

        Returns:
            Number of subscribers the event was delivered to.
        """
        event = InvalidationEvent(
            type=EventType(event_type),
            pattern=pattern,
            tenant_id=tenant_id,
            metadata=metadata,
            origin=self.instance_id,
        )
        delivered = self.dispatch(event)

        for listener in self._listeners:
            try:
                listener(event)
            except Exception:
                logger.exception("Event listener failed for %s", event.event_id)

        logger.info(
            "Published %s '%s' for tenant %s to %d subscribers",
            event.type.value,
            pattern,
            tenant_id,
            delivered,
        )
        return delivered

    def dispatch(self, event: InvalidationEvent) -> int:
        """Deliver an already-built event to every matching subscriber.

        Used directly for relayed events so they are not relayed again.
        """
        if event.type is not EventType.HEARTBEAT:
            self.events_published += 1
            record_event_published(event.type.value)

        current = _running_loop()
        delivered = 0
        for subscriber in self._snapshot():
            if not subscriber.wants(event):
                continue
            if subscriber.loop is current:
                if self._deliver(subscriber, event):
                    delivered += 1
                continue
            # Off-loop: the capacity check and the put both run on the
            # subscriber's loop; the count covers handed-off events.
            try:
                subscriber.loop.call_soon_threadsafe(self._deliver, subscriber, event)
                delivered += 1
            except RuntimeError:
                error = SubscriberDeliveryError(subscriber.subscriber_id, "event loop closed")
                self._fail(subscriber, error)

        return delivered

    def _deliver(self, subscriber: Subscriber, event: InvalidationEvent) -> bool:
        try:
            subscriber.deliver(event)
        except SubscriberDeliveryError as e:
            self._fail(subscriber, e)
            return False
        self.deliveries += 1
        return True

    def _fail(self, subscriber: Subscriber, error: SubscriberDeliveryError) -> None:
        self.delivery_failures += 1
        logger.warning("%s", error)
        subscriber.close(SubscriberState.ERRORED)
        self._remove(subscriber.subscriber_id)

    def invalidate(self, tenant_id: str, pattern: str, metadata: dict[str, Any] | None = None) -> int:
        """Tell clients that keys matching ``pattern`` are stale."""
        return self.publish(tenant_id, EventType.INVALIDATE, pattern, metadata)

    def invalidate_type(
        self, tenant_id: str, data_type: str, metadata: dict[str, Any] | None = None
    ) -> int:
        """Tell clients that every entry of a data type is stale."""
        return self.publish(tenant_id, EventType.INVALIDATE_TYPE, data_type, metadata)

    def update(self, tenant_id: str, pattern: str, metadata: dict[str, Any] | None = None) -> int:
        return self.publish(tenant_id, EventType.UPDATE, pattern, metadata)

    def delete(self, tenant_id: str, pattern: str, metadata: dict[str, Any] | None = None) -> int:
        return self.publish(tenant_id, EventType.DELETE, pattern, metadata)

    def heartbeat(self) -> int:
        """Send a heartbeat to every active subscriber of every tenant."""
        return self.dispatch(InvalidationEvent.heartbeat())

    def reap(self, now: float | None = None) -> int:
        """Close and remove subscribers idle longer than ``idle_timeout``.

        Args:
            now: Monotonic clock reading to compare against (for tests)

        Returns:
            Number of subscribers reaped.
        """
        now = time.monotonic() if now is None else now
        reaped = 0
        for subscriber in self._snapshot():
            if now - subscriber.last_activity <= self.idle_timeout:
                continue
            subscriber.close(SubscriberState.REAPED)
            self._remove(subscriber.subscriber_id)
            reaped += 1
            logger.info(
                "Reaped idle subscriber %s (tenant %s)",
                subscriber.subscriber_id,
                subscriber.tenant_id,
            )
        self.reaped += reaped
        return reaped

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        """Start the heartbeat and reaper tasks."""
        if self._running:
            return
        self._running = True
        self._tasks = [
            asyncio.create_task(self._heartbeat_loop()),
            asyncio.create_task(self._reap_loop()),
        ]
        logger.info(
            "Invalidation event bus started (heartbeat %ss, reap %ss, idle %ss)",
            self.heartbeat_interval,
            self.reap_interval,
            self.idle_timeout,
        )

    async def stop(self) -> None:
        """Stop background tasks and close every subscriber."""
        self._running = False
        for task in self._tasks:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []

        for subscriber in self._snapshot():
            self.unsubscribe(subscriber.subscriber_id)
        logger.info("Invalidation event bus stopped")

    async def _heartbeat_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.heartbeat_interval)
            sent = self.heartbeat()
            logger.debug("Heartbeat sent to %d subscribers", sent)

    async def _reap_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.reap_interval)
            self.reap()

    # -------------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------------

    def stats(self) -> dict[str, Any]:
        subscribers = self._snapshot()
        by_tenant: dict[str, int] = {}
        for subscriber in subscribers:
            by_tenant[subscriber.tenant_id] = by_tenant.get(subscriber.tenant_id, 0) + 1
        return {
            "totalSubscribers": len(subscribers),
            "subscribersByTenant": by_tenant,
            "eventsPublished": self.events_published,
            "deliveries": self.deliveries,
            "deliveryFailures": self.delivery_failures,
            "reaped": self.reaped,
            "running": self._running,
        }

    def __len__(self) -> int:
        with self._lock:
            return len(self._subscribers)
