"""Invalidation events for Cachewire.

In-process fan-out of tenant-scoped invalidation notifications to
connected clients, with an optional Redis relay for multi-instance
deployments.
"""

from cachewire.events.bus import InvalidationEventBus, Subscriber, SubscriberState
from cachewire.events.relay import RedisEventRelay
from cachewire.events.schemas import EventType, InvalidationEvent

__all__ = [
    "EventType",
    "InvalidationEvent",
    "InvalidationEventBus",
    "Subscriber",
    "SubscriberState",
    "RedisEventRelay",
]
