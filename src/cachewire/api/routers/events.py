"""Server-Sent Events stream of cache invalidations.

Each connected client gets its own Subscriber on the event bus. The
tenant is taken from the request (X-Tenant-ID via TenantMiddleware) when
the connection opens; clients never choose it on the stream itself.

Message format, one per event:

    data: {"type": "invalidate", "pattern": "dashboard", "tenantId": "t1", "timestamp": "..."}

    data: {"type": "heartbeat", "timestamp": "..."}
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from typing import Any

from fastapi import APIRouter
from fastapi.responses import StreamingResponse

from cachewire.api.deps import EventBusDep, TenantDep, UserDep
from cachewire.errors import NotFoundError, ValidationError
from cachewire.events.bus import InvalidationEventBus, Subscriber
from cachewire.events.schemas import EventType

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cache-events", tags=["cache-events"])

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


async def sse_events(bus: InvalidationEventBus, subscriber: Subscriber) -> AsyncGenerator[str, None]:
    """Render a subscriber's events as SSE frames until it is closed.

    The subscriber is unregistered when the client goes away.
    """
    try:
        async for event in subscriber.stream():
            yield event.to_sse()
    finally:
        bus.unsubscribe(subscriber.subscriber_id)


def _stream(bus: InvalidationEventBus, subscriber: Subscriber) -> StreamingResponse:
    return StreamingResponse(
        sse_events(bus, subscriber),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.get("/stream")
async def stream_cache_events(tenant_id: TenantDep, user_id: UserDep, bus: EventBusDep) -> StreamingResponse:
    """Stream every invalidation for the caller's tenant, plus heartbeats."""
    subscriber = bus.subscribe(tenant_id, user_id=user_id)
    return _stream(bus, subscriber)


@router.get("/updates/{event_type}")
async def stream_cache_updates(
    event_type: str, tenant_id: TenantDep, user_id: UserDep, bus: EventBusDep
) -> StreamingResponse:
    """Stream one event type for the caller's tenant, plus heartbeats."""
    try:
        wanted = EventType(event_type)
    except ValueError:
        raise ValidationError(f"Unknown event type '{event_type}'") from None
    if wanted is EventType.HEARTBEAT:
        raise ValidationError("Heartbeats are included in every stream")

    subscriber = bus.subscribe(tenant_id, user_id=user_id, event_types=[wanted])
    return _stream(bus, subscriber)


@router.get("/stats")
async def get_stream_stats(bus: EventBusDep) -> dict[str, Any]:
    """Connected subscribers and delivery counters."""
    return bus.stats()


@router.get("/clients/{subscriber_id}")
async def get_client_info(subscriber_id: str, bus: EventBusDep) -> dict[str, Any]:
    """State of one connected subscriber."""
    subscriber = bus.get_subscriber(subscriber_id)
    if subscriber is None:
        raise NotFoundError("Subscriber", subscriber_id)
    return subscriber.to_dict()
