"""Redis client construction for Cachewire.

Uses the redis-py asyncio client with its built-in connection pool. The
client is created once in the application lifespan and handed to the
CacheStore and the event relay; nothing here is a module-level singleton.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import redis.asyncio as redis

from cachewire.config import settings

if TYPE_CHECKING:
    from redis.asyncio import Redis


def create_redis(url: str | None = None, timeout: float | None = None) -> Redis:
    """Create a Redis client.

    Socket timeouts mirror the per-operation timeout so that a stalled
    connection surfaces as an error instead of hanging a request.
    """
    op_timeout = timeout if timeout is not None else settings.cache_operation_timeout
    return redis.from_url(  # type: ignore[no-untyped-call]
        url or settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        socket_timeout=op_timeout,
        socket_connect_timeout=op_timeout,
        health_check_interval=30,
    )


async def close_redis(client: Redis | None) -> None:
    """Close Redis connections."""
    if client is not None:
        await client.aclose()
