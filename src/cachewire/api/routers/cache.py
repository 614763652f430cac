"""Cache administration endpoints.

Operator surface over the Redis keyspace:
- Hit/miss statistics from the in-process collector
- Key browsing with TTL and size
- Single-key, pattern and full invalidation
- TTL changes and a connectivity report

Keys on this surface are physical keys (``tenant:acme:dash:stats``), not
tenant-relative ones. Storage failures degrade to empty or false results.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Query
from pydantic import BaseModel, Field

from cachewire.api.deps import CacheStoreDep
from cachewire.cache.keys import CacheKeys
from cachewire.cache.store import CacheStore
from cachewire.errors import NotFoundError, ValidationError

router = APIRouter(prefix="/cache", tags=["cache"])

_MAX_PATTERN_LENGTH = 256


class InvalidateRequest(BaseModel):
    """Either a glob pattern or an explicit list of keys."""

    pattern: str | None = None
    keys: list[str] | None = None


class TtlRequest(BaseModel):
    ttl: int = Field(gt=0, description="New time-to-live in seconds")


def _validate_pattern(pattern: str) -> str:
    cleaned = pattern.strip()
    if not cleaned:
        raise ValidationError("Pattern must not be empty")
    if len(cleaned) > _MAX_PATTERN_LENGTH:
        raise ValidationError("Pattern is too long")
    return cleaned


async def _key_info(store: CacheStore, key: str) -> dict[str, Any]:
    parsed = CacheKeys.parse(key)
    return {
        "key": key,
        "tenantId": parsed.tenant_id if parsed else None,
        "tagIndex": parsed.is_tag_index if parsed else False,
        "ttl": await store.ttl_remaining(key),
        "size": await store.key_size(key),
    }


@router.get("/stats")
async def get_cache_stats(store: CacheStoreDep) -> dict[str, Any]:
    """Hit, miss, set and error counters with rolling latency averages."""
    return store.metrics.snapshot().to_dict()


@router.get("/keys")
async def list_cache_keys(
    store: CacheStoreDep,
    pattern: str = Query(default="*", description="Key glob to match"),
    limit: int = Query(default=50, ge=1, le=1000, description="Maximum keys to return"),
    offset: int = Query(default=0, ge=0),
) -> dict[str, Any]:
    """List keys matching a glob with their TTL and size.

    Pages are cut from a snapshot taken per request; they are not stable
    while the keyspace changes.
    """
    pattern = _validate_pattern(pattern)
    keys = await store.list_keys(pattern, limit=limit, offset=offset)
    total = await store.count_keys(pattern)
    return {
        "keys": [await _key_info(store, key) for key in keys],
        "total": total,
    }


@router.get("/health")
async def get_cache_health(store: CacheStoreDep) -> dict[str, Any]:
    """Connectivity, memory usage and key count. Never raises."""
    connected = await store.ping()
    memory = "unknown"
    keys = 0
    if connected:
        info = await store.info("memory")
        memory = str(info.get("used_memory_human", "unknown"))
        keys = await store.count_keys()
    return {
        "status": "healthy" if connected else "unhealthy",
        "connected": connected,
        "approxMemory": memory,
        "keyCount": keys,
        # Aliases
        "memory": memory,
        "keys": keys,
    }


@router.get("/patterns")
async def get_common_patterns(store: CacheStoreDep) -> list[dict[str, Any]]:
    """Key families grouped by their first segment, largest first."""
    patterns = await store.common_patterns()
    return [{"pattern": p.pattern, "count": p.count, "examples": p.examples} for p in patterns]


@router.post("/invalidate")
async def invalidate_cache(body: InvalidateRequest, store: CacheStoreDep) -> dict[str, Any]:
    """Delete explicit keys, or every key matching a pattern."""
    if body.keys:
        for key in body.keys:
            await store.delete(key)
        count = len(body.keys)
        return {
            "success": True,
            "message": f"Invalidated {count} specific keys",
            "invalidatedCount": count,
        }

    if body.pattern:
        pattern = _validate_pattern(body.pattern)
        count = await store.delete_pattern(pattern)
        return {
            "success": True,
            "message": f"Invalidated {count} keys matching pattern '{pattern}'",
            "invalidatedCount": count,
        }

    raise ValidationError("Either 'pattern' or 'keys' must be provided")


@router.delete("/clear")
async def clear_cache(store: CacheStoreDep) -> dict[str, Any]:
    """Delete every key in the cache database, across all tenants."""
    cleared = await store.clear()
    return {
        "success": True,
        "message": f"Cleared all cache ({cleared} keys)",
        "clearedCount": cleared,
    }


@router.post("/keys/{key:path}/ttl")
async def set_key_ttl(key: str, body: TtlRequest, store: CacheStoreDep) -> dict[str, Any]:
    """Change the expiry of an existing key."""
    success = await store.set_ttl(key, body.ttl)
    return {
        "success": success,
        "message": (
            f"TTL for key '{key}' set to {body.ttl} seconds"
            if success
            else f"Failed to set TTL for key '{key}'"
        ),
    }


@router.get("/keys/{key:path}")
async def get_key_info(key: str, store: CacheStoreDep) -> dict[str, Any]:
    """TTL and size of one key."""
    info = await _key_info(store, key)
    if info["ttl"] == -2:
        raise NotFoundError("Cache key", key)
    return info


@router.delete("/keys/{key:path}")
async def delete_key(key: str, store: CacheStoreDep) -> dict[str, Any]:
    """Delete one key. Deleting an absent key still succeeds."""
    success = await store.delete(key)
    return {
        "success": success,
        "message": (
            f"Key '{key}' invalidated successfully" if success else f"Failed to delete key '{key}'"
        ),
    }
