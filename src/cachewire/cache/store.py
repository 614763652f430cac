"""Tenant-scoped cache store on top of Redis.

Implements the cache-aside pattern with:
- TTL-bounded JSON entries stored under tenant-scoped keys
- Tag indices (Redis sets) for invalidating groups of related entries
- Glob pattern deletes via SCAN for administrative invalidation

Every public method is fail-soft: a storage error or timeout is logged,
counted, and turned into the method's degraded result (a miss, False, 0
or an empty list). Caching must never become a user-facing error.

Consistency: tag indices and pattern deletes are not atomic snapshots.
Keys written while a pattern delete is scanning may survive it, and a key
can disappear from the cache before it disappears from its tag index. The
index is a hint reconciled by its own TTL. Pattern operations scan the
whole keyspace and are unsuitable for very large databases.

get_or_set takes no lock: concurrent misses on the same key each invoke
the producer.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, TypeVar, cast

import orjson
from redis.exceptions import RedisError

from cachewire.cache.keys import DELIMITER, CacheKeys
from cachewire.cache.metrics import CacheMetrics
from cachewire.errors import TransientStorageError
from cachewire.observability.metrics import record_cache_operation

if TYPE_CHECKING:
    from redis.asyncio import Redis

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Default TTL (5 minutes)
DEFAULT_TTL = 300
# Tag indices outlive their members so abandoned ones still expire
DEFAULT_TAG_TTL = 86400
DEFAULT_OPERATION_TIMEOUT = 2.0

SCAN_COUNT = 500
DELETE_BATCH = 500

_MISSING = object()


@dataclass(frozen=True)
class CacheEntry:
    """A cached value with its expiry bookkeeping."""

    value: Any
    created_at: float
    ttl: int
    expires_at: float
    tags: list[str] = field(default_factory=list)

    @classmethod
    def create(cls, value: Any, ttl: int, tags: Iterable[str] | None = None) -> "CacheEntry":
        now = time.time()
        return cls(value=value, created_at=now, ttl=ttl, expires_at=now + ttl, tags=list(tags or []))

    def is_expired(self, now: float | None = None) -> bool:
        return (now if now is not None else time.time()) > self.expires_at

    def to_bytes(self) -> bytes:
        """Serialize to JSON bytes."""
        return orjson.dumps(
            {
                "value": self.value,
                "createdAt": self.created_at,
                "ttl": self.ttl,
                "expiresAt": self.expires_at,
                "tags": self.tags,
            }
        )

    @classmethod
    def from_bytes(cls, data: bytes | str) -> "CacheEntry":
        """Deserialize from JSON bytes."""
        parsed = orjson.loads(data)
        return cls(
            value=parsed["value"],
            created_at=parsed["createdAt"],
            ttl=parsed["ttl"],
            expires_at=parsed["expiresAt"],
            tags=parsed.get("tags") or [],
        )


@dataclass(frozen=True)
class KeyPattern:
    """A key family sharing the same first segment."""

    pattern: str
    count: int
    examples: list[str]


def _text(value: bytes | str) -> str:
    return value.decode() if isinstance(value, bytes) else value


class CacheStore:
    """Cache operations for tenant-scoped JSON values."""

    def __init__(
        self,
        client: Redis,
        metrics: CacheMetrics | None = None,
        default_ttl: int = DEFAULT_TTL,
        tag_ttl: int = DEFAULT_TAG_TTL,
        operation_timeout: float = DEFAULT_OPERATION_TIMEOUT,
    ):
        self.client = client
        self.metrics = metrics or CacheMetrics()
        self.default_ttl = default_ttl
        self.tag_ttl = tag_ttl
        self.operation_timeout = operation_timeout

    # -------------------------------------------------------------------------
    # Storage plumbing
    # -------------------------------------------------------------------------

    async def _call(self, operation: str, key: str | None, awaitable: Awaitable[T]) -> T:
        """Await a Redis call with the per-operation timeout.

        Raises:
            TransientStorageError: On any backend error or timeout.
        """
        try:
            return await asyncio.wait_for(awaitable, timeout=self.operation_timeout)
        except (RedisError, OSError, TimeoutError) as e:
            raise TransientStorageError(operation, key, e) from e

    def _storage_error(self, operation: str, error: TransientStorageError) -> None:
        logger.warning("Cache %s error: %s", operation.upper(), error)
        self.metrics.record_error()
        record_cache_operation(operation, "error")

    async def _scan(self, match: str) -> AsyncIterator[list[str]]:
        """Yield batches of keys matching a glob.

        Uses SCAN to avoid blocking on large keyspaces. Keys created after
        the scan started may or may not be included.
        """
        cursor: int | bytes | str = 0
        while True:
            cursor, keys = await self._call(
                "scan", match, self.client.scan(cursor=cast(int, cursor), match=match, count=SCAN_COUNT)
            )
            if keys:
                yield [_text(k) for k in keys]
            if int(cursor) == 0:
                break

    async def _delete_matching(self, match: str) -> int:
        deleted = 0
        async for batch in self._scan(match):
            for i in range(0, len(batch), DELETE_BATCH):
                chunk = batch[i : i + DELETE_BATCH]
                deleted += await self._call("delete", match, self.client.delete(*chunk))
        return deleted

    # -------------------------------------------------------------------------
    # Core operations
    # -------------------------------------------------------------------------

    async def get(
        self,
        key: str,
        tenant_id: str | None = None,
        prefix: str | None = None,
        default: Any = None,
    ) -> Any:
        """Get a cached value.

        Returns ``default`` when the key is absent, expired, undecodable or
        the store is unreachable. An entry past its ``expiresAt`` is deleted
        eagerly even if Redis has not expired it yet.
        """
        cache_key = CacheKeys.build(key, tenant_id, prefix)
        start = time.perf_counter()

        try:
            raw = await self._call("get", cache_key, self.client.get(cache_key))
        except TransientStorageError as e:
            self._storage_error("get", e)
            self.metrics.record_miss()
            return default

        duration = time.perf_counter() - start

        if raw is None:
            logger.debug("Cache MISS: %s", cache_key)
            self.metrics.record_miss()
            record_cache_operation("get", "miss", duration)
            return default

        try:
            entry = CacheEntry.from_bytes(raw)
        except (orjson.JSONDecodeError, KeyError, TypeError) as e:
            logger.warning("Discarding undecodable cache entry %s: %s", cache_key, e)
            await self._discard(cache_key)
            self.metrics.record_miss()
            record_cache_operation("get", "miss", duration)
            return default

        if entry.is_expired():
            logger.debug("Cache EXPIRED: %s", cache_key)
            await self._discard(cache_key)
            self.metrics.record_miss()
            record_cache_operation("get", "miss", duration)
            return default

        logger.debug("Cache HIT: %s (%.2fms)", cache_key, duration * 1000)
        self.metrics.record_hit(duration * 1000)
        record_cache_operation("get", "hit", duration)
        return entry.value

    async def _discard(self, cache_key: str) -> None:
        try:
            await self._call("delete", cache_key, self.client.delete(cache_key))
        except TransientStorageError as e:
            self._storage_error("delete", e)

    async def set(
        self,
        key: str,
        value: Any,
        tenant_id: str | None = None,
        ttl: int | None = None,
        tags: Iterable[str] | None = None,
        prefix: str | None = None,
    ) -> bool:
        """Store a value, overwriting any previous entry (last writer wins).

        When tags are given the physical key is added to each tag's index
        and the index TTL is refreshed.

        Returns:
            True if the write reached the store, False otherwise.
        """
        ttl = self.default_ttl if ttl is None else ttl
        if ttl <= 0:
            raise ValueError(f"TTL must be positive, got {ttl}")

        cache_key = CacheKeys.build(key, tenant_id, prefix)
        tag_list = list(dict.fromkeys(tags or []))
        entry = CacheEntry.create(value, ttl, tag_list)

        try:
            payload = entry.to_bytes()
        except TypeError as e:
            logger.error("Cache SET skipped for %s: value is not JSON serializable (%s)", cache_key, e)
            self.metrics.record_error()
            record_cache_operation("set", "error")
            return False

        start = time.perf_counter()
        try:
            async with self.client.pipeline(transaction=False) as pipe:
                pipe.set(cache_key, payload, ex=ttl)
                for tag in tag_list:
                    index_key = CacheKeys.tag_index(tag, tenant_id, prefix)
                    pipe.sadd(index_key, cache_key)
                    pipe.expire(index_key, self.tag_ttl)
                await self._call("set", cache_key, pipe.execute())
        except TransientStorageError as e:
            self._storage_error("set", e)
            return False

        duration = time.perf_counter() - start
        logger.debug("Cache SET: %s (TTL: %ss, tags: %s)", cache_key, ttl, tag_list)
        self.metrics.record_set(duration * 1000)
        record_cache_operation("set", "ok", duration)
        return True

    async def delete(self, key: str, tenant_id: str | None = None, prefix: str | None = None) -> bool:
        """Remove a key. Deleting an absent key is not an error.

        Returns:
            False only when the store could not be reached.
        """
        cache_key = CacheKeys.build(key, tenant_id, prefix)
        try:
            await self._call("delete", cache_key, self.client.delete(cache_key))
        except TransientStorageError as e:
            self._storage_error("delete", e)
            return False

        logger.debug("Cache DELETE: %s", cache_key)
        self.metrics.record_delete()
        record_cache_operation("delete", "ok")
        return True

    async def exists(self, key: str, tenant_id: str | None = None, prefix: str | None = None) -> bool:
        """Check if a key exists (False when the store is unreachable)."""
        cache_key = CacheKeys.build(key, tenant_id, prefix)
        try:
            return bool(await self._call("exists", cache_key, self.client.exists(cache_key)))
        except TransientStorageError as e:
            self._storage_error("exists", e)
            return False

    async def ttl_remaining(
        self, key: str, tenant_id: str | None = None, prefix: str | None = None
    ) -> int | None:
        """Seconds until a key expires.

        Returns:
            Redis TTL semantics (-2 absent, -1 no expiry), or None when
            the store is unreachable and the TTL is unknown.
        """
        cache_key = CacheKeys.build(key, tenant_id, prefix)
        try:
            return int(await self._call("ttl", cache_key, self.client.ttl(cache_key)))
        except TransientStorageError as e:
            self._storage_error("ttl", e)
            return None

    async def set_ttl(
        self, key: str, ttl: int, tenant_id: str | None = None, prefix: str | None = None
    ) -> bool:
        """Change the expiry of an existing key.

        The stored entry's own ``expiresAt`` is rewritten too, otherwise a
        longer TTL would still be cut short by the eager expiry check in get.

        Returns:
            True if the key existed and its TTL was updated.
        """
        if ttl <= 0:
            raise ValueError(f"TTL must be positive, got {ttl}")

        cache_key = CacheKeys.build(key, tenant_id, prefix)
        try:
            raw = await self._call("set_ttl", cache_key, self.client.get(cache_key))
            if raw is not None:
                try:
                    entry = CacheEntry.from_bytes(raw)
                except (orjson.JSONDecodeError, KeyError, TypeError):
                    entry = None
                if entry is not None:
                    refreshed = CacheEntry(
                        value=entry.value,
                        created_at=entry.created_at,
                        ttl=ttl,
                        expires_at=time.time() + ttl,
                        tags=entry.tags,
                    )
                    return bool(
                        await self._call(
                            "set_ttl",
                            cache_key,
                            self.client.set(cache_key, refreshed.to_bytes(), ex=ttl, xx=True),
                        )
                    )
            return bool(await self._call("set_ttl", cache_key, self.client.expire(cache_key, ttl)))
        except TransientStorageError as e:
            self._storage_error("set_ttl", e)
            return False

    async def get_or_set(
        self,
        key: str,
        producer: Callable[[], Awaitable[T]] | Callable[[], T],
        tenant_id: str | None = None,
        ttl: int | None = None,
        tags: Iterable[str] | None = None,
        prefix: str | None = None,
    ) -> T:
        """Return the cached value or produce, store and return it.

        The producer runs once per miss in this call. There is no locking:
        concurrent misses on the same key each run the producer (cache
        stampede). Errors raised by the producer propagate to the caller.
        """
        cached = await self.get(key, tenant_id, prefix, default=_MISSING)
        if cached is not _MISSING:
            return cast(T, cached)

        value = producer()
        if inspect.isawaitable(value):
            value = await value

        await self.set(key, value, tenant_id=tenant_id, ttl=ttl, tags=tags, prefix=prefix)
        return cast(T, value)

    # -------------------------------------------------------------------------
    # Bulk invalidation
    # -------------------------------------------------------------------------

    async def delete_pattern(
        self, pattern: str, tenant_id: str | None = None, prefix: str | None = None
    ) -> int:
        """Delete every key matching a glob.

        With ``tenant_id``/``prefix`` the glob is applied inside that
        namespace; without them it matches physical keys directly.

        Returns the number of keys deleted (0 when the store is unreachable).
        """
        match = CacheKeys.tenant_pattern(pattern, tenant_id, prefix)
        try:
            deleted = await self._delete_matching(match)
        except TransientStorageError as e:
            self._storage_error("delete_pattern", e)
            return 0

        logger.debug("Cache DELETE_PATTERN: %d keys deleted for pattern '%s'", deleted, match)
        record_cache_operation("delete_pattern", "ok")
        return deleted

    async def invalidate_by_tags(
        self, tags: Iterable[str], tenant_id: str | None = None, prefix: str | None = None
    ) -> int:
        """Delete every key indexed under any of the tags, then the indices.

        Already-absent keys are tolerated; invalidating an already
        invalidated tag is a no-op.

        Returns:
            Number of cache keys actually removed.
        """
        removed = 0
        for tag in dict.fromkeys(tags):
            index_key = CacheKeys.tag_index(tag, tenant_id, prefix)
            try:
                members = await self._call("invalidate_tag", index_key, self.client.smembers(index_key))
                keys = [_text(k) for k in members]
                tag_removed = 0
                for i in range(0, len(keys), DELETE_BATCH):
                    tag_removed += await self._call(
                        "invalidate_tag", index_key, self.client.delete(*keys[i : i + DELETE_BATCH])
                    )
                await self._call("invalidate_tag", index_key, self.client.delete(index_key))
            except TransientStorageError as e:
                self._storage_error("invalidate_tag", e)
                continue

            removed += tag_removed
            logger.debug("Invalidated %d keys for tag: %s", tag_removed, tag)

        record_cache_operation("invalidate_tag", "ok")
        return removed

    async def clear(self) -> int:
        """Delete every key in the database, regardless of tenant.

        Administrative only; ordinary flows use tags or patterns.
        """
        try:
            cleared = await self._delete_matching("*")
        except TransientStorageError as e:
            self._storage_error("clear", e)
            return 0

        self.metrics.record_clear()
        record_cache_operation("clear", "ok")
        logger.info("Cache CLEAR: %d keys cleared", cleared)
        return cleared

    # -------------------------------------------------------------------------
    # Counters and batch writes
    # -------------------------------------------------------------------------

    async def increment(self, key: str, amount: int = 1, tenant_id: str | None = None) -> int:
        """Atomically increment an integer counter key (0 on error)."""
        cache_key = CacheKeys.build(key, tenant_id)
        try:
            return int(await self._call("increment", cache_key, self.client.incrby(cache_key, amount)))
        except TransientStorageError as e:
            self._storage_error("increment", e)
            return 0

    async def set_many(
        self, values: dict[str, Any], tenant_id: str | None = None, ttl: int | None = None
    ) -> bool:
        """Store several values in one round trip."""
        ttl = self.default_ttl if ttl is None else ttl
        if ttl <= 0:
            raise ValueError(f"TTL must be positive, got {ttl}")

        try:
            payloads = {
                CacheKeys.build(key, tenant_id): CacheEntry.create(value, ttl).to_bytes()
                for key, value in values.items()
            }
        except TypeError as e:
            logger.error("Cache MSET skipped: value is not JSON serializable (%s)", e)
            self.metrics.record_error()
            return False

        start = time.perf_counter()
        try:
            async with self.client.pipeline(transaction=False) as pipe:
                for cache_key, payload in payloads.items():
                    pipe.set(cache_key, payload, ex=ttl)
                await self._call("set_many", None, pipe.execute())
        except TransientStorageError as e:
            self._storage_error("set_many", e)
            return False

        duration_ms = (time.perf_counter() - start) * 1000
        for _ in payloads:
            self.metrics.record_set(duration_ms / max(len(payloads), 1))
        logger.debug("Cache MSET: %d keys", len(payloads))
        return True

    # -------------------------------------------------------------------------
    # Administrative introspection
    # -------------------------------------------------------------------------

    async def list_keys(self, pattern: str = "*", limit: int = 50, offset: int = 0) -> list[str]:
        """Page through physical keys matching a glob.

        The page is cut from a sorted snapshot taken at call time; if the
        keyspace changes between calls, pages may overlap or skip keys.
        """
        try:
            keys: list[str] = []
            async for batch in self._scan(pattern):
                keys.extend(batch)
        except TransientStorageError as e:
            self._storage_error("list_keys", e)
            return []
        keys.sort()
        return keys[offset : offset + limit]

    async def count_keys(self, pattern: str = "*") -> int:
        """Count physical keys matching a glob (0 on error)."""
        try:
            if pattern == "*":
                return int(await self._call("dbsize", None, self.client.dbsize()))
            total = 0
            async for batch in self._scan(pattern):
                total += len(batch)
            return total
        except TransientStorageError as e:
            self._storage_error("count_keys", e)
            return 0

    async def key_size(self, physical_key: str) -> int | None:
        """Approximate size of a key: bytes for strings, members for sets."""
        try:
            key_type = _text(await self._call("type", physical_key, self.client.type(physical_key)))
            if key_type == "string":
                return int(await self._call("strlen", physical_key, self.client.strlen(physical_key)))
            if key_type == "set":
                return int(await self._call("scard", physical_key, self.client.scard(physical_key)))
            return None
        except TransientStorageError as e:
            self._storage_error("key_size", e)
            return None

    async def common_patterns(self, examples: int = 3) -> list[KeyPattern]:
        """Group keys by their first segment, with a few examples each."""
        groups: dict[str, KeyPattern] = {}
        try:
            async for batch in self._scan("*"):
                for key in batch:
                    head, sep, _ = key.partition(DELIMITER)
                    if not sep:
                        continue
                    pattern = f"{head}{DELIMITER}*"
                    current = groups.get(pattern) or KeyPattern(pattern, 0, [])
                    sample = current.examples
                    if len(sample) < examples:
                        sample = [*sample, key]
                    groups[pattern] = KeyPattern(pattern, current.count + 1, sample)
        except TransientStorageError as e:
            self._storage_error("common_patterns", e)
            return []
        return sorted(groups.values(), key=lambda p: p.count, reverse=True)

    async def ping(self) -> bool:
        """Check Redis connectivity."""
        try:
            return bool(await self._call("ping", None, cast(Awaitable[bool], self.client.ping())))
        except TransientStorageError as e:
            logger.warning("Cache PING failed: %s", e)
            return False

    async def info(self, section: str = "memory") -> dict[str, Any]:
        """Redis INFO section ({} when unreachable)."""
        try:
            return dict(await self._call("info", None, self.client.info(section)))
        except TransientStorageError as e:
            logger.warning("Cache INFO failed: %s", e)
            return {}
