"""Caching decorators for async service functions.

``cached`` wraps a coroutine function with CacheStore.get_or_set under the
current tenant; ``invalidates`` drops tags or a key pattern after the
wrapped function succeeds and optionally tells subscribers.

The store and bus may be passed directly or as zero-argument callables,
since both are usually created after the decorated module is imported.

Example:
    @cached(lambda: app.state.cache_store, key="dash:stats", ttl=300, tags=["dashboard"])
    async def dashboard_stats() -> dict: ...

    @invalidates(lambda: app.state.cache_store, tags=["dashboard"])
    async def create_appointment(data: dict) -> dict: ...
"""

from __future__ import annotations

import functools
from collections.abc import Awaitable, Callable, Iterable
from typing import Any, TypeVar, Union

from cachewire.cache.store import CacheStore
from cachewire.config import settings
from cachewire.events.bus import InvalidationEventBus
from cachewire.events.schemas import EventType
from cachewire.tenancy.context import get_current_tenant_or_none

T = TypeVar("T")

StoreSource = Union[CacheStore, Callable[[], CacheStore]]
BusSource = Union[InvalidationEventBus, Callable[[], InvalidationEventBus]]


def _resolve(source: Any) -> Any:
    return source() if callable(source) else source


def default_key(fn: Callable[..., Any], args: tuple[Any, ...], kwargs: dict[str, Any]) -> str:
    """Key derived from the function name and its arguments."""
    parts = [fn.__qualname__]
    parts.extend(str(arg) for arg in args)
    parts.extend(f"{name}={value}" for name, value in sorted(kwargs.items()))
    return ":".join(parts)


def cached(
    store: StoreSource,
    key: str | None = None,
    key_fn: Callable[..., str] | None = None,
    ttl: int | None = None,
    tags: Iterable[str] | None = None,
    prefix: str | None = None,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """Cache an async function's result per tenant.

    Args:
        store: CacheStore or callable returning one
        key: Fixed logical key
        key_fn: Builds the key from the call's arguments (overrides ``key``)
        ttl: Seconds to keep the result (store default when None)
        tags: Tags to attach for group invalidation
        prefix: Key namespace (``CACHEWIRE_CACHE_KEY_PREFIX`` when None)
    """
    tag_list = list(tags or [])

    def decorator(fn: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(fn)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            if key_fn is not None:
                cache_key = key_fn(*args, **kwargs)
            elif key is not None:
                cache_key = key
            else:
                cache_key = default_key(fn, args, kwargs)

            cache_store: CacheStore = _resolve(store)
            return await cache_store.get_or_set(
                cache_key,
                lambda: fn(*args, **kwargs),
                tenant_id=get_current_tenant_or_none(),
                ttl=ttl,
                tags=tag_list,
                prefix=prefix if prefix is not None else settings.cache_key_prefix,
            )

        return wrapper

    return decorator


def invalidates(
    store: StoreSource,
    tags: Iterable[str] | None = None,
    pattern: str | None = None,
    bus: BusSource | None = None,
    prefix: str | None = None,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """Invalidate cache entries after the wrapped function succeeds.

    Nothing is invalidated when the function raises. With ``bus`` set,
    an ``invalidate_type`` event is published for each tag and an
    ``invalidate`` event for the pattern.

    Args:
        store: CacheStore or callable returning one
        tags: Tags whose entries are dropped
        pattern: Tenant-relative key glob to drop
        bus: Event bus (or callable) to notify subscribers
        prefix: Key namespace (``CACHEWIRE_CACHE_KEY_PREFIX`` when None)
    """
    tag_list = list(tags or [])

    def decorator(fn: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(fn)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            result = await fn(*args, **kwargs)

            tenant_id = get_current_tenant_or_none()
            key_prefix = prefix if prefix is not None else settings.cache_key_prefix
            cache_store: CacheStore = _resolve(store)
            if tag_list:
                await cache_store.invalidate_by_tags(tag_list, tenant_id=tenant_id, prefix=key_prefix)
            if pattern:
                await cache_store.delete_pattern(pattern, tenant_id=tenant_id, prefix=key_prefix)

            if bus is not None and tenant_id:
                event_bus: InvalidationEventBus = _resolve(bus)
                for tag in tag_list:
                    event_bus.publish(tenant_id, EventType.INVALIDATE_TYPE, tag)
                if pattern:
                    event_bus.publish(tenant_id, EventType.INVALIDATE, pattern)

            return result

        return wrapper

    return decorator
