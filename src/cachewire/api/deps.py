"""Shared FastAPI dependencies for Cachewire routers.

Services are created once in the application lifespan and stored on
``app.state``; these dependencies hand them to route handlers.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Header, Request

from cachewire.cache.store import CacheStore
from cachewire.errors import ValidationError
from cachewire.events.bus import InvalidationEventBus
from cachewire.persistence.metadata import MetadataRegistry


def get_cache_store(request: Request) -> CacheStore:
    return request.app.state.cache_store  # type: ignore[no-any-return]


def get_metadata_registry(request: Request) -> MetadataRegistry:
    return request.app.state.metadata_registry  # type: ignore[no-any-return]


def get_event_bus(request: Request) -> InvalidationEventBus:
    return request.app.state.event_bus  # type: ignore[no-any-return]


def get_tenant_id(request: Request) -> str:
    """Tenant resolved by TenantMiddleware for this request.

    Raises:
        ValidationError: If the request carries no tenant.
    """
    tenant_id = getattr(request.state, "tenant_id", None)
    if not tenant_id:
        raise ValidationError("Tenant ID required (X-Tenant-ID header)")
    return str(tenant_id)


def get_user_id(x_user_id: Annotated[str | None, Header()] = None) -> str | None:
    return x_user_id or None


CacheStoreDep = Annotated[CacheStore, Depends(get_cache_store)]
MetadataRegistryDep = Annotated[MetadataRegistry, Depends(get_metadata_registry)]
EventBusDep = Annotated[InvalidationEventBus, Depends(get_event_bus)]
TenantDep = Annotated[str, Depends(get_tenant_id)]
UserDep = Annotated[str | None, Depends(get_user_id)]
