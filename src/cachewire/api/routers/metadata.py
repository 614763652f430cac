"""Cache metadata endpoints.

Lets clients check whether their locally cached copy of a key is stale by
comparing its ``lastUpdated``/``version`` with the registry. All routes
are scoped to the request's tenant.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter
from pydantic import BaseModel, ConfigDict, Field

from cachewire.api.deps import EventBusDep, MetadataRegistryDep, TenantDep

router = APIRouter(prefix="/cache", tags=["cache-metadata"])


class MetadataUpdateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    cache_key: str = Field(alias="cacheKey", min_length=1)
    version: str | None = None
    data_size: int | None = Field(default=None, alias="dataSize", ge=0)


class MetadataInvalidateRequest(BaseModel):
    pattern: str = Field(min_length=1)


def _unavailable(key: str) -> dict[str, Any]:
    return {"cacheKey": key, "lastUpdated": None, "version": None, "hitCount": 0}


@router.get("/metadata")
async def list_metadata(tenant_id: TenantDep, registry: MetadataRegistryDep) -> list[dict[str, Any]]:
    """All records for the tenant, most recently updated first."""
    return [record.to_dict() for record in await registry.get_all(tenant_id)]


@router.get("/metadata-stats")
async def get_metadata_stats(tenant_id: TenantDep, registry: MetadataRegistryDep) -> dict[str, Any]:
    """Totals, most read keys and most recently changed keys."""
    stats = await registry.stats(tenant_id)
    return stats.to_dict()


@router.post("/metadata/update")
async def update_metadata(
    body: MetadataUpdateRequest, tenant_id: TenantDep, registry: MetadataRegistryDep
) -> dict[str, Any]:
    """Mark a key as changed now, with an optional version and size."""
    record = await registry.touch(tenant_id, body.cache_key, body.version, body.data_size)
    if record is None:
        return {"success": False, "message": "Metadata store unavailable"}
    return {"success": True, "metadata": record.to_dict()}


@router.post("/metadata/invalidate")
async def invalidate_metadata(
    body: MetadataInvalidateRequest,
    tenant_id: TenantDep,
    registry: MetadataRegistryDep,
    bus: EventBusDep,
) -> dict[str, Any]:
    """Bump every record whose key contains the pattern and notify clients."""
    updated = await registry.invalidate_pattern(tenant_id, body.pattern)
    notified = bus.invalidate(tenant_id, body.pattern, metadata={"updatedRecords": updated})
    return {
        "success": True,
        "message": f"Invalidated {updated} metadata records matching '{body.pattern}'",
        "updatedCount": updated,
        "notifiedSubscribers": notified,
    }


@router.get("/metadata/{key:path}")
async def get_metadata(key: str, tenant_id: TenantDep, registry: MetadataRegistryDep) -> dict[str, Any]:
    """Freshness record for a key.

    The first lookup creates the record with a hit count of 0; later
    lookups count as hits.
    """
    existing = await registry.get(tenant_id, key)
    if existing is None:
        created = await registry.ensure(tenant_id, key)
        return created.to_dict() if created is not None else _unavailable(key)

    await registry.record_hit(tenant_id, key)
    current = await registry.get(tenant_id, key) or existing
    return current.to_dict()
