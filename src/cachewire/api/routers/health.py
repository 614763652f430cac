"""Health check endpoints for Cachewire.

Provides Kubernetes-compatible liveness and readiness probes:
- /health/live  - Liveness probe (always returns OK if process is running)
- /health/ready - Readiness probe (checks metadata store and cache connectivity)

The cache is never a source of truth, so an unreachable Redis only
degrades readiness; an unreachable metadata store makes the instance
unready.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from cachewire.api.deps import CacheStoreDep, MetadataRegistryDep

router = APIRouter(tags=["health"])

CHECK_TIMEOUT = 5.0


class HealthStatus(str, Enum):
    """Health check status."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass
class ComponentHealth:
    """Health status of a single component."""

    name: str
    status: HealthStatus
    latency_ms: float
    message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON response."""
        result: dict[str, Any] = {
            "name": self.name,
            "status": self.status.value,
            "latency_ms": round(self.latency_ms, 2),
        }
        if self.message:
            result["message"] = self.message
        return result


async def check_component(
    name: str, probe: Callable[[], Awaitable[bool]], failure: HealthStatus
) -> ComponentHealth:
    """Run one connectivity probe with a timeout."""
    start = time.monotonic()
    try:
        healthy = await asyncio.wait_for(probe(), timeout=CHECK_TIMEOUT)
        message = None if healthy else f"{name} check failed"
    except TimeoutError:
        healthy = False
        message = f"{name} check timed out"
    latency = (time.monotonic() - start) * 1000
    return ComponentHealth(
        name=name,
        status=HealthStatus.HEALTHY if healthy else failure,
        latency_ms=latency,
        message=message,
    )


@router.get("/health/live")
async def live() -> dict[str, str]:
    """Liveness probe.

    Returns OK if the process is running.
    """
    return {"status": "ok"}


@router.get("/health/ready")
async def ready(store: CacheStoreDep, registry: MetadataRegistryDep) -> JSONResponse:
    """Readiness probe.

    Returns 503 only when the metadata store is unreachable.
    """
    components = await asyncio.gather(
        check_component("database", registry.ping, HealthStatus.UNHEALTHY),
        check_component("redis", store.ping, HealthStatus.DEGRADED),
    )

    if all(c.status == HealthStatus.HEALTHY for c in components):
        overall_status = HealthStatus.HEALTHY
    elif any(c.status == HealthStatus.UNHEALTHY for c in components):
        overall_status = HealthStatus.UNHEALTHY
    else:
        overall_status = HealthStatus.DEGRADED

    result = {
        "status": overall_status.value,
        "components": [c.to_dict() for c in components],
    }
    status_code = 503 if overall_status == HealthStatus.UNHEALTHY else 200
    return JSONResponse(content=result, status_code=status_code)
