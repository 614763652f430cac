"""FastAPI application factory for Cachewire.

Creates the application with:
- Cache administration, metadata and event stream routers
- Lifecycle management for Redis, the metadata database and the event bus
- Tenant resolution, request ID and Prometheus metrics middleware
- Uniform JSON error responses
- ORJSON for fast JSON serialization
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, cast

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse
from starlette.types import ExceptionHandler

from cachewire.api.errors import (
    generic_exception_handler,
    not_found_handler,
    request_validation_handler,
    validation_error_handler,
)
from cachewire.api.middleware import RequestIdMiddleware
from cachewire.api.routers import cache, events, health, metadata
from cachewire.api.routers import metrics as metrics_router
from cachewire.cache.metrics import CacheMetrics
from cachewire.cache.redis import close_redis, create_redis
from cachewire.cache.store import CacheStore
from cachewire.config import settings
from cachewire.errors import NotFoundError, ValidationError
from cachewire.events.bus import InvalidationEventBus
from cachewire.events.relay import RedisEventRelay
from cachewire.observability import configure_logging
from cachewire.observability.metrics import MetricsMiddleware, get_metrics
from cachewire.persistence.db import close_db, get_session_factory, init_db
from cachewire.persistence.metadata import MetadataRegistry
from cachewire.tenancy.middleware import TenantMiddleware

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application lifecycle.

    Services injected through create_app are used as given and left open
    on shutdown; everything else is created here and closed again.

    On startup:
    - Configure structured logging and Prometheus metrics
    - Connect Redis and build the CacheStore
    - Create the metadata tables and the MetadataRegistry
    - Start the event bus heartbeat and reaper (and the relay if enabled)

    On shutdown:
    - Stop the relay and the event bus, closing every subscriber
    - Close Redis and database connections
    """
    configure_logging(
        json_format=settings.env != "dev",
        level=settings.log_level,
    )
    get_metrics()

    logger.info("Starting Cachewire (%s, instance %s)", settings.env, settings.instance_id)

    state = app.state
    redis_client = None
    owns_db = False

    if state.cache_store is None:
        redis_client = create_redis()
        state.cache_store = CacheStore(
            redis_client,
            metrics=CacheMetrics(window=settings.metrics_latency_window),
            default_ttl=settings.cache_default_ttl,
            tag_ttl=settings.cache_tag_ttl,
            operation_timeout=settings.cache_operation_timeout,
        )

    if state.metadata_registry is None:
        await init_db()
        owns_db = True
        state.metadata_registry = MetadataRegistry(get_session_factory())

    if state.event_bus is None:
        state.event_bus = InvalidationEventBus(
            heartbeat_interval=settings.events_heartbeat_interval,
            reap_interval=settings.events_reap_interval,
            idle_timeout=settings.events_idle_timeout,
            queue_size=settings.events_queue_size,
            instance_id=settings.instance_id,
        )
    await state.event_bus.start()

    relay: RedisEventRelay | None = None
    if settings.event_relay_enabled:
        relay = RedisEventRelay(
            state.event_bus,
            state.cache_store.client,
            instance_id=settings.instance_id,
            channel=settings.event_relay_channel,
        )
        await relay.start()
    state.event_relay = relay

    logger.info("Cachewire startup complete")

    yield

    logger.info("Shutting down Cachewire")
    if relay is not None:
        await relay.stop()
    await state.event_bus.stop()
    if redis_client is not None:
        await close_redis(redis_client)
    if owns_db:
        await close_db()
    logger.info("Cachewire shutdown complete")


def create_app(
    cache_store: CacheStore | None = None,
    metadata_registry: MetadataRegistry | None = None,
    event_bus: InvalidationEventBus | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        cache_store: Use this store instead of connecting to REDIS_URL
        metadata_registry: Use this registry instead of DATABASE_URL
        event_bus: Use this bus instead of building one from settings
    """
    app = FastAPI(
        title="Cachewire",
        description="Tenant-scoped cache with invalidation event streaming",
        version="0.1.0",
        default_response_class=ORJSONResponse,
        lifespan=lifespan,
        docs_url="/docs",
        openapi_url="/openapi.json",
    )

    app.state.cache_store = cache_store
    app.state.metadata_registry = metadata_registry
    app.state.event_bus = event_bus
    app.state.event_relay = None

    # TenantMiddleware is innermost so the tenant is set for handlers
    app.add_middleware(
        TenantMiddleware,
        require_tenant=settings.require_tenant,
        default_tenant=settings.default_tenant,
    )
    if settings.enable_metrics:
        app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIdMiddleware)

    app.add_exception_handler(NotFoundError, cast(ExceptionHandler, not_found_handler))
    app.add_exception_handler(ValidationError, cast(ExceptionHandler, validation_error_handler))
    app.add_exception_handler(
        RequestValidationError, cast(ExceptionHandler, request_validation_handler)
    )
    app.add_exception_handler(Exception, cast(ExceptionHandler, generic_exception_handler))

    app.include_router(health.router)
    if settings.enable_metrics:
        app.include_router(metrics_router.router)

    app.include_router(cache.router)
    app.include_router(metadata.router)
    app.include_router(events.router)

    return app
