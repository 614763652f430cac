"""Prometheus metrics for Cachewire.

Provides metrics collection and exposure:
- HTTP request metrics (latency, count)
- Cache metrics (operations by result, latency)
- Invalidation event metrics (published events, active subscribers)

Usage:
    from cachewire.observability.metrics import get_metrics

    metrics = get_metrics()
    metrics.cache_operations_total.labels(operation="get", result="hit").inc()
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from cachewire.config import settings

if TYPE_CHECKING:
    from starlette.types import ASGIApp

logger = logging.getLogger(__name__)


@dataclass
class MetricsRegistry:
    """Registry for Prometheus metrics."""

    # HTTP metrics
    http_requests_total: Any = None
    http_request_duration_seconds: Any = None

    # Cache metrics
    cache_operations_total: Any = None
    cache_operation_duration_seconds: Any = None

    # Event metrics
    events_published_total: Any = None
    subscribers_active: Any = None

    # Internal state
    _initialized: bool = field(default=False, repr=False)
    _registry: CollectorRegistry | None = field(default=None, repr=False)

    def initialize(self) -> None:
        """Initialize Prometheus metrics."""
        if self._initialized:
            return

        if not settings.enable_metrics:
            logger.info("Metrics are disabled")
            self._initialized = True
            return

        self._registry = CollectorRegistry()

        self.http_requests_total = Counter(
            "cachewire_http_requests_total",
            "Total HTTP requests",
            ["method", "path", "status"],
            registry=self._registry,
        )

        self.http_request_duration_seconds = Histogram(
            "cachewire_http_request_duration_seconds",
            "HTTP request latency in seconds",
            ["method", "path"],
            buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
            registry=self._registry,
        )

        self.cache_operations_total = Counter(
            "cachewire_cache_operations_total",
            "Cache operations by outcome",
            ["operation", "result"],
            registry=self._registry,
        )

        self.cache_operation_duration_seconds = Histogram(
            "cachewire_cache_operation_duration_seconds",
            "Cache operation latency in seconds",
            ["operation"],
            buckets=(0.0001, 0.0005, 0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.5),
            registry=self._registry,
        )

        self.events_published_total = Counter(
            "cachewire_events_published_total",
            "Invalidation events published",
            ["event_type"],
            registry=self._registry,
        )

        self.subscribers_active = Gauge(
            "cachewire_subscribers_active",
            "Currently connected event subscribers",
            registry=self._registry,
        )

        self._initialized = True
        logger.info("Prometheus metrics initialized")

    def generate_latest(self) -> bytes:
        """Generate Prometheus metrics in exposition format."""
        if self._registry is None:
            return b"# Metrics disabled\n"
        return generate_latest(self._registry)


# Global metrics registry
metrics_registry = MetricsRegistry()


def get_metrics() -> MetricsRegistry:
    """Get the global metrics registry.

    Initializes metrics on first access.
    """
    if not metrics_registry._initialized:
        metrics_registry.initialize()
    return metrics_registry


class MetricsMiddleware(BaseHTTPMiddleware):
    """Middleware for HTTP request metrics.

    Records request count by method, path, status and a duration histogram.
    """

    def __init__(self, app: "ASGIApp") -> None:
        super().__init__(app)
        self.metrics = get_metrics()

    async def dispatch(self, request: Request, call_next: Callable[[Request], Any]) -> Response:
        """Record metrics for HTTP requests."""
        # Skip health, metrics and long-lived streams
        path = request.url.path
        if path.startswith("/health") or path == "/metrics" or path.endswith("/stream"):
            return await call_next(request)

        method = request.method
        normalized = self._normalize_path(path)
        start_time = time.perf_counter()
        status_code = 500  # Default in case of exception

        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            duration = time.perf_counter() - start_time

            if self.metrics.http_requests_total:
                self.metrics.http_requests_total.labels(
                    method=method,
                    path=normalized,
                    status=status_code,
                ).inc()

            if self.metrics.http_request_duration_seconds:
                self.metrics.http_request_duration_seconds.labels(
                    method=method,
                    path=normalized,
                ).observe(duration)

    def _normalize_path(self, path: str) -> str:
        """Replace key and subscriber segments with placeholders.

        Examples:
            /cache/keys/tenant:t1:dash -> /cache/keys/{key}
            /cache/keys/abc/ttl -> /cache/keys/{key}/ttl
            /cache-events/clients/123 -> /cache-events/clients/{id}
        """
        parts = path.strip("/").split("/")
        if len(parts) >= 3 and parts[0] == "cache" and parts[1] in ("keys", "metadata"):
            tail = ["ttl"] if parts[-1] == "ttl" and len(parts) > 3 else []
            if parts[1] == "metadata" and parts[2] in ("update", "invalidate"):
                return path
            return "/" + "/".join([parts[0], parts[1], "{key}", *tail])
        if len(parts) >= 3 and parts[0] == "cache-events" and parts[1] == "clients":
            return "/cache-events/clients/{id}"
        return path


def record_cache_operation(operation: str, result: str, duration: float | None = None) -> None:
    """Record one cache operation.

    Args:
        operation: Cache operation (get, set, delete, ...)
        result: Outcome (hit, miss, ok, error)
        duration: Operation duration in seconds, if measured
    """
    metrics = get_metrics()
    if metrics.cache_operations_total:
        metrics.cache_operations_total.labels(operation=operation, result=result).inc()
    if duration is not None and metrics.cache_operation_duration_seconds:
        metrics.cache_operation_duration_seconds.labels(operation=operation).observe(duration)


def record_event_published(event_type: str) -> None:
    """Record an invalidation event publication."""
    metrics = get_metrics()
    if metrics.events_published_total:
        metrics.events_published_total.labels(event_type=event_type).inc()


def set_active_subscribers(count: int) -> None:
    """Update the connected-subscriber gauge."""
    metrics = get_metrics()
    if metrics.subscribers_active:
        metrics.subscribers_active.set(count)
