"""Observability module for Cachewire.

Provides metrics and structured logging:
- Prometheus metrics for cache operations, events and HTTP requests
- JSON structured logging with request and tenant context
"""

from cachewire.observability.logging import (
    configure_logging,
    request_id_var,
    tenant_id_var,
)
from cachewire.observability.metrics import (
    MetricsMiddleware,
    get_metrics,
    metrics_registry,
)

__all__ = [
    # Logging
    "configure_logging",
    "request_id_var",
    "tenant_id_var",
    # Metrics
    "metrics_registry",
    "get_metrics",
    "MetricsMiddleware",
]
