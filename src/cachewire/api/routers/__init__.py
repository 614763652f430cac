"""API routers for Cachewire."""

from cachewire.api.routers import cache, events, health, metadata, metrics

__all__ = ["cache", "events", "health", "metadata", "metrics"]
