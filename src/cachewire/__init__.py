"""Cachewire: tenant-scoped caching with invalidation propagation.

Components:
- CacheStore: Redis-backed TTL cache with tag and pattern invalidation
- MetadataRegistry: durable per-key freshness records
- InvalidationEventBus: in-process fan-out of invalidation events to
  Server-Sent Events subscribers
"""

__version__ = "0.1.0"
