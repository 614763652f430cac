"""Cache layer for Cachewire.

Provides Redis caching with the cache-aside pattern:
- Tenant-scoped physical keys with optional namespace prefixes
- TTL-bounded JSON entries with eager expiry on read
- Tag indices and glob patterns for group invalidation
- Fail-soft semantics: an unreachable cache behaves like an empty one
"""

from cachewire.cache.decorators import cached, invalidates
from cachewire.cache.keys import CacheKeys, ParsedKey
from cachewire.cache.metrics import CacheMetrics, CacheStatsSnapshot
from cachewire.cache.redis import close_redis, create_redis
from cachewire.cache.store import CacheEntry, CacheStore, KeyPattern

__all__ = [
    # Keys
    "CacheKeys",
    "ParsedKey",
    # Store
    "CacheEntry",
    "CacheStore",
    "KeyPattern",
    "create_redis",
    "close_redis",
    # Statistics
    "CacheMetrics",
    "CacheStatsSnapshot",
    # Decorators
    "cached",
    "invalidates",
]
