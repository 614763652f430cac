"""In-process cache statistics.

Counts hits, misses, sets, deletes, errors and clears, and keeps a bounded
window of the most recent hit and set latencies for rolling averages.
Pure aggregation: no I/O, safe to call from any coroutine.
"""

from __future__ import annotations

from collections import deque
from dataclasses import asdict, dataclass
from typing import Any

DEFAULT_LATENCY_WINDOW = 1000


@dataclass(frozen=True)
class CacheStatsSnapshot:
    """Point-in-time view of the cache counters."""

    hits: int
    misses: int
    sets: int
    deletes: int
    errors: int
    clears: int
    total_requests: int
    hit_rate: float  # percentage, 0..100
    average_hit_time_ms: float
    average_set_time_ms: float

    def to_dict(self) -> dict[str, Any]:
        """Convert to the camelCase shape served by the admin API."""
        data = asdict(self)
        return {
            "hits": data["hits"],
            "misses": data["misses"],
            "sets": data["sets"],
            "deletes": data["deletes"],
            "errors": data["errors"],
            "clears": data["clears"],
            "totalRequests": data["total_requests"],
            "hitRate": data["hit_rate"],
            "averageHitTime": data["average_hit_time_ms"],
            "averageSetTime": data["average_set_time_ms"],
        }


class CacheMetrics:
    """Counters and rolling latency windows for CacheStore calls."""

    def __init__(self, window: int = DEFAULT_LATENCY_WINDOW):
        self.window = window
        self.reset()

    def record_hit(self, duration_ms: float) -> None:
        self.hits += 1
        self._hit_times.append(duration_ms)

    def record_miss(self) -> None:
        self.misses += 1

    def record_set(self, duration_ms: float) -> None:
        self.sets += 1
        self._set_times.append(duration_ms)

    def record_delete(self) -> None:
        self.deletes += 1

    def record_error(self) -> None:
        self.errors += 1

    def record_clear(self) -> None:
        self.clears += 1

    @property
    def hit_rate(self) -> float:
        """Fraction of lookups that hit, 0.0 when nothing was looked up."""
        total = self.hits + self.misses
        return self.hits / total if total else 0.0

    def snapshot(self) -> CacheStatsSnapshot:
        """Current counters with the rolling averages rounded to 2 dp."""
        return CacheStatsSnapshot(
            hits=self.hits,
            misses=self.misses,
            sets=self.sets,
            deletes=self.deletes,
            errors=self.errors,
            clears=self.clears,
            total_requests=self.hits + self.misses,
            hit_rate=round(self.hit_rate * 100, 2),
            average_hit_time_ms=_average(self._hit_times),
            average_set_time_ms=_average(self._set_times),
        )

    def reset(self) -> None:
        """Zero every counter and empty the latency windows."""
        self.hits = 0
        self.misses = 0
        self.sets = 0
        self.deletes = 0
        self.errors = 0
        self.clears = 0
        self._hit_times: deque[float] = deque(maxlen=self.window)
        self._set_times: deque[float] = deque(maxlen=self.window)


def _average(samples: deque[float]) -> float:
    if not samples:
        return 0.0
    return round(sum(samples) / len(samples), 2)
