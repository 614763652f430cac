"""Tests for cache statistics collection."""

from cachewire.cache.metrics import CacheMetrics


class TestCacheMetrics:
    """Test hit/miss counters and latency averages."""

    def test_empty_hit_rate(self) -> None:
        """Hit rate is zero before any lookup."""
        metrics = CacheMetrics()
        snapshot = metrics.snapshot()
        assert snapshot.hit_rate == 0.0
        assert snapshot.total_requests == 0
        assert snapshot.average_hit_time_ms == 0.0

    def test_hit_rate_percentage(self) -> None:
        """Hit rate is reported as a percentage of lookups."""
        metrics = CacheMetrics()
        metrics.record_hit(1.0)
        metrics.record_hit(3.0)
        metrics.record_hit(2.0)
        metrics.record_miss()

        snapshot = metrics.snapshot()
        assert snapshot.hits == 3
        assert snapshot.misses == 1
        assert snapshot.total_requests == 4
        assert snapshot.hit_rate == 75.0
        assert snapshot.average_hit_time_ms == 2.0

    def test_latency_window_is_bounded(self) -> None:
        """Only the most recent samples count towards the average."""
        metrics = CacheMetrics(window=2)
        metrics.record_set(100.0)
        metrics.record_set(1.0)
        metrics.record_set(3.0)

        snapshot = metrics.snapshot()
        assert snapshot.sets == 3
        assert snapshot.average_set_time_ms == 2.0

    def test_reset(self) -> None:
        """Reset zeroes every counter."""
        metrics = CacheMetrics()
        metrics.record_hit(1.0)
        metrics.record_error()
        metrics.record_clear()
        metrics.reset()

        snapshot = metrics.snapshot()
        assert snapshot.hits == 0
        assert snapshot.errors == 0
        assert snapshot.clears == 0

    def test_to_dict_shape(self) -> None:
        """Snapshot serializes with camelCase keys."""
        metrics = CacheMetrics()
        metrics.record_miss()
        data = metrics.snapshot().to_dict()

        assert data["totalRequests"] == 1
        assert data["hitRate"] == 0.0
        assert set(data) >= {"hits", "misses", "sets", "deletes", "errors", "averageHitTime"}
