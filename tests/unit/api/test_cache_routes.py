"""Tests for the cache administration endpoints."""

from collections.abc import Callable

import fakeredis
from fakeredis import FakeServer
from fastapi.testclient import TestClient

Seeder = Callable[..., None]


class TestStats:
    """Test GET /cache/stats."""

    def test_stats_shape(self, client: TestClient) -> None:
        """Counters are reported with camelCase keys."""
        response = client.get("/cache/stats")

        assert response.status_code == 200
        body = response.json()
        assert body["hits"] == 0
        assert body["hitRate"] == 0.0
        assert "averageSetTime" in body


class TestKeys:
    """Test key browsing."""

    def test_list_keys(self, client: TestClient, seed: Seeder) -> None:
        """Keys are listed with tenant, TTL and size."""
        seed("tenant:t1:a", 1)
        seed("tenant:t1:b", 2)
        seed("tenant:t2:a", 3)

        response = client.get("/cache/keys", params={"pattern": "tenant:t1:*"})

        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 2
        assert [k["key"] for k in body["keys"]] == ["tenant:t1:a", "tenant:t1:b"]
        first = body["keys"][0]
        assert first["tenantId"] == "t1"
        assert first["tagIndex"] is False
        assert 0 < first["ttl"] <= 300
        assert first["size"] > 0

    def test_list_keys_paging(self, client: TestClient, seed: Seeder) -> None:
        """limit and offset page through the sorted keys."""
        for name in ("a", "b", "c"):
            seed(f"tenant:t1:{name}", 1)

        body = client.get("/cache/keys", params={"limit": 1, "offset": 1}).json()
        assert [k["key"] for k in body["keys"]] == ["tenant:t1:b"]
        assert body["total"] == 3

    def test_limit_out_of_range(self, client: TestClient) -> None:
        """Limits above 1000 are rejected."""
        response = client.get("/cache/keys", params={"limit": 5000})
        assert response.status_code == 400

    def test_key_info(self, client: TestClient, seed: Seeder) -> None:
        """A single key reports its TTL and size."""
        seed("tenant:t1:dash:stats", {"n": 1}, ttl=60)

        response = client.get("/cache/keys/tenant:t1:dash:stats")

        assert response.status_code == 200
        assert response.json()["key"] == "tenant:t1:dash:stats"
        assert 0 < response.json()["ttl"] <= 60

    def test_key_info_missing(self, client: TestClient) -> None:
        """Unknown keys are 404."""
        response = client.get("/cache/keys/tenant:t1:nope")

        assert response.status_code == 404
        assert response.json()["messages"][0]["code"] == "NotFound"

    def test_delete_key(
        self, client: TestClient, seed: Seeder, sync_redis: fakeredis.FakeRedis
    ) -> None:
        """Deleting a key removes it; absent keys succeed too."""
        seed("tenant:t1:a", 1)

        assert client.delete("/cache/keys/tenant:t1:a").json()["success"] is True
        assert not sync_redis.exists("tenant:t1:a")
        assert client.delete("/cache/keys/tenant:t1:a").json()["success"] is True

    def test_set_ttl(
        self, client: TestClient, seed: Seeder, sync_redis: fakeredis.FakeRedis
    ) -> None:
        """The TTL of an existing key can be changed."""
        seed("tenant:t1:a", 1, ttl=10)

        response = client.post("/cache/keys/tenant:t1:a/ttl", json={"ttl": 900})

        assert response.json()["success"] is True
        assert sync_redis.ttl("tenant:t1:a") > 10

    def test_set_ttl_missing_key(self, client: TestClient) -> None:
        """Changing the TTL of an absent key reports failure."""
        response = client.post("/cache/keys/tenant:t1:nope/ttl", json={"ttl": 60})

        assert response.status_code == 200
        assert response.json()["success"] is False

    def test_set_ttl_rejects_non_positive(self, client: TestClient) -> None:
        """TTL must be positive."""
        response = client.post("/cache/keys/tenant:t1:a/ttl", json={"ttl": 0})
        assert response.status_code == 400


class TestInvalidate:
    """Test POST /cache/invalidate and DELETE /cache/clear."""

    def test_invalidate_pattern(
        self, client: TestClient, seed: Seeder, sync_redis: fakeredis.FakeRedis
    ) -> None:
        """Keys matching the pattern are deleted."""
        seed("tenant:t1:user:1", 1)
        seed("tenant:t1:user:2", 1)
        seed("tenant:t1:dash", 1)

        response = client.post("/cache/invalidate", json={"pattern": "tenant:t1:user:*"})

        assert response.status_code == 200
        assert response.json()["invalidatedCount"] == 2
        assert sync_redis.exists("tenant:t1:dash")

    def test_invalidate_keys(
        self, client: TestClient, seed: Seeder, sync_redis: fakeredis.FakeRedis
    ) -> None:
        """Explicit keys are deleted."""
        seed("tenant:t1:a", 1)
        seed("tenant:t1:b", 1)

        response = client.post("/cache/invalidate", json={"keys": ["tenant:t1:a", "tenant:t1:b"]})

        assert response.json()["invalidatedCount"] == 2
        assert sync_redis.dbsize() == 0

    def test_invalidate_requires_target(self, client: TestClient) -> None:
        """A request with neither pattern nor keys is rejected."""
        response = client.post("/cache/invalidate", json={})

        assert response.status_code == 400
        assert "pattern" in response.json()["messages"][0]["text"]

    def test_invalidate_blank_pattern(self, client: TestClient) -> None:
        """Whitespace-only patterns are rejected."""
        response = client.post("/cache/invalidate", json={"pattern": "   "})
        assert response.status_code == 400

    def test_clear(
        self, client: TestClient, seed: Seeder, sync_redis: fakeredis.FakeRedis
    ) -> None:
        """Clear removes every key of every tenant."""
        seed("tenant:t1:a", 1)
        seed("tenant:t2:a", 1)

        response = client.delete("/cache/clear")

        assert response.json()["clearedCount"] == 2
        assert sync_redis.dbsize() == 0


class TestHealthAndPatterns:
    """Test GET /cache/health and GET /cache/patterns."""

    def test_health_connected(self, client: TestClient, seed: Seeder) -> None:
        """A reachable cache is healthy and reports its key count."""
        seed("tenant:t1:a", 1)

        body = client.get("/cache/health").json()
        assert body["status"] == "healthy"
        assert body["connected"] is True
        assert body["keyCount"] == body["keys"] == 1

    def test_health_disconnected(self, client: TestClient, redis_server: FakeServer) -> None:
        """An unreachable cache is reported, not raised."""
        redis_server.connected = False

        response = client.get("/cache/health")

        assert response.status_code == 200
        assert response.json() == {
            "status": "unhealthy",
            "connected": False,
            "approxMemory": "unknown",
            "keyCount": 0,
            "memory": "unknown",
            "keys": 0,
        }

    def test_patterns(self, client: TestClient, seed: Seeder) -> None:
        """Key families are grouped by first segment."""
        seed("tenant:t1:a", 1)
        seed("tenant:t2:a", 1)
        seed("api:tenant:t1:a", 1)

        body = client.get("/cache/patterns").json()
        assert body[0] == {
            "pattern": "tenant:*",
            "count": 2,
            "examples": body[0]["examples"],
        }
        assert len(body[0]["examples"]) == 2
        assert body[1]["pattern"] == "api:*"
