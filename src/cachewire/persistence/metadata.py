"""Cache metadata registry.

Durable, per-tenant record of when each cache key last changed and how
often it is read. Clients poll it to decide whether their local copy of a
key is stale, so it lives in the relational store and stays queryable
while Redis is down. It never holds cached values.

Every public method is fail-soft: database errors are logged and turned
into the method's degraded result (None, False, 0 or an empty list).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy import delete, func, select, text, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cachewire.persistence.tables import CacheMetadataTable

logger = logging.getLogger(__name__)

STATS_TOP_N = 5
DEFAULT_CLEANUP_DAYS = 30

_DB_ERRORS = (SQLAlchemyError, OSError)


def _as_utc(value: datetime) -> datetime:
    # SQLite drops the offset; every stored timestamp is UTC
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


@dataclass(frozen=True)
class CacheMetadataRecord:
    """Freshness record for one tenant cache key."""

    tenant_id: str
    cache_key: str
    last_updated: datetime
    version: str | None = None
    data_size: int | None = None
    hit_count: int = 0
    created_at: datetime | None = None

    @classmethod
    def from_row(cls, row: CacheMetadataTable) -> "CacheMetadataRecord":
        return cls(
            tenant_id=row.tenant_id,
            cache_key=row.cache_key,
            last_updated=_as_utc(row.last_updated),
            version=row.version,
            data_size=row.data_size,
            hit_count=row.hit_count,
            created_at=_as_utc(row.created_at) if row.created_at is not None else None,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "cacheKey": self.cache_key,
            "lastUpdated": self.last_updated.isoformat(),
            "version": self.version,
            "dataSize": self.data_size,
            "hitCount": self.hit_count,
        }


@dataclass(frozen=True)
class MetadataStats:
    """Aggregate view of a tenant's metadata records."""

    total_keys: int = 0
    total_hits: int = 0
    avg_hits_per_key: float = 0.0
    top_accessed: list[CacheMetadataRecord] = field(default_factory=list)
    recently_updated: list[CacheMetadataRecord] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalKeys": self.total_keys,
            "totalHits": self.total_hits,
            "avgHitsPerKey": self.avg_hits_per_key,
            "topAccessed": [
                {"cacheKey": r.cache_key, "hitCount": r.hit_count} for r in self.top_accessed
            ],
            "recentlyUpdated": [
                {"cacheKey": r.cache_key, "lastUpdated": r.last_updated.isoformat()}
                for r in self.recently_updated
            ],
        }


def _now() -> datetime:
    return datetime.now(UTC)


class MetadataRegistry:
    """Per-tenant cache freshness registry backed by SQLAlchemy."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def _fetch(self, session: AsyncSession, tenant_id: str, key: str) -> CacheMetadataTable | None:
        stmt = select(CacheMetadataTable).where(
            CacheMetadataTable.tenant_id == tenant_id,
            CacheMetadataTable.cache_key == key,
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    async def get(self, tenant_id: str, key: str) -> CacheMetadataRecord | None:
        """Current record for a key, or None if absent or unreachable."""
        try:
            async with self.session_factory() as session:
                row = await self._fetch(session, tenant_id, key)
                return CacheMetadataRecord.from_row(row) if row is not None else None
        except _DB_ERRORS as e:
            logger.warning("Metadata GET failed for %s/%s: %s", tenant_id, key, e)
            return None

    async def get_all(self, tenant_id: str) -> list[CacheMetadataRecord]:
        """Every record for a tenant, most recently updated first."""
        try:
            async with self.session_factory() as session:
                stmt = (
                    select(CacheMetadataTable)
                    .where(CacheMetadataTable.tenant_id == tenant_id)
                    .order_by(CacheMetadataTable.last_updated.desc())
                )
                result = await session.execute(stmt)
                return [CacheMetadataRecord.from_row(row) for row in result.scalars()]
        except _DB_ERRORS as e:
            logger.warning("Metadata GET_ALL failed for %s: %s", tenant_id, e)
            return []

    async def touch(
        self,
        tenant_id: str,
        key: str,
        version: str | None = None,
        size_bytes: int | None = None,
    ) -> CacheMetadataRecord | None:
        """Upsert a record, marking the key as changed now.

        Creates the record with ``hit_count=0`` when absent. An existing
        record gets a new ``last_updated``, ``version`` and ``data_size``;
        its hit count is never changed here.
        """
        try:
            return await self._upsert(tenant_id, key, version, size_bytes)
        except IntegrityError:
            # Lost a race with a concurrent insert; the row exists now
            try:
                return await self._upsert(tenant_id, key, version, size_bytes)
            except _DB_ERRORS as e:
                logger.warning("Metadata TOUCH failed for %s/%s: %s", tenant_id, key, e)
                return None
        except _DB_ERRORS as e:
            logger.warning("Metadata TOUCH failed for %s/%s: %s", tenant_id, key, e)
            return None

    async def _upsert(
        self, tenant_id: str, key: str, version: str | None, size_bytes: int | None
    ) -> CacheMetadataRecord:
        async with self.session_factory() as session:
            now = _now()
            row = await self._fetch(session, tenant_id, key)
            if row is None:
                row = CacheMetadataTable(
                    tenant_id=tenant_id,
                    cache_key=key,
                    last_updated=now,
                    version=version,
                    data_size=size_bytes,
                    hit_count=0,
                    created_at=now,
                )
                session.add(row)
            else:
                row.last_updated = now
                row.version = version
                row.data_size = size_bytes
            await session.commit()
            logger.debug("Metadata TOUCH: %s/%s", tenant_id, key)
            return CacheMetadataRecord.from_row(row)

    async def ensure(self, tenant_id: str, key: str) -> CacheMetadataRecord | None:
        """Return the record for a key, creating an empty one if absent."""
        existing = await self.get(tenant_id, key)
        if existing is not None:
            return existing
        try:
            async with self.session_factory() as session:
                now = _now()
                row = CacheMetadataTable(
                    tenant_id=tenant_id,
                    cache_key=key,
                    last_updated=now,
                    hit_count=0,
                    created_at=now,
                )
                session.add(row)
                await session.commit()
                return CacheMetadataRecord.from_row(row)
        except IntegrityError:
            return await self.get(tenant_id, key)
        except _DB_ERRORS as e:
            logger.warning("Metadata ENSURE failed for %s/%s: %s", tenant_id, key, e)
            return None

    async def record_hit(self, tenant_id: str, key: str) -> bool:
        """Increment a key's hit count by one.

        The increment is a single ``UPDATE ... SET hit_count = hit_count + 1``
        so concurrent hits are never lost. Failures are logged and ignored.

        Returns:
            True if a record was incremented.
        """
        try:
            async with self.session_factory() as session:
                stmt = (
                    update(CacheMetadataTable)
                    .where(
                        CacheMetadataTable.tenant_id == tenant_id,
                        CacheMetadataTable.cache_key == key,
                    )
                    .values(hit_count=CacheMetadataTable.hit_count + 1)
                )
                result = await session.execute(stmt)
                await session.commit()
                return bool(result.rowcount)
        except _DB_ERRORS as e:
            logger.warning("Metadata HIT failed for %s/%s: %s", tenant_id, key, e)
            return False

    async def invalidate_pattern(self, tenant_id: str, pattern: str) -> int:
        """Bump ``last_updated`` on every record whose key contains ``pattern``.

        Records are never deleted: the new timestamp is what tells polling
        clients their copy is stale.
        """
        try:
            async with self.session_factory() as session:
                stmt = (
                    update(CacheMetadataTable)
                    .where(
                        CacheMetadataTable.tenant_id == tenant_id,
                        CacheMetadataTable.cache_key.contains(pattern, autoescape=True),
                    )
                    .values(last_updated=_now())
                )
                result = await session.execute(stmt)
                await session.commit()
                count = int(result.rowcount or 0)
        except _DB_ERRORS as e:
            logger.warning("Metadata INVALIDATE failed for %s '%s': %s", tenant_id, pattern, e)
            return 0

        logger.info("Invalidated %d metadata records for pattern '%s'", count, pattern)
        return count

    async def stats(self, tenant_id: str) -> MetadataStats:
        """Totals plus the most read and most recently changed keys."""
        try:
            async with self.session_factory() as session:
                totals = await session.execute(
                    select(
                        func.count(CacheMetadataTable.id),
                        func.coalesce(func.sum(CacheMetadataTable.hit_count), 0),
                    ).where(CacheMetadataTable.tenant_id == tenant_id)
                )
                total_keys, total_hits = totals.one()

                top = await session.execute(
                    select(CacheMetadataTable)
                    .where(CacheMetadataTable.tenant_id == tenant_id)
                    .order_by(CacheMetadataTable.hit_count.desc())
                    .limit(STATS_TOP_N)
                )
                top_accessed = [CacheMetadataRecord.from_row(r) for r in top.scalars()]

                recent = await session.execute(
                    select(CacheMetadataTable)
                    .where(CacheMetadataTable.tenant_id == tenant_id)
                    .order_by(CacheMetadataTable.last_updated.desc())
                    .limit(STATS_TOP_N)
                )
                recently_updated = [CacheMetadataRecord.from_row(r) for r in recent.scalars()]
        except _DB_ERRORS as e:
            logger.warning("Metadata STATS failed for %s: %s", tenant_id, e)
            return MetadataStats()

        total_keys = int(total_keys)
        total_hits = int(total_hits)
        return MetadataStats(
            total_keys=total_keys,
            total_hits=total_hits,
            avg_hits_per_key=round(total_hits / total_keys) if total_keys else 0,
            top_accessed=top_accessed,
            recently_updated=recently_updated,
        )

    async def cleanup(self, tenant_id: str, older_than_days: int = DEFAULT_CLEANUP_DAYS) -> int:
        """Delete never-read records not updated within ``older_than_days``."""
        cutoff = _now() - timedelta(days=older_than_days)
        try:
            async with self.session_factory() as session:
                stmt = delete(CacheMetadataTable).where(
                    CacheMetadataTable.tenant_id == tenant_id,
                    CacheMetadataTable.hit_count == 0,
                    CacheMetadataTable.last_updated < cutoff,
                )
                result = await session.execute(stmt)
                await session.commit()
                count = int(result.rowcount or 0)
        except _DB_ERRORS as e:
            logger.warning("Metadata CLEANUP failed for %s: %s", tenant_id, e)
            return 0

        logger.info("Cleaned up %d unused metadata records for tenant %s", count, tenant_id)
        return count

    async def ping(self) -> bool:
        """Check metadata store connectivity."""
        try:
            async with self.session_factory() as session:
                await session.execute(text("SELECT 1"))
            return True
        except _DB_ERRORS as e:
            logger.warning("Metadata store PING failed: %s", e)
            return False
