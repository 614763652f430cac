"""SQLAlchemy ORM models for the cache metadata registry.

One row per (tenant, cache key). Rows outlive the cached values they
describe: a client compares its local ``last_updated``/``version`` against
the row to decide whether its copy is stale.
"""

from __future__ import annotations

from datetime import datetime
from uuid import uuid4

from sqlalchemy import DateTime, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class CacheMetadataTable(Base):
    """Freshness and access bookkeeping for a tenant's cache key."""

    __tablename__ = "cache_metadata"
    __table_args__ = (
        UniqueConstraint("tenant_id", "cache_key", name="uq_cache_metadata_tenant_key"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))

    tenant_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    cache_key: Mapped[str] = mapped_column(String(1024), nullable=False)

    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    version: Mapped[str | None] = mapped_column(String(255), nullable=True)
    data_size: Mapped[int | None] = mapped_column(Integer, nullable=True)
    hit_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
