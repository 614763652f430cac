"""Persistence layer for Cachewire.

This module provides:
- Async SQLAlchemy engine and session factory
- The cache_metadata ORM model and its Alembic migration
- MetadataRegistry, the per-tenant cache freshness registry
"""

from cachewire.persistence.db import close_db, get_engine, get_session_factory, init_db
from cachewire.persistence.metadata import CacheMetadataRecord, MetadataRegistry, MetadataStats
from cachewire.persistence.tables import Base, CacheMetadataTable

__all__ = [
    # DB
    "get_engine",
    "get_session_factory",
    "init_db",
    "close_db",
    # Tables
    "Base",
    "CacheMetadataTable",
    # Registry
    "MetadataRegistry",
    "CacheMetadataRecord",
    "MetadataStats",
]
