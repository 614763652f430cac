"""Cache metadata registry.

Revision ID: 001_cache_metadata
Revises:
Create Date: 2026-10-17

Creates the cache_metadata table: one row per (tenant_id, cache_key)
holding last_updated, version, data_size and hit_count.
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers
revision: str = "001_cache_metadata"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "cache_metadata",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("tenant_id", sa.String(255), nullable=False),
        sa.Column("cache_key", sa.String(1024), nullable=False),
        sa.Column(
            "last_updated",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("version", sa.String(255), nullable=True),
        sa.Column("data_size", sa.Integer(), nullable=True),
        sa.Column("hit_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.UniqueConstraint("tenant_id", "cache_key", name="uq_cache_metadata_tenant_key"),
    )
    op.create_index("ix_cache_metadata_tenant_id", "cache_metadata", ["tenant_id"])
    op.create_index(
        "ix_cache_metadata_tenant_last_updated",
        "cache_metadata",
        ["tenant_id", "last_updated"],
    )


def downgrade() -> None:
    op.drop_index("ix_cache_metadata_tenant_last_updated", table_name="cache_metadata")
    op.drop_index("ix_cache_metadata_tenant_id", table_name="cache_metadata")
    op.drop_table("cache_metadata")
