"""CLI command for pruning the cache metadata registry.

Usage:
    cachewire cleanup-metadata --tenant acme
    cachewire cleanup-metadata --tenant acme --days 90
"""

from __future__ import annotations

import asyncio

import typer

from cachewire.persistence.db import close_db, get_session_factory
from cachewire.persistence.metadata import DEFAULT_CLEANUP_DAYS, MetadataRegistry

app = typer.Typer(help="Delete metadata records that were never read")


async def run_cleanup(registry: MetadataRegistry, tenant_ids: list[str], days: int) -> dict[str, int]:
    """Clean up each tenant in turn; returns deleted counts per tenant."""
    return {tenant_id: await registry.cleanup(tenant_id, older_than_days=days) for tenant_id in tenant_ids}


async def _cleanup(tenant_ids: list[str], days: int) -> dict[str, int]:
    try:
        return await run_cleanup(MetadataRegistry(get_session_factory()), tenant_ids, days)
    finally:
        await close_db()


@app.callback(invoke_without_command=True)
def cleanup_metadata(
    tenant_ids: list[str] = typer.Option(
        ...,
        "--tenant",
        "-t",
        help="Tenant to clean up (can be specified multiple times)",
    ),
    days: int = typer.Option(
        DEFAULT_CLEANUP_DAYS,
        "--days",
        "-d",
        min=1,
        help="Delete never-read records not updated for this many days",
    ),
) -> None:
    """Delete metadata records with no hits older than --days."""
    results = asyncio.run(_cleanup(tenant_ids, days))

    total = 0
    for tenant_id, deleted in results.items():
        typer.echo(f"  {tenant_id}: {deleted} records deleted")
        total += deleted
    typer.echo(f"Removed {total} unused metadata records older than {days} days")
