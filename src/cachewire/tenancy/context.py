"""Tenant context management using ContextVar.

Provides request-scoped tenant isolation:
- TenantContext: Dataclass with tenant information
- get_current_tenant_or_none: Get current tenant ID
- set_tenant: Set tenant context for current scope

Example:
    from cachewire.tenancy.context import get_current_tenant_or_none, set_tenant

    set_tenant("acme-corp")

    # Anywhere in the call stack
    tenant_id = get_current_tenant_or_none()
"""

from __future__ import annotations

from contextvars import ContextVar, Token
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from cachewire.observability.logging import tenant_id_var


@dataclass
class TenantContext:
    """Tenant context for the current request.

    Attributes:
        tenant_id: Unique tenant identifier
        source: Where the tenant was resolved from (header, default, scope)
        created_at: When this context was created
    """

    tenant_id: str
    source: str = "header"
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "tenant_id": self.tenant_id,
            "source": self.source,
            "created_at": self.created_at.isoformat(),
        }


# ContextVar for async-safe tenant access
_tenant_context: ContextVar[TenantContext | None] = ContextVar(
    "tenant_context",
    default=None,
)


def get_tenant_context() -> TenantContext | None:
    """Get the current tenant context."""
    return _tenant_context.get()


def get_current_tenant_or_none() -> str | None:
    """Get the current tenant ID or None if not set."""
    ctx = _tenant_context.get()
    if ctx is None:
        return None
    return ctx.tenant_id


def set_tenant(tenant_id: str, source: str = "header") -> TenantContext:
    """Set the tenant context for the current scope.

    Also tags log records emitted in this scope with the tenant.
    """
    ctx = TenantContext(tenant_id=tenant_id, source=source)
    _tenant_context.set(ctx)
    tenant_id_var.set(tenant_id)
    return ctx


def clear_tenant() -> None:
    """Clear the current tenant context."""
    _tenant_context.set(None)
    tenant_id_var.set("")


def require_tenant() -> str:
    """Get the current tenant ID, raising if not set.

    Raises:
        RuntimeError: If no tenant is set
    """
    ctx = _tenant_context.get()
    if ctx is None:
        raise RuntimeError("No tenant context set. Ensure TenantMiddleware is active.")
    return ctx.tenant_id


class TenantScope:
    """Context manager for temporarily setting a tenant.

    Example:
        with TenantScope("acme-corp"):
            await store.set("dash:stats", stats)  # uses acme-corp implicitly
    """

    def __init__(self, tenant_id: str):
        self.tenant_id = tenant_id
        self._token: Token[TenantContext | None] | None = None
        self._log_token: Token[str] | None = None

    def __enter__(self) -> TenantContext:
        ctx = TenantContext(tenant_id=self.tenant_id, source="scope")
        self._token = _tenant_context.set(ctx)
        self._log_token = tenant_id_var.set(self.tenant_id)
        return ctx

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if self._token is not None:
            _tenant_context.reset(self._token)
        if self._log_token is not None:
            tenant_id_var.reset(self._log_token)
