"""Multi-tenancy support for Cachewire.

Every cache key, tag index, metadata record and event subscriber belongs
to exactly one tenant. The tenant of a request is resolved once by
TenantMiddleware and carried in a ContextVar.
"""

from cachewire.tenancy.context import (
    TenantContext,
    TenantScope,
    clear_tenant,
    get_current_tenant_or_none,
    get_tenant_context,
    require_tenant,
    set_tenant,
)
from cachewire.tenancy.middleware import TenantMiddleware

__all__ = [
    "TenantContext",
    "TenantScope",
    "TenantMiddleware",
    "clear_tenant",
    "get_current_tenant_or_none",
    "get_tenant_context",
    "require_tenant",
    "set_tenant",
]
