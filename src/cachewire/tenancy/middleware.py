"""Tenant extraction middleware for FastAPI.

Resolves the tenant from the X-Tenant-ID header (or a configured default)
and sets it as the request's tenant context. Authentication is handled
upstream. Tenant ids that could escape their cache key namespace
(delimiter or glob characters) are rejected with 400.

Example:
    from fastapi import FastAPI
    from cachewire.tenancy.middleware import TenantMiddleware

    app = FastAPI()
    app.add_middleware(TenantMiddleware, require_tenant=True)
"""

from __future__ import annotations

import logging
from typing import Any, Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from cachewire.api.errors import error_response
from cachewire.cache.keys import validate_segment
from cachewire.tenancy.context import clear_tenant, set_tenant

logger = logging.getLogger(__name__)

TENANT_HEADER = "X-Tenant-ID"


class TenantMiddleware(BaseHTTPMiddleware):
    """Middleware that extracts the tenant from incoming requests.

    The resolved tenant is also stored on ``request.state.tenant_id`` so
    that long-lived responses can capture it before the context is
    cleared.
    """

    def __init__(
        self,
        app: Any,
        header_name: str = TENANT_HEADER,
        require_tenant: bool = False,
        default_tenant: str | None = None,
        excluded_paths: list[str] | None = None,
    ) -> None:
        """Initialize the middleware.

        Args:
            app: The ASGI application
            header_name: Header to check for tenant ID
            require_tenant: Reject requests without a tenant
            default_tenant: Tenant used when the header is absent
            excluded_paths: Paths to exclude from tenant check
        """
        super().__init__(app)
        self.header_name = header_name
        self.require_tenant = require_tenant
        self.default_tenant = validate_segment(default_tenant) if default_tenant else None
        self.excluded_paths = excluded_paths or [
            "/health",
            "/metrics",
            "/docs",
            "/openapi.json",
        ]

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Any],
    ) -> Response:
        """Process request and extract tenant."""
        if self._is_excluded(request.url.path):
            return await call_next(request)

        try:
            tenant_id = (request.headers.get(self.header_name) or "").strip()

            if tenant_id:
                try:
                    validate_segment(tenant_id)
                except ValueError as e:
                    return error_response(400, str(e), code="InvalidTenant")
                set_tenant(tenant_id, source="header")
            elif self.default_tenant:
                tenant_id = self.default_tenant
                set_tenant(tenant_id, source="default")
            elif self.require_tenant:
                return error_response(400, "Tenant ID required", code="TenantRequired")

            request.state.tenant_id = tenant_id or None
            if tenant_id:
                logger.debug("Set tenant context: %s", tenant_id)

            return await call_next(request)
        finally:
            clear_tenant()

    def _is_excluded(self, path: str) -> bool:
        return any(path.startswith(excluded) for excluded in self.excluded_paths)
