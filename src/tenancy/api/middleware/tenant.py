"""Tenant resolution middleware.

Resolves the tenant for each request and runs the rest of the request inside
``tenant_scope`` so the context is cleared however the request ends.

Resolution order:
1. X-API-Key header, verified against the registry's stored hashes
2. X-Tenant-ID header, looked up by slug in the registry, or mapped straight
   to a schema name by the strategy when no registry is configured

Only ACTIVE registry tenants are admitted.
"""

from __future__ import annotations

import structlog
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from src.tenancy.core.errors import InvalidIdentifierError
from src.tenancy.core.tenant import TenantContext, tenant_scope
from src.tenancy.registry.store import TenantRegistry
from src.tenancy.schemas.tenant import TenantRecord, TenantStatus
from src.tenancy.services.strategy import SchemaPerTenantStrategy

logger = structlog.get_logger(__name__)

SKIP_TENANT_PATHS = (
    "/health",
    "/docs",
    "/openapi.json",
    "/redoc",
)


class TenantMiddleware(BaseHTTPMiddleware):
    """Set the TenantContext for the lifetime of each request."""

    def __init__(
        self,
        app,
        strategy: SchemaPerTenantStrategy,
        registry: TenantRegistry | None = None,
        skip_paths: tuple[str, ...] = SKIP_TENANT_PATHS,
    ):
        super().__init__(app)
        self._strategy = strategy
        self._registry = registry
        self._skip_paths = skip_paths

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        path = request.url.path
        if any(path.startswith(skip) for skip in self._skip_paths):
            return await call_next(request)

        api_key = request.headers.get("X-API-Key")
        tenant_id = request.headers.get("X-Tenant-ID")
        if not api_key and not tenant_id:
            return JSONResponse({"detail": "Missing X-Tenant-ID or X-API-Key header"}, status_code=400)

        try:
            tenant_ctx = await self._resolve(tenant_id, api_key)
        except InvalidIdentifierError:
            return JSONResponse({"detail": f"Invalid tenant identifier: {tenant_id}"}, status_code=400)

        if tenant_ctx is None:
            return JSONResponse({"detail": "Tenant not found or inactive"}, status_code=404)

        with tenant_scope(tenant_ctx):
            return await call_next(request)

    async def _resolve(self, tenant_id: str | None, api_key: str | None) -> TenantContext | None:
        if self._registry is None:
            if not tenant_id:
                return None
            return TenantContext(
                tenant_id=tenant_id,
                tenant_slug=tenant_id,
                schema_name=self._strategy.schema_name_for(tenant_id),
            )

        record: TenantRecord | None
        if api_key:
            record = await self._registry.get_tenant_by_api_key(api_key)
        else:
            record = await self._registry.get_tenant_by_slug(tenant_id)

        if record is None or record.status != TenantStatus.ACTIVE:
            logger.info("tenant_rejected", tenant_id=tenant_id, found=record is not None)
            return None
        return TenantContext(
            tenant_id=record.tenant_id,
            tenant_slug=record.slug,
            schema_name=record.schema_name,
        )
