"""API middleware package."""

from src.tenancy.api.middleware.tenant import TenantMiddleware

__all__ = ["TenantMiddleware"]
