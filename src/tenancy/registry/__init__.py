"""Control registry of tenants.

Exports:
    TenantRegistry: Protocol every registry implements.
    SqlTenantRegistry: Registry over the ``tenant_control.tenants`` table.
    CachedTenantRegistry: Redis caching decorator for any registry.
"""

from __future__ import annotations

from src.tenancy.registry.cache import CachedTenantRegistry
from src.tenancy.registry.store import SqlTenantRegistry, TenantRegistry

__all__ = [
    "CachedTenantRegistry",
    "SqlTenantRegistry",
    "TenantRegistry",
]
