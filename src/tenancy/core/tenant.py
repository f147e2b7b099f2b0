"""Tenant context propagation via Python contextvars.

The TenantContext is set at the start of each logical operation (an HTTP
request, a migration task, a background job) and is visible anywhere in
that operation's call stack. The connection schema router reads it before
every database command to decide which search_path the connection needs.

Because asyncio copies the context into each task, concurrent operations
never observe each other's tenant. Within one task, always prefer
``tenant_scope()`` over a bare ``set_tenant_context()``: the scope restores
the previous value on every exit path, including exceptions and
cancellation.
"""

from __future__ import annotations

import contextvars
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any

# ── Tenant Context ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class TenantContext:
    """Immutable tenant context for the current operation."""

    tenant_id: Any
    schema_name: str  # e.g., "tenant_acme"
    tenant_slug: str | None = None


_tenant_context: contextvars.ContextVar[TenantContext | None] = contextvars.ContextVar(
    "tenant_context", default=None
)


def get_tenant_context() -> TenantContext | None:
    """Return the current tenant context, or None outside a tenant scope."""
    return _tenant_context.get()


def get_current_tenant() -> TenantContext:
    """Get the tenant context for the current operation.

    Raises RuntimeError if no tenant context has been set (i.e., the call
    is not within a tenant-scoped operation).
    """
    ctx = _tenant_context.get()
    if ctx is None:
        raise RuntimeError("No tenant context set -- operation is not tenant-scoped")
    return ctx


def set_tenant_context(
    ctx: TenantContext | None,
) -> contextvars.Token[TenantContext | None]:
    """Set (or clear, with None) the tenant context. Returns a token for reset."""
    return _tenant_context.set(ctx)


def reset_tenant_context(token: contextvars.Token[TenantContext | None]) -> None:
    """Restore the context that was current before ``set_tenant_context``."""
    _tenant_context.reset(token)


@contextmanager
def tenant_scope(ctx: TenantContext | None) -> Iterator[TenantContext | None]:
    """Run a block with ``ctx`` as the ambient tenant.

    Works in sync and async code alike, since it only touches the contextvar::

        with tenant_scope(TenantContext("acme", "tenant_acme")):
            await session.execute(select(Invoice))
    """
    token = _tenant_context.set(ctx)
    try:
        yield ctx
    finally:
        _tenant_context.reset(token)
