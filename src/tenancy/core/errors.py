"""Exception hierarchy for tenant lifecycle and migration operations.

Validation errors are raised locally and never retried. Driver errors from
asyncpg/SQLAlchemy propagate unchanged out of the schema manager and the
registry; only the migration runner wraps them, because it owns the retry
policy and the fleet-wide failure triage.
"""

from __future__ import annotations

from typing import Any


class TenancyError(Exception):
    """Base class for all tenancy errors."""


class ConfigurationError(TenancyError):
    """Raised when tenancy configuration is missing or inconsistent."""


class InvalidIdentifierError(TenancyError, ValueError):
    """Raised when a schema or role name is not a safe SQL identifier."""

    def __init__(self, kind: str, name: str | None, reason: str) -> None:
        self.kind = kind
        self.name = name
        self.reason = reason
        super().__init__(f"{kind} name {name!r} {reason}")


class TenantAlreadyExistsError(TenancyError):
    """Raised when provisioning a tenant whose schema or record already exists."""

    def __init__(self, tenant_id: Any, detail: str | None = None) -> None:
        self.tenant_id = tenant_id
        message = f"Tenant already exists: {tenant_id}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class TenantNotFoundError(TenancyError):
    """Raised when operating on a tenant that has not been provisioned."""

    def __init__(self, tenant_id: Any, detail: str | None = None) -> None:
        self.tenant_id = tenant_id
        message = f"Tenant not found: {tenant_id}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class MigrationError(TenancyError):
    """A tenant migration failed."""

    def __init__(
        self,
        message: str,
        *,
        tenant_id: Any = None,
        schema_name: str | None = None,
    ) -> None:
        self.tenant_id = tenant_id
        self.schema_name = schema_name
        super().__init__(message)


class MigrationTimeoutError(MigrationError):
    """A migration attempt exceeded the configured wall-clock timeout."""


class MigrationScriptFormatError(MigrationError):
    """Generated migration SQL no longer matches the shape the rewriter expects."""


class FleetMigrationError(MigrationError):
    """Aggregate of per-tenant failures from a fleet-wide migration run."""

    def __init__(self, failures: dict[Any, BaseException]) -> None:
        self.failures = dict(failures)
        names = ", ".join(str(tenant_id) for tenant_id in self.failures)
        super().__init__(f"Migration failed for {len(self.failures)} tenant(s): {names}")
