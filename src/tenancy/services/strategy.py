"""Schema-per-tenant naming and provisioning policy.

A tenant's schema name is a pure function of its identifier:
``<prefix><sanitized id>``, where sanitizing lower-cases the id and maps
every character outside ``[a-z0-9_]`` to ``_``. Archiving renames the schema
to ``<archived prefix><schema>`` and restoring strips that prefix again, so
the pair is symmetric by construction.
"""

from __future__ import annotations

import re
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy.exc import DBAPIError

from src.tenancy.config import Settings, get_settings
from src.tenancy.core.errors import (
    InvalidIdentifierError,
    TenantAlreadyExistsError,
    TenantNotFoundError,
)
from src.tenancy.core.identifiers import validate_identifier
from src.tenancy.schemas.tenant import TenantRecord
from src.tenancy.services.schema_manager import SchemaManager

logger = structlog.get_logger(__name__)

RESERVED_SCHEMA_NAMES = frozenset(
    {"public", "information_schema", "pg_catalog", "pg_toast", "pg_temp"}
)

DUPLICATE_SCHEMA_SQLSTATE = "42P06"

_UNSAFE_CHARS = re.compile(r"[^a-z0-9_]")


def sanitize_tenant_id(tenant_id: Any) -> str:
    return _UNSAFE_CHARS.sub("_", str(tenant_id).lower())


def parse_tenant_key(value: str, key_type: Callable[[str], Any] = str) -> Any:
    """Turn the tail of a schema name back into a tenant identifier.

    UUIDs lose their hyphens to sanitizing, so the underscores are dropped
    before parsing (``uuid.UUID`` accepts the bare 32-digit hex form).
    """
    if key_type is uuid.UUID:
        return uuid.UUID(value.replace("_", ""))
    return key_type(value)


@dataclass(frozen=True)
class SchemaNamingOptions:
    """Naming policy for tenant schemas."""

    prefix: str = "tenant_"
    archived_prefix: str = "archived_"
    validate_names: bool = True
    name_generator: Callable[[Any], str] | None = None

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> SchemaNamingOptions:
        settings = settings or get_settings()
        return cls(
            prefix=settings.TENANT_SCHEMA_PREFIX,
            archived_prefix=settings.ARCHIVED_SCHEMA_PREFIX,
            validate_names=settings.VALIDATE_SCHEMA_NAMES,
        )


class SchemaPerTenantStrategy:
    """Map tenants to schemas and manage those schemas' lifecycle.

    Args:
        schema_manager: DDL primitives used for every schema operation.
        options: Naming policy; defaults to the configured settings.
        key_type: Parser applied when reverse-mapping schema names to tenant
            identifiers (``str``, ``int`` or ``uuid.UUID``).
    """

    def __init__(
        self,
        schema_manager: SchemaManager,
        options: SchemaNamingOptions | None = None,
        *,
        key_type: Callable[[str], Any] = str,
    ) -> None:
        self.schema_manager = schema_manager
        self.options = options or SchemaNamingOptions.from_settings()
        self.key_type = key_type

    # ── Naming ──────────────────────────────────────────────────────────

    def schema_name_for(self, tenant_id: Any) -> str:
        if tenant_id is None or not str(tenant_id).strip():
            raise InvalidIdentifierError("Tenant", None, "cannot be null or empty")

        if self.options.name_generator is not None:
            schema_name = self.options.name_generator(tenant_id)
        else:
            schema_name = f"{self.options.prefix}{sanitize_tenant_id(tenant_id)}"

        if self.options.validate_names:
            validate_identifier(schema_name)
            if schema_name.lower() in RESERVED_SCHEMA_NAMES:
                raise InvalidIdentifierError("Schema", schema_name, "is reserved")
        return schema_name

    def tenant_id_for(self, schema_name: str) -> Any | None:
        """Reverse-map a schema name, or None when it does not carry the prefix."""
        prefix = self.options.prefix
        if len(schema_name) <= len(prefix) or schema_name[: len(prefix)].lower() != prefix.lower():
            return None
        try:
            return parse_tenant_key(schema_name[len(prefix):], self.key_type)
        except ValueError:
            logger.warning("unparsable_tenant_schema", schema=schema_name)
            return None

    def tenant_id_for_record(self, record: TenantRecord) -> Any:
        """The tenant id that maps back to ``record.schema_name``.

        Registry keys are UUIDs, but the schema was named from whatever id
        the tenant was provisioned with. That id is returned so it can be
        handed straight back to the per-tenant operations.
        """
        try:
            if self.schema_name_for(record.tenant_id) == record.schema_name:
                return record.tenant_id
        except InvalidIdentifierError:
            pass
        tenant_id = self.tenant_id_for(record.schema_name)
        return record.tenant_id if tenant_id is None else tenant_id

    def archived_name_for(self, schema_name: str) -> str:
        archived = f"{self.options.archived_prefix}{schema_name}"
        validate_identifier(archived)
        return archived

    # ── Lifecycle ───────────────────────────────────────────────────────

    async def exists(self, tenant_id: Any) -> bool:
        return await self.schema_manager.schema_exists(self.schema_name_for(tenant_id))

    async def provision(self, tenant_id: Any) -> str:
        """Create the tenant's schema, failing if it already exists."""
        schema_name = self.schema_name_for(tenant_id)
        if await self.schema_manager.schema_exists(schema_name):
            raise TenantAlreadyExistsError(tenant_id, f"schema {schema_name} exists")
        try:
            await self.schema_manager.create_schema(schema_name, if_not_exists=False)
        except DBAPIError as exc:
            if getattr(exc.orig, "sqlstate", None) == DUPLICATE_SCHEMA_SQLSTATE:
                raise TenantAlreadyExistsError(tenant_id, f"schema {schema_name} exists") from exc
            raise
        logger.info("tenant_schema_provisioned", tenant_id=str(tenant_id), schema=schema_name)
        return schema_name

    async def delete(self, tenant_id: Any, *, hard: bool = True) -> str:
        """Drop the schema (hard) or move it aside under a timestamped name (soft).

        Returns the schema name that was dropped, or the name it was moved to.
        """
        schema_name = self.schema_name_for(tenant_id)
        if not await self.schema_manager.schema_exists(schema_name):
            raise TenantNotFoundError(tenant_id)

        if hard:
            await self.schema_manager.drop_schema(schema_name, cascade=True)
            logger.info("tenant_schema_dropped", tenant_id=str(tenant_id), schema=schema_name)
            return schema_name

        stamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
        target = f"{self.options.archived_prefix}{schema_name}_{stamp}"
        validate_identifier(target)
        await self.schema_manager.rename_schema(schema_name, target)
        logger.info("tenant_schema_soft_deleted", tenant_id=str(tenant_id), schema=target)
        return target

    async def archive(self, tenant_id: Any) -> str:
        schema_name = self.schema_name_for(tenant_id)
        archived = self.archived_name_for(schema_name)
        if not await self.schema_manager.schema_exists(schema_name):
            raise TenantNotFoundError(tenant_id)
        if await self.schema_manager.schema_exists(archived):
            raise TenantAlreadyExistsError(tenant_id, f"archive {archived} exists")
        await self.schema_manager.rename_schema(schema_name, archived)
        logger.info("tenant_archived", tenant_id=str(tenant_id), schema=archived)
        return archived

    async def restore(self, tenant_id: Any) -> str:
        schema_name = self.schema_name_for(tenant_id)
        archived = self.archived_name_for(schema_name)
        if not await self.schema_manager.schema_exists(archived):
            raise TenantNotFoundError(tenant_id, f"no archived schema {archived}")
        if await self.schema_manager.schema_exists(schema_name):
            raise TenantAlreadyExistsError(tenant_id, f"schema {schema_name} exists")
        await self.schema_manager.rename_schema(archived, schema_name)
        logger.info("tenant_restored", tenant_id=str(tenant_id), schema=schema_name)
        return schema_name

    async def enumerate(self) -> list[Any]:
        """Tenant identifiers for every live schema carrying the prefix."""
        tenants = []
        for schema_name in await self.schema_manager.list_schemas(self.options.prefix):
            tenant_id = self.tenant_id_for(schema_name)
            if tenant_id is not None:
                tenants.append(tenant_id)
        return tenants
