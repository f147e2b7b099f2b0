"""Schema DDL primitives.

Every statement interpolates identifiers through ``quote_identifier``, which
validates before escaping; names never reach the database unvalidated.
Driver errors propagate unchanged: nothing here retries.
"""

from __future__ import annotations

import logging

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from src.tenancy.core.identifiers import quote_identifier, validate_identifier

logger = logging.getLogger(__name__)


# ── DDL builders ────────────────────────────────────────────────────────────


def create_schema_sql(schema_name: str, if_not_exists: bool = True) -> str:
    clause = "IF NOT EXISTS " if if_not_exists else ""
    return f"CREATE SCHEMA {clause}{quote_identifier(schema_name)}"


def drop_schema_sql(schema_name: str, cascade: bool = True) -> str:
    mode = "CASCADE" if cascade else "RESTRICT"
    return f"DROP SCHEMA IF EXISTS {quote_identifier(schema_name)} {mode}"


def rename_schema_sql(old_name: str, new_name: str) -> str:
    return f"ALTER SCHEMA {quote_identifier(old_name)} RENAME TO {quote_identifier(new_name)}"


def grant_usage_sql(schema_name: str, role: str) -> str:
    return f"GRANT USAGE ON SCHEMA {quote_identifier(schema_name)} TO {quote_identifier(role, 'Role')}"


def grant_all_tables_sql(schema_name: str, role: str) -> str:
    return (
        f"GRANT ALL PRIVILEGES ON ALL TABLES IN SCHEMA {quote_identifier(schema_name)} "
        f"TO {quote_identifier(role, 'Role')}"
    )


def revoke_all_tables_sql(schema_name: str, role: str) -> str:
    return (
        f"REVOKE ALL PRIVILEGES ON ALL TABLES IN SCHEMA {quote_identifier(schema_name)} "
        f"FROM {quote_identifier(role, 'Role')}"
    )


def like_prefix_pattern(prefix: str) -> str:
    """LIKE pattern matching names that start with ``prefix`` literally."""
    escaped = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"{escaped}%"


# ── Schema Manager ──────────────────────────────────────────────────────────


class SchemaManager:
    """Create, drop, rename, list and grant on PostgreSQL schemas.

    Each method runs in its own transaction unless a ``connection`` is
    passed, in which case the caller owns the transaction.
    """

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    async def _execute(self, sql: str, connection: AsyncConnection | None) -> None:
        if connection is not None:
            await connection.execute(text(sql))
            return
        async with self._engine.begin() as conn:
            await conn.execute(text(sql))

    async def create_schema(
        self,
        schema_name: str,
        *,
        if_not_exists: bool = True,
        connection: AsyncConnection | None = None,
    ) -> None:
        """CREATE SCHEMA, failing on duplicates unless ``if_not_exists``."""
        await self._execute(create_schema_sql(schema_name, if_not_exists), connection)
        logger.info("Schema created: %s", schema_name)

    async def drop_schema(
        self,
        schema_name: str,
        *,
        cascade: bool = True,
        connection: AsyncConnection | None = None,
    ) -> None:
        """DROP SCHEMA IF EXISTS, with CASCADE or RESTRICT."""
        await self._execute(drop_schema_sql(schema_name, cascade), connection)
        logger.info("Schema dropped: %s (cascade=%s)", schema_name, cascade)

    async def schema_exists(self, schema_name: str, *, connection: AsyncConnection | None = None) -> bool:
        validate_identifier(schema_name)
        query = text(
            "SELECT EXISTS(SELECT 1 FROM information_schema.schemata "
            "WHERE schema_name = :schema)"
        )
        if connection is not None:
            result = await connection.execute(query, {"schema": schema_name})
            return bool(result.scalar())
        async with self._engine.connect() as conn:
            result = await conn.execute(query, {"schema": schema_name})
            return bool(result.scalar())

    async def list_schemas(self, prefix: str) -> list[str]:
        """Schema names starting with ``prefix``, in name order."""
        validate_identifier(prefix, "Schema prefix")
        async with self._engine.connect() as conn:
            result = await conn.execute(
                text(
                    "SELECT schema_name FROM information_schema.schemata "
                    "WHERE schema_name LIKE :pattern ESCAPE '\\' "
                    "ORDER BY schema_name"
                ),
                {"pattern": like_prefix_pattern(prefix)},
            )
            return [row[0] for row in result]

    async def rename_schema(self, old_name: str, new_name: str) -> None:
        await self._execute(rename_schema_sql(old_name, new_name), None)
        logger.info("Schema renamed: %s -> %s", old_name, new_name)

    async def grant_usage(self, schema_name: str, role: str) -> None:
        await self._execute(grant_usage_sql(schema_name, role), None)

    async def grant_all_on_tables(self, schema_name: str, role: str) -> None:
        await self._execute(grant_all_tables_sql(schema_name, role), None)
        logger.info("Granted all on tables in %s to %s", schema_name, role)

    async def revoke_all_on_tables(self, schema_name: str, role: str) -> None:
        await self._execute(revoke_all_tables_sql(schema_name, role), None)
        logger.info("Revoked all on tables in %s from %s", schema_name, role)
