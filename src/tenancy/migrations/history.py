"""Per-tenant migration history table.

Every tenant schema carries its own history table; it is the only record of
which migrations a tenant has. Queries always name the table with its
schema, never through search_path.
"""

from __future__ import annotations

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection

from src.tenancy.core.identifiers import quote_identifier

MIGRATION_ID_LENGTH = 150
PRODUCT_VERSION_LENGTH = 32


def qualified_history_table(schema_name: str, history_table: str) -> str:
    return f"{quote_identifier(schema_name)}.{quote_identifier(history_table, 'Table')}"


def history_table_ddl(history_table: str, schema_name: str | None = None) -> str:
    """CREATE TABLE IF NOT EXISTS for the history table, optionally schema-qualified."""
    table = quote_identifier(history_table, "Table")
    target = qualified_history_table(schema_name, history_table) if schema_name else table
    constraint = quote_identifier(f"pk_{history_table}"[:63], "Constraint")
    return (
        f"CREATE TABLE IF NOT EXISTS {target} (\n"
        f'    "MigrationId" character varying({MIGRATION_ID_LENGTH}) NOT NULL,\n'
        f'    "ProductVersion" character varying({PRODUCT_VERSION_LENGTH}) NOT NULL,\n'
        f'    CONSTRAINT {constraint} PRIMARY KEY ("MigrationId")\n'
        ");"
    )


async def history_table_exists(conn: AsyncConnection, schema_name: str, history_table: str) -> bool:
    result = await conn.execute(
        text("SELECT to_regclass(:name) IS NOT NULL"),
        {"name": qualified_history_table(schema_name, history_table)},
    )
    return bool(result.scalar())


async def read_applied_migrations(
    conn: AsyncConnection, schema_name: str, history_table: str
) -> list[str]:
    """Applied migration ids recorded in ``schema_name``; empty when no table exists yet."""
    if not await history_table_exists(conn, schema_name, history_table):
        return []
    result = await conn.execute(
        text(
            f'SELECT "MigrationId" FROM {qualified_history_table(schema_name, history_table)} '
            'ORDER BY "MigrationId"'
        )
    )
    return [row[0] for row in result]
