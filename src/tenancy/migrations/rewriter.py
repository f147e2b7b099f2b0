"""Retarget a generic migration script at one tenant schema.

This is a narrow text transform over the exact shapes ``MigrationSource``
emits, not a SQL parser:

1. schema-creation side effects (the ``DO $...$`` ensure-schema block and
   bare ``CREATE SCHEMA`` statements) are removed; the runner has already
   created the tenant schema;
2. ``CREATE TABLE`` / ``INSERT INTO`` / ``DELETE FROM`` / ``UPDATE`` on the
   history table gain the tenant schema qualifier;
3. ``SET search_path TO "<tenant>", "<default>";`` is prepended so the
   unqualified body resolves into the tenant schema.

``verify_rewritten`` fails loudly when the output does not have the
expected shape, which is what catches a change in the generated format.
"""

from __future__ import annotations

import re
from collections.abc import Iterable

from src.tenancy.core.errors import MigrationScriptFormatError
from src.tenancy.core.identifiers import escape_identifier, quote_identifier

_ENSURE_SCHEMA_BLOCK = re.compile(
    r"DO\s+\$(?P<tag>\w*)\$\s*"
    r"BEGIN\s+"
    r"IF\s+NOT\s+EXISTS\s*\(\s*SELECT\s+1\s+FROM\s+pg_namespace\s+WHERE\s+nspname\s*=\s*'(?:[^']|'')*'\s*\)\s*THEN\s+"
    r"CREATE\s+SCHEMA\s+[^;]+;\s*"
    r"END\s+IF;\s*"
    r"END\s+\$(?P=tag)\$;[ \t]*\n?",
    re.IGNORECASE,
)

_CREATE_SCHEMA_STATEMENT = re.compile(
    r"^[ \t]*CREATE\s+SCHEMA\b[^;]*;[ \t]*\n?",
    re.IGNORECASE | re.MULTILINE,
)


def _history_reference(history_table: str) -> str:
    return re.escape(f'"{escape_identifier(history_table)}"')


def strip_schema_creation(sql: str) -> str:
    sql = _ENSURE_SCHEMA_BLOCK.sub("", sql)
    return _CREATE_SCHEMA_STATEMENT.sub("", sql)


def qualify_history_table(sql: str, schema_name: str, history_table: str) -> str:
    qualified = f"{quote_identifier(schema_name)}.{quote_identifier(history_table, 'Table')}"
    reference = _history_reference(history_table)

    sql = re.sub(
        rf"\bCREATE\s+TABLE\s+(?:IF\s+NOT\s+EXISTS\s+)?{reference}",
        lambda _: f"CREATE TABLE IF NOT EXISTS {qualified}",
        sql,
        flags=re.IGNORECASE,
    )
    return re.sub(
        rf"\b(INSERT\s+INTO|DELETE\s+FROM|UPDATE)\s+{reference}",
        lambda match: f"{match.group(1).upper()} {qualified}",
        sql,
        flags=re.IGNORECASE,
    )


def search_path_statement(schema_name: str, default_schema: str = "public") -> str:
    return f"SET search_path TO {quote_identifier(schema_name)}, {quote_identifier(default_schema)};"


def rewrite_for_schema(
    sql: str,
    schema_name: str,
    history_table: str,
    default_schema: str = "public",
) -> str:
    """Return ``sql`` rewritten to run inside ``schema_name``."""
    body = strip_schema_creation(sql)
    body = qualify_history_table(body, schema_name, history_table)
    return f"{search_path_statement(schema_name, default_schema)}\n\n{body.lstrip()}"


def verify_rewritten(
    sql: str,
    schema_name: str,
    history_table: str,
    migration_ids: Iterable[str] = (),
) -> None:
    """Check a rewritten script still has the shape the runner relies on.

    Raises:
        MigrationScriptFormatError: when schema creation survived, a history
            reference is left unqualified, or a migration lacks its history
            INSERT.
    """
    if _ENSURE_SCHEMA_BLOCK.search(sql) or _CREATE_SCHEMA_STATEMENT.search(sql):
        raise MigrationScriptFormatError(
            "Schema creation statement survived rewriting", schema_name=schema_name
        )

    reference = _history_reference(history_table)
    unqualified = re.search(rf'(?<![."\w]){reference}', sql)
    if unqualified:
        raise MigrationScriptFormatError(
            f"Unqualified reference to history table {history_table} near offset {unqualified.start()}",
            schema_name=schema_name,
        )

    qualified = re.escape(f"{quote_identifier(schema_name)}.{quote_identifier(history_table, 'Table')}")
    for migration_id in migration_ids:
        literal = re.escape("'" + migration_id.replace("'", "''") + "'")
        if not re.search(
            rf"INSERT INTO {qualified}\s*\([^)]*\)\s*VALUES\s*\(\s*{literal}", sql
        ):
            raise MigrationScriptFormatError(
                f"No history INSERT for migration {migration_id}", schema_name=schema_name
            )
