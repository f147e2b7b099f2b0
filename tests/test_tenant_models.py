"""Tests for the per-tenant ORM models."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.dialects import postgresql
from sqlalchemy.schema import CreateTable

from src.tenancy.core.database import TenantBase
from src.tenancy.models.tenant import ApiKey, User


def ddl(model) -> str:
    return str(CreateTable(model.__table__).compile(dialect=postgresql.dialect()))


def test_tables_carry_no_schema():
    assert {table.schema for table in TenantBase.metadata.sorted_tables} == {None}
    assert [table.name for table in TenantBase.metadata.sorted_tables] == ["users", "api_keys"]


def test_ddl_is_unqualified():
    assert ddl(User).strip().startswith("CREATE TABLE users (")
    assert "REFERENCES users (id) ON DELETE CASCADE" in ddl(ApiKey)


def test_queries_resolve_through_search_path():
    sql = str(select(User).where(User.email == "ann@example.com").compile(dialect=postgresql.dialect()))
    assert "FROM users" in sql
    assert "." not in sql.split("FROM", 1)[1].split("WHERE", 1)[0].strip()
