"""Validation and quoting of SQL identifiers used in DDL.

Schema and role names can never be bind parameters, so every statement that
interpolates one must call ``quote_identifier`` (which validates first).
"""

from __future__ import annotations

import re

from src.tenancy.core.errors import InvalidIdentifierError

MAX_IDENTIFIER_LENGTH = 63

_VALID_CHARS = re.compile(r"[A-Za-z0-9_]+")


def validate_identifier(name: str | None, kind: str = "Schema") -> None:
    """Reject anything that is not ``[A-Za-z_][A-Za-z0-9_]*`` of at most 63 chars.

    Raises:
        InvalidIdentifierError: describing the first rule the name breaks.
    """
    if name is None or not name.strip():
        raise InvalidIdentifierError(kind, name, "cannot be null or empty")
    if len(name) > MAX_IDENTIFIER_LENGTH:
        raise InvalidIdentifierError(
            kind, name, f"exceeds maximum length of {MAX_IDENTIFIER_LENGTH} characters"
        )
    if not _VALID_CHARS.fullmatch(name):
        bad = next(ch for ch in name if not (ch.isascii() and (ch.isalnum() or ch == "_")))
        raise InvalidIdentifierError(kind, name, f"contains invalid character {bad!r}")
    if not (name[0].isalpha() or name[0] == "_"):
        raise InvalidIdentifierError(kind, name, "must start with a letter or underscore")


def is_valid_identifier(name: str | None) -> bool:
    try:
        validate_identifier(name)
    except InvalidIdentifierError:
        return False
    return True


def escape_identifier(name: str) -> str:
    """Double embedded double quotes for use inside a quoted identifier."""
    return name.replace('"', '""')


def quote_identifier(name: str, kind: str = "Schema") -> str:
    """Validate ``name`` and return it as a double-quoted SQL identifier."""
    validate_identifier(name, kind)
    return f'"{escape_identifier(name)}"'
