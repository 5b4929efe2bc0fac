"""
SQL identifier quoting for the DB-like backends.

Table and column names come from the databases being compared and may hold
spaces or non-ASCII letters (Access tables often do), so identifiers are
quoted rather than pattern-validated. Characters that cannot be quoted safely
for a dialect are rejected.
"""

from typing import Any


def _validate(identifier: str) -> None:
    if not identifier or not identifier.strip():
        raise ValueError("Identifier must not be empty")
    if "\x00" in identifier:
        raise ValueError(f"Invalid identifier (NUL character): {identifier!r}")


def quote_double(identifier: str) -> str:
    """
    ANSI double-quote quoting with embedded quotes doubled (SQLite, PostgreSQL).

    Raises:
        ValueError: If the identifier is empty or contains NUL
    """
    _validate(identifier)
    return '"' + identifier.replace('"', '""') + '"'


def quote_postgres_identifier(identifier: str, context: Any = None) -> str:
    """
    Quote a PostgreSQL identifier, optionally via psycopg2.sql.Identifier.

    Args:
        identifier: Unqualified table or column name
        context: Connection or cursor for psycopg2 rendering (None: manual quoting)

    Raises:
        ValueError: If the identifier is empty or contains NUL
    """
    _validate(identifier)
    if context is None:
        return quote_double(identifier)
    from psycopg2 import sql

    return sql.Identifier(identifier).as_string(context)


def quote_bracket(identifier: str) -> str:
    """
    Bracket quoting for Access/Jet SQL.

    Raises:
        ValueError: If the identifier is empty, contains NUL, or contains a
            closing bracket, which Jet cannot escape
    """
    _validate(identifier)
    if "]" in identifier or "[" in identifier:
        raise ValueError(f"Invalid identifier (brackets not allowed): {identifier!r}")
    return f"[{identifier}]"
