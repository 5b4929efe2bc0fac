"""
SQL repair script generation from approved row pairs.

Renders the statements an apply would execute against a SQL-backed target,
with literal values, so the change can be reviewed or run by hand. Pairs are
grouped by classification: inserts for rows only in the source, deletes for
rows only in the target, updates for differing rows.
"""

import uuid
from collections.abc import Sequence
from datetime import UTC, date, datetime, time
from decimal import Decimal
from typing import Any

from opentelemetry import trace

from utils.tracing import trace_operation

from ..adapters.sql import (
    AccessDialect,
    PostgresDialect,
    SqlDialect,
    SqliteDialect,
    row_value,
)
from ..hashing import canonical_text
from ..models import DiffType, RowPair

DIALECTS: dict[str, type[SqlDialect]] = {
    "postgresql": PostgresDialect,
    "postgres": PostgresDialect,
    "sqlite": SqliteDialect,
    "access": AccessDialect,
}


def get_dialect(dialect: SqlDialect | str) -> SqlDialect:
    """Dialect instance from an instance or a name."""
    if isinstance(dialect, SqlDialect):
        return dialect
    try:
        return DIALECTS[dialect.lower()]()
    except KeyError:
        raise ValueError(
            f"Unknown SQL dialect '{dialect}'; expected one of {sorted(DIALECTS)}"
        ) from None


def generate_repair_script(
    table: str,
    key_columns: Sequence[str],
    pairs: Sequence[RowPair],
    dialect: SqlDialect | str = "postgresql",
) -> str:
    """
    Generate a SQL script equivalent to applying ``pairs`` to the target.

    Args:
        table: Target table name
        key_columns: Resolved key columns
        pairs: Approved row pairs
        dialect: Target dialect, as an instance or ``postgresql``/``sqlite``/``access``

    Returns:
        SQL script wrapped in a transaction
    """
    sql = get_dialect(dialect)
    keys = list(key_columns)

    with trace_operation(
        "generate_repair_script",
        kind=trace.SpanKind.INTERNAL,
        table=table,
        pair_count=len(pairs),
    ):
        script_lines = [
            f"-- Repair script for {table}",
            f"-- Generated: {datetime.now(UTC).isoformat()}",
            f"-- Row pairs: {len(pairs)}",
            f"-- Dialect: {sql.name}",
            "",
            "BEGIN TRANSACTION;" if isinstance(sql, AccessDialect) else "BEGIN;",
            "",
        ]

        missing = [p for p in pairs if p.diff_type == DiffType.ONLY_IN_SOURCE]
        extra = [p for p in pairs if p.diff_type == DiffType.ONLY_IN_TARGET]
        modified = [p for p in pairs if p.diff_type == DiffType.DIFFERENT]

        if missing:
            script_lines.append(f"-- Insert {len(missing)} rows missing from the target")
            script_lines.append("")
            for pair in missing:
                script_lines.append(f"-- Missing row: {pair.key}")
                key_values = [row_value(pair.source, k) for k in keys]
                # Delete first so the script can be re-run
                script_lines.append(_delete_sql(sql, table, keys, key_values))
                script_lines.append(_insert_sql(sql, table, pair.source))
                script_lines.append("")

        if extra:
            script_lines.append(f"-- Delete {len(extra)} rows not in the source")
            script_lines.append("")
            for pair in extra:
                script_lines.append(f"-- Extra row: {pair.key}")
                key_values = [row_value(pair.target, k) for k in keys]
                script_lines.append(_delete_sql(sql, table, keys, key_values))
                script_lines.append("")

        if modified:
            script_lines.append(f"-- Update {len(modified)} modified rows")
            script_lines.append("")
            for pair in modified:
                script_lines.append(f"-- Modified row: {pair.key}")
                if pair.changed_columns:
                    script_lines.append(f"-- Modified columns: {', '.join(pair.changed_columns)}")
                key_values = [row_value(pair.target, k) for k in keys]
                script_lines.append(_update_sql(sql, table, keys, key_values, pair.source))
                script_lines.append("")

        script_lines.append("COMMIT;")
        return "\n".join(script_lines)


def _where(sql: SqlDialect, keys: Sequence[str], values: Sequence[Any]) -> str:
    parts = []
    for column, value in zip(keys, values):
        if value is None:
            parts.append(f"{sql.quote(column)} IS NULL")
        else:
            parts.append(f"{sql.quote(column)} = {_format_value(value, sql)}")
    return " AND ".join(parts)


def _insert_sql(sql: SqlDialect, table: str, data: dict[str, Any]) -> str:
    if not data:
        return "-- Cannot generate INSERT: no data"
    columns = ", ".join(sql.quote(c) for c in data)
    values = ", ".join(_format_value(v, sql) for v in data.values())
    return f"INSERT INTO {sql.quote(table)} ({columns}) VALUES ({values});"


def _delete_sql(sql: SqlDialect, table: str, keys: Sequence[str], values: Sequence[Any]) -> str:
    if not keys:
        return "-- Cannot generate DELETE: no key columns"
    return f"DELETE FROM {sql.quote(table)} WHERE {_where(sql, keys, values)};"


def _update_sql(
    sql: SqlDialect,
    table: str,
    keys: Sequence[str],
    key_values: Sequence[Any],
    data: dict[str, Any],
) -> str:
    lowered_keys = {k.lower() for k in keys}
    assignments = [
        f"{sql.quote(column)} = {_format_value(value, sql)}"
        for column, value in data.items()
        if column.lower() not in lowered_keys
    ]
    if not keys or not assignments:
        return "-- Cannot generate UPDATE: no key columns or nothing to set"
    return (
        f"UPDATE {sql.quote(table)} SET {', '.join(assignments)} "
        f"WHERE {_where(sql, keys, key_values)};"
    )


def _quote_text(text: str) -> str:
    escaped = text.replace("'", "''")
    return f"'{escaped}'"


def _format_value(value: Any, sql: SqlDialect) -> str:
    """Format a value as a SQL literal."""
    if value is None:
        return "NULL"

    if isinstance(value, bool):
        if isinstance(sql, PostgresDialect):
            return "TRUE" if value else "FALSE"
        return "1" if value else "0"

    if isinstance(value, (int, float, Decimal)):
        return canonical_text(value)

    if isinstance(value, (datetime, date, time)):
        if isinstance(sql, AccessDialect):
            return f"#{canonical_text(value)}#"
        return _quote_text(canonical_text(value))

    if isinstance(value, (bytes, bytearray, memoryview)):
        data = bytes(value).hex()
        if isinstance(sql, PostgresDialect):
            return f"'\\x{data}'::bytea"
        if isinstance(sql, SqliteDialect):
            return f"X'{data}'"
        return f"0x{data}"

    if isinstance(value, uuid.UUID):
        return _quote_text(str(value))

    return _quote_text(str(value))
