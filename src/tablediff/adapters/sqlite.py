"""SQLite database file adapter."""

import logging
import os
import sqlite3
from typing import Any

from ..connection import ConnectionDescriptor, ConnectionKind
from ..models import ColumnDescriptor, ValueType
from .sql import DbApiAdapter, SqliteDialect

logger = logging.getLogger(__name__)


def sqlite_value_type(declared: str | None) -> ValueType:
    """Map a declared SQLite column type to a ValueType using affinity rules."""
    decl = (declared or "").upper()
    if not decl:
        return ValueType.OBJECT
    if "BOOL" in decl:
        return ValueType.BOOLEAN
    if "INT" in decl:
        return ValueType.INT64
    if any(t in decl for t in ("CHAR", "CLOB", "TEXT")):
        return ValueType.STRING
    if "BLOB" in decl:
        return ValueType.BYTES
    if any(t in decl for t in ("REAL", "FLOA", "DOUB")):
        return ValueType.DOUBLE
    if any(t in decl for t in ("DATE", "TIME")):
        return ValueType.DATETIME
    if any(t in decl for t in ("DECIMAL", "NUMERIC", "MONEY")):
        return ValueType.DECIMAL
    if "GUID" in decl or "UUID" in decl:
        return ValueType.GUID
    return ValueType.OBJECT


class SqliteAdapter(DbApiAdapter):
    """Tables of a SQLite database file; full read/write capabilities."""

    kind = ConnectionKind.SQLITE
    display_name = "SQLite"
    dialect = SqliteDialect()

    def _open_connection(self, conn: ConnectionDescriptor) -> sqlite3.Connection:
        if not os.path.isfile(conn.target):
            raise FileNotFoundError(f"SQLite database not found: {conn.target}")
        # Batch sessions hand the connection to table workers on other threads
        return sqlite3.connect(conn.target, check_same_thread=False)

    def _list_tables(self, connection: Any) -> list[str]:
        cursor = connection.execute(
            "SELECT name FROM sqlite_master "
            "WHERE type = 'table' AND name NOT LIKE 'sqlite_%' "
            "ORDER BY name"
        )
        return [row[0] for row in cursor.fetchall()]

    def _table_info(self, connection: Any, table: str) -> list[tuple]:
        cursor = connection.execute(f"PRAGMA table_info({self.dialect.quote(table)})")
        return cursor.fetchall()

    def _key_columns(self, connection: Any, table: str) -> list[str]:
        # table_info rows: cid, name, type, notnull, dflt_value, pk (1-based position)
        info = self._table_info(connection, table)
        keyed = sorted((row[5], row[1]) for row in info if row[5])
        return [name for _, name in keyed]

    def _column_schema(self, connection: Any, table: str) -> list[ColumnDescriptor]:
        return [
            ColumnDescriptor(row[1], sqlite_value_type(row[2]))
            for row in self._table_info(connection, table)
        ]
