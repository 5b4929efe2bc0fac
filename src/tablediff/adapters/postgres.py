"""
PostgreSQL adapter (psycopg2).

Tables are listed from ``current_schema()``. Full loads and hash maps stream
through a server-side (named) cursor so large tables are never held in the
client buffer twice. Connection attempts are retried on transient errors.
"""

import itertools
import logging
from typing import Any

import psycopg2

from utils.retry import retry_database_operation

from ..connection import ConnectionDescriptor, ConnectionKind, mask_password
from ..models import ColumnDescriptor, ValueType
from .sql import DbApiAdapter, PostgresDialect

logger = logging.getLogger(__name__)

LIST_TABLES_SQL = """
    SELECT table_name
    FROM information_schema.tables
    WHERE table_type = 'BASE TABLE'
      AND table_schema = current_schema()
    ORDER BY table_name
"""

PRIMARY_KEY_SQL = """
    SELECT kcu.column_name
    FROM information_schema.table_constraints tc
    JOIN information_schema.key_column_usage kcu
      ON kcu.constraint_name = tc.constraint_name
     AND kcu.table_schema = tc.table_schema
     AND kcu.table_name = tc.table_name
    WHERE tc.constraint_type = 'PRIMARY KEY'
      AND kcu.table_name = %s
      AND kcu.table_schema = current_schema()
    ORDER BY kcu.ordinal_position
"""

COLUMNS_SQL = """
    SELECT column_name, data_type
    FROM information_schema.columns
    WHERE table_name = %s
      AND table_schema = current_schema()
    ORDER BY ordinal_position
"""

POSTGRES_TYPES = {
    "smallint": ValueType.INT16,
    "integer": ValueType.INT32,
    "bigint": ValueType.INT64,
    "boolean": ValueType.BOOLEAN,
    "real": ValueType.FLOAT,
    "double precision": ValueType.DOUBLE,
    "numeric": ValueType.DECIMAL,
    "money": ValueType.DECIMAL,
    "text": ValueType.STRING,
    "character varying": ValueType.STRING,
    "character": ValueType.STRING,
    "citext": ValueType.STRING,
    "uuid": ValueType.GUID,
    "bytea": ValueType.BYTES,
    "date": ValueType.DATETIME,
    "timestamp without time zone": ValueType.DATETIME,
    "timestamp with time zone": ValueType.DATETIME,
    "time without time zone": ValueType.DATETIME,
    "time with time zone": ValueType.DATETIME,
}

_cursor_ids = itertools.count(1)


def postgres_value_type(data_type: str | None) -> ValueType:
    return POSTGRES_TYPES.get((data_type or "").lower(), ValueType.OBJECT)


@retry_database_operation(max_retries=3, base_delay=0.5)
def connect_postgres(dsn: str) -> Any:
    """Open a psycopg2 connection, retrying transient failures."""
    return psycopg2.connect(dsn)


class PostgresAdapter(DbApiAdapter):
    """Tables of the current schema of a PostgreSQL database."""

    kind = ConnectionKind.POSTGRES
    display_name = "PostgreSQL"
    dialect = PostgresDialect()

    def _open_connection(self, conn: ConnectionDescriptor) -> Any:
        logger.debug(f"Connecting to {mask_password(conn.target)}")
        return connect_postgres(conn.target)

    def _read_cursor(self, connection: Any) -> Any:
        cursor = connection.cursor(name=f"tablediff_read_{next(_cursor_ids)}")
        cursor.itersize = self.fetch_size
        return cursor

    def _end_read(self, connection: Any) -> None:
        # Close the implicit read transaction so batch connections do not idle in one
        if not connection.closed:
            connection.rollback()

    def _list_tables(self, connection: Any) -> list[str]:
        with connection.cursor() as cursor:
            cursor.execute(LIST_TABLES_SQL)
            return [row[0] for row in cursor.fetchall() if row[0]]

    def _key_columns(self, connection: Any, table: str) -> list[str]:
        with connection.cursor() as cursor:
            cursor.execute(PRIMARY_KEY_SQL, (table,))
            return [row[0] for row in cursor.fetchall()]

    def _column_schema(self, connection: Any, table: str) -> list[ColumnDescriptor]:
        with connection.cursor() as cursor:
            cursor.execute(COLUMNS_SQL, (table,))
            return [
                ColumnDescriptor(name, postgres_value_type(data_type))
                for name, data_type in cursor.fetchall()
            ]
