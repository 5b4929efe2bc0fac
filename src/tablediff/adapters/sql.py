"""
Shared implementation for DB-API backed adapters (SQLite, PostgreSQL, Access).

Subclasses provide the driver connection, catalog queries and a SqlDialect;
this module provides full loads, streamed key->hash maps, transactional
apply/replace/drop and batch connection reuse on top of them.
"""

import logging
import threading
import uuid
from abc import abstractmethod
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, TypeVar

from utils.tracing import trace_backend_call

from ..connection import ConnectionDescriptor
from ..errors import ApplyFailure
from ..models import (
    ColumnDescriptor,
    DiffType,
    ProviderCapabilities,
    RowPair,
    TableSnapshot,
    ValueType,
)
from ..session import BatchHandle, active_handle
from .base import (
    BackendAdapter,
    BatchSupport,
    FastHashSupport,
    build_key_hash_map,
    check_cancelled,
    find_column,
)
from .quoting import quote_bracket, quote_double, quote_postgres_identifier

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SqlDialect:
    """Identifier quoting, placeholder style and parameter adaptation."""

    name = "ansi"
    placeholder = "?"

    def quote(self, identifier: str) -> str:
        return quote_double(identifier)

    def adapt_value(self, value: Any) -> Any:
        if isinstance(value, uuid.UUID):
            return str(value)
        return value


class SqliteDialect(SqlDialect):
    name = "sqlite"

    def adapt_value(self, value: Any) -> Any:
        if isinstance(value, (Decimal, uuid.UUID)):
            return str(value)
        if isinstance(value, datetime):
            return value.isoformat(sep=" ")
        if isinstance(value, (date, time)):
            return value.isoformat()
        if isinstance(value, memoryview):
            return bytes(value)
        return value


class PostgresDialect(SqlDialect):
    name = "postgresql"
    placeholder = "%s"

    def quote(self, identifier: str) -> str:
        return quote_postgres_identifier(identifier)


class AccessDialect(SqlDialect):
    name = "access"

    def quote(self, identifier: str) -> str:
        return quote_bracket(identifier)


def row_value(row: dict[str, Any], column: str) -> Any:
    """Look up a row value by column, falling back to a case-insensitive match."""
    if column in row:
        return row[column]
    lowered = column.lower()
    for name, value in row.items():
        if name.lower() == lowered:
            return value
    return None


def where_by_key(
    dialect: SqlDialect,
    key_columns: Sequence[str],
    values: Sequence[Any],
) -> tuple[str, list[Any]]:
    """WHERE clause matching a key; NULL key values use IS NULL."""
    parts = []
    params = []
    for column, value in zip(key_columns, values):
        quoted = dialect.quote(column)
        if value is None:
            parts.append(f"{quoted} IS NULL")
        else:
            parts.append(f"{quoted} = {dialect.placeholder}")
            params.append(dialect.adapt_value(value))
    return " AND ".join(parts), params


def build_insert(
    dialect: SqlDialect,
    table: str,
    row: dict[str, Any],
    target_columns: Sequence[str],
) -> tuple[str, list[Any]]:
    """
    INSERT for the row's columns that exist in the target table.

    Raises:
        ValueError: If the row shares no column with the target table
    """
    columns = []
    params = []
    for name, value in row.items():
        index = find_column(target_columns, name)
        if index is None:
            continue
        columns.append(dialect.quote(target_columns[index]))
        params.append(dialect.adapt_value(value))

    if not columns:
        raise ValueError(f"Row has no columns in common with {table}")

    placeholders = ", ".join([dialect.placeholder] * len(columns))
    statement = (
        f"INSERT INTO {dialect.quote(table)} ({', '.join(columns)}) VALUES ({placeholders})"
    )
    return statement, params


def build_update(
    dialect: SqlDialect,
    table: str,
    key_columns: Sequence[str],
    source: dict[str, Any],
    key_values: Sequence[Any],
    target_columns: Sequence[str],
) -> tuple[str, list[Any]] | None:
    """UPDATE of the non-key columns; None when nothing is left to set."""
    assignments = []
    params = []
    for name, value in source.items():
        if find_column(key_columns, name) is not None:
            continue
        index = find_column(target_columns, name)
        if index is None:
            continue
        assignments.append(f"{dialect.quote(target_columns[index])} = {dialect.placeholder}")
        params.append(dialect.adapt_value(value))

    if not assignments:
        return None

    where, where_params = where_by_key(dialect, key_columns, key_values)
    statement = f"UPDATE {dialect.quote(table)} SET {', '.join(assignments)} WHERE {where}"
    return statement, params + where_params


def build_delete(
    dialect: SqlDialect,
    table: str,
    key_columns: Sequence[str],
    key_values: Sequence[Any],
) -> tuple[str, list[Any]]:
    where, params = where_by_key(dialect, key_columns, key_values)
    return f"DELETE FROM {dialect.quote(table)} WHERE {where}", params


class DbApiAdapter(BackendAdapter, FastHashSupport, BatchSupport):
    """
    Base for adapters backed by a DB-API 2.0 driver.

    Every driver call goes through ``_call`` so adapters with thread-affinity
    requirements can route them to a dedicated worker.
    """

    dialect: SqlDialect = SqlDialect()
    fetch_size = 5000

    @abstractmethod
    def _open_connection(self, conn: ConnectionDescriptor) -> Any:
        """Open a new driver connection."""

    @abstractmethod
    def _list_tables(self, connection: Any) -> list[str]:
        """User table names."""

    @abstractmethod
    def _key_columns(self, connection: Any, table: str) -> list[str]:
        """Primary key columns in key order."""

    @abstractmethod
    def _column_schema(self, connection: Any, table: str) -> list[ColumnDescriptor]:
        """Columns with declared types in table order."""

    def _call(self, conn: ConnectionDescriptor, func: Callable[..., T], *args, **kwargs) -> T:
        return func(*args, **kwargs)

    def _read_cursor(self, connection: Any) -> Any:
        return connection.cursor()

    def _end_read(self, connection: Any) -> None:
        """Hook run after a read finishes on a connection."""

    @contextmanager
    def _connect(self, conn: ConnectionDescriptor) -> Iterator[Any]:
        handle = active_handle(conn)
        if handle is not None:
            with handle.lock:
                yield handle.resource
            return

        connection = self._open_connection(conn)
        try:
            yield connection
        finally:
            connection.close()

    def _iter_rows(self, cursor: Any) -> Iterator[tuple]:
        while True:
            batch = cursor.fetchmany(self.fetch_size)
            if not batch:
                return
            for row in batch:
                yield tuple(row)

    # Batch

    def begin_batch(self, conn: ConnectionDescriptor) -> BatchHandle:
        connection = self._call(conn, self._open_connection, conn)
        return BatchHandle(
            resource=connection,
            close=lambda: self._call(conn, connection.close),
        )

    # Reads

    def get_capabilities(self, conn: ConnectionDescriptor) -> ProviderCapabilities:
        return ProviderCapabilities.FULL

    def list_tables(self, conn: ConnectionDescriptor) -> list[str]:
        def work():
            with self._connect(conn) as connection:
                try:
                    return self._list_tables(connection)
                finally:
                    self._end_read(connection)

        return self._call(conn, work)

    def get_key_columns(self, conn: ConnectionDescriptor, table: str) -> list[str]:
        def work():
            with self._connect(conn) as connection:
                try:
                    return self._key_columns(connection, table)
                finally:
                    self._end_read(connection)

        return self._call(conn, work)

    def get_column_schema(self, conn: ConnectionDescriptor, table: str) -> list[ColumnDescriptor]:
        def work():
            with self._connect(conn) as connection:
                try:
                    return self._column_schema(connection, table)
                finally:
                    self._end_read(connection)

        return self._call(conn, work)

    def _select_all(self, connection: Any, table: str) -> tuple[Any, list[str], Iterator[tuple]]:
        cursor = self._read_cursor(connection)
        cursor.execute(f"SELECT * FROM {self.dialect.quote(table)}")
        rows = self._iter_rows(cursor)
        # Named (server-side) cursors only describe themselves after the first fetch
        first = next(rows, None)
        names = [d[0] for d in (cursor.description or [])]

        def chained() -> Iterator[tuple]:
            if first is None:
                return
            yield first
            yield from rows

        return cursor, names, chained()

    def load_full_table(
        self,
        conn: ConnectionDescriptor,
        table: str,
        cancel_token: threading.Event | None = None,
    ) -> TableSnapshot:
        def work():
            with self._connect(conn) as connection:
                try:
                    schema = self._column_schema(connection, table)
                    types = {c.name.lower(): c.value_type for c in schema}
                    cursor, names, rows = self._select_all(connection, table)
                    try:
                        data = []
                        for row in rows:
                            check_cancelled(cancel_token, table)
                            data.append(row)
                    finally:
                        cursor.close()
                finally:
                    self._end_read(connection)

            columns = [
                ColumnDescriptor(n, types.get(n.lower(), ValueType.OBJECT)) for n in names
            ]
            if not columns:
                columns = list(schema)
            return TableSnapshot(table, columns, data)

        return self._call(conn, work)

    def load_key_hash_map(
        self,
        conn: ConnectionDescriptor,
        table: str,
        key_columns: Sequence[str],
        schema: Sequence[ColumnDescriptor],
        cancel_token: threading.Event | None = None,
    ) -> dict[str, int]:
        def work():
            with trace_backend_call("HASH_SCAN", table, self.dialect.name), self._connect(conn) as connection:
                try:
                    cursor, names, rows = self._select_all(connection, table)
                    try:
                        return build_key_hash_map(
                            rows, names, key_columns, schema, table, cancel_token
                        )
                    finally:
                        cursor.close()
                finally:
                    self._end_read(connection)

        return self._call(conn, work)

    # Mutations

    def _execute(self, cursor: Any, statement: tuple[str, list[Any]]) -> int:
        sql_text, params = statement
        logger.debug(f"{self.dialect.name}: {sql_text} {params}")
        cursor.execute(sql_text, params)
        return cursor.rowcount

    def _transaction(
        self,
        conn: ConnectionDescriptor,
        table: str,
        body: Callable[[Any, Any, list[str], list[str]], T],
    ) -> T:
        """
        Run ``body(connection, cursor, target_columns, operation)`` in one transaction.

        ``operation`` is a one-element list the body updates with the step
        in progress, so a failure names it.
        """
        def work():
            with trace_backend_call("APPLY", table, self.dialect.name), self._connect(conn) as connection:
                target_columns = [c.name for c in self._column_schema(connection, table)]
                cursor = connection.cursor()
                operation = [None]
                try:
                    result = body(connection, cursor, target_columns, operation)
                    connection.commit()
                    return result
                except Exception as e:
                    try:
                        connection.rollback()
                    except Exception as rollback_error:
                        logger.error(f"Rollback failed for {table}: {rollback_error}")
                    raise ApplyFailure(table, e, operation[0]) from e
                finally:
                    cursor.close()

        return self._call(conn, work)

    def apply_row_changes(
        self,
        conn: ConnectionDescriptor,
        table: str,
        key_columns: Sequence[str],
        pairs: Sequence[RowPair],
    ) -> dict[str, int]:
        """
        Apply approved pairs to the target in a single transaction.

        OnlyInSource rows are written as delete-by-key then insert so that
        re-applying the same pairs is a no-op.

        Returns:
            Counts of inserted, updated and deleted rows

        Raises:
            ApplyFailure: If any statement fails; nothing is committed
        """
        keys = list(key_columns)

        def body(connection, cursor, target_columns, operation):
            counts = {"inserted": 0, "updated": 0, "deleted": 0}
            for pair in pairs:
                if pair.diff_type == DiffType.ONLY_IN_SOURCE:
                    operation[0] = f"insert {pair.key}"
                    key_values = [row_value(pair.source, k) for k in keys]
                    self._execute(cursor, build_delete(self.dialect, table, keys, key_values))
                    self._execute(
                        cursor, build_insert(self.dialect, table, pair.source, target_columns)
                    )
                    counts["inserted"] += 1
                elif pair.diff_type == DiffType.DIFFERENT:
                    operation[0] = f"update {pair.key}"
                    key_values = [row_value(pair.target, k) for k in keys]
                    statement = build_update(
                        self.dialect, table, keys, pair.source, key_values, target_columns
                    )
                    if statement is not None:
                        self._execute(cursor, statement)
                        counts["updated"] += 1
                elif pair.diff_type == DiffType.ONLY_IN_TARGET:
                    operation[0] = f"delete {pair.key}"
                    key_values = [row_value(pair.target, k) for k in keys]
                    self._execute(cursor, build_delete(self.dialect, table, keys, key_values))
                    counts["deleted"] += 1
            return counts

        return self._transaction(conn, table, body)

    def replace_table(
        self,
        conn: ConnectionDescriptor,
        table: str,
        snapshot: TableSnapshot,
    ) -> int:
        """Delete every target row and insert the snapshot, in one transaction."""
        def body(connection, cursor, target_columns, operation):
            operation[0] = "delete all"
            cursor.execute(f"DELETE FROM {self.dialect.quote(table)}")
            inserted = 0
            for row in snapshot.iter_dicts():
                operation[0] = f"insert row {inserted + 1}"
                self._execute(cursor, build_insert(self.dialect, table, row, target_columns))
                inserted += 1
            return inserted

        return self._transaction(conn, table, body)

    def drop_table(self, conn: ConnectionDescriptor, table: str) -> None:
        def body(connection, cursor, target_columns, operation):
            operation[0] = "drop"
            cursor.execute(f"DROP TABLE {self.dialect.quote(table)}")

        self._transaction(conn, table, body)
