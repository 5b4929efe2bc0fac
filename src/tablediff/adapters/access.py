"""
Microsoft Access (.mdb/.accdb) adapter over pyodbc.

The Access database engine is not safe for concurrent native calls, so every
driver call for one database file runs on the thread-affinity worker pinned
to that file. Source and target files get different workers and still load
in parallel.
"""

import logging
import os
from collections.abc import Callable
from typing import Any, TypeVar

import pyodbc

from ..connection import ConnectionDescriptor, ConnectionKind
from ..coordinator import ThreadAffinityCoordinator, default_coordinator
from ..errors import BackendUnavailable
from ..models import ColumnDescriptor, ValueType
from .sql import AccessDialect, DbApiAdapter

logger = logging.getLogger(__name__)

T = TypeVar("T")

ACCESS_DRIVER_NAMES = (
    "Microsoft Access Driver (*.mdb, *.accdb)",
    "Microsoft Access Driver (*.mdb)",
)

ACCESS_REMEDIATION = (
    "Install the Microsoft Access Database Engine 2016 Redistributable whose "
    "bitness (x64 or x86) matches this Python interpreter; .accdb files cannot "
    "be opened without it"
)

ACCESS_TYPES = {
    "COUNTER": ValueType.INT32,
    "INTEGER": ValueType.INT32,
    "LONG": ValueType.INT32,
    "SMALLINT": ValueType.INT16,
    "SHORT": ValueType.INT16,
    "BYTE": ValueType.BYTE,
    "BIT": ValueType.BOOLEAN,
    "YESNO": ValueType.BOOLEAN,
    "DOUBLE": ValueType.DOUBLE,
    "REAL": ValueType.FLOAT,
    "SINGLE": ValueType.FLOAT,
    "CURRENCY": ValueType.DECIMAL,
    "DECIMAL": ValueType.DECIMAL,
    "NUMERIC": ValueType.DECIMAL,
    "VARCHAR": ValueType.STRING,
    "CHAR": ValueType.STRING,
    "LONGCHAR": ValueType.STRING,
    "TEXT": ValueType.STRING,
    "MEMO": ValueType.STRING,
    "DATETIME": ValueType.DATETIME,
    "GUID": ValueType.GUID,
    "VARBINARY": ValueType.BYTES,
    "LONGBINARY": ValueType.BYTES,
    "BINARY": ValueType.BYTES,
}


def access_value_type(type_name: str | None) -> ValueType:
    return ACCESS_TYPES.get((type_name or "").upper(), ValueType.OBJECT)


def find_access_driver() -> str:
    """
    Name of an installed Access ODBC driver.

    Raises:
        BackendUnavailable: If no Access driver is registered
    """
    installed = pyodbc.drivers()
    for name in ACCESS_DRIVER_NAMES:
        if name in installed:
            return name
    raise BackendUnavailable("Microsoft Access ODBC driver is not installed", ACCESS_REMEDIATION)


class AccessAdapter(DbApiAdapter):
    """Tables of an Access database file; full capabilities."""

    kind = ConnectionKind.ACCESS
    display_name = "Microsoft Access"
    dialect = AccessDialect()

    def __init__(self, coordinator: ThreadAffinityCoordinator | None = None):
        self._coordinator = coordinator

    @property
    def coordinator(self) -> ThreadAffinityCoordinator:
        if self._coordinator is None:
            self._coordinator = default_coordinator()
        return self._coordinator

    def _call(self, conn: ConnectionDescriptor, func: Callable[..., T], *args, **kwargs) -> T:
        return self.coordinator.run(conn.identity, func, *args, **kwargs)

    def _connection_string(self, conn: ConnectionDescriptor) -> str:
        parts = [f"DRIVER={{{find_access_driver()}}}", f"DBQ={conn.target}"]
        for key, value in conn.options:
            if key.lower() == "driver":
                continue
            parts.append(f"{key}={value}")
        return ";".join(parts) + ";"

    def _open_connection(self, conn: ConnectionDescriptor) -> Any:
        if not os.path.isfile(conn.target):
            raise FileNotFoundError(f"Access database not found: {conn.target}")
        try:
            return pyodbc.connect(self._connection_string(conn), autocommit=False)
        except pyodbc.InterfaceError as e:
            # IM002: data source name not found and no default driver specified
            if "IM002" in str(e):
                raise BackendUnavailable(
                    f"Access ODBC driver could not be loaded: {e}", ACCESS_REMEDIATION
                ) from e
            raise

    def _list_tables(self, connection: Any) -> list[str]:
        cursor = connection.cursor()
        try:
            names = [
                row.table_name
                for row in cursor.tables(tableType="TABLE")
                if row.table_name and not row.table_name.lower().startswith("msys")
            ]
        finally:
            cursor.close()
        return sorted(names, key=str.lower)

    def _key_columns(self, connection: Any, table: str) -> list[str]:
        cursor = connection.cursor()
        try:
            stats = [
                (row.ordinal_position, row.column_name)
                for row in cursor.statistics(table, unique=True)
                if row.index_name and row.index_name.lower() == "primarykey" and row.column_name
            ]
        finally:
            cursor.close()
        return [name for _, name in sorted(stats)]

    def _column_schema(self, connection: Any, table: str) -> list[ColumnDescriptor]:
        cursor = connection.cursor()
        try:
            columns = [
                (row.ordinal_position, row.column_name, row.type_name)
                for row in cursor.columns(table=table)
            ]
        finally:
            cursor.close()
        return [
            ColumnDescriptor(name, access_value_type(type_name))
            for _, name, type_name in sorted(columns, key=lambda c: c[0] or 0)
        ]
