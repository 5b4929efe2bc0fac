"""
Backend adapter contract.

Every backend implements BackendAdapter; backends that can stream key->hash
maps without materializing rows also implement FastHashSupport, and those
that benefit from reusing an open resource implement BatchSupport.
"""

import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Iterable, Sequence
from typing import Any

from ..connection import ConnectionDescriptor, ConnectionKind
from ..errors import CancellationRequested, UnsupportedOperation
from ..hashing import build_key, compute_hash
from ..models import (
    ColumnDescriptor,
    ProviderCapabilities,
    RowPair,
    TableSnapshot,
    ValueType,
)
from ..session import BatchHandle

logger = logging.getLogger(__name__)


def check_cancelled(cancel_token: threading.Event | None, table: str | None = None) -> None:
    """Raise CancellationRequested when the token is set."""
    if cancel_token is not None and cancel_token.is_set():
        where = f" while loading {table}" if table else ""
        raise CancellationRequested(f"Cancelled{where}")


def find_column(names: Sequence[str], column: str) -> int | None:
    """Index of a column name, exact match first, then case-insensitive."""
    for i, name in enumerate(names):
        if name == column:
            return i
    lowered = column.lower()
    for i, name in enumerate(names):
        if name.lower() == lowered:
            return i
    return None


def build_key_hash_map(
    rows: Iterable[Sequence[Any]],
    row_columns: Sequence[str],
    key_columns: Sequence[str],
    schema: Sequence[ColumnDescriptor],
    table: str,
    cancel_token: threading.Event | None = None,
) -> dict[str, int]:
    """
    Stream rows into a key -> content hash map.

    Rows are projected onto ``schema`` (the source side's column order and
    types) so both sides hash identically; schema columns absent on this side
    hash as NULL. Duplicate keys keep the last row loaded.

    Args:
        rows: Row tuples aligned with ``row_columns``
        row_columns: Column names of the rows as physically loaded
        key_columns: Resolved key columns
        schema: Column order and declared types to hash with
        table: Table name for log messages
        cancel_token: Checked before each row

    Returns:
        Mapping of identity key to 64-bit hash

    Raises:
        CancellationRequested: If the token is set; the partial map is discarded
    """
    value_indexes = [find_column(row_columns, c.name) for c in schema]
    value_types = [c.value_type for c in schema]

    schema_names = [c.name for c in schema]
    key_indexes = []
    key_types = []
    for key in key_columns:
        key_indexes.append(find_column(row_columns, key))
        pos = find_column(schema_names, key)
        key_types.append(schema[pos].value_type if pos is not None else ValueType.OBJECT)

    result: dict[str, int] = {}
    duplicates = 0
    for row in rows:
        check_cancelled(cancel_token, table)
        key = build_key(
            [row[i] if i is not None else None for i in key_indexes],
            key_types,
        )
        values = [row[i] if i is not None else None for i in value_indexes]
        if key in result:
            duplicates += 1
        result[key] = compute_hash(values, value_types)

    if duplicates:
        logger.warning(
            f"{table}: {duplicates} duplicate identity keys; last loaded row kept"
        )
    return result


class BackendAdapter(ABC):
    """
    Uniform table-access contract for one kind of data source.

    Mutation methods raise UnsupportedOperation unless overridden; callers
    are expected to consult get_capabilities first.
    """

    kind: ConnectionKind
    display_name: str = "backend"

    @abstractmethod
    def list_tables(self, conn: ConnectionDescriptor) -> list[str]:
        """Table names available through the connection."""

    @abstractmethod
    def load_full_table(
        self,
        conn: ConnectionDescriptor,
        table: str,
        cancel_token: threading.Event | None = None,
    ) -> TableSnapshot:
        """Materialize a whole table."""

    @abstractmethod
    def get_key_columns(self, conn: ConnectionDescriptor, table: str) -> list[str]:
        """Natural key columns, or an empty list when the table has none."""

    def get_capabilities(self, conn: ConnectionDescriptor) -> ProviderCapabilities:
        return ProviderCapabilities.READ_ONLY

    def apply_row_changes(
        self,
        conn: ConnectionDescriptor,
        table: str,
        key_columns: Sequence[str],
        pairs: Sequence[RowPair],
    ) -> dict[str, int]:
        raise UnsupportedOperation("apply_row_changes", self.display_name)

    def replace_table(
        self,
        conn: ConnectionDescriptor,
        table: str,
        snapshot: TableSnapshot,
    ) -> int:
        raise UnsupportedOperation("replace_table", self.display_name)

    def drop_table(self, conn: ConnectionDescriptor, table: str) -> None:
        raise UnsupportedOperation("drop_table", self.display_name)

    @property
    def supports_fast_hash(self) -> bool:
        return isinstance(self, FastHashSupport)

    @property
    def supports_batch(self) -> bool:
        return isinstance(self, BatchSupport)

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class FastHashSupport(ABC):
    """Streaming key->hash maps without full row materialization."""

    @abstractmethod
    def get_column_schema(
        self, conn: ConnectionDescriptor, table: str
    ) -> list[ColumnDescriptor]:
        """Columns and declared types, in table order."""

    @abstractmethod
    def load_key_hash_map(
        self,
        conn: ConnectionDescriptor,
        table: str,
        key_columns: Sequence[str],
        schema: Sequence[ColumnDescriptor],
        cancel_token: threading.Event | None = None,
    ) -> dict[str, int]:
        """Stream the table into a key -> hash map using ``schema``."""


class BatchSupport(ABC):
    """Reuse of one open resource across many operations."""

    @abstractmethod
    def begin_batch(self, conn: ConnectionDescriptor) -> BatchHandle:
        """Open the shared resource for a batch."""

    def end_batch(self, conn: ConnectionDescriptor, handle: BatchHandle) -> None:
        handle.release()
