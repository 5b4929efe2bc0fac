"""
Reconciliation (apply) engine.

Routes approved row pairs, full-table replacements and drops to the target
backend after checking its capabilities. Each call is one transaction on the
backend side; concurrent calls against the same target table are serialized
here.
"""

import logging
import threading
import time
import weakref
from collections.abc import Callable, Sequence
from typing import Any, TypeVar

from opentelemetry import trace

from utils.tracing import add_span_attributes, trace_operation

from ..adapters.base import BackendAdapter
from ..adapters.registry import AdapterRegistry, default_registry
from ..connection import ConnectionDescriptor
from ..errors import ApplyFailure, UnsupportedOperation
from ..models import DiffType, ProviderCapabilities, RowPair, TableSnapshot
from .metrics import APPLIED_ROWS, APPLY_OPERATIONS, APPLY_TIME

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ReconciliationEngine:
    """
    Applies reconciliation decisions to a target connection.

    Callers may consult ``capabilities`` first; an operation the backend
    does not support raises UnsupportedOperation without touching it.
    """

    def __init__(self, registry: AdapterRegistry | None = None):
        self.registry = registry or default_registry()
        # Entries vanish once no caller holds the lock
        self._locks: weakref.WeakValueDictionary[tuple[str, str], threading.Lock] = (
            weakref.WeakValueDictionary()
        )
        self._locks_guard = threading.Lock()

    def capabilities(self, conn: ConnectionDescriptor) -> ProviderCapabilities:
        return self.registry.for_connection(conn).get_capabilities(conn)

    def _table_lock(self, conn: ConnectionDescriptor, table: str) -> threading.Lock:
        key = (conn.identity, table.lower())
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    def _require(
        self,
        adapter: BackendAdapter,
        conn: ConnectionDescriptor,
        capability: ProviderCapabilities,
        operation: str,
    ) -> None:
        if capability not in adapter.get_capabilities(conn):
            APPLY_OPERATIONS.labels(operation=operation, outcome="unsupported").inc()
            raise UnsupportedOperation(operation, adapter.display_name)

    def _run(
        self,
        operation: str,
        conn: ConnectionDescriptor,
        table: str,
        capability: ProviderCapabilities,
        func: Callable[[BackendAdapter], T],
        **span_attributes: Any,
    ) -> T:
        adapter = self.registry.for_connection(conn)
        self._require(adapter, conn, capability, operation)

        with trace_operation(
            operation,
            kind=trace.SpanKind.CLIENT,
            table=table,
            backend=adapter.display_name,
            **span_attributes,
        ):
            started = time.perf_counter()
            with self._table_lock(conn, table):
                try:
                    result = func(adapter)
                except ApplyFailure as e:
                    APPLY_OPERATIONS.labels(operation=operation, outcome="failed").inc()
                    logger.error(
                        f"{operation} on {table} at {conn.describe()} rolled back: {e}",
                        exc_info=True,
                    )
                    raise
                except Exception as e:
                    APPLY_OPERATIONS.labels(operation=operation, outcome="failed").inc()
                    logger.error(f"{operation} on {table} at {conn.describe()} failed: {e}", exc_info=True)
                    raise

            duration = time.perf_counter() - started
            APPLY_OPERATIONS.labels(operation=operation, outcome="success").inc()
            APPLY_TIME.labels(operation=operation).observe(duration)
            return result

    def apply(
        self,
        conn: ConnectionDescriptor,
        table: str,
        key_columns: Sequence[str],
        pairs: Sequence[RowPair],
    ) -> dict[str, int]:
        """
        Apply approved pairs to the target table in one transaction.

        OnlyInSource inserts the source row, Different updates the target row
        by key with the source's non-key values, OnlyInTarget deletes the
        target row by key. Applying the same pairs twice leaves the table as
        after the first apply.

        Args:
            conn: Target connection
            table: Target table
            key_columns: Resolved key columns the pairs were matched on
            pairs: Approved pairs

        Returns:
            Counts of inserted, updated and deleted rows

        Raises:
            UnsupportedOperation: If the backend cannot apply row changes
            ApplyFailure: If any row operation failed; nothing was committed
        """
        pairs = list(pairs)
        by_type = {t.value: sum(1 for p in pairs if p.diff_type == t) for t in DiffType}
        logger.info(f"Applying {len(pairs)} row changes to {table} at {conn.describe()}: {by_type}")

        counts = self._run(
            "apply_row_changes",
            conn,
            table,
            ProviderCapabilities.APPLY_ROW_CHANGES,
            lambda adapter: adapter.apply_row_changes(conn, table, list(key_columns), pairs),
            pair_count=len(pairs),
        )

        for change, count in counts.items():
            if count:
                APPLIED_ROWS.labels(change=change).inc(count)
        add_span_attributes(**counts)
        logger.info(f"Applied changes to {table}: {counts}")
        return counts

    def replace(self, conn: ConnectionDescriptor, table: str, snapshot: TableSnapshot) -> int:
        """
        Replace every row of the target table with the snapshot, in one transaction.

        Returns:
            Number of rows inserted
        """
        inserted = self._run(
            "replace_table",
            conn,
            table,
            ProviderCapabilities.REPLACE_TABLE,
            lambda adapter: adapter.replace_table(conn, table, snapshot),
            row_count=len(snapshot),
        )
        APPLIED_ROWS.labels(change="inserted").inc(inserted)
        logger.info(f"Replaced {table} at {conn.describe()} with {inserted} rows")
        return inserted

    def drop(self, conn: ConnectionDescriptor, table: str) -> None:
        """Drop the table (or delete the file behind it)."""
        self._run(
            "drop_table",
            conn,
            table,
            ProviderCapabilities.DROP_TABLE,
            lambda adapter: adapter.drop_table(conn, table),
        )
        logger.info(f"Dropped {table} at {conn.describe()}")
