"""
Comparison service.

Resolves adapters and key columns for a table, then compares it either
through streamed key -> hash maps (when both backends support it) or through
full snapshots. ``compare_many`` runs many tables with bounded parallelism
and isolates per-table failures.
"""

import logging
import math
import threading
import time
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from concurrent.futures import TimeoutError as FuturesTimeoutError
from contextlib import ExitStack
from typing import Any

from opentelemetry import trace

from utils.logging import ContextLogger
from utils.tracing import add_span_attributes, add_span_event, trace_operation

from ..adapters.base import BackendAdapter, check_cancelled
from ..adapters.registry import AdapterRegistry, default_registry
from ..config import CompareConfig
from ..connection import ConnectionDescriptor
from ..errors import CancellationRequested, SchemaMismatch
from ..models import (
    CompareProgress,
    DiffType,
    TableDiffResult,
    TableDiffSummary,
    TableSnapshot,
)
from ..session import open_batches
from .engine import HashMapDiff, diff_hash_maps, diff_snapshots, union_columns
from .keys import KeyResolution, resolve_key_columns
from .metrics import (
    ACTIVE_COMPARISONS,
    COMPARISON_TIME,
    DIFF_ROWS,
    HASH_MAP_LOAD_TIME,
    TABLES_COMPARED,
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[CompareProgress], None]


class _LinkedCancel(threading.Event):
    """Event that also reads as set when the caller's token is set."""

    def __init__(self, parent: threading.Event | None = None):
        super().__init__()
        self._parent = parent

    def is_set(self) -> bool:
        return super().is_set() or (self._parent is not None and self._parent.is_set())


class ComparisonService:
    """
    Compares tables between a source and a target connection.

    Adapters come from the registry (the process-wide one by default); the
    configuration is only read.
    """

    def __init__(
        self,
        registry: AdapterRegistry | None = None,
        config: CompareConfig | None = None,
    ):
        self.registry = registry or default_registry()
        self.config = config or CompareConfig()

    def _adapters(
        self, source: ConnectionDescriptor, target: ConnectionDescriptor
    ) -> tuple[BackendAdapter, BackendAdapter]:
        return self.registry.for_connection(source), self.registry.for_connection(target)

    def _load_both(
        self,
        func: Callable[..., Any],
        source_args: tuple,
        target_args: tuple,
    ) -> tuple[Any, Any]:
        """Run the two sides of a table concurrently; each side stays sequential."""
        with ThreadPoolExecutor(max_workers=2, thread_name_prefix="tablediff-side") as executor:
            source_future = executor.submit(func, *source_args)
            target_future = executor.submit(func, *target_args)
            return source_future.result(), target_future.result()

    def _load_snapshot(
        self,
        adapter: BackendAdapter,
        conn: ConnectionDescriptor,
        table: str,
        cancel_token: threading.Event | None,
    ) -> TableSnapshot:
        with trace_operation("load_full_table", table=table, backend=adapter.display_name):
            return adapter.load_full_table(conn, table, cancel_token)

    def _load_hash_map(
        self,
        adapter: BackendAdapter,
        conn: ConnectionDescriptor,
        table: str,
        key: KeyResolution,
        schema: list,
        cancel_token: threading.Event | None,
    ) -> dict[str, int]:
        with trace_operation("load_key_hash_map", table=table, backend=adapter.display_name):
            with HASH_MAP_LOAD_TIME.labels(backend=adapter.display_name).time():
                return adapter.load_key_hash_map(conn, table, key.columns, schema, cancel_token)

    def compare_one(
        self,
        table: str,
        source: ConnectionDescriptor,
        target: ConnectionDescriptor,
        config: CompareConfig | None = None,
        cancel_token: threading.Event | None = None,
    ) -> TableDiffResult:
        """
        Compare one table in full and return its differing row pairs.

        Args:
            table: Table name
            source: Source connection
            target: Target connection
            config: Overrides the service configuration for this call
            cancel_token: Checked between rows while loading

        Returns:
            TableDiffResult with pairs sorted by key, the resolved key columns
            and the column union

        Raises:
            CancellationRequested: If cancelled; no partial result is kept
        """
        config = config or self.config
        source_adapter, target_adapter = self._adapters(source, target)
        log = ContextLogger(__name__, table_name=table)

        with trace_operation("compare_table", kind=trace.SpanKind.INTERNAL, table=table, mode="detail"):
            started = time.perf_counter()
            log.info(f"Comparing {table}: {source.describe()} -> {target.describe()}")

            source_snapshot, target_snapshot = self._load_both(
                self._load_snapshot,
                (source_adapter, source, table, cancel_token),
                (target_adapter, target, table, cancel_token),
            )
            check_cancelled(cancel_token, table)

            natural = source_adapter.get_key_columns(source, table)
            key = resolve_key_columns(table, natural, source_snapshot.column_names, config)

            result = diff_snapshots(source_snapshot, target_snapshot, key.columns, table)
            result.key_degraded = key.degraded
            if key.warning is not None:
                result.warnings.append(key.warning)

            duration = time.perf_counter() - started
            COMPARISON_TIME.labels(path="snapshot").observe(duration)
            add_span_attributes(diff_rows=len(result.pairs), key_origin=key.origin)
            log.info(
                f"Compared {table} in {duration:.2f}s: "
                f"{result.count(DiffType.ONLY_IN_SOURCE)} only in source, "
                f"{result.count(DiffType.ONLY_IN_TARGET)} only in target, "
                f"{result.count(DiffType.DIFFERENT)} different"
            )
            return result

    def _fast_path_possible(self, source_adapter: BackendAdapter, target_adapter: BackendAdapter) -> bool:
        return source_adapter.supports_fast_hash and target_adapter.supports_fast_hash

    def summarize_table(
        self,
        table: str,
        source: ConnectionDescriptor,
        target: ConnectionDescriptor,
        config: CompareConfig | None = None,
        cancel_token: threading.Event | None = None,
    ) -> TableDiffSummary:
        """
        Count the differences of one table without materializing row pairs
        when both backends can stream hash maps.

        Falls back to full snapshots when either backend lacks the fast path,
        the source schema is unavailable, or no key could be resolved.
        """
        config = config or self.config
        source_adapter, target_adapter = self._adapters(source, target)
        log = ContextLogger(__name__, table_name=table)

        with trace_operation("compare_table", kind=trace.SpanKind.INTERNAL, table=table, mode="summary"):
            started = time.perf_counter()
            check_cancelled(cancel_token, table)

            counts: HashMapDiff | None = None
            warnings: list[Exception] = []
            if self._fast_path_possible(source_adapter, target_adapter):
                source_schema = source_adapter.get_column_schema(source, table)
                if source_schema:
                    natural = source_adapter.get_key_columns(source, table)
                    key = resolve_key_columns(table, natural, [c.name for c in source_schema], config)
                    if not key.degraded:
                        target_schema = target_adapter.get_column_schema(target, table)
                        # Both sides hash the union; columns missing on one side hash as NULL
                        schema, only_in_source, only_in_target = union_columns(source_schema, target_schema)
                        if only_in_source or only_in_target:
                            mismatch = SchemaMismatch(table, only_in_source, only_in_target)
                            log.warning(str(mismatch))
                            warnings.append(mismatch)
                        if key.warning is not None:
                            warnings.append(key.warning)

                        source_map, target_map = self._load_both(
                            self._load_hash_map,
                            (source_adapter, source, table, key, schema, cancel_token),
                            (target_adapter, target, table, key, schema, cancel_token),
                        )
                        check_cancelled(cancel_token, table)
                        counts = diff_hash_maps(source_map, target_map)
                        COMPARISON_TIME.labels(path="fast_hash").observe(time.perf_counter() - started)
                else:
                    log.debug(f"No column schema for {table}; using full snapshots")

            if counts is None:
                result = self.compare_one(table, source, target, config, cancel_token)
                summary = result.to_summary()
            else:
                summary = TableDiffSummary(
                    table_name=table,
                    only_in_source_count=counts.only_in_source,
                    only_in_target_count=counts.only_in_target,
                    different_count=counts.different,
                    warnings=warnings,
                )

            summary.duration_seconds = time.perf_counter() - started
            add_span_attributes(total_diff=summary.total_diff_count)
            return summary

    def _record(self, summary: TableDiffSummary) -> None:
        TABLES_COMPARED.labels(status=summary.status.lower()).inc()
        if summary.only_in_source_count:
            DIFF_ROWS.labels(diff_type=DiffType.ONLY_IN_SOURCE.value).inc(summary.only_in_source_count)
        if summary.only_in_target_count:
            DIFF_ROWS.labels(diff_type=DiffType.ONLY_IN_TARGET.value).inc(summary.only_in_target_count)
        if summary.different_count:
            DIFF_ROWS.labels(diff_type=DiffType.DIFFERENT.value).inc(summary.different_count)

    def _run_table(
        self,
        table: str,
        source: ConnectionDescriptor,
        target: ConnectionDescriptor,
        config: CompareConfig,
        cancel_token: threading.Event,
    ) -> TableDiffSummary:
        ACTIVE_COMPARISONS.inc()
        try:
            return self.summarize_table(table, source, target, config, cancel_token)
        finally:
            ACTIVE_COMPARISONS.dec()

    def compare_many(
        self,
        tables: Sequence[str] | None,
        source: ConnectionDescriptor,
        target: ConnectionDescriptor,
        config: CompareConfig | None = None,
        progress: ProgressCallback | None = None,
        cancel_token: threading.Event | None = None,
    ) -> list[TableDiffSummary]:
        """
        Summarize many tables with bounded parallelism.

        Excluded tables are skipped. A failing table yields a summary with
        ``error`` set, unless ``fail_fast`` is configured, in which case the
        remaining tables are cancelled and the error propagates. Both
        connections are held in batch sessions for the whole run.

        Args:
            tables: Table names; None compares every table of the source
            source: Source connection
            target: Target connection
            config: Overrides the service configuration for this call
            progress: Called with (processed, total, current table) after each table
            cancel_token: Checked between tables and between rows

        Returns:
            Summaries sorted by table name, case-insensitively

        Raises:
            CancellationRequested: If cancelled; ``partial`` holds the
                summaries finished so far
        """
        config = config or self.config
        source_adapter, target_adapter = self._adapters(source, target)

        with trace_operation("compare_many", kind=trace.SpanKind.INTERNAL) as span:
            started = time.perf_counter()
            with ExitStack() as stack:
                source_batch, target_batch = open_batches(
                    [(source_adapter, source), (target_adapter, target)], stack
                )
                if tables is None:
                    tables = source_adapter.list_tables(source_batch)

                selected = []
                for table in tables:
                    if config.is_excluded(table):
                        logger.info(f"Skipping excluded table {table}")
                        TABLES_COMPARED.labels(status="skipped").inc()
                    else:
                        selected.append(table)
                span.set_attribute("table_count", len(selected))

                if source.identity == target.identity:
                    logger.info("Source and target are the same; reporting no differences")
                    summaries = [TableDiffSummary(table_name=t) for t in selected]
                    for i, summary in enumerate(summaries, start=1):
                        self._record(summary)
                        if progress is not None:
                            progress(CompareProgress(i, len(summaries), summary.table_name))
                    return self._sorted(summaries)

                summaries = self._run_parallel(
                    selected, source_batch, target_batch, config, progress, cancel_token
                )

            mismatched = sum(1 for s in summaries if s.status == "MISMATCH")
            failed = sum(1 for s in summaries if s.status == "ERROR")
            logger.info(
                f"Compared {len(summaries)} tables in {time.perf_counter() - started:.2f}s: "
                f"{mismatched} with differences, {failed} failed"
            )
            return summaries

    def _sorted(self, summaries: list[TableDiffSummary]) -> list[TableDiffSummary]:
        return sorted(summaries, key=lambda s: s.table_name.lower())

    def _run_parallel(
        self,
        tables: list[str],
        source: ConnectionDescriptor,
        target: ConnectionDescriptor,
        config: CompareConfig,
        progress: ProgressCallback | None,
        cancel_token: threading.Event | None,
    ) -> list[TableDiffSummary]:
        if not tables:
            logger.warning("No tables to compare")
            return []

        workers = min(config.effective_parallelism(), len(tables))
        stop = _LinkedCancel(cancel_token)
        summaries: list[TableDiffSummary] = []
        deadline = None
        if config.timeout_per_table:
            deadline = config.timeout_per_table * math.ceil(len(tables) / workers)

        logger.info(f"Comparing {len(tables)} tables with {workers} workers")
        executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="tablediff-table")
        try:
            future_to_table = {
                executor.submit(self._run_table, table, source, target, config, stop): table
                for table in tables
            }
            try:
                for future in as_completed(future_to_table, timeout=deadline):
                    table = future_to_table[future]
                    try:
                        summary = future.result()
                    except CancellationRequested:
                        continue
                    except Exception as e:
                        if config.fail_fast:
                            logger.error(f"Table {table} failed; stopping (fail fast): {e}", exc_info=True)
                            stop.set()
                            raise
                        logger.error(f"Table {table} failed: {e}", exc_info=True)
                        summary = TableDiffSummary(table_name=table, error=f"{type(e).__name__}: {e}")

                    self._record(summary)
                    summaries.append(summary)
                    if progress is not None:
                        progress(CompareProgress(len(summaries), len(tables), table))

                    if cancel_token is not None and cancel_token.is_set():
                        break
            except FuturesTimeoutError:
                stop.set()
                finished = {s.table_name for s in summaries}
                for table in tables:
                    if table not in finished:
                        summary = TableDiffSummary(
                            table_name=table, error=f"Timeout after {config.timeout_per_table}s per table"
                        )
                        self._record(summary)
                        summaries.append(summary)
                logger.error(f"Bulk comparison timed out; {len(tables) - len(finished)} tables unfinished")
                add_span_event("bulk_timeout", unfinished=len(tables) - len(finished))
        finally:
            executor.shutdown(wait=True, cancel_futures=True)

        if cancel_token is not None and cancel_token.is_set():
            partial = self._sorted(summaries)
            logger.warning(f"Comparison cancelled after {len(partial)} of {len(tables)} tables")
            add_span_event("cancelled", finished=len(partial), total=len(tables))
            raise CancellationRequested("Bulk comparison cancelled", partial=partial)

        return self._sorted(summaries)
