"""
Unit tests for key resolution, row classification and the comparison service.

Tests verify:
- Rows are matched by key and classified as OnlyInSource, OnlyInTarget or Different
- Column-set differences become SchemaMismatch warnings
- Tables without keys degrade to whole-row keys
- Bulk comparison skips exclusions, isolates failures and honours cancellation
"""

import threading
import time

import pytest

from tablediff.adapters.base import BackendAdapter
from tablediff.comparison import (
    ComparisonService,
    diff_hash_maps,
    diff_snapshots,
    filter_pairs,
    resolve_key_columns,
    union_columns,
)
from tablediff.config import CompareConfig
from tablediff.connection import ConnectionDescriptor, ConnectionKind
from tablediff.errors import CancellationRequested, KeyResolutionFailure, SchemaMismatch
from tablediff.models import (
    ColumnDescriptor,
    DiffType,
    RowPair,
    TableSnapshot,
    ValueType,
)


def snapshot(name, columns, rows):
    return TableSnapshot(name, [ColumnDescriptor(c, t) for c, t in columns], rows)


ID_NAME = [("id", ValueType.INT64), ("name", ValueType.STRING)]


class TestResolveKeyColumns:
    """Test key preference order"""

    def test_natural_key(self):
        key = resolve_key_columns("t", ["ID"], ["id", "name"])

        assert key.columns == ["id"]
        assert key.origin == "natural"
        assert not key.degraded

    def test_custom_key_when_no_natural_key(self):
        config = CompareConfig(custom_keys={"T": ["name"]})

        key = resolve_key_columns("t", [], ["id", "name"], config)

        assert key.columns == ["name"]
        assert key.origin == "custom"

    def test_custom_key_ignored_when_columns_missing(self):
        config = CompareConfig(custom_keys={"t": ["missing"]})

        key = resolve_key_columns("t", [], ["id"], config)

        assert key.degraded

    def test_custom_key_beats_row_number(self):
        config = CompareConfig(custom_keys={"Sheet1": ["A"]})

        key = resolve_key_columns("Sheet1", ["Row"], ["Row", "A", "B"], config)

        assert key.columns == ["A"]

    def test_row_number_key(self):
        key = resolve_key_columns("Sheet1", ["Row"], ["Row", "A"])

        assert key.origin == "row_number"

    def test_all_columns_fallback(self):
        key = resolve_key_columns("t", [], ["a", "b"])

        assert key.columns == ["a", "b"]
        assert key.degraded
        assert isinstance(key.warning, KeyResolutionFailure)


class TestEngine:
    """Test hash map and snapshot classification"""

    def test_diff_hash_maps(self):
        counts = diff_hash_maps({"1": 10, "2": 20, "4": 40}, {"1": 10, "3": 30, "4": 41})

        assert (counts.only_in_source, counts.only_in_target, counts.different) == (1, 1, 1)
        assert counts.total == 3

    def test_union_columns(self):
        source = [ColumnDescriptor("id", ValueType.INT64), ColumnDescriptor("a", ValueType.STRING)]
        target = [ColumnDescriptor("ID", ValueType.STRING), ColumnDescriptor("b", ValueType.STRING)]

        union, only_source, only_target = union_columns(source, target)

        assert [c.name for c in union] == ["id", "a", "b"]
        assert union[0].value_type == ValueType.INT64
        assert (only_source, only_target) == (["a"], ["b"])

    def test_identical_tables_have_no_pairs(self):
        rows = [(1, "a"), (2, "b")]

        result = diff_snapshots(snapshot("t", ID_NAME, rows), snapshot("t", ID_NAME, list(rows)), ["id"])

        assert result.pairs == []
        assert result.warnings == []

    def test_classification(self):
        """Test each classification with the rows it carries"""
        source = snapshot("t", ID_NAME, [(1, "a"), (2, "b"), (4, "d")])
        target = snapshot("t", ID_NAME, [(1, "a"), (3, "c"), (4, "x")])

        result = diff_snapshots(source, target, ["id"])

        assert [(p.diff_type, p.key) for p in result.pairs] == [
            (DiffType.ONLY_IN_SOURCE, "2"),
            (DiffType.ONLY_IN_TARGET, "3"),
            (DiffType.DIFFERENT, "4"),
        ]
        different = result.pairs[2]
        assert different.source == {"id": 4, "name": "d"}
        assert different.target == {"id": 4, "name": "x"}
        assert different.changed_columns == ["name"]

    def test_pairs_sorted_numerically(self):
        source = snapshot("t", ID_NAME, [(10, "a"), (9, "b")])
        target = snapshot("t", ID_NAME, [])

        result = diff_snapshots(source, target, ["id"])

        assert [p.key for p in result.pairs] == ["9", "10"]

    def test_null_and_empty_text_are_equal(self):
        source = snapshot("t", ID_NAME, [(1, None)])
        target = snapshot("t", ID_NAME, [(1, "")])

        assert diff_snapshots(source, target, ["id"]).pairs == []

    def test_text_and_number_keys_match(self):
        """Test keys loaded as text on one side match numeric keys on the other"""
        source = snapshot("t", ID_NAME, [(1, "a")])
        target = snapshot("t", [("id", ValueType.STRING), ("name", ValueType.STRING)], [("1", "a")])

        assert diff_snapshots(source, target, ["id"]).pairs == []

    def test_schema_mismatch(self):
        """Test a column missing on one side reads as NULL there"""
        source = snapshot("t", ID_NAME + [("qty", ValueType.INT64)], [(1, "a", 5), (2, "b", None)])
        target = snapshot("t", ID_NAME, [(1, "a"), (2, "b")])

        result = diff_snapshots(source, target, ["id"])

        assert result.columns_only_in_source == ["qty"]
        assert isinstance(result.warnings[0], SchemaMismatch)
        assert [(p.key, p.changed_columns) for p in result.pairs] == [("1", ["qty"])]

    def test_duplicate_keys_keep_last_row(self):
        source = snapshot("t", ID_NAME, [(1, "old"), (1, "new")])
        target = snapshot("t", ID_NAME, [(1, "new")])

        assert diff_snapshots(source, target, ["id"]).pairs == []


class TestFilterPairs:
    """Test pair filtering"""

    @pytest.fixture
    def pairs(self):
        return [
            RowPair(DiffType.ONLY_IN_SOURCE, "1", source={"id": 1, "city": "Oslo"}),
            RowPair(DiffType.ONLY_IN_TARGET, "2", target={"id": 2, "city": "Bergen"}),
            RowPair(
                DiffType.DIFFERENT,
                "3",
                source={"id": 3, "city": "Tromso"},
                target={"id": 3, "city": "Oslo"},
            ),
        ]

    def test_no_filters(self, pairs):
        assert filter_pairs(pairs) == pairs

    def test_by_type(self, pairs):
        result = filter_pairs(pairs, diff_types=[DiffType.ONLY_IN_TARGET, DiffType.DIFFERENT])

        assert [p.key for p in result] == ["2", "3"]

    def test_equals_matches_either_side(self, pairs):
        result = filter_pairs(pairs, equals={"CITY": "oslo"})

        assert [p.key for p in result] == ["1", "3"]

    def test_equals_compares_as_text(self, pairs):
        assert [p.key for p in filter_pairs(pairs, equals={"id": "2"})] == ["2"]

    def test_contains(self, pairs):
        assert [p.key for p in filter_pairs(pairs, contains="ERG")] == ["2"]

    def test_combined(self, pairs):
        result = filter_pairs(pairs, diff_types=[DiffType.ONLY_IN_SOURCE], contains="oslo")

        assert [p.key for p in result] == ["1"]


class TestCompareOne:
    """Test single-table detailed comparison on SQLite"""

    def test_only_in_source_and_target(self, orders_pair):
        source, target = orders_pair

        result = ComparisonService().compare_one("Orders", source, target)

        assert result.key_columns == ["id"]
        assert [(p.diff_type, p.key) for p in result.pairs] == [
            (DiffType.ONLY_IN_SOURCE, "2"),
            (DiffType.ONLY_IN_TARGET, "3"),
        ]
        assert result.pairs[0].source == {"id": 2, "name": "b"}
        assert result.pairs[1].target == {"id": 3, "name": "c"}
        assert not result.key_degraded

    def test_keyless_table_degrades(self, make_sqlite):
        """Test a changed row in a keyless table shows as removed plus added"""
        source = make_sqlite("s", "CREATE TABLE t (a TEXT, b TEXT)", "INSERT INTO t VALUES ('x', '1')")
        target = make_sqlite("t", "CREATE TABLE t (a TEXT, b TEXT)", "INSERT INTO t VALUES ('x', '2')")

        result = ComparisonService().compare_one("t", source, target)

        assert result.key_degraded
        assert any(isinstance(w, KeyResolutionFailure) for w in result.warnings)
        assert sorted(p.diff_type.value for p in result.pairs) == ["OnlyInSource", "OnlyInTarget"]

    def test_custom_key_from_config(self, make_sqlite):
        source = make_sqlite("s", "CREATE TABLE t (code TEXT, v TEXT)", "INSERT INTO t VALUES ('k', '1')")
        target = make_sqlite("t", "CREATE TABLE t (code TEXT, v TEXT)", "INSERT INTO t VALUES ('k', '2')")
        config = CompareConfig(custom_keys={"t": ["code"]})

        result = ComparisonService(config=config).compare_one("t", source, target)

        assert [(p.diff_type, p.key) for p in result.pairs] == [(DiffType.DIFFERENT, "k")]

    def test_csv_against_sqlite(self, make_sqlite, make_csv_folder):
        """Test text values from CSV match typed SQLite values"""
        source = make_sqlite(
            "s",
            "CREATE TABLE Orders (id INTEGER PRIMARY KEY, name TEXT)",
            "INSERT INTO Orders VALUES (1, 'a')",
            "INSERT INTO Orders VALUES (2, 'b')",
        )
        target = make_csv_folder("csv", {"Orders.csv": "id;name\r\n1;a\r\n2;z\r\n"})

        result = ComparisonService().compare_one("Orders", source, target)

        assert [(p.diff_type, p.key) for p in result.pairs] == [(DiffType.DIFFERENT, "2")]


class TestSummarizeTable:
    def test_fast_path_counts_match_detail(self, orders_pair):
        source, target = orders_pair
        service = ComparisonService()

        summary = service.summarize_table("Orders", source, target)
        detail = service.compare_one("Orders", source, target).to_summary()

        assert (summary.only_in_source_count, summary.only_in_target_count, summary.different_count) == (1, 1, 0)
        assert summary.total_diff_count == detail.total_diff_count
        assert summary.status == "MISMATCH"

    def test_target_only_column_counts_like_detail(self, make_sqlite):
        """Test a column present only in the target is compared and reported"""
        source = make_sqlite(
            "s", "CREATE TABLE t (id INTEGER PRIMARY KEY, a TEXT)", "INSERT INTO t VALUES (1, 'x')"
        )
        target = make_sqlite(
            "t",
            "CREATE TABLE t (id INTEGER PRIMARY KEY, a TEXT, b TEXT)",
            "INSERT INTO t VALUES (1, 'x', 'extra')",
        )
        service = ComparisonService()

        summary = service.summarize_table("t", source, target)
        detail = service.compare_one("t", source, target).to_summary()

        assert summary.different_count == detail.different_count == 1
        assert summary.total_diff_count == detail.total_diff_count
        mismatches = [w for w in summary.warnings if isinstance(w, SchemaMismatch)]
        assert [(m.only_in_source, m.only_in_target) for m in mismatches] == [([], ["b"])]
        assert summary.to_dict()["warnings"] == [str(mismatches[0])]

    def test_source_only_null_column_matches(self, make_sqlite):
        source = make_sqlite(
            "s",
            "CREATE TABLE t (id INTEGER PRIMARY KEY, a TEXT, b TEXT)",
            "INSERT INTO t VALUES (1, 'x', NULL)",
        )
        target = make_sqlite(
            "t", "CREATE TABLE t (id INTEGER PRIMARY KEY, a TEXT)", "INSERT INTO t VALUES (1, 'x')"
        )
        service = ComparisonService()

        summary = service.summarize_table("t", source, target)

        assert summary.total_diff_count == service.compare_one("t", source, target).to_summary().total_diff_count == 0
        assert isinstance(summary.warnings[0], SchemaMismatch)
        assert summary.warnings[0].only_in_source == ["b"]

    def test_csv_header_difference(self, make_csv_folder):
        source = make_csv_folder("s", {"t.csv": "id;a\r\n1;x\r\n"})
        target = make_csv_folder("t", {"t.csv": "id;a;b\r\n1;x;extra\r\n"})
        service = ComparisonService()

        summary = service.summarize_table("t", source, target)

        assert summary.different_count == service.compare_one("t", source, target).to_summary().different_count == 1

    def test_same_schema_has_no_warnings(self, orders_pair):
        summary = ComparisonService().summarize_table("Orders", *orders_pair)

        assert summary.warnings == []

    def test_keyless_table_uses_snapshots(self, make_sqlite):
        source = make_sqlite("s", "CREATE TABLE t (a TEXT)", "INSERT INTO t VALUES ('x')")
        target = make_sqlite("t", "CREATE TABLE t (a TEXT)", "INSERT INTO t VALUES ('y')")

        summary = ComparisonService().summarize_table("t", source, target)

        assert summary.key_degraded
        assert (summary.only_in_source_count, summary.only_in_target_count) == (1, 1)


class SlowAdapter(BackendAdapter):
    """Adapter whose loads take a fixed time."""

    kind = ConnectionKind.CSV_FOLDER
    display_name = "slow"

    def __init__(self, delay: float):
        self.delay = delay

    def list_tables(self, conn):
        return ["a"]

    def get_key_columns(self, conn, table):
        return ["k"]

    def load_full_table(self, conn, table, cancel_token=None):
        time.sleep(self.delay)
        return TableSnapshot(table, [ColumnDescriptor("k", ValueType.STRING)], [])


class TestCompareMany:
    """Test bulk comparison"""

    @pytest.fixture
    def databases(self, make_sqlite):
        schema = "CREATE TABLE {} (id INTEGER PRIMARY KEY, name TEXT)"
        source = make_sqlite(
            "source",
            schema.format("Alpha"),
            schema.format("beta"),
            schema.format("Gamma"),
            "INSERT INTO Alpha VALUES (1, 'a')",
            "INSERT INTO beta VALUES (1, 'b')",
        )
        target = make_sqlite(
            "target",
            schema.format("Alpha"),
            schema.format("beta"),
            "INSERT INTO Alpha VALUES (1, 'a')",
        )
        return source, target

    def test_all_tables_sorted(self, databases):
        """Test every source table is summarized and failures are isolated"""
        source, target = databases

        summaries = ComparisonService().compare_many(None, source, target)

        assert [s.table_name for s in summaries] == ["Alpha", "beta", "Gamma"]
        assert [s.status for s in summaries] == ["MATCH", "MISMATCH", "ERROR"]
        assert "Gamma" in summaries[2].error

    def test_excluded_tables_skipped(self, databases):
        source, target = databases
        config = CompareConfig(excluded_tables=["GAMMA"])

        summaries = ComparisonService(config=config).compare_many(None, source, target)

        assert [s.table_name for s in summaries] == ["Alpha", "beta"]

    def test_fail_fast_propagates(self, databases):
        source, target = databases
        config = CompareConfig(fail_fast=True, max_parallel_tables=1)

        with pytest.raises(Exception, match="Gamma"):
            ComparisonService(config=config).compare_many(["Gamma"], source, target)

    def test_same_source_reports_no_differences(self, databases):
        source, _ = databases

        summaries = ComparisonService().compare_many(["Alpha", "beta"], source, source)

        assert [s.total_diff_count for s in summaries] == [0, 0]

    def test_progress_reported(self, databases):
        source, target = databases
        updates = []

        ComparisonService().compare_many(["Alpha", "beta"], source, target, progress=updates.append)

        assert [(u.processed, u.total) for u in updates] == [(1, 2), (2, 2)]

    def test_cancellation_keeps_finished_tables(self, databases):
        """Test cancelling mid-run returns the summaries finished so far"""
        source, target = databases
        token = threading.Event()
        config = CompareConfig(max_parallel_tables=1)

        with pytest.raises(CancellationRequested) as exc_info:
            ComparisonService(config=config).compare_many(
                ["Alpha", "beta"],
                source,
                target,
                progress=lambda update: token.set(),
                cancel_token=token,
            )

        assert len(exc_info.value.partial) == 1

    def test_cancelled_before_start(self, databases):
        source, target = databases
        token = threading.Event()
        token.set()

        with pytest.raises(CancellationRequested) as exc_info:
            ComparisonService().compare_many(["Alpha"], source, target, cancel_token=token)

        assert exc_info.value.partial == []

    @pytest.mark.slow
    def test_timeout_marks_unfinished_tables(self, registry, tmp_path):
        registry.register(ConnectionKind.CSV_FOLDER, SlowAdapter(delay=1.0))
        source = ConnectionDescriptor(ConnectionKind.CSV_FOLDER, str(tmp_path / "s"))
        target = ConnectionDescriptor(ConnectionKind.CSV_FOLDER, str(tmp_path / "t"))
        config = CompareConfig(timeout_per_table=0.1, max_parallel_tables=1)

        summaries = ComparisonService(registry, config).compare_many(["a"], source, target)

        assert summaries[0].status == "ERROR"
        assert "Timeout" in summaries[0].error
