"""
Unit tests for the reconciliation engine.

Applies run against real SQLite files; read-only targets use the
configuration-tree backend.
"""

import gc
import sqlite3

import pytest
from prometheus_client import REGISTRY

from tablediff.apply import ReconciliationEngine
from tablediff.comparison import ComparisonService
from tablediff.errors import ApplyFailure, UnsupportedOperation
from tablediff.models import (
    ColumnDescriptor,
    DiffType,
    ProviderCapabilities,
    RowPair,
    TableSnapshot,
    ValueType,
)


def apply_count(operation, outcome):
    value = REGISTRY.get_sample_value(
        "tablediff_apply_operations_total", {"operation": operation, "outcome": outcome}
    )
    return value or 0.0


@pytest.fixture
def engine(registry):
    return ReconciliationEngine(registry)


class TestApplyRowChanges:
    """Test applying approved pairs"""

    def test_apply_all_pairs_reconciles_target(self, engine, registry, orders_pair, query_sqlite):
        """Test applying every pair makes the target equal to the source"""
        source, target = orders_pair
        service = ComparisonService(registry)
        result = service.compare_one("Orders", source, target)

        counts = engine.apply(target, "Orders", result.key_columns, result.pairs)

        assert counts == {"inserted": 1, "updated": 0, "deleted": 1}
        assert query_sqlite(target, "SELECT id, name FROM Orders ORDER BY id") == [(1, "a"), (2, "b")]
        assert service.compare_one("Orders", source, target).pairs == []

    def test_update_only_changes_non_key_columns(self, engine, make_sqlite, query_sqlite):
        target = make_sqlite(
            "target",
            "CREATE TABLE t (id INTEGER PRIMARY KEY, name TEXT, qty INTEGER)",
            "INSERT INTO t VALUES (1, 'old', 5)",
        )
        pair = RowPair(
            DiffType.DIFFERENT,
            "1",
            source={"id": 1, "name": "new", "qty": 5},
            target={"id": 1, "name": "old", "qty": 5},
            changed_columns=["name"],
        )

        counts = engine.apply(target, "t", ["id"], [pair])

        assert counts["updated"] == 1
        assert query_sqlite(target, "SELECT * FROM t") == [(1, "new", 5)]

    def test_apply_twice_is_idempotent(self, engine, registry, orders_pair, query_sqlite):
        source, target = orders_pair
        result = ComparisonService(registry).compare_one("Orders", source, target)

        engine.apply(target, "Orders", result.key_columns, result.pairs)
        engine.apply(target, "Orders", result.key_columns, result.pairs)

        assert query_sqlite(target, "SELECT id, name FROM Orders ORDER BY id") == [(1, "a"), (2, "b")]

    def test_selected_pairs_only(self, engine, registry, orders_pair, query_sqlite):
        source, target = orders_pair
        result = ComparisonService(registry).compare_one("Orders", source, target)
        approved = [p for p in result.pairs if p.diff_type == DiffType.ONLY_IN_SOURCE]

        engine.apply(target, "Orders", result.key_columns, approved)

        assert query_sqlite(target, "SELECT id FROM Orders ORDER BY id") == [(1,), (2,), (3,)]

    def test_failure_rolls_back_everything(self, engine, make_sqlite, query_sqlite):
        """Test a failing row leaves no earlier row committed"""
        target = make_sqlite(
            "target",
            "CREATE TABLE t (id INTEGER PRIMARY KEY, name TEXT NOT NULL)",
            "INSERT INTO t VALUES (1, 'a')",
        )
        pairs = [
            RowPair(DiffType.ONLY_IN_SOURCE, "5", source={"id": 5, "name": "e"}),
            RowPair(DiffType.ONLY_IN_SOURCE, "6", source={"id": 6, "name": None}),
        ]
        failed_before = apply_count("apply_row_changes", "failed")

        with pytest.raises(ApplyFailure) as exc_info:
            engine.apply(target, "t", ["id"], pairs)

        assert exc_info.value.operation == "insert 6"
        assert isinstance(exc_info.value.original, sqlite3.IntegrityError)
        assert exc_info.value.__cause__ is exc_info.value.original
        assert query_sqlite(target, "SELECT * FROM t") == [(1, "a")]
        assert apply_count("apply_row_changes", "failed") == failed_before + 1


class TestUnsupportedTargets:
    """Test read-only backends reject mutations without touching the target"""

    def test_apply_to_read_only_target(self, engine, make_config, tmp_path):
        target = make_config("target")
        before = (tmp_path / "target.cfg").read_bytes()
        pair = RowPair(DiffType.ONLY_IN_TARGET, "x", target={"key": "x"})
        unsupported_before = apply_count("apply_row_changes", "unsupported")

        with pytest.raises(UnsupportedOperation):
            engine.apply(target, "Device", ["key"], [pair])

        assert (tmp_path / "target.cfg").read_bytes() == before
        assert apply_count("apply_row_changes", "unsupported") == unsupported_before + 1

    def test_drop_on_read_only_target(self, engine, make_config):
        with pytest.raises(UnsupportedOperation, match="drop_table"):
            engine.drop(make_config("target"), "Device")

    def test_capabilities(self, engine, make_config, orders_pair):
        _, target = orders_pair

        assert engine.capabilities(target) == ProviderCapabilities.FULL
        assert engine.capabilities(make_config("cfg")) == ProviderCapabilities.READ_ONLY


class TestReplaceAndDrop:
    def test_replace_table(self, engine, orders_pair, query_sqlite):
        _, target = orders_pair
        snapshot = TableSnapshot(
            "Orders",
            [ColumnDescriptor("id", ValueType.INT64), ColumnDescriptor("name", ValueType.STRING)],
            [(7, "g"), (8, "h")],
        )

        inserted = engine.replace(target, "Orders", snapshot)

        assert inserted == 2
        assert query_sqlite(target, "SELECT id, name FROM Orders ORDER BY id") == [(7, "g"), (8, "h")]

    def test_drop_table(self, engine, orders_pair, query_sqlite):
        _, target = orders_pair

        engine.drop(target, "Orders")

        assert query_sqlite(target, "SELECT name FROM sqlite_master WHERE type = 'table'") == []

    def test_csv_target(self, engine, make_csv_folder, tmp_path):
        """Test the CSV folder backend accepts the same apply calls"""
        target = make_csv_folder("csv", {"t.csv": "id;name\r\n1;a\r\n"})
        pair = RowPair(DiffType.ONLY_IN_SOURCE, "2", source={"id": "2", "name": "b"})

        counts = engine.apply(target, "t", ["id"], [pair])

        assert counts["inserted"] == 1
        assert "2;b" in (tmp_path / "csv" / "t.csv").read_text(encoding="utf-8")

    def test_csv_key_spelled_differently(self, engine, registry, make_sqlite, make_csv_folder, tmp_path):
        """Test a Different pair updates the CSV row whose key only matches after coercion"""
        source = make_sqlite(
            "source",
            "CREATE TABLE Orders (id INTEGER PRIMARY KEY, name TEXT)",
            "INSERT INTO Orders VALUES (1, 'new')",
        )
        target = make_csv_folder("csv", {"Orders.csv": "id;name\r\n01;old\r\n"})
        service = ComparisonService(registry)
        result = service.compare_one("Orders", source, target)
        assert [p.diff_type for p in result.pairs] == [DiffType.DIFFERENT]

        counts = engine.apply(target, "Orders", result.key_columns, result.pairs)

        assert counts == {"inserted": 0, "updated": 1, "deleted": 0}
        assert (tmp_path / "csv" / "Orders.csv").read_bytes() == b"id;name\r\n1;new\r\n"
        assert service.compare_one("Orders", source, target).pairs == []


class TestTableLocks:
    """Test per-table apply locks"""

    def test_one_lock_per_table_while_held(self, engine, orders_pair):
        _, target = orders_pair

        lock = engine._table_lock(target, "Orders")

        assert engine._table_lock(target, "ORDERS") is lock
        assert engine._table_lock(target, "Other") is not lock

    def test_locks_released_after_apply(self, engine, registry, orders_pair):
        """Test finished applies leave no lock entries behind"""
        source, target = orders_pair
        result = ComparisonService(registry).compare_one("Orders", source, target)

        engine.apply(target, "Orders", result.key_columns, result.pairs)
        engine.replace(target, "Orders", TableSnapshot("Orders", result.columns, [(1, "a")]))
        gc.collect()

        assert len(engine._locks) == 0
