"""
Unit tests for the SQLite adapter and the shared DB-API statement builders.
"""

import threading

import pytest

from tablediff.adapters.sql import (
    AccessDialect,
    PostgresDialect,
    SqliteDialect,
    build_delete,
    build_insert,
    build_update,
    where_by_key,
)
from tablediff.adapters.sqlite import SqliteAdapter, sqlite_value_type
from tablediff.connection import ConnectionDescriptor, ConnectionKind
from tablediff.errors import ApplyFailure, CancellationRequested
from tablediff.hashing import compute_hash
from tablediff.models import (
    ColumnDescriptor,
    DiffType,
    ProviderCapabilities,
    RowPair,
    TableSnapshot,
    ValueType,
)
from tablediff.session import BatchSession


@pytest.fixture
def adapter():
    return SqliteAdapter()


class TestValueTypeMapping:
    """Test declared type affinity mapping"""

    @pytest.mark.parametrize(
        "declared,expected",
        [
            ("INTEGER", ValueType.INT64),
            ("BIGINT", ValueType.INT64),
            ("VARCHAR(20)", ValueType.STRING),
            ("TEXT", ValueType.STRING),
            ("BLOB", ValueType.BYTES),
            ("REAL", ValueType.DOUBLE),
            ("DATETIME", ValueType.DATETIME),
            ("NUMERIC(10,2)", ValueType.DECIMAL),
            ("BOOLEAN", ValueType.BOOLEAN),
            ("", ValueType.OBJECT),
            (None, ValueType.OBJECT),
        ],
    )
    def test_affinity(self, declared, expected):
        assert sqlite_value_type(declared) == expected


class TestSqliteReads:
    """Test catalog and row reads"""

    def test_list_tables_skips_internal(self, adapter, make_sqlite):
        """Test sqlite_ tables are hidden and names are sorted"""
        conn = make_sqlite(
            "db",
            "CREATE TABLE b (id INTEGER PRIMARY KEY AUTOINCREMENT)",
            "CREATE TABLE a (id INTEGER)",
        )

        assert adapter.list_tables(conn) == ["a", "b"]

    def test_composite_key_in_key_order(self, adapter, make_sqlite):
        """Test primary key columns come back in declared key order"""
        conn = make_sqlite(
            "db",
            "CREATE TABLE t (a TEXT, b INTEGER, c TEXT, PRIMARY KEY (c, a))",
        )

        assert adapter.get_key_columns(conn, "t") == ["c", "a"]

    def test_no_key(self, adapter, make_sqlite):
        """Test a heap table reports no key columns"""
        conn = make_sqlite("db", "CREATE TABLE t (a TEXT)")

        assert adapter.get_key_columns(conn, "t") == []

    def test_load_full_table(self, adapter, orders_pair):
        """Test the snapshot carries typed columns and all rows"""
        source, _ = orders_pair

        snapshot = adapter.load_full_table(source, "Orders")

        assert snapshot.column_names == ["id", "name"]
        assert snapshot.value_types == [ValueType.INT64, ValueType.STRING]
        assert sorted(snapshot.rows) == [(1, "a"), (2, "b")]

    def test_load_quoted_table_name(self, adapter, make_sqlite):
        """Test table names with spaces and quotes are quoted"""
        conn = make_sqlite(
            "db",
            'CREATE TABLE "Order ""Lines""" (id INTEGER PRIMARY KEY)',
            'INSERT INTO "Order ""Lines""" VALUES (1)',
        )

        snapshot = adapter.load_full_table(conn, 'Order "Lines"')

        assert snapshot.rows == [(1,)]

    def test_key_hash_map(self, adapter, orders_pair):
        """Test fast hashes match hashes of the materialized rows"""
        source, _ = orders_pair
        schema = adapter.get_column_schema(source, "Orders")

        hashes = adapter.load_key_hash_map(source, "Orders", ["id"], schema)

        assert set(hashes) == {"1", "2"}
        assert hashes["2"] == compute_hash([2, "b"], [ValueType.INT64, ValueType.STRING])

    def test_key_hash_map_missing_column_hashes_as_null(self, adapter, make_sqlite):
        """Test schema columns absent on this side hash as NULL"""
        conn = make_sqlite(
            "db",
            "CREATE TABLE t (id INTEGER PRIMARY KEY)",
            "INSERT INTO t VALUES (1)",
        )
        schema = [ColumnDescriptor("id", ValueType.INT64), ColumnDescriptor("extra", ValueType.INT64)]

        hashes = adapter.load_key_hash_map(conn, "t", ["id"], schema)

        assert hashes["1"] == compute_hash([1, None], [ValueType.INT64, ValueType.INT64])

    def test_cancelled_load(self, adapter, orders_pair):
        """Test a set token aborts the load"""
        source, _ = orders_pair
        token = threading.Event()
        token.set()

        with pytest.raises(CancellationRequested):
            adapter.load_full_table(source, "Orders", token)

    def test_missing_file(self, adapter, tmp_path):
        """Test a missing database file is reported, not created"""
        conn = ConnectionDescriptor(ConnectionKind.SQLITE, str(tmp_path / "nope.sqlite"))

        with pytest.raises(FileNotFoundError):
            adapter.list_tables(conn)
        assert not (tmp_path / "nope.sqlite").exists()

    def test_full_capabilities(self, adapter, orders_pair):
        assert adapter.get_capabilities(orders_pair[0]) == ProviderCapabilities.FULL


class TestSqliteBatch:
    """Test connection reuse through BatchSession"""

    def test_batch_reuses_connection(self, adapter, orders_pair):
        """Test reads inside a batch run on the batch connection"""
        source, _ = orders_pair

        with BatchSession(adapter, source) as batch_conn:
            handle = batch_conn.session
            assert adapter.list_tables(batch_conn) == ["Orders"]
            assert len(adapter.load_full_table(batch_conn, "Orders")) == 2
            assert not handle.closed

        assert handle.closed


class TestSqliteApply:
    """Test transactional row changes"""

    def _scenario_pairs(self):
        return [
            RowPair(DiffType.ONLY_IN_SOURCE, "2", source={"id": 2, "name": "b"}),
            RowPair(DiffType.ONLY_IN_TARGET, "3", target={"id": 3, "name": "c"}),
        ]

    def test_apply_insert_and_delete(self, adapter, orders_pair, query_sqlite):
        """Test OnlyInSource inserts and OnlyInTarget deletes"""
        _, target = orders_pair

        counts = adapter.apply_row_changes(target, "Orders", ["id"], self._scenario_pairs())

        assert counts == {"inserted": 1, "updated": 0, "deleted": 1}
        assert query_sqlite(target, "SELECT id, name FROM Orders ORDER BY id") == [
            (1, "a"),
            (2, "b"),
        ]

    def test_apply_twice_is_idempotent(self, adapter, orders_pair, query_sqlite):
        """Test re-applying the same pairs leaves the table unchanged"""
        _, target = orders_pair

        adapter.apply_row_changes(target, "Orders", ["id"], self._scenario_pairs())
        adapter.apply_row_changes(target, "Orders", ["id"], self._scenario_pairs())

        assert query_sqlite(target, "SELECT id, name FROM Orders ORDER BY id") == [
            (1, "a"),
            (2, "b"),
        ]

    def test_update_changes_non_key_columns(self, adapter, orders_pair, query_sqlite):
        """Test Different updates the target row by key"""
        _, target = orders_pair
        pairs = [
            RowPair(
                DiffType.DIFFERENT,
                "1",
                source={"id": 1, "name": "z"},
                target={"id": 1, "name": "a"},
                changed_columns=["name"],
            )
        ]

        counts = adapter.apply_row_changes(target, "Orders", ["id"], pairs)

        assert counts["updated"] == 1
        assert query_sqlite(target, "SELECT name FROM Orders WHERE id = 1") == [("z",)]

    def test_failure_rolls_back(self, adapter, orders_pair, query_sqlite):
        """Test a failing statement rolls back earlier statements"""
        _, target = orders_pair
        pairs = [
            RowPair(DiffType.ONLY_IN_TARGET, "3", target={"id": 3, "name": "c"}),
            RowPair(DiffType.ONLY_IN_SOURCE, "9", source={"bogus": 9}),
        ]

        with pytest.raises(ApplyFailure) as exc_info:
            adapter.apply_row_changes(target, "Orders", ["id"], pairs)

        assert exc_info.value.table == "Orders"
        assert exc_info.value.operation == "insert 9"
        assert isinstance(exc_info.value.original, ValueError)
        assert query_sqlite(target, "SELECT id FROM Orders ORDER BY id") == [(1,), (3,)]

    def test_replace_table(self, adapter, orders_pair, query_sqlite):
        """Test replace deletes every row then inserts the snapshot"""
        _, target = orders_pair
        snapshot = TableSnapshot(
            "Orders",
            [ColumnDescriptor("id", ValueType.INT64), ColumnDescriptor("name", ValueType.STRING)],
            [(5, "e"), (6, "f")],
        )

        inserted = adapter.replace_table(target, "Orders", snapshot)

        assert inserted == 2
        assert query_sqlite(target, "SELECT id FROM Orders ORDER BY id") == [(5,), (6,)]

    def test_drop_table(self, adapter, orders_pair):
        _, target = orders_pair

        adapter.drop_table(target, "Orders")

        assert adapter.list_tables(target) == []


class TestStatementBuilders:
    """Test dialect-specific statement text"""

    def test_null_key_uses_is_null(self):
        where, params = where_by_key(SqliteDialect(), ["a", "b"], [None, 1])

        assert where == '"a" IS NULL AND "b" = ?'
        assert params == [1]

    def test_postgres_placeholders(self):
        statement, params = build_delete(PostgresDialect(), "t", ["id"], [1])

        assert statement == 'DELETE FROM "t" WHERE "id" = %s'
        assert params == [1]

    def test_access_brackets(self):
        statement, _ = build_insert(AccessDialect(), "My Table", {"Id": 1}, ["Id"])

        assert statement == "INSERT INTO [My Table] ([Id]) VALUES (?)"

    def test_insert_skips_columns_missing_on_target(self):
        """Test source-only columns are left out and names resolve case-insensitively"""
        statement, params = build_insert(SqliteDialect(), "t", {"ID": 1, "extra": 2}, ["id"])

        assert statement == 'INSERT INTO "t" ("id") VALUES (?)'
        assert params == [1]

    def test_update_without_non_key_columns(self):
        """Test a key-only row yields no UPDATE"""
        assert build_update(SqliteDialect(), "t", ["id"], {"id": 1}, [1], ["id"]) is None
