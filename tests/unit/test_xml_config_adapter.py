"""
Unit tests for the XML .config folder adapter.
"""

import xml.etree.ElementTree as ET

import pytest

from tablediff.adapters.xml_config import (
    XmlConfigFolderAdapter,
    guess_primary_key,
    make_unique,
    select_row_elements,
    split_table_name,
)
from tablediff.connection import ConnectionDescriptor, ConnectionKind
from tablediff.errors import ConfigurationError, UnsupportedOperation
from tablediff.models import ColumnDescriptor, ProviderCapabilities, TableSnapshot, ValueType

REGISTER_MAP = """<?xml version="1.0" encoding="utf-8"?>
<Groups>
  <group drv="modbus" rtu="1" function="3">
    <reg name="t1" offset="0"/>
    <reg index="5" offset="1"/>
    <reg offset="2"/>
  </group>
  <group drv="modbus" rtu="1" function="3"/>
</Groups>
"""

ITEMS = """<Root>
  <Items>
    <item id="1"><v>a</v></item>
    <item id="2"><v>b</v></item>
  </Items>
</Root>
"""


@pytest.fixture
def adapter():
    return XmlConfigFolderAdapter()


@pytest.fixture
def make_folder(tmp_path):
    def factory(files: dict[str, str]) -> ConnectionDescriptor:
        folder = tmp_path / "configs"
        folder.mkdir(exist_ok=True)
        for name, text in files.items():
            (folder / name).write_text(text, encoding="utf-8")
        return ConnectionDescriptor(ConnectionKind.XML_CONFIG_FOLDER, str(folder))

    return factory


class TestHelpers:
    """Test table naming and row detection helpers"""

    @pytest.mark.parametrize(
        "table,expected",
        [
            ("plc/regs", ("plc", "regs")),
            ("plc/GROUPS", ("plc", "groups")),
            ("dir/plc/regs", ("dir/plc", "regs")),
            ("plc", ("plc", "groups")),
            ("dir\\plc\\regs", ("dir/plc", "regs")),
        ],
    )
    def test_split_table_name(self, table, expected):
        assert split_table_name(table) == expected

    def test_make_unique(self):
        assert make_unique(["a", "A", "", "a_2"]) == ["a", "A_2", "Col", "a_2_2"]

    def test_select_row_elements(self):
        """Test the repeated element with attributes wins"""
        elements = select_row_elements(ET.fromstring(ITEMS))

        assert [e.get("id") for e in elements] == ["1", "2"]

    def test_nothing_repeats(self):
        assert select_row_elements(ET.fromstring("<Root><A>1</A><B>2</B></Root>")) == []

    def test_guess_primary_key_prefers_id(self):
        snapshot = TableSnapshot(
            "t",
            [ColumnDescriptor("name", ValueType.STRING), ColumnDescriptor("a_id", ValueType.STRING)],
            [("x", "1"), ("x", "2")],
        )

        assert guess_primary_key(snapshot) == ["a_id"]

    def test_guess_primary_key_pair(self):
        snapshot = TableSnapshot(
            "t",
            [ColumnDescriptor("a_id", ValueType.STRING), ColumnDescriptor("name", ValueType.STRING)],
            [("1", "x"), ("1", "y"), ("2", "x")],
        )

        assert guess_primary_key(snapshot) == ["a_id", "name"]

    def test_guess_primary_key_none(self):
        snapshot = TableSnapshot("t", [ColumnDescriptor("v", ValueType.STRING)], [("a",), ("a",)])

        assert guess_primary_key(snapshot) == []


class TestRegisterMaps:
    """Test <Groups> documents"""

    def test_list_tables(self, adapter, make_folder):
        conn = make_folder({"plc.config": REGISTER_MAP, "ignored.xml": "<x/>"})

        assert adapter.list_tables(conn) == ["plc/groups", "plc/regs"]

    def test_groups(self, adapter, make_folder):
        """Test groups are keyed by signature and occurrence"""
        conn = make_folder({"plc.config": REGISTER_MAP})

        snapshot = adapter.load_full_table(conn, "plc/groups")

        assert snapshot.column_names == ["__groupKey", "a_drv", "a_function", "a_rtu"]
        assert [row[0] for row in snapshot.rows] == ["modbus|1|3#1", "modbus|1|3#2"]
        assert adapter.get_key_columns(conn, "plc/groups") == ["__groupKey"]

    def test_regs(self, adapter, make_folder):
        """Test registers are keyed by name, index, then position"""
        conn = make_folder({"plc.config": REGISTER_MAP})

        snapshot = adapter.load_full_table(conn, "plc/regs")

        assert snapshot.column_names[:2] == ["__groupKey", "__regKey"]
        assert [row[1] for row in snapshot.rows] == ["t1", "index:5", "reg#3"]
        assert {row[0] for row in snapshot.rows} == {"modbus|1|3#1"}
        assert adapter.get_key_columns(conn, "plc/regs") == ["__groupKey", "__regKey"]


class TestGenericDocuments:
    """Test documents that are not register maps"""

    def test_repeated_elements_become_rows(self, adapter, make_folder):
        conn = make_folder({"app.config": ITEMS})

        snapshot = adapter.load_full_table(conn, "app/groups")

        assert snapshot.column_names == ["a_id", "v"]
        assert snapshot.rows == [("1", "a"), ("2", "b")]
        assert adapter.get_key_columns(conn, "app/groups") == ["a_id"]

    def test_leaf_paths_when_nothing_repeats(self, adapter, make_folder):
        conn = make_folder({"app.config": "<Root><A>1</A><B>2</B></Root>"})

        snapshot = adapter.load_full_table(conn, "app/groups")

        assert snapshot.rows == [("Root/A", "1"), ("Root/B", "2")]
        assert adapter.get_key_columns(conn, "app/groups") == ["Key"]

    def test_row_numbers_when_nothing_is_unique(self, adapter, make_folder):
        conn = make_folder({"app.config": '<Root><x a="1"/><x a="1"/></Root>'})

        snapshot = adapter.load_full_table(conn, "app/groups")

        assert snapshot.column_names == ["a_a", "__row"]
        assert snapshot.rows == [("1", 1), ("1", 2)]
        assert adapter.get_key_columns(conn, "app/groups") == ["__row"]

    def test_malformed_xml_is_reported_as_row(self, adapter, make_folder):
        conn = make_folder({"bad.config": "<Root><unclosed></Root>"})

        snapshot = adapter.load_full_table(conn, "bad/groups")

        assert snapshot.column_names == ["Key", "Value"]
        assert snapshot.rows[0][0] == "XmlError"
        assert "ParseError" in snapshot.rows[0][1]

    def test_missing_file_is_empty(self, adapter, make_folder):
        conn = make_folder({})

        snapshot = adapter.load_full_table(conn, "absent/regs")

        assert snapshot.column_names == ["__groupKey", "__regKey"]
        assert len(snapshot) == 0


class TestCapabilities:
    """Test read and drop only"""

    def test_capabilities(self, adapter, make_folder):
        conn = make_folder({})

        capabilities = adapter.get_capabilities(conn)

        assert ProviderCapabilities.READ in capabilities
        assert ProviderCapabilities.DROP_TABLE in capabilities
        assert ProviderCapabilities.APPLY_ROW_CHANGES not in capabilities
        assert not adapter.supports_fast_hash

    def test_apply_unsupported(self, adapter, make_folder):
        conn = make_folder({"plc.config": REGISTER_MAP})

        with pytest.raises(UnsupportedOperation):
            adapter.apply_row_changes(conn, "plc/regs", [], [])

    def test_drop_deletes_file(self, adapter, make_folder, tmp_path):
        conn = make_folder({"plc.config": REGISTER_MAP})

        adapter.drop_table(conn, "plc/regs")

        assert not (tmp_path / "configs" / "plc.config").exists()
        assert adapter.list_tables(conn) == []

    def test_name_cannot_escape_folder(self, adapter, make_folder):
        conn = make_folder({})

        with pytest.raises(ConfigurationError):
            adapter.file_path(conn, "../outside/regs")
