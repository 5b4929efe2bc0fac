"""
XML ``.config`` folder adapter.

Every ``*.config`` file contributes two tables, ``<name>/groups`` and
``<name>/regs``. Register maps (a ``<Groups>`` root of ``<group>`` elements
holding ``<reg>`` elements) fill both; any other document is flattened into
a single table built from its most row-like repeated element, or into a
``Key``/``Value`` table of leaf paths when nothing repeats. Read-only apart
from Drop, which deletes the file.
"""

import logging
import os
import threading
import xml.etree.ElementTree as ET
from collections.abc import Iterator, Sequence

from ..connection import ConnectionDescriptor, ConnectionKind
from ..errors import ConfigurationError
from ..models import ColumnDescriptor, ProviderCapabilities, TableSnapshot, ValueType
from .base import BackendAdapter, check_cancelled, find_column

logger = logging.getLogger(__name__)

CONFIG_EXTENSION = ".config"
GROUPS = "groups"
REGS = "regs"
GROUP_KEY = "__groupKey"
REG_KEY = "__regKey"
ROW_NUMBER = "__row"
ERROR_KEY = "XmlError"

PREFERRED_ROW_NAMES = {
    "row", "item", "entry", "record", "signal", "tag", "point", "channel",
    "reg", "register", "var", "variable", "device", "module",
}
POOR_ROW_NAMES = {
    "value", "text", "string", "int", "double", "float", "bool",
    "comment", "description", "name",
}

KEY_PRIORITY = (
    "a_pk", "pk",
    "a_id", "id",
    "a_key", "key",
    "a_name", "name",
    "a_offset", "offset",
    "offset(pk)", "offsetpk", "offset_pk",
    "n", "a_n",
    "a_index", "index",
    "a_uid", "uid", "a_guid", "guid",
)

GROUP_SIGNATURE_ATTRIBUTES = ("drv", "rtu", "function", "table", "type")


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1] if tag.startswith("{") else tag


def _text(element: ET.Element) -> str:
    return "".join(element.itertext())


def _leaf_children(element: ET.Element) -> Iterator[ET.Element]:
    for child in element:
        if len(child) == 0:
            yield child


def _walk(element: ET.Element, path: str = "", depth: int = 0) -> Iterator[tuple[ET.Element, str, int]]:
    """Every element with its ``/``-joined path of local names and its depth."""
    path = f"{path}/{_local(element.tag)}" if path else _local(element.tag)
    yield element, path, depth
    for child in element:
        yield from _walk(child, path, depth + 1)


def make_unique(names: Sequence[str]) -> list[str]:
    """Blank names become ``Col``; repeats get ``_<n>`` suffixes, case-insensitively."""
    result = []
    used: dict[str, int] = {}
    for raw in names:
        name = raw.strip() if raw and raw.strip() else "Col"
        if name.lower() not in used:
            used[name.lower()] = 1
            result.append(name)
            continue
        used[name.lower()] += 1
        index = used[name.lower()]
        unique = f"{name}_{index}"
        while unique.lower() in used:
            index += 1
            unique = f"{name}_{index}"
        used[unique.lower()] = 1
        result.append(unique)
    return result


def split_table_name(table: str) -> tuple[str, str]:
    """``dir/name/regs`` -> (``dir/name``, ``regs``); names without a suffix are groups."""
    parts = [p for p in (table or "").replace("\\", "/").strip().split("/") if p]
    if len(parts) > 1 and parts[-1].lower() in (GROUPS, REGS):
        return "/".join(parts[:-1]), parts[-1].lower()
    return "/".join(parts), GROUPS


def _sorted_names(names: set[str]) -> list[str]:
    return sorted(names, key=str.lower)


def _add_unique(names: dict[str, str], name: str) -> None:
    if name.strip():
        names.setdefault(name.lower(), name)


def row_score(elements: list[ET.Element], depth: int) -> float:
    """
    How row-like a set of repeated elements is.

    More repetitions, more attributes/leaf children and deeper nesting score
    higher; conventional row names are boosted and value-like names damped.
    """
    sample = elements[:10]
    complexity = sum(len(e.attrib) + sum(1 for _ in _leaf_children(e)) for e in sample) / len(sample)
    name = _local(elements[0].tag).strip().lower()
    boost = 1.0
    if name in PREFERRED_ROW_NAMES:
        boost *= 1.8
    if not name or name in POOR_ROW_NAMES:
        boost *= 0.5
    return boost * (len(elements) * 10.0 + complexity * 5.0 + depth * 0.5)


def select_row_elements(root: ET.Element) -> list[ET.Element]:
    """The best-scoring group of same-path elements that repeat, or []."""
    candidates: dict[str, tuple[list[ET.Element], int]] = {}
    for element, path, depth in _walk(root):
        if depth == 0:
            continue
        if not element.attrib and len(element) == 0:
            continue
        entry = candidates.setdefault(path.lower(), ([], depth))
        entry[0].append(element)

    repeated = [(elements, depth) for elements, depth in candidates.values() if len(elements) >= 2]
    if not repeated:
        return []
    best, _ = max(repeated, key=lambda item: row_score(item[0], item[1]))
    return best


def _string_columns(names: Sequence[str]) -> list[ColumnDescriptor]:
    return [ColumnDescriptor(n, ValueType.STRING) for n in names]


def _attribute_and_leaf_columns(elements: Sequence[ET.Element], fixed: Sequence[str] = ()) -> list[str]:
    attributes: dict[str, str] = {}
    leaves: dict[str, str] = {}
    for element in elements:
        for name in element.attrib:
            _add_unique(attributes, _local(name))
        for child in _leaf_children(element):
            _add_unique(leaves, _local(child.tag))

    columns = list(fixed) + [f"a_{a}" for a in _sorted_names(set(attributes.values()))]
    for leaf in _sorted_names(set(leaves.values())):
        columns.append(f"c_{leaf}" if find_column(columns, leaf) is not None else leaf)
    return columns


def _fill_row(element: ET.Element, columns: list[str], values: list) -> None:
    for name, value in element.attrib.items():
        index = find_column(columns, f"a_{_local(name)}")
        if index is not None:
            values[index] = value
    for child in _leaf_children(element):
        leaf = _local(child.tag)
        index = find_column(columns, leaf)
        if index is None:
            index = find_column(columns, f"c_{leaf}")
        if index is not None:
            values[index] = _text(child)


def build_rows_table(name: str, elements: Sequence[ET.Element]) -> TableSnapshot:
    """One row per element: ``a_`` columns for attributes, then leaf children."""
    columns = make_unique(_attribute_and_leaf_columns(elements) or ["Xml"])
    raw_xml = len(columns) == 1 and columns[0].lower() == "xml"

    rows = []
    for element in elements:
        values: list = [None] * len(columns)
        if raw_xml:
            values[0] = ET.tostring(element, encoding="unicode")
        else:
            _fill_row(element, columns, values)
        rows.append(tuple(values))
    return TableSnapshot(name, _string_columns(columns), rows)


def build_key_value_table(name: str, root: ET.Element) -> TableSnapshot:
    """Leaf element paths and their text."""
    rows = [(path, _text(element)) for element, path, _ in _walk(root) if len(element) == 0]
    if not rows:
        rows = [("Empty", "")]
    return TableSnapshot(name, _string_columns(["Key", "Value"]), rows)


def _group_signature(group: ET.Element) -> str:
    parts = [(group.get(a) or "").strip() for a in GROUP_SIGNATURE_ATTRIBUTES]
    return "|".join(parts).strip("|") or "group"


def _reg_key(reg: ET.Element, ordinal: int) -> str:
    key = (reg.get("name") or "").strip()
    if not key and reg.get("index") is not None:
        key = f"index:{reg.get('index').strip()}"
    return key if key.strip() else f"reg#{ordinal}"


def build_register_tables(base_name: str, root: ET.Element) -> tuple[TableSnapshot, TableSnapshot]:
    """
    Groups and registers of a ``<Groups>`` register map.

    A group is keyed by its ``drv|rtu|function|table|type`` signature plus an
    occurrence number; a register by its ``name``, else ``index:<index>``,
    else its position within the group.
    """
    groups = [g for g in root if _local(g.tag).lower() == "group"]
    regs_by_group = [[r for r in g if _local(r.tag).lower() == "reg"] for g in groups]

    group_attributes: dict[str, str] = {}
    for group in groups:
        for name in group.attrib:
            _add_unique(group_attributes, _local(name))
    group_columns = [GROUP_KEY] + [f"a_{a}" for a in _sorted_names(set(group_attributes.values()))]

    all_regs = [r for regs in regs_by_group for r in regs]
    reg_columns = _attribute_and_leaf_columns(all_regs, fixed=(GROUP_KEY, REG_KEY))

    seen: dict[str, int] = {}
    group_rows = []
    reg_rows = []
    for group, regs in zip(groups, regs_by_group):
        signature = _group_signature(group)
        seen[signature.lower()] = seen.get(signature.lower(), 0) + 1
        group_key = f"{signature}#{seen[signature.lower()]}"

        values: list = [None] * len(group_columns)
        values[0] = group_key
        _fill_row(group, group_columns, values)
        group_rows.append(tuple(values))

        for ordinal, reg in enumerate(regs, start=1):
            values = [None] * len(reg_columns)
            values[0] = group_key
            values[1] = _reg_key(reg, ordinal)
            _fill_row(reg, reg_columns, values)
            reg_rows.append(tuple(values))

    return (
        TableSnapshot(f"{base_name}/{GROUPS}", _string_columns(group_columns), group_rows),
        TableSnapshot(f"{base_name}/{REGS}", _string_columns(reg_columns), reg_rows),
    )


def _is_unique(snapshot: TableSnapshot, columns: Sequence[str]) -> bool:
    indexes = [snapshot.index_of(c) for c in columns]
    seen = set()
    for row in snapshot.rows:
        key = "||".join("" if row[i] is None else str(row[i]) for i in indexes).lower()
        if key in seen:
            return False
        seen.add(key)
    return True


def guess_primary_key(snapshot: TableSnapshot) -> list[str]:
    """
    Key columns for a flattened table: the first unique column from the
    priority list (or the first column when none is listed), then the first
    unique pair. Empty when nothing is unique.
    """
    if not snapshot.columns or not snapshot.rows:
        return []

    candidates: list[str] = []
    names = snapshot.column_names
    for preferred in KEY_PRIORITY:
        index = find_column(names, preferred)
        if index is not None and find_column(candidates, names[index]) is None:
            candidates.append(names[index])
    if not candidates:
        candidates.append(names[0])

    for column in candidates:
        if _is_unique(snapshot, [column]):
            return [column]
    for i, first in enumerate(candidates):
        for second in candidates[i + 1:]:
            if _is_unique(snapshot, [first, second]):
                return [first, second]
    return []


def with_row_numbers(snapshot: TableSnapshot) -> TableSnapshot:
    columns = list(snapshot.columns)
    if not snapshot.has_column(ROW_NUMBER):
        columns.append(ColumnDescriptor(ROW_NUMBER, ValueType.INT32))
        rows = [tuple(row) + (i,) for i, row in enumerate(snapshot.rows, start=1)]
    else:
        position = snapshot.index_of(ROW_NUMBER)
        rows = [
            tuple(i if p == position else v for p, v in enumerate(row))
            for i, row in enumerate(snapshot.rows, start=1)
        ]
    return TableSnapshot(snapshot.name, columns, rows)


class XmlConfigFolderAdapter(BackendAdapter):
    """``.config`` XML files of a folder; read and drop only."""

    kind = ConnectionKind.XML_CONFIG_FOLDER
    display_name = "XML config folder"

    def __init__(self):
        self._key_cache: dict[tuple[str, str], tuple[float, list[str]]] = {}
        self._key_lock = threading.Lock()

    def _folder(self, conn: ConnectionDescriptor) -> str:
        if not os.path.isdir(conn.target):
            raise FileNotFoundError(f"XML config folder not found: {conn.target}")
        return conn.target

    def file_path(self, conn: ConnectionDescriptor, table: str) -> str:
        """
        File behind a table name (with or without its groups/regs suffix).

        Raises:
            ConfigurationError: If the name is empty or escapes the folder
        """
        base, _ = split_table_name((table or "").strip().strip('"'))
        if not base:
            raise ConfigurationError("Table name is empty")
        if os.path.isabs(base):
            base = os.path.splitext(os.path.basename(base))[0]
        if not base.lower().endswith(CONFIG_EXTENSION):
            base += CONFIG_EXTENSION

        folder = os.path.abspath(conn.target)
        path = os.path.abspath(os.path.join(folder, *base.split("/")))
        if os.path.commonpath([folder, path]) != folder:
            raise ConfigurationError(f"Table name escapes the XML config folder: {table}")
        return path

    def _config_files(self, folder: str, recursive: bool) -> Iterator[str]:
        if recursive:
            for root, _, files in os.walk(folder):
                for name in files:
                    if name.lower().endswith(CONFIG_EXTENSION):
                        yield os.path.join(root, name)
        else:
            for name in os.listdir(folder):
                path = os.path.join(folder, name)
                if name.lower().endswith(CONFIG_EXTENSION) and os.path.isfile(path):
                    yield path

    def list_tables(self, conn: ConnectionDescriptor) -> list[str]:
        folder = self._folder(conn)
        recursive = conn.flag("Recursive")
        names: dict[str, str] = {}
        for path in self._config_files(folder, recursive):
            if recursive:
                base = os.path.relpath(path, folder).replace(os.sep, "/")
            else:
                base = os.path.basename(path)
            base = base[: -len(CONFIG_EXTENSION)]
            if not base.strip():
                continue
            for suffix in (GROUPS, REGS):
                name = f"{base}/{suffix}"
                names.setdefault(name.lower(), name)
        return sorted(names.values(), key=str.lower)

    def get_capabilities(self, conn: ConnectionDescriptor) -> ProviderCapabilities:
        return ProviderCapabilities.READ | ProviderCapabilities.DROP_TABLE

    def _remember_key(self, path: str, table: str, key: list[str]) -> None:
        mtime = os.path.getmtime(path) if os.path.exists(path) else 0.0
        with self._key_lock:
            self._key_cache[(os.path.normcase(path), table.lower())] = (mtime, list(key))

    def _load(self, conn: ConnectionDescriptor, table: str) -> tuple[TableSnapshot, list[str]]:
        path = self.file_path(conn, table)
        base, kind = split_table_name(table)

        if not os.path.isfile(path):
            columns = [GROUP_KEY, REG_KEY] if kind == REGS else [GROUP_KEY]
            return TableSnapshot(table, _string_columns(columns)), list(columns)

        try:
            root = ET.parse(path).getroot()
        except (ET.ParseError, OSError) as e:
            logger.warning(f"Unreadable XML in {path}: {e}")
            snapshot = TableSnapshot(
                table, _string_columns(["Key", "Value"]), [(ERROR_KEY, f"{type(e).__name__}: {e}")]
            )
            self._remember_key(path, table, ["Key"])
            return snapshot, ["Key"]

        if _local(root.tag).lower() == "groups":
            groups, regs = build_register_tables(base, root)
            self._remember_key(path, groups.name, [GROUP_KEY])
            self._remember_key(path, regs.name, [GROUP_KEY, REG_KEY])
            if kind == REGS:
                return regs, [GROUP_KEY, REG_KEY]
            return groups, [GROUP_KEY]

        elements = select_row_elements(root)
        if not elements:
            snapshot = build_key_value_table(table, root)
            self._remember_key(path, table, ["Key"])
            return snapshot, ["Key"]

        snapshot = build_rows_table(table, elements)
        key = guess_primary_key(snapshot)
        if not key:
            snapshot = with_row_numbers(snapshot)
            key = [ROW_NUMBER]
        self._remember_key(path, table, key)
        return snapshot, key

    def load_full_table(
        self,
        conn: ConnectionDescriptor,
        table: str,
        cancel_token: threading.Event | None = None,
    ) -> TableSnapshot:
        check_cancelled(cancel_token, table)
        snapshot, _ = self._load(conn, table)
        logger.debug(f"Loaded {table} from {conn.target}: {len(snapshot)} rows")
        return snapshot

    def get_key_columns(self, conn: ConnectionDescriptor, table: str) -> list[str]:
        path = self.file_path(conn, table)
        if os.path.isfile(path):
            with self._key_lock:
                cached = self._key_cache.get((os.path.normcase(path), table.lower()))
            if cached is not None and cached[0] == os.path.getmtime(path) and cached[1]:
                return list(cached[1])
        _, key = self._load(conn, table)
        return key

    def drop_table(self, conn: ConnectionDescriptor, table: str) -> None:
        path = self.file_path(conn, table)
        if os.path.isfile(path):
            os.remove(path)
            logger.info(f"Deleted {path}")
