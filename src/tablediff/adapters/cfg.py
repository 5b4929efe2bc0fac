"""
Configuration-tree adapter.

A single XML configuration document (``Configuration`` or
``ConfigurationProject`` root) is flattened into six fixed tables: project
parameters, boxes, crates, nets, devices and signals. Entity keys and
name columns are run through the key stabilizer before the tables are
exposed, so documents that differ only in object prefix and rack numbering
line up row for row and compare equal. All values are text.
Read-only.
"""

import logging
import os
import threading
import time
import xml.etree.ElementTree as ET
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from utils.tracing import trace_function

from ..connection import ConnectionDescriptor, ConnectionKind
from ..errors import ConfigurationError
from ..models import ColumnDescriptor, TableSnapshot, ValueType
from ..session import BatchHandle, active_handle
from ..stabilizer import (
    assign_crate_ordinals,
    crate_key_for,
    normalize_entity_names,
    rebuild_device_keys,
    rebuild_net_keys,
    strip_object_prefix,
)
from ..stabilizer.names import UNNAMED, set_field
from .base import (
    BackendAdapter,
    BatchSupport,
    FastHashSupport,
    build_key_hash_map,
    check_cancelled,
    find_column,
)

logger = logging.getLogger(__name__)

PROJECT_PARAMS = "ProjectParams"
BOX = "Box"
CRATE = "Crate"
NET = "Net"
DEVICE = "Device"
SIGNALS = "signals"

TABLE_KEYS: dict[str, list[str]] = {
    PROJECT_PARAMS: ["Key"],
    BOX: ["boxIndex"],
    CRATE: ["crateKey", "crateClass", "type", "crateOrdinal"],
    NET: ["netKey"],
    DEVICE: ["deviceKey"],
    SIGNALS: ["deviceKey", "signalIndex"],
}

MANDATORY_COLUMNS: dict[str, list[str]] = {
    PROJECT_PARAMS: ["Key", "Value"],
    BOX: ["boxIndex", "name", "type"],
    CRATE: ["boxName", "crateName", "crateKey", "crateClass", "type", "crateOrdinal"],
    NET: ["netKey"],
    DEVICE: ["deviceKey", "deviceName"],
    SIGNALS: ["deviceKey", "deviceName", "signalName", "signalIndex"],
}

ROOT_NAMES = ("Configuration", "ConfigurationProject")
SIGNAL_PARTS = {"Params": "p_", "InputChannelParams": "in_", "OutputChannelParams": "out_"}

Row = dict[str, str]


@dataclass
class ParsedConfig:
    """Flattened tables of one document, keyed by table name."""

    path: str
    tables: dict[str, TableSnapshot] = field(default_factory=dict)

    def table(self, name: str) -> TableSnapshot | None:
        if name in self.tables:
            return self.tables[name]
        lowered = name.lower()
        for table_name, snapshot in self.tables.items():
            if table_name.lower() == lowered:
                return snapshot
        return None


def _local(tag: str) -> str:
    """Element tag without its ``{namespace}``."""
    return tag.rsplit("}", 1)[-1] if tag.startswith("{") else tag


def _child(element: ET.Element | None, name: str) -> ET.Element | None:
    if element is None:
        return None
    for child in element:
        if _local(child.tag) == name:
            return child
    return None


def _children(element: ET.Element | None, name: str) -> list[ET.Element]:
    if element is None:
        return []
    return [child for child in element if _local(child.tag) == name]


def _text(element: ET.Element | None) -> str:
    """Concatenated text content, like XLinq's ``Value``."""
    if element is None:
        return ""
    return "".join(element.itertext())


def _has_elements(element: ET.Element) -> bool:
    return len(element) > 0


def add_scalar_children(row: Row, parent: ET.Element, prefix: str = "") -> None:
    """Copy leaf children of ``parent`` into ``row`` as trimmed text."""
    for child in parent:
        if _has_elements(child):
            continue
        set_field(row, prefix + _local(child.tag), _text(child).strip())


def make_unique_key(base_key: str, seen: dict[str, int]) -> str:
    """First use keeps ``base_key``; later uses get ``#2``, ``#3``, ..."""
    count = seen.get(base_key)
    if count is None:
        seen[base_key] = 1
        return base_key
    count += 1
    seen[base_key] = count
    return f"{base_key}#{count}"


def find_config_root(root: ET.Element) -> ET.Element:
    """
    The configuration element of a document.

    A wrapped document may contain both a ``Configuration`` and a
    ``ConfigurationProject``; the one holding ``<signals>`` wins.

    Raises:
        ValueError: If neither element is present
    """
    if _local(root.tag) in ROOT_NAMES:
        return root

    candidates = {name: None for name in ROOT_NAMES}
    for element in root.iter():
        name = _local(element.tag)
        if name in candidates and candidates[name] is None:
            candidates[name] = element

    for element in candidates.values():
        if element is not None and any(_local(e.tag) == "signals" for e in element.iter()):
            return element
    for element in candidates.values():
        if element is not None:
            return element
    raise ValueError("Neither <Configuration> nor <ConfigurationProject> found in document")


def build_table(name: str, rows: list[Row], mandatory: Sequence[str] = ()) -> TableSnapshot:
    """String table with columns in order of first appearance, then missing mandatory ones."""
    columns: list[str] = []
    for row in rows:
        for column in row:
            if find_column(columns, column) is None:
                columns.append(column)
    for column in mandatory:
        if find_column(columns, column) is None:
            columns.append(column)

    data = []
    for row in rows:
        lowered = {k.lower(): v for k, v in row.items()}
        data.append(tuple(lowered.get(c.lower()) for c in columns))
    return TableSnapshot(name, [ColumnDescriptor(c, ValueType.STRING) for c in columns], data)


class ConfigTreeBuilder:
    """Walks one configuration element and collects the six row lists."""

    def __init__(self, config: ET.Element, document_root: ET.Element):
        self.config = config
        self.document_root = document_root
        self.net_rows: list[Row] = []
        self.device_rows: list[Row] = []
        self.signal_rows: list[Row] = []
        self._net_keys: dict[str, int] = {}

    def project_params(self) -> list[Row]:
        rows: list[Row] = []
        version = self.document_root.get("version") or self.config.get("version")
        if version is not None:
            rows.append({"Key": "file_version", "Value": version})

        params = _child(self.config, "ProjectParams")
        if params is not None:
            for child in params:
                if _has_elements(child):
                    continue
                rows.append({"Key": _local(child.tag), "Value": _text(child).strip()})
        return rows

    def boxes(self) -> list[Row]:
        rows = []
        for box in _children(self.config, "Box"):
            row: Row = {}
            common = _child(box, "ParamsCommon")
            if common is not None:
                add_scalar_children(row, common)
            rows.append(row)
        return rows

    def crates(self) -> list[Row]:
        rows = []
        for box in _children(self.config, "Box"):
            box_name = _text(_child(_child(box, "ParamsCommon"), "name"))
            for crate in _children(_child(box, "Crates"), "Crate"):
                row: Row = {"boxName": box_name}
                common = _child(crate, "ParamsCommon")
                if common is not None:
                    add_scalar_children(row, common)
                if "name" in row:
                    crate_name = row.pop("name")
                    row["crateName"] = crate_name
                    row["crateKey"] = crate_key_for(crate_name)
                row.setdefault("crateOrdinal", "")
                rows.append(row)

        assign_crate_ordinals(rows)
        return rows

    def walk_nets(self) -> None:
        for net in _children(self.config, "Net"):
            self._net(net, "", "")
        rebuild_net_keys(self.net_rows, self.device_rows)
        rebuild_device_keys(self.device_rows, self.signal_rows)

    def _net(self, net: ET.Element, parent_net_key: str, parent_device_name: str) -> None:
        common = _child(net, "ParamsCommon")
        specific = _child(net, "ParamsSpecific")

        net_name = _text(_child(common, "name"))
        base_key = f"{parent_net_key}|{net_name}" if parent_net_key.strip() else net_name
        if not base_key.strip():
            base_key = UNNAMED
        net_key = make_unique_key(base_key, self._net_keys)

        row: Row = {
            "netKey": net_key,
            "parentNetKey": parent_net_key,
            "parentDeviceName": parent_device_name,
        }
        if common is not None:
            add_scalar_children(row, common)
        if specific is not None:
            add_scalar_children(row, specific, prefix="ps_")
        self.net_rows.append(row)

        for device in _children(_child(net, "Devices"), "Device"):
            self._device(device, net_key)

    def _device(self, device: ET.Element, parent_net_key: str) -> None:
        common = _child(device, "ParamsCommon")
        specific = _child(device, "ParamsSpecific")

        device_name = _text(_child(common, "name"))
        if not device_name.strip():
            device_name = UNNAMED
        device_key = strip_object_prefix(device_name) or UNNAMED

        row: Row = {
            "deviceKey": device_key,
            "deviceName": device_name,
            "parentNetKey": parent_net_key,
        }
        addressing = _child(device, "Addressing")
        if addressing is not None:
            for name in ("box", "crate", "slotNum"):
                row[name] = _text(_child(addressing, name)).strip()

        if common is not None:
            add_scalar_children(row, common)
            row.pop("name", None)

        if specific is not None:
            for child in specific:
                name = _local(child.tag)
                if name.lower() == "signals" or _has_elements(child):
                    continue
                set_field(row, "ps_" + name, _text(child).strip())

        self.device_rows.append(row)

        signals = _child(specific, "signals")
        if signals is not None:
            for signal in signals:
                self._signal(signal, device_key, device_name)

        # Nets hanging off a device keep the device's parent net as their parent
        for net in _children(_child(device, "Nets"), "Net"):
            self._net(net, parent_net_key, device_name)

    def _signal(self, signal: ET.Element, device_key: str, device_name: str) -> None:
        tag = _local(signal.tag)
        row: Row = {
            "deviceKey": device_key,
            "deviceName": device_name,
            "signalName": signal.get("name", tag),
            "signalIndex": tag,
        }
        for part, prefix in SIGNAL_PARTS.items():
            element = _child(signal, part)
            if element is not None:
                add_scalar_children(row, element, prefix=prefix)

        for child in signal:
            name = _local(child.tag)
            if name in SIGNAL_PARTS or _has_elements(child):
                continue
            set_field(row, "sig_" + name, _text(child).strip())

        self.signal_rows.append(row)


@trace_function("parse_config_file", component="adapter", backend="cfg")
def parse_config_file(path: str) -> ParsedConfig:
    """
    Parse a configuration document into its six tables.

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If the document has no configuration element
        xml.etree.ElementTree.ParseError: If the XML is malformed
    """
    if not os.path.isfile(path):
        raise FileNotFoundError(f"Configuration file not found: {path}")

    started = time.perf_counter()
    document_root = ET.parse(path).getroot()
    config = find_config_root(document_root)

    builder = ConfigTreeBuilder(config, document_root)
    project_params = builder.project_params()
    boxes = builder.boxes()
    crates = builder.crates()
    builder.walk_nets()
    normalize_entity_names(builder.device_rows, [boxes, crates, builder.net_rows, builder.signal_rows])

    parsed = ParsedConfig(path)
    for name, rows in (
        (PROJECT_PARAMS, project_params),
        (BOX, boxes),
        (CRATE, crates),
        (NET, builder.net_rows),
        (DEVICE, builder.device_rows),
        (SIGNALS, builder.signal_rows),
    ):
        parsed.tables[name] = build_table(name, rows, MANDATORY_COLUMNS[name])

    elapsed = time.perf_counter() - started
    counts = ", ".join(f"{name}={len(t)}" for name, t in parsed.tables.items())
    logger.info(f"Parsed configuration {path} in {elapsed:.3f}s: {counts}")
    return parsed


class ConfigTreeAdapter(BackendAdapter, FastHashSupport, BatchSupport):
    """Fixed tables of a configuration tree document; read-only."""

    kind = ConnectionKind.CFG
    display_name = "configuration tree"

    def begin_batch(self, conn: ConnectionDescriptor) -> BatchHandle:
        return BatchHandle(resource=parse_config_file(conn.target))

    def _parsed(self, conn: ConnectionDescriptor) -> ParsedConfig:
        handle = active_handle(conn)
        if handle is not None:
            return handle.resource
        return parse_config_file(conn.target)

    def _table(self, conn: ConnectionDescriptor, table: str) -> TableSnapshot | None:
        return self._parsed(conn).table(table)

    def list_tables(self, conn: ConnectionDescriptor) -> list[str]:
        return list(TABLE_KEYS)

    def get_key_columns(self, conn: ConnectionDescriptor, table: str) -> list[str]:
        for name, keys in TABLE_KEYS.items():
            if name.lower() == table.lower():
                return list(keys)
        return []

    def get_column_schema(self, conn: ConnectionDescriptor, table: str) -> list[ColumnDescriptor]:
        snapshot = self._table(conn, table)
        return list(snapshot.columns) if snapshot is not None else []

    def load_full_table(
        self,
        conn: ConnectionDescriptor,
        table: str,
        cancel_token: threading.Event | None = None,
    ) -> TableSnapshot:
        check_cancelled(cancel_token, table)
        snapshot = self._table(conn, table)
        if snapshot is None:
            return TableSnapshot(table, [])
        return TableSnapshot(snapshot.name, list(snapshot.columns), list(snapshot.rows))

    def load_key_hash_map(
        self,
        conn: ConnectionDescriptor,
        table: str,
        key_columns: Sequence[str],
        schema: Sequence[ColumnDescriptor],
        cancel_token: threading.Event | None = None,
    ) -> dict[str, int]:
        if not schema or not key_columns:
            raise ConfigurationError(f"Schema and key columns are required to hash {table}")
        schema_names = [c.name for c in schema]
        for key in key_columns:
            if find_column(schema_names, key) is None:
                raise ConfigurationError(f"Key column '{key}' not in schema of {table}")

        snapshot = self._table(conn, table)
        if snapshot is None:
            return {}
        return build_key_hash_map(
            snapshot.rows, snapshot.column_names, key_columns, schema, table, cancel_token
        )
