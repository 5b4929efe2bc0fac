"""
Stable keys for nets (buses).

Raw net keys are built from the chain of net names while the document is
walked, so they carry object prefixes and absolute addresses. Here the
parent/child tree implied by ``parentNetKey`` is rebuilt and every net gets
``<parent key>|<base label>#<ordinal>``, where siblings sharing a base label
are numbered by address, channel and name.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any

from .names import UNTYPED, field_value, normalize_name_for_key, set_field

logger = logging.getLogger(__name__)

_ADDRESS = re.compile(r"\bA(?P<maj>\d+)(?:\.(?P<min>\d+))?\b", re.IGNORECASE)
_CHANNEL = re.compile(r"\b(?:Канал|Channel)\s*(?P<n>\d+)\b", re.IGNORECASE)

UNKNOWN = 2**31 - 1


def parse_address(value: str) -> tuple[int, int] | None:
    """``A<major>[.<minor>]`` anywhere in the text; minor defaults to 0."""
    if not value or not value.strip():
        return None
    match = _ADDRESS.search(value)
    if not match:
        return None
    minor = match.group("min")
    return int(match.group("maj")), int(minor) if minor else 0


def parse_channel(value: str) -> int | None:
    if not value or not value.strip():
        return None
    match = _CHANNEL.search(value)
    return int(match.group("n")) if match else None


def net_base_label(net_type: str, name: str) -> str:
    """``<type>|<normalized name>``; the type stands in for a missing name."""
    label_type = net_type.strip() or UNTYPED
    normalized = normalize_name_for_key(name) or normalize_name_for_key(label_type)
    return f"{label_type}|{normalized}"


@dataclass
class NetNode:
    """One net row with the sort attributes derived from it."""

    row: dict[str, Any]
    old_key: str
    parent_old_key: str
    base_label: str
    sort_name: str
    sort_address: tuple[int, int]
    sort_channel: int
    new_key: str = ""
    children: list["NetNode"] = field(default_factory=list)

    @classmethod
    def from_row(cls, row: dict[str, Any], old_key: str, parent_old_key: str) -> "NetNode":
        net_type = field_value(row, "type")
        name = field_value(row, "name")
        parent_device = field_value(row, "parentDeviceName")

        address = parse_address(name) or parse_address(parent_device) or (UNKNOWN, UNKNOWN)
        channel = parse_channel(name)
        return cls(
            row=row,
            old_key=old_key,
            parent_old_key=parent_old_key,
            base_label=net_base_label(net_type, name),
            sort_name=normalize_name_for_key(name) or normalize_name_for_key(net_type),
            sort_address=address,
            sort_channel=UNKNOWN if channel is None else channel,
        )

    def sort_key(self) -> tuple:
        return (
            self.sort_address[0],
            self.sort_address[1],
            self.sort_channel,
            self.sort_name.lower(),
            self.old_key.lower(),
        )


def _assign(
    parent_old_key: str,
    parent_new_key: str,
    children: dict[str, list[NetNode]],
    new_by_old: dict[str, str],
) -> None:
    siblings = children.get(parent_old_key.lower())
    if not siblings:
        return

    groups: dict[str, list[NetNode]] = {}
    for node in siblings:
        groups.setdefault(node.base_label.lower(), []).append(node)

    for group_key in sorted(groups):
        members = groups[group_key]
        # The label of the first member names the group
        label = members[0].base_label
        for ordinal, node in enumerate(sorted(members, key=NetNode.sort_key), start=1):
            node.new_key = f"{label}#{ordinal}"
            if parent_new_key:
                node.new_key = f"{parent_new_key}|{node.new_key}"
            new_by_old[node.old_key.lower()] = node.new_key

    for node in sorted(siblings, key=lambda n: n.new_key.lower()):
        _assign(node.old_key, node.new_key, children, new_by_old)


def rebuild_net_keys(
    net_rows: list[dict[str, Any]],
    device_rows: list[dict[str, Any]] | None = None,
) -> dict[str, str]:
    """
    Replace raw ``netKey``/``parentNetKey`` values with stable keys.

    Parents that do not resolve to a known net make the net a root. Device
    rows have their ``parentNetKey`` (and ``netKey``, when present) remapped
    through the same table.

    Returns:
        Mapping of lower-cased raw key to stable key
    """
    if not net_rows:
        return {}

    old_keys = {field_value(r, "netKey").lower() for r in net_rows} - {""}

    children: dict[str, list[NetNode]] = {}
    for row in net_rows:
        old_key = field_value(row, "netKey")
        if not old_key:
            continue
        parent = field_value(row, "parentNetKey")
        if parent.lower() not in old_keys:
            parent = ""
        node = NetNode.from_row(row, old_key, parent)
        children.setdefault(parent.lower(), []).append(node)

    new_by_old: dict[str, str] = {}
    _assign("", "", children, new_by_old)

    for row in net_rows:
        old_key = field_value(row, "netKey")
        if not old_key:
            continue
        if old_key.lower() in new_by_old:
            set_field(row, "netKey", new_by_old[old_key.lower()])
        parent = field_value(row, "parentNetKey")
        set_field(row, "parentNetKey", new_by_old.get(parent.lower(), "") if parent else "")

    for row in device_rows or ():
        for name in ("parentNetKey", "netKey"):
            value = field_value(row, name)
            if value and value.lower() in new_by_old:
                set_field(row, name, new_by_old[value.lower()])

    logger.debug(f"Net keys stabilized: {len(new_by_old)} nets")
    return new_by_old
