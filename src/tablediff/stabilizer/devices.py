"""
Stable keys for devices and crates.

Devices are addressed physically (``ObjA.Group - A4.3`` is slot 3 of rack
4). Rack numbers are absolute and differ between equivalent documents, so
the stable key replaces each rack number with its rank among the racks of
the same group: ``Group|R1|S3``.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any

from .names import (
    UNNAMED,
    field_value,
    normalize_spaces,
    parse_crate_slot,
    set_field,
    strip_crate_slot_suffix,
    strip_object_prefix,
)

logger = logging.getLogger(__name__)

_DEVICE_ADDRESS = re.compile(
    r"^(?P<group>.+?)\s*[-–—]\s*[AА](?P<rack>\d+)\.(?P<slot>\d+)\s*$",
    re.IGNORECASE,
)

# Slot used for crates without an ``-A<n>`` suffix so they sort last
NO_SLOT = 2**31 - 1


@dataclass(frozen=True)
class DeviceAddress:
    group: str
    rack: int
    slot: int


def parse_device_address(local_name: str | None) -> DeviceAddress | None:
    """
    Parse ``<group> - A<rack>.<slot>`` (Latin or Cyrillic A, any dash).

    Returns:
        The address, or None when the name carries none
    """
    if local_name is None or not local_name.strip():
        return None
    match = _DEVICE_ADDRESS.match(local_name.strip())
    if not match:
        return None
    group = normalize_spaces(match.group("group")) or UNNAMED
    return DeviceAddress(group, int(match.group("rack")), int(match.group("slot")))


def _device_name(row: dict[str, Any]) -> str:
    return field_value(row, "deviceName") or field_value(row, "name")


def rack_ordinals(device_names: list[str]) -> dict[str, dict[int, int]]:
    """Per group (case-insensitive), rack number -> rank 1..N in ascending order."""
    racks: dict[str, set[int]] = {}
    for name in device_names:
        address = parse_device_address(strip_object_prefix(name))
        if address is not None:
            racks.setdefault(address.group.lower(), set()).add(address.rack)
    return {
        group: {rack: rank for rank, rack in enumerate(sorted(numbers), start=1)}
        for group, numbers in racks.items()
    }


def stable_device_key(device_name: str | None, ordinals: dict[str, dict[int, int]]) -> str:
    """Stable key for one device name given the document's rack ranks."""
    local = normalize_spaces(strip_object_prefix(device_name or ""))
    address = parse_device_address(local)
    if address is not None:
        rank = ordinals.get(address.group.lower(), {}).get(address.rack, address.rack)
        return f"{address.group}|R{rank}|S{address.slot}"
    return local or UNNAMED


def rebuild_device_keys(
    device_rows: list[dict[str, Any]],
    signal_rows: list[dict[str, Any]] | None = None,
) -> int:
    """
    Replace ``deviceKey`` in device rows with the stable device key and
    propagate it to the signal rows of each device.

    Signals carry the owning device's ``deviceName``, so their key is
    recomputed from it with the same rack ranks.

    Returns:
        Number of device rows whose key changed
    """
    if not device_rows:
        return 0

    ordinals = rack_ordinals([_device_name(r) for r in device_rows])

    changed = 0
    for row in device_rows:
        key = stable_device_key(_device_name(row), ordinals)
        if field_value(row, "deviceKey").lower() != key.lower():
            changed += 1
        set_field(row, "deviceKey", key)

    changed_signals = 0
    for row in signal_rows or ():
        key = stable_device_key(field_value(row, "deviceName"), ordinals)
        if field_value(row, "deviceKey").lower() != key.lower():
            changed_signals += 1
        set_field(row, "deviceKey", key)

    logger.info(
        f"Device keys stabilized: {len(device_rows)} devices, {len(ordinals)} rack groups, "
        f"{changed} device keys and {changed_signals} signal keys changed"
    )
    return changed


def crate_key_for(crate_name: str | None) -> str:
    """Crate key: local name without object prefix and without its ``-A<slot>`` suffix."""
    return strip_crate_slot_suffix(strip_object_prefix(crate_name or ""))


def assign_crate_ordinals(crate_rows: list[dict[str, Any]]) -> None:
    """
    Number crates 1..N within each (crateKey, crateClass, type) group.

    Crates are ordered by the slot of their local name (crates without one
    last), then by local name. The ordinal lands in ``crateOrdinal``.
    """
    groups: dict[str, list[tuple[int, str, dict[str, Any]]]] = {}
    for row in crate_rows:
        group_key = "|".join(
            field_value(row, name) for name in ("crateKey", "crateClass", "type")
        ).lower()
        local = strip_object_prefix(field_value(row, "crateName"))
        slot = parse_crate_slot(local)
        groups.setdefault(group_key, []).append(
            (NO_SLOT if slot is None else slot, local, row)
        )

    for members in groups.values():
        members.sort(key=lambda m: (m[0], m[1].lower()))
        for ordinal, (_, _, row) in enumerate(members, start=1):
            set_field(row, "crateOrdinal", str(ordinal))
