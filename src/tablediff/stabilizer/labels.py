"""
Display names of configuration-tree entities.

Name columns (``deviceName``, ``crateName``, net ``name`` ...) are compared
as content, so after the keys are stabilized the names are rewritten the
same way: object prefix stripped and absolute rack numbers replaced by their
rank. Devices rank racks within their group, like their keys; every other
name ranks against all racks named in the document.
"""

import logging
import re
from collections.abc import Iterable
from typing import Any

from .devices import parse_device_address, rack_ordinals
from .names import (
    UNNAMED,
    field_value,
    normalize_spaces,
    set_field,
    strip_name_prefix,
    strip_object_prefix,
)

logger = logging.getLogger(__name__)

_RACK_SEGMENT = re.compile(
    r"(?P<dash>\s*[-–—]\s*)[AА](?P<rack>\d+)(?P<slot>\.\d+)?\b",
    re.IGNORECASE,
)

DEVICE_NAME_COLUMNS = ("deviceName", "parentDeviceName")
NAME_COLUMNS = ("name", "boxName", "crateName")


def document_rack_ranks(names: Iterable[str]) -> dict[int, int]:
    """Rack number -> rank 1..N over every ``- A<rack>`` segment in ``names``."""
    racks = {
        int(match.group("rack"))
        for name in names
        for match in _RACK_SEGMENT.finditer(name or "")
    }
    return {rack: rank for rank, rack in enumerate(sorted(racks), start=1)}


def ranked_name(value: str | None, ranks: dict[int, int]) -> str:
    """``ObjA.KC - A14`` -> ``KC - R1`` given ``{14: 1}``."""
    text = strip_name_prefix(value)

    def substitute(match: re.Match) -> str:
        rack = int(match.group("rack"))
        return f"{match.group('dash')}R{ranks.get(rack, rack)}{match.group('slot') or ''}"

    return _RACK_SEGMENT.sub(substitute, text)


def stable_device_name(device_name: str | None, ordinals: dict[str, dict[int, int]]) -> str:
    """``ObjA.Group - A4.3`` -> ``Group - R1.3`` when rack 4 ranks first in ``Group``."""
    local = normalize_spaces(strip_object_prefix(device_name or ""))
    address = parse_device_address(local)
    if address is None:
        return local or UNNAMED
    rank = ordinals.get(address.group.lower(), {}).get(address.rack, address.rack)
    return f"{address.group} - R{rank}.{address.slot}"


def normalize_entity_names(
    device_rows: list[dict[str, Any]],
    other_rows: Iterable[list[dict[str, Any]]] = (),
) -> None:
    """
    Rewrite name columns in place.

    ``deviceName``/``parentDeviceName`` use the device rack ranks of
    ``device_rows``; ``name``/``boxName``/``crateName`` in ``other_rows`` use
    the document-wide ranks. Must run after the keys are rebuilt.
    """
    other_rows = list(other_rows)
    ordinals = rack_ordinals([field_value(r, "deviceName") for r in device_rows])
    ranks = document_rack_ranks(
        field_value(row, column)
        for rows in [device_rows, *other_rows]
        for row in rows
        for column in (*NAME_COLUMNS, *DEVICE_NAME_COLUMNS)
    )

    for rows in [device_rows, *other_rows]:
        for row in rows:
            for column in DEVICE_NAME_COLUMNS:
                value = field_value(row, column)
                if value:
                    set_field(row, column, stable_device_name(value, ordinals))
            for column in NAME_COLUMNS:
                value = field_value(row, column)
                if value:
                    set_field(row, column, ranked_name(value, ranks))

    logger.debug(f"Entity names normalized against {len(ranks)} racks")
