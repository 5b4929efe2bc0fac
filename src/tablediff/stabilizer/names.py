"""
Name normalization for tree-addressed configuration entities.

Entity names look like ``ObjectA.Group - A4.3``: an object prefix, a local
name and an optional physical address. The helpers here strip the parts that
differ between structurally equivalent documents.
"""

import re
from typing import Any

UNNAMED = "(unnamed)"
UNTYPED = "(no type)"

_WHITESPACE = re.compile(r"\s+")
_ADDRESS_SEGMENT = re.compile(r"\s*-\s*A\d+(?:\.\d+)?", re.IGNORECASE)


def field_value(row: dict[str, Any], name: str) -> str:
    """Trimmed text of a row field looked up case-insensitively; "" when absent."""
    value = row.get(name)
    if value is None:
        lowered = name.lower()
        for key, candidate in row.items():
            if key.lower() == lowered:
                value = candidate
                break
    return "" if value is None else str(value).strip()


def set_field(row: dict[str, Any], name: str, value: Any) -> None:
    """Assign a field, replacing an existing key that differs only in case."""
    lowered = name.lower()
    for key in list(row):
        if key != name and key.lower() == lowered:
            row[key] = value
            return
    row[name] = value


def strip_object_prefix(value: str | None) -> str:
    """
    Drop the leading ``object.`` prefix from an entity name.

    Names without a dot, starting with one or ending in one are only trimmed.
    """
    if value is None or not value.strip():
        return value or ""
    text = value.strip()
    idx = text.find(".")
    if idx <= 0 or idx >= len(text) - 1:
        return text
    return text[idx + 1:].strip()


def normalize_spaces(value: str | None) -> str:
    """Collapse whitespace runs to single spaces and trim."""
    if not value:
        return value or ""
    return _WHITESPACE.sub(" ", value).strip()


def _parse_slot_suffix(local_name: str) -> tuple[str, int] | None:
    """Split ``<base> - A<n>`` into (base, n)."""
    text = local_name.strip()
    dash = text.rfind("-")
    if dash < 0 or dash >= len(text) - 1:
        return None
    tail = text[dash + 1:].strip()
    if len(tail) < 2 or tail[0] not in "Aa":
        return None
    try:
        slot = int(tail[1:].strip())
    except ValueError:
        return None
    return text[:dash].strip(), slot


def strip_crate_slot_suffix(local_name: str | None) -> str:
    """``КЦ - A4`` -> ``КЦ``; names without an ``-A<n>`` suffix are only trimmed."""
    if local_name is None or not local_name.strip():
        return local_name or ""
    parsed = _parse_slot_suffix(local_name)
    return parsed[0] if parsed else local_name.strip()


def parse_crate_slot(local_name: str | None) -> int | None:
    """Slot number from a trailing ``-A<n>``, or None."""
    if local_name is None or not local_name.strip():
        return None
    parsed = _parse_slot_suffix(local_name)
    return parsed[1] if parsed else None


def _strip_first_token_prefix(text: str) -> str:
    cut = 0
    while cut < len(text) and text[cut] not in " -":
        cut += 1
    first, rest = text[:cut], text[cut:]
    if not first:
        first, rest = text, ""
    if "." in first:
        first = strip_object_prefix(first)
    return first + rest


def strip_name_prefix(value: str | None) -> str:
    """
    Entity name without its object prefix, addresses kept.

    ``Net: ObjA.Bus - A4.1`` -> ``Net: Bus - A4.1``. When the name has a
    ``label:`` head, the prefix is stripped from the first token after the
    colon; otherwise from the first token of the name.
    """
    if value is None or not value.strip():
        return ""

    text = normalize_spaces(value)
    colon = text.find(":")
    if 0 <= colon < len(text) - 1:
        head = text[:colon + 1].rstrip()
        tail = text[colon + 1:].lstrip()
        if tail:
            tail = _strip_first_token_prefix(tail)
        text = f"{head} {tail.strip()}"
    else:
        text = _strip_first_token_prefix(text.strip()).strip()
    return normalize_spaces(text)


def normalize_name_for_key(value: str | None) -> str:
    """
    Address-free, prefix-free form of an entity name used in stable keys.

    ``Net: ObjA.Bus - A4.1`` -> ``Net: Bus``. Address segments (``- A<n>``
    and ``- A<n>.<m>``) are removed everywhere.
    """
    return normalize_spaces(_ADDRESS_SEGMENT.sub("", strip_name_prefix(value)))
