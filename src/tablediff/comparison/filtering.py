"""Row pair filtering for interactive inspection."""

from collections.abc import Iterable, Sequence
from typing import Any

from ..hashing import canonical_text
from ..models import DiffType, RowPair


def _text(value: Any) -> str:
    return "" if value is None else canonical_text(value)


def _lookup(row: dict[str, Any] | None, column: str) -> tuple[bool, Any]:
    if row is None:
        return False, None
    if column in row:
        return True, row[column]
    lowered = column.lower()
    for name, value in row.items():
        if name.lower() == lowered:
            return True, value
    return False, None


def _rows(pair: RowPair) -> list[dict[str, Any]]:
    return [r for r in (pair.source, pair.target) if r is not None]


def filter_pairs(
    pairs: Iterable[RowPair],
    diff_types: Sequence[DiffType] | None = None,
    equals: dict[str, Any] | None = None,
    contains: str | None = None,
) -> list[RowPair]:
    """
    Narrow a pair list.

    Args:
        pairs: Pairs to filter
        diff_types: Keep only these classifications
        equals: Column -> value; a pair matches when either side's row holds
            the value (compared as text, case-insensitively) in that column
        contains: Keep pairs where any cell on either side contains this
            text, case-insensitively

    Returns:
        Matching pairs in their original order
    """
    wanted = set(diff_types) if diff_types else None
    needle = contains.lower() if contains else None

    result = []
    for pair in pairs:
        if wanted is not None and pair.diff_type not in wanted:
            continue

        if equals:
            matched = True
            for column, expected in equals.items():
                expected_text = _text(expected).lower()
                hits = [_lookup(row, column) for row in _rows(pair)]
                if not any(found and _text(v).lower() == expected_text for found, v in hits):
                    matched = False
                    break
            if not matched:
                continue

        if needle is not None:
            cells = (_text(v).lower() for row in _rows(pair) for v in row.values())
            if not any(needle in cell for cell in cells):
                continue

        result.append(pair)
    return result
