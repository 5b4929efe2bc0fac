"""
Row classification.

``diff_hash_maps`` counts differences between two key -> hash maps (the
bulk fast path); ``diff_snapshots`` matches two materialized tables by key
and emits RowPairs for interactive inspection and apply. Rows equal on both
sides are never materialized as pairs.
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from ..adapters.base import find_column
from ..errors import SchemaMismatch
from ..hashing import build_key, coerce_value, compute_hash, values_equal
from ..models import (
    ColumnDescriptor,
    DiffType,
    RowPair,
    TableDiffResult,
    TableSnapshot,
    ValueType,
)

logger = logging.getLogger(__name__)


@dataclass
class HashMapDiff:
    only_in_source: int = 0
    only_in_target: int = 0
    different: int = 0

    @property
    def total(self) -> int:
        return self.only_in_source + self.only_in_target + self.different


def diff_hash_maps(source: dict[str, int], target: dict[str, int]) -> HashMapDiff:
    """Classify keys of two key -> hash maps into counts."""
    result = HashMapDiff()
    for key, source_hash in source.items():
        target_hash = target.get(key)
        if target_hash is None:
            result.only_in_source += 1
        elif target_hash != source_hash:
            result.different += 1
    result.only_in_target = sum(1 for key in target if key not in source)
    return result


def union_columns(
    source: Sequence[ColumnDescriptor],
    target: Sequence[ColumnDescriptor],
) -> tuple[list[ColumnDescriptor], list[str], list[str]]:
    """
    Column union in source order followed by target-only columns.

    Shared columns use the source's declared type.

    Returns:
        (union, names only in source, names only in target)
    """
    target_names = [c.name for c in target]
    source_names = [c.name for c in source]
    union = list(source)
    only_in_source = [c.name for c in source if find_column(target_names, c.name) is None]
    only_in_target = []
    for column in target:
        if find_column(source_names, column.name) is None:
            union.append(column)
            only_in_target.append(column.name)
    return union, only_in_source, only_in_target


def _sort_token(value: Any) -> tuple:
    if value is None:
        return (0, 0, "")
    if isinstance(value, bool):
        return (1, int(value), "")
    if isinstance(value, (int, float, Decimal)):
        return (1, value, "")
    return (2, 0, str(value).lower())


def _project(row: Sequence[Any], indexes: Sequence[int | None]) -> list[Any]:
    return [row[i] if i is not None else None for i in indexes]


def _index_rows(
    snapshot: TableSnapshot,
    columns: Sequence[ColumnDescriptor],
    key_columns: Sequence[str],
    key_types: Sequence[ValueType],
    side: str,
) -> dict[str, tuple[tuple, list[Any]]]:
    """key -> (original row, row projected onto the union columns); last row wins."""
    names = snapshot.column_names
    projection = [find_column(names, c.name) for c in columns]
    key_indexes = [find_column(names, k) for k in key_columns]

    index: dict[str, tuple[tuple, list[Any]]] = {}
    duplicates = 0
    for row in snapshot.rows:
        key = build_key(_project(row, key_indexes), key_types)
        if key in index:
            duplicates += 1
        index[key] = (row, _project(row, projection))

    if duplicates:
        logger.warning(
            f"{snapshot.name} ({side}): {duplicates} duplicate identity keys; last loaded row kept"
        )
    return index


def diff_snapshots(
    source: TableSnapshot,
    target: TableSnapshot,
    key_columns: Sequence[str],
    table_name: str | None = None,
) -> TableDiffResult:
    """
    Match two snapshots by key and classify every differing row.

    The comparison runs over the union of both column sets; a column missing
    on one side reads as NULL there, and the mismatch is attached to the
    result as a SchemaMismatch warning. Pairs are ordered by key-column
    values.

    Args:
        source: Source table
        target: Target table
        key_columns: Resolved key columns
        table_name: Name for the result (defaults to the source name)

    Returns:
        TableDiffResult with pairs and column information
    """
    name = table_name or source.name
    columns, only_in_source, only_in_target = union_columns(source.columns, target.columns)
    result = TableDiffResult(
        table_name=name,
        pairs=[],
        key_columns=list(key_columns),
        columns=columns,
        columns_only_in_source=only_in_source,
        columns_only_in_target=only_in_target,
    )
    if only_in_source or only_in_target:
        mismatch = SchemaMismatch(name, only_in_source, only_in_target)
        logger.warning(str(mismatch))
        result.warnings.append(mismatch)

    column_names = [c.name for c in columns]
    value_types = [c.value_type for c in columns]
    key_types = []
    for key in key_columns:
        position = find_column(column_names, key)
        key_types.append(columns[position].value_type if position is not None else ValueType.OBJECT)

    source_rows = _index_rows(source, columns, key_columns, key_types, "source")
    target_rows = _index_rows(target, columns, key_columns, key_types, "target")

    ordered: list[tuple[tuple, RowPair]] = []
    for key, (raw, projected) in source_rows.items():
        match = target_rows.get(key)
        if match is None:
            pair = RowPair(DiffType.ONLY_IN_SOURCE, key, source=source.row_dict(raw))
        else:
            target_raw, target_projected = match
            if compute_hash(projected, value_types) == compute_hash(target_projected, value_types):
                continue
            changed = [
                column_names[i]
                for i in range(len(columns))
                if not values_equal(projected[i], target_projected[i], value_types[i])
            ]
            pair = RowPair(
                DiffType.DIFFERENT,
                key,
                source=source.row_dict(raw),
                target=target.row_dict(target_raw),
                changed_columns=changed,
            )
        ordered.append((_pair_sort_key(projected, column_names, key_columns, key_types), pair))

    for key, (raw, projected) in target_rows.items():
        if key in source_rows:
            continue
        pair = RowPair(DiffType.ONLY_IN_TARGET, key, target=target.row_dict(raw))
        ordered.append((_pair_sort_key(projected, column_names, key_columns, key_types), pair))

    ordered.sort(key=lambda item: item[0])
    result.pairs = [pair for _, pair in ordered]

    logger.debug(
        f"{name}: {len(source_rows)} source keys, {len(target_rows)} target keys, "
        f"{len(result.pairs)} differing rows"
    )
    return result


def _pair_sort_key(
    projected: Sequence[Any],
    column_names: Sequence[str],
    key_columns: Sequence[str],
    key_types: Sequence[ValueType],
) -> tuple:
    tokens = []
    for key, key_type in zip(key_columns, key_types):
        position = find_column(column_names, key)
        value = projected[position] if position is not None else None
        tokens.append(_sort_token(coerce_value(value, key_type)))
    return tuple(tokens)
