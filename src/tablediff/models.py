"""
Data model shared by adapters, the comparison service and the apply engine.
"""

import enum
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from typing import Any


class ValueType(enum.IntEnum):
    """Declared column type; the integer value is the hash type tag."""

    OBJECT = 0
    STRING = 1
    INT32 = 2
    INT64 = 3
    INT16 = 4
    BYTE = 5
    BOOLEAN = 6
    DOUBLE = 7
    FLOAT = 8
    DECIMAL = 9
    DATETIME = 10
    GUID = 11
    BYTES = 12


class ProviderCapabilities(enum.Flag):
    """Operations a backend supports for a given connection."""

    NONE = 0
    READ = 1
    APPLY_ROW_CHANGES = 2
    REPLACE_TABLE = 4
    DROP_TABLE = 8
    READ_ONLY = READ
    FULL = READ | APPLY_ROW_CHANGES | REPLACE_TABLE | DROP_TABLE


class DiffType(enum.Enum):
    ONLY_IN_SOURCE = "OnlyInSource"
    ONLY_IN_TARGET = "OnlyInTarget"
    DIFFERENT = "Different"


@dataclass(frozen=True)
class ColumnDescriptor:
    name: str
    value_type: ValueType = ValueType.OBJECT

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "type": self.value_type.name}


@dataclass
class TableSnapshot:
    """
    Fully materialized table content.

    Rows are tuples aligned with ``columns``; the snapshot is owned by the
    side that loaded it.
    """

    name: str
    columns: list[ColumnDescriptor]
    rows: list[tuple] = field(default_factory=list)

    @property
    def column_names(self) -> list[str]:
        return [c.name for c in self.columns]

    @property
    def value_types(self) -> list[ValueType]:
        return [c.value_type for c in self.columns]

    def index_of(self, column: str) -> int:
        """Case-insensitive column lookup; raises KeyError when absent."""
        for i, c in enumerate(self.columns):
            if c.name == column:
                return i
        lowered = column.lower()
        for i, c in enumerate(self.columns):
            if c.name.lower() == lowered:
                return i
        raise KeyError(column)

    def has_column(self, column: str) -> bool:
        try:
            self.index_of(column)
        except KeyError:
            return False
        return True

    def row_dict(self, row: Sequence[Any]) -> dict[str, Any]:
        return dict(zip(self.column_names, row))

    def iter_dicts(self) -> Iterator[dict[str, Any]]:
        names = self.column_names
        for row in self.rows:
            yield dict(zip(names, row))

    def __len__(self) -> int:
        return len(self.rows)


@dataclass
class RowPair:
    """
    One classified difference.

    ``source`` is None for OnlyInTarget, ``target`` is None for OnlyInSource;
    both are present for Different. Row values are column->value dicts in
    column order.
    """

    diff_type: DiffType
    key: str
    source: dict[str, Any] | None = None
    target: dict[str, Any] | None = None
    changed_columns: list[str] = field(default_factory=list)

    def __post_init__(self):
        if self.diff_type == DiffType.ONLY_IN_SOURCE and (
            self.source is None or self.target is not None
        ):
            raise ValueError("OnlyInSource pair must carry only a source row")
        if self.diff_type == DiffType.ONLY_IN_TARGET and (
            self.target is None or self.source is not None
        ):
            raise ValueError("OnlyInTarget pair must carry only a target row")
        if self.diff_type == DiffType.DIFFERENT and (
            self.source is None or self.target is None
        ):
            raise ValueError("Different pair must carry both rows")

    @property
    def row(self) -> dict[str, Any]:
        """The row that exists: source when present, otherwise target."""
        return self.source if self.source is not None else self.target

    def to_dict(self) -> dict[str, Any]:
        return {
            "diff_type": self.diff_type.value,
            "key": self.key,
            "source": self.source,
            "target": self.target,
            "changed_columns": list(self.changed_columns),
        }


@dataclass
class TableDiffResult:
    """Detailed comparison of one table, as returned to interactive callers."""

    table_name: str
    pairs: list[RowPair]
    key_columns: list[str]
    columns: list[ColumnDescriptor]
    columns_only_in_source: list[str] = field(default_factory=list)
    columns_only_in_target: list[str] = field(default_factory=list)
    key_degraded: bool = False
    warnings: list[Exception] = field(default_factory=list)

    def count(self, diff_type: DiffType) -> int:
        return sum(1 for p in self.pairs if p.diff_type == diff_type)

    def to_summary(self) -> "TableDiffSummary":
        return TableDiffSummary(
            table_name=self.table_name,
            only_in_source_count=self.count(DiffType.ONLY_IN_SOURCE),
            only_in_target_count=self.count(DiffType.ONLY_IN_TARGET),
            different_count=self.count(DiffType.DIFFERENT),
            key_degraded=self.key_degraded,
            warnings=list(self.warnings),
        )


@dataclass
class TableDiffSummary:
    """Counts-only result of one table comparison in bulk mode."""

    table_name: str
    only_in_source_count: int = 0
    only_in_target_count: int = 0
    different_count: int = 0
    key_degraded: bool = False
    error: str | None = None
    duration_seconds: float = 0.0
    warnings: list[Exception] = field(default_factory=list)

    @property
    def total_diff_count(self) -> int:
        return self.only_in_source_count + self.only_in_target_count + self.different_count

    @property
    def status(self) -> str:
        if self.error is not None:
            return "ERROR"
        return "MATCH" if self.total_diff_count == 0 else "MISMATCH"

    def to_dict(self) -> dict[str, Any]:
        return {
            "table": self.table_name,
            "only_in_source": self.only_in_source_count,
            "only_in_target": self.only_in_target_count,
            "different": self.different_count,
            "total_diff": self.total_diff_count,
            "key_degraded": self.key_degraded,
            "status": self.status,
            "error": self.error,
            "duration_seconds": round(self.duration_seconds, 3),
            "warnings": [str(w) for w in self.warnings],
        }


@dataclass(frozen=True)
class CompareProgress:
    processed: int
    total: int
    current_table: str | None = None
