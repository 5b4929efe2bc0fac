"""
Key column resolution.

Order of preference:
1. The backend's natural key (primary key), unless it is only the
   spreadsheet row-number pseudo key
2. Custom key columns from configuration that exist in the table
3. The row-number pseudo key
4. All columns (degraded: every changed row shows as removed + added)
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from ..adapters.base import find_column
from ..config import CompareConfig
from ..errors import KeyResolutionFailure

logger = logging.getLogger(__name__)

ROW_NUMBER_KEY = "Row"


@dataclass
class KeyResolution:
    columns: list[str]
    origin: str  # natural, custom, row_number, all_columns
    warning: KeyResolutionFailure | None = None

    @property
    def degraded(self) -> bool:
        return self.origin == "all_columns"


def _is_row_number_key(columns: Sequence[str]) -> bool:
    return len(columns) == 1 and columns[0].lower() == ROW_NUMBER_KEY.lower()


def _existing(columns: Sequence[str], available: Sequence[str]) -> list[str]:
    """Requested columns present in the table, spelled as the table spells them."""
    result = []
    for column in columns:
        index = find_column(available, column)
        if index is not None and find_column(result, available[index]) is None:
            result.append(available[index])
    return result


def resolve_key_columns(
    table: str,
    natural_key: Sequence[str],
    columns: Sequence[str],
    config: CompareConfig | None = None,
) -> KeyResolution:
    """
    Pick the key columns for one table.

    Args:
        table: Table name, used for the custom key lookup
        natural_key: Key columns reported by the source backend
        columns: Columns of the table (source side)
        config: Comparison settings holding custom keys

    Returns:
        KeyResolution; ``warning`` is set when falling back to all columns
    """
    natural = _existing(natural_key, columns)
    if natural and len(natural) == len(natural_key) and not _is_row_number_key(natural):
        return KeyResolution(natural, "natural")

    custom = _existing(config.custom_key_for(table), columns) if config else []
    if custom:
        logger.debug(f"{table}: using custom key {custom}")
        return KeyResolution(custom, "custom")

    if natural and _is_row_number_key(natural):
        return KeyResolution(natural, "row_number")

    warning = KeyResolutionFailure(table)
    logger.warning(str(warning))
    return KeyResolution(list(columns), "all_columns", warning)
