"""
Table comparison.

Key resolution, row classification and the comparison service that runs
single-table and bulk comparisons.
"""

from .engine import HashMapDiff, diff_hash_maps, diff_snapshots, union_columns
from .filtering import filter_pairs
from .keys import KeyResolution, resolve_key_columns
from .service import ComparisonService

__all__ = [
    "ComparisonService",
    "HashMapDiff",
    "KeyResolution",
    "diff_hash_maps",
    "diff_snapshots",
    "filter_pairs",
    "resolve_key_columns",
    "union_columns",
]
