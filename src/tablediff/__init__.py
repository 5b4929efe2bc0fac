"""
tablediff: compare and reconcile tables across heterogeneous sources

Compares tables between two connections (SQLite, PostgreSQL, Access,
Excel workbooks, CSV folders, XML config folders and configuration trees),
classifies every differing row by identity key, and applies approved
changes back to the target.

Usage:
    from tablediff import ComparisonService, ReconciliationEngine, parse_connection

    source = parse_connection("old.sqlite")
    target = parse_connection("new.sqlite")
    result = ComparisonService().compare_one("Orders", source, target)
    ReconciliationEngine().apply(target, "Orders", result.key_columns, result.pairs)
"""

__version__ = "1.0.0"

from .apply import ReconciliationEngine, generate_repair_script
from .comparison import ComparisonService, filter_pairs
from .config import CompareConfig, config_from_env, load_config
from .connection import ConnectionDescriptor, ConnectionKind, parse_connection
from .coordinator import ThreadAffinityCoordinator
from .errors import (
    ApplyFailure,
    BackendUnavailable,
    CancellationRequested,
    ConfigurationError,
    KeyResolutionFailure,
    SchemaMismatch,
    TableDiffError,
    UnsupportedOperation,
)
from .models import (
    ColumnDescriptor,
    CompareProgress,
    DiffType,
    ProviderCapabilities,
    RowPair,
    TableDiffResult,
    TableDiffSummary,
    TableSnapshot,
    ValueType,
)
from .session import BatchSession

__all__ = [
    "__version__",
    "ComparisonService",
    "ReconciliationEngine",
    "generate_repair_script",
    "filter_pairs",
    "CompareConfig",
    "config_from_env",
    "load_config",
    "ConnectionDescriptor",
    "ConnectionKind",
    "parse_connection",
    "ThreadAffinityCoordinator",
    "BatchSession",
    "ColumnDescriptor",
    "CompareProgress",
    "DiffType",
    "ProviderCapabilities",
    "RowPair",
    "TableDiffResult",
    "TableDiffSummary",
    "TableSnapshot",
    "ValueType",
    "TableDiffError",
    "ConfigurationError",
    "BackendUnavailable",
    "UnsupportedOperation",
    "SchemaMismatch",
    "KeyResolutionFailure",
    "ApplyFailure",
    "CancellationRequested",
]
