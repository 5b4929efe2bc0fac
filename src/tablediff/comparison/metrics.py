"""
Prometheus metrics for table comparisons.
"""

from prometheus_client import Counter, Gauge, Histogram

from utils.metrics import get_or_create_metric

TABLES_COMPARED = get_or_create_metric(
    lambda: Counter(
        "tablediff_tables_compared_total",
        "Tables compared",
        ["status"],  # match, mismatch, error, skipped
    ),
    "tablediff_tables_compared_total",
)

DIFF_ROWS = get_or_create_metric(
    lambda: Counter(
        "tablediff_diff_rows_total",
        "Differing rows found",
        ["diff_type"],
    ),
    "tablediff_diff_rows_total",
)

COMPARISON_TIME = get_or_create_metric(
    lambda: Histogram(
        "tablediff_table_comparison_seconds",
        "Time to compare one table",
        ["path"],  # fast_hash, snapshot
        buckets=[0.01, 0.05, 0.1, 0.5, 1, 5, 10, 30, 60, 300, 600],
    ),
    "tablediff_table_comparison_seconds",
)

HASH_MAP_LOAD_TIME = get_or_create_metric(
    lambda: Histogram(
        "tablediff_hash_map_load_seconds",
        "Time to stream one side of a table into a key/hash map",
        ["backend"],
        buckets=[0.01, 0.05, 0.1, 0.5, 1, 5, 10, 30, 60, 300],
    ),
    "tablediff_hash_map_load_seconds",
)

ACTIVE_COMPARISONS = get_or_create_metric(
    lambda: Gauge(
        "tablediff_active_comparisons",
        "Table comparisons currently running",
    ),
    "tablediff_active_comparisons",
)
