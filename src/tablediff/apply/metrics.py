"""
Prometheus metrics for reconciliation applies.
"""

from prometheus_client import Counter, Histogram

from utils.metrics import get_or_create_metric

APPLY_OPERATIONS = get_or_create_metric(
    lambda: Counter(
        "tablediff_apply_operations_total",
        "Apply, replace and drop calls",
        ["operation", "outcome"],  # outcome: success, failed, unsupported
    ),
    "tablediff_apply_operations_total",
)

APPLIED_ROWS = get_or_create_metric(
    lambda: Counter(
        "tablediff_applied_rows_total",
        "Rows written by applies",
        ["change"],  # inserted, updated, deleted
    ),
    "tablediff_applied_rows_total",
)

APPLY_TIME = get_or_create_metric(
    lambda: Histogram(
        "tablediff_apply_seconds",
        "Time to apply changes to one table",
        ["operation"],
        buckets=[0.01, 0.05, 0.1, 0.5, 1, 5, 10, 30, 60, 300],
    ),
    "tablediff_apply_seconds",
)
