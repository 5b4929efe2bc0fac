"""
Backend I/O tracing helpers.

Wraps adapter calls that touch a database or file in CLIENT spans with
db.* semantic attributes.
"""

from typing import Any

from opentelemetry import trace

from .context import trace_operation


def trace_backend_call(
    operation: str,
    table: str,
    backend: str = "unknown",
    **extra_attrs,
) -> Any:
    """
    Context manager for tracing one backend call.

    Args:
        operation: Operation name (SELECT, HASH_SCAN, APPLY, ...)
        table: Table (or sheet / file) name
        backend: Connection kind of the backend

    Example:
        >>> with trace_backend_call("HASH_SCAN", "Device", "cfg"):
        ...     hashes = adapter.load_key_hash_map(conn, "Device", keys, schema)
    """
    return trace_operation(
        f"db.{operation.lower()}",
        kind=trace.SpanKind.CLIENT,
        **{
            "db.operation": operation,
            "db.table": table,
            "db.system": backend,
            "component": "adapter",
            **extra_attrs,
        }
    )
