"""
Distributed tracing using OpenTelemetry.

Instruments table comparisons, backend hash scans and snapshot loads,
and reconciliation applies.
"""

from .context import add_span_attributes, add_span_event, trace_operation
from .database import trace_backend_call
from .decorators import trace_function
from .tracer import get_tracer, initialize_tracing, shutdown_tracing

__all__ = [
    "initialize_tracing",
    "get_tracer",
    "shutdown_tracing",
    "trace_operation",
    "trace_function",
    "trace_backend_call",
    "add_span_attributes",
    "add_span_event",
]
