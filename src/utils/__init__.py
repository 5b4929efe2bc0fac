"""
Ambient utilities shared by the table diff engine

Provides:
- logging: structured logging setup and context loggers
- tracing: OpenTelemetry span helpers
- metrics: Prometheus registration helper and HTTP publisher
- retry: exponential backoff decorators for backend connections
"""

__all__ = ["logging", "tracing", "metrics", "retry"]
