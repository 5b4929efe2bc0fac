"""
Prometheus metrics helpers

Metric objects live next to the code that updates them (comparison,
apply, coordinator); this package provides the registration helper they
share and the HTTP publisher the CLI starts on request.

Usage:
    from utils.metrics import get_or_create_metric, initialize_metrics

    TABLES = get_or_create_metric(
        lambda: Counter("tablediff_tables_total", "Tables compared", ["status"]),
        "tablediff_tables_total",
    )
    initialize_metrics(port=9108)
"""

import logging
from typing import Any, Callable, TypeVar

from prometheus_client import REGISTRY, CollectorRegistry

from .publisher import ApplicationInfo, MetricsPublisher

logger = logging.getLogger(__name__)

T = TypeVar("T")


def get_or_create_metric(
    metric_factory: Callable[[], T],
    metric_name: str,
    registry: CollectorRegistry = REGISTRY,
) -> T:
    """
    Create a metric, or return the already registered one with that name.

    Module reloads (and test collection importing a module twice) would
    otherwise fail with a duplicate-timeseries ValueError.

    Args:
        metric_factory: Callable that creates the metric (e.g., lambda: Counter(...))
        metric_name: Name of the metric for lookup if already registered
        registry: Prometheus registry to use (default: global REGISTRY)

    Returns:
        The metric instance (either newly created or existing)
    """
    try:
        return metric_factory()
    except ValueError:
        existing = registry._names_to_collectors.get(metric_name)
        if existing is not None:
            return existing
        raise


def initialize_metrics(
    port: int = 9108,
    registry: CollectorRegistry | None = None,
    version: str = "0.0.0",
) -> dict[str, Any]:
    """
    Start the metrics endpoint and publish application info

    Args:
        port: Port to expose metrics on
        registry: Custom Prometheus registry (default: global REGISTRY)
        version: Application version reported in the info metric

    Returns:
        Dictionary with the ``publisher`` and ``app_info`` objects
    """
    logger.info(f"Initializing metrics on port {port}")

    publisher = MetricsPublisher(port=port, registry=registry)
    publisher.start()

    return {
        "publisher": publisher,
        "app_info": ApplicationInfo(version=version, registry=registry),
    }


__all__ = [
    "MetricsPublisher",
    "ApplicationInfo",
    "initialize_metrics",
    "get_or_create_metric",
]
