"""
Prometheus HTTP endpoint and application info metrics.
"""

import logging
import time

from prometheus_client import REGISTRY, CollectorRegistry, Gauge, Info, start_http_server

logger = logging.getLogger(__name__)


class MetricsPublisher:
    """
    Starts the HTTP server exposing metrics on /metrics.
    """

    def __init__(self, port: int = 9108, registry: CollectorRegistry | None = None):
        self.port = port
        self.registry = registry or REGISTRY
        self._server_started = False

    def start(self) -> None:
        """Start the metrics HTTP server (idempotent)"""
        if self._server_started:
            logger.warning(f"Metrics server already running on port {self.port}")
            return

        try:
            start_http_server(self.port, registry=self.registry)
        except OSError as e:
            raise RuntimeError(
                f"Metrics server port {self.port} is unavailable: {e}. "
                f"Stop the conflicting process or pass a different --metrics-port."
            ) from e

        self._server_started = True
        logger.info(f"Metrics server started on port {self.port}")

    def is_started(self) -> bool:
        """Check if metrics server is running"""
        return self._server_started


class ApplicationInfo:
    """
    Application name/version info metric plus an uptime gauge.
    """

    def __init__(
        self,
        app_name: str = "tablediff",
        version: str = "0.0.0",
        registry: CollectorRegistry | None = None,
    ):
        self.registry = registry or REGISTRY

        self.info = Info("tablediff_application", "Application metadata", registry=self.registry)
        self.info.info({"name": app_name, "version": version})

        self._start_time = time.time()
        self.uptime_seconds = Gauge(
            "tablediff_uptime_seconds",
            "Application uptime in seconds",
            registry=self.registry,
        )

    def update_uptime(self) -> None:
        """Update the uptime metric"""
        self.uptime_seconds.set(self.get_uptime())

    def get_uptime(self) -> float:
        """Get current uptime in seconds"""
        return time.time() - self._start_time
