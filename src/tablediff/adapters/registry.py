"""
Adapter registry keyed by connection kind.

Adapter modules are imported on first use so a missing optional driver
(psycopg2, pyodbc, openpyxl, python-calamine) only fails the connections
that need it, and fails with a BackendUnavailable that says how to fix it.
"""

import importlib
import logging
import threading

from ..connection import ConnectionDescriptor, ConnectionKind
from ..errors import BackendUnavailable, ConfigurationError
from .base import BackendAdapter

logger = logging.getLogger(__name__)

# import name -> distribution, where the two differ
DISTRIBUTIONS = {"psycopg2": "psycopg2-binary", "python_calamine": "python-calamine"}

# kind -> (module, class, distribution to install when the import fails)
BUILTIN_ADAPTERS: dict[ConnectionKind, tuple[str, str, str]] = {
    ConnectionKind.SQLITE: ("sqlite", "SqliteAdapter", ""),
    ConnectionKind.POSTGRES: ("postgres", "PostgresAdapter", "psycopg2-binary"),
    ConnectionKind.ACCESS: ("access", "AccessAdapter", "pyodbc"),
    ConnectionKind.EXCEL: ("excel", "ExcelAdapter", "openpyxl"),
    ConnectionKind.CSV_FOLDER: ("csv_folder", "CsvFolderAdapter", ""),
    ConnectionKind.XML_CONFIG_FOLDER: ("xml_config", "XmlConfigFolderAdapter", ""),
    ConnectionKind.CFG: ("cfg", "ConfigTreeAdapter", ""),
}


class AdapterRegistry:
    """
    Maps each ConnectionKind to one adapter instance.

    Adapters are process-lifetime singletons within a registry; explicit
    registrations take precedence over the built-in table.
    """

    def __init__(self, builtins: bool = True):
        self._adapters: dict[ConnectionKind, BackendAdapter] = {}
        self._builtins = dict(BUILTIN_ADAPTERS) if builtins else {}
        self._lock = threading.Lock()

    def register(self, kind: ConnectionKind, adapter: BackendAdapter) -> None:
        with self._lock:
            self._adapters[ConnectionKind(kind)] = adapter
        logger.debug(f"Registered {type(adapter).__name__} for {kind.value}")

    def _instantiate(self, kind: ConnectionKind) -> BackendAdapter:
        module_name, class_name, distribution = self._builtins[kind]
        try:
            module = importlib.import_module(f"{__package__}.{module_name}")
        except ImportError as e:
            raise BackendUnavailable(
                f"Driver for {kind.value} connections could not be imported: {e}",
                f"pip install {DISTRIBUTIONS.get(e.name) or distribution or e.name}",
            ) from e
        return getattr(module, class_name)()

    def get(self, kind: ConnectionKind) -> BackendAdapter:
        """
        Adapter for a connection kind.

        Raises:
            ConfigurationError: If no adapter handles the kind
            BackendUnavailable: If the adapter's driver cannot be imported
        """
        kind = ConnectionKind(kind)
        with self._lock:
            adapter = self._adapters.get(kind)
            if adapter is None:
                if kind not in self._builtins:
                    raise ConfigurationError(f"No adapter registered for {kind.value}")
                adapter = self._instantiate(kind)
                self._adapters[kind] = adapter
        return adapter

    def for_connection(self, conn: ConnectionDescriptor) -> BackendAdapter:
        return self.get(conn.kind)

    def kinds(self) -> list[ConnectionKind]:
        with self._lock:
            return sorted(set(self._builtins) | set(self._adapters), key=lambda k: k.value)


_default_registry: AdapterRegistry | None = None
_default_lock = threading.Lock()


def default_registry() -> AdapterRegistry:
    """Process-wide registry with the built-in adapters."""
    global _default_registry
    with _default_lock:
        if _default_registry is None:
            _default_registry = AdapterRegistry()
        return _default_registry
