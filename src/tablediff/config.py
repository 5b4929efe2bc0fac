"""
Comparison configuration

Custom keys, excluded tables and parallelism settings are read once and
treated as read-only for the duration of a comparison. Sources, in order of
precedence:
- Explicit CompareConfig arguments
- A YAML file (TABLEDIFF_CONFIG or --config)
- Environment overrides (TABLEDIFF_MAX_PARALLEL, TABLEDIFF_EXCLUDED_TABLES,
  TABLEDIFF_FAIL_FAST)

YAML layout:
    max_parallel_tables: 4
    fail_fast: false
    timeout_per_table: 3600
    csv_recursive: false
    xml_recursive: false
    excluded_tables: [sysdiagrams, MSysObjects]
    custom_keys:
      Orders: [OrderNo, Line]
"""

import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

import yaml

from .connection import ConnectionDescriptor, ConnectionKind
from .errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_PARALLEL_CAP = 4


@dataclass
class CompareConfig:
    """Settings consulted by the comparison service."""

    custom_keys: dict[str, list[str]] = field(default_factory=dict)
    excluded_tables: list[str] = field(default_factory=list)
    max_parallel_tables: int = 0
    fail_fast: bool = False
    timeout_per_table: float | None = 3600
    csv_recursive: bool = False
    xml_recursive: bool = False

    def custom_key_for(self, table: str) -> list[str]:
        """Custom key columns for a table, matched case-insensitively."""
        if table in self.custom_keys:
            return list(self.custom_keys[table])
        lowered = table.lower()
        for name, columns in self.custom_keys.items():
            if name.lower() == lowered:
                return list(columns)
        return []

    def is_excluded(self, table: str) -> bool:
        lowered = table.lower()
        return any(t.lower() == lowered for t in self.excluded_tables)

    def effective_parallelism(self, cpu_count: int | None = None) -> int:
        """
        Worker count for bulk comparison.

        0 or negative means min(cpu, 4); the result is at least 1 and at most
        twice the CPU count.
        """
        cpus = cpu_count or os.cpu_count() or 1
        requested = self.max_parallel_tables
        if requested <= 0:
            requested = min(cpus, DEFAULT_PARALLEL_CAP)
        return max(1, min(requested, max(1, cpus * 2)))


def _as_bool(value: Any, name: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("1", "true", "yes", "on"):
            return True
        if lowered in ("0", "false", "no", "off", ""):
            return False
    raise ConfigurationError(f"{name} must be a boolean, got {value!r}")


def _as_int(value: Any, name: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}") from e


def config_from_dict(data: dict[str, Any]) -> CompareConfig:
    """
    Build a CompareConfig from parsed YAML/JSON data.

    Raises:
        ConfigurationError: If a value has the wrong shape
    """
    if data is None:
        return CompareConfig()
    if not isinstance(data, dict):
        raise ConfigurationError("Configuration root must be a mapping")

    custom_keys_raw = data.get("custom_keys") or {}
    custom_keys: dict[str, list[str]] = {}
    if isinstance(custom_keys_raw, dict):
        items = custom_keys_raw.items()
    elif isinstance(custom_keys_raw, list):
        # [{table: Orders, columns: [...]}] form
        items = []
        for entry in custom_keys_raw:
            if not isinstance(entry, dict) or "table" not in entry:
                raise ConfigurationError(f"Invalid custom key entry: {entry!r}")
            items.append((entry["table"], entry.get("columns") or []))
    else:
        raise ConfigurationError("custom_keys must be a mapping or a list")

    for table, columns in items:
        if isinstance(columns, str):
            columns = [c.strip() for c in columns.split(",")]
        if not isinstance(columns, list):
            raise ConfigurationError(f"custom_keys[{table}] must be a list of columns")
        cleaned = [str(c).strip() for c in columns if str(c).strip()]
        if cleaned:
            custom_keys[str(table)] = cleaned

    excluded = data.get("excluded_tables") or []
    if isinstance(excluded, str):
        excluded = [t.strip() for t in excluded.split(",")]
    if not isinstance(excluded, list):
        raise ConfigurationError("excluded_tables must be a list")

    timeout = data.get("timeout_per_table", 3600)

    return CompareConfig(
        custom_keys=custom_keys,
        excluded_tables=[str(t).strip() for t in excluded if str(t).strip()],
        max_parallel_tables=_as_int(data.get("max_parallel_tables", 0), "max_parallel_tables"),
        fail_fast=_as_bool(data.get("fail_fast", False), "fail_fast"),
        timeout_per_table=None if timeout is None else float(timeout),
        csv_recursive=_as_bool(data.get("csv_recursive", False), "csv_recursive"),
        xml_recursive=_as_bool(data.get("xml_recursive", False), "xml_recursive"),
    )


def load_config(path: str | Path) -> CompareConfig:
    """
    Load configuration from a YAML file.

    Raises:
        ConfigurationError: If the file is missing or not valid YAML
    """
    config_path = Path(path)
    if not config_path.is_file():
        raise ConfigurationError(f"Configuration file not found: {config_path}")

    try:
        with open(config_path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e

    logger.debug(f"Loaded configuration from {config_path}")
    return config_from_dict(data)


def config_from_env(base: CompareConfig | None = None) -> CompareConfig:
    """
    Apply environment overrides on top of a base configuration.

    TABLEDIFF_CONFIG names a YAML file loaded when no base is given.
    """
    config = base
    if config is None:
        config_path = os.getenv("TABLEDIFF_CONFIG")
        config = load_config(config_path) if config_path else CompareConfig()

    overrides: dict[str, Any] = {}

    max_parallel = os.getenv("TABLEDIFF_MAX_PARALLEL")
    if max_parallel:
        overrides["max_parallel_tables"] = _as_int(max_parallel, "TABLEDIFF_MAX_PARALLEL")

    excluded = os.getenv("TABLEDIFF_EXCLUDED_TABLES")
    if excluded:
        overrides["excluded_tables"] = [t.strip() for t in excluded.split(",") if t.strip()]

    fail_fast = os.getenv("TABLEDIFF_FAIL_FAST")
    if fail_fast:
        overrides["fail_fast"] = _as_bool(fail_fast, "TABLEDIFF_FAIL_FAST")

    return replace(config, **overrides) if overrides else config


def apply_folder_defaults(
    descriptor: ConnectionDescriptor,
    config: CompareConfig,
) -> ConnectionDescriptor:
    """Add the configured Recursive default to folder descriptors that do not set it."""
    if descriptor.option("Recursive") is not None:
        return descriptor

    if descriptor.kind == ConnectionKind.CSV_FOLDER:
        recursive = config.csv_recursive
    elif descriptor.kind == ConnectionKind.XML_CONFIG_FOLDER:
        recursive = config.xml_recursive
    else:
        return descriptor

    return replace(
        descriptor,
        options=descriptor.options + (("Recursive", "1" if recursive else "0"),),
    )
