"""
CLI command implementations.

Each ``cmd_*`` function takes the parsed arguments and the loaded
configuration and returns the process exit code:
- 0: success, or no differences
- 1: differences found (compare/diff)
- 2: the command failed
"""

import argparse
import json
import logging
from dataclasses import replace
from pathlib import Path
from typing import Any

from ..adapters.registry import default_registry
from ..apply import ReconciliationEngine, generate_repair_script
from ..comparison import ComparisonService, filter_pairs
from ..config import CompareConfig, apply_folder_defaults
from ..connection import ConnectionDescriptor, ConnectionKind, parse_connection
from ..errors import ConfigurationError
from ..models import DiffType, TableDiffResult
from ..report import (
    export_report_csv,
    export_report_json,
    format_pairs_console,
    format_report_console,
    generate_report,
)

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_DIFFERENCES = 1
EXIT_ERROR = 2

REPAIR_DIALECTS = {
    ConnectionKind.SQLITE: "sqlite",
    ConnectionKind.POSTGRES: "postgresql",
    ConnectionKind.ACCESS: "access",
}


def _connection(text: str, config: CompareConfig) -> ConnectionDescriptor:
    return apply_folder_defaults(parse_connection(text), config)


def _read_tables(args: argparse.Namespace) -> list[str] | None:
    if getattr(args, "tables_file", None):
        with open(args.tables_file, encoding="utf-8") as f:
            return [line.strip() for line in f if line.strip()]
    if getattr(args, "tables", None):
        return [t.strip() for t in args.tables.split(",") if t.strip()]
    return None


def _parse_where(items: list[str]) -> dict[str, str]:
    """COLUMN=VALUE items to a dictionary."""
    result = {}
    for item in items or []:
        column, sep, value = item.partition("=")
        if not sep or not column.strip():
            raise ConfigurationError(f"--where expects COLUMN=VALUE, got '{item}'")
        result[column.strip()] = value
    return result


def _with_key_override(config: CompareConfig, table: str, key: str | None) -> CompareConfig:
    if not key:
        return config
    columns = [c.strip() for c in key.split(",") if c.strip()]
    custom_keys = dict(config.custom_keys)
    custom_keys[table] = columns
    return replace(config, custom_keys=custom_keys)


def _filtered_pairs(args: argparse.Namespace, result: TableDiffResult) -> list:
    diff_types = [DiffType(t) for t in args.diff_types] if args.diff_types else None
    return filter_pairs(
        result.pairs,
        diff_types=diff_types,
        equals=_parse_where(args.where),
        contains=args.contains,
    )


def _compare_table(args: argparse.Namespace, config: CompareConfig) -> tuple[
    ConnectionDescriptor, ConnectionDescriptor, TableDiffResult
]:
    source = _connection(args.source, config)
    target = _connection(args.target, config)
    table_config = _with_key_override(config, args.table, args.key)
    service = ComparisonService(config=table_config)
    result = service.compare_one(args.table, source, target)
    for warning in result.warnings:
        logger.warning(str(warning))
    return source, target, result


def cmd_tables(args: argparse.Namespace, config: CompareConfig) -> int:
    """
    List the tables of a connection

    Args:
        args: Parsed command-line arguments
        config: Loaded configuration
    """
    conn = _connection(args.connection, config)
    adapter = default_registry().for_connection(conn)

    tables = adapter.list_tables(conn)
    logger.info(f"{conn.describe()}: {len(tables)} table(s)")

    for table in tables:
        if args.keys:
            key = adapter.get_key_columns(conn, table)
            print(f"{table}\t{', '.join(key) if key else '-'}")
        else:
            print(table)
    return EXIT_OK


def cmd_compare(args: argparse.Namespace, config: CompareConfig) -> int:
    """
    Compare tables in bulk and report per-table counts

    Args:
        args: Parsed command-line arguments
        config: Loaded configuration
    """
    overrides: dict[str, Any] = {}
    if args.parallel_workers is not None:
        overrides["max_parallel_tables"] = args.parallel_workers
    if args.timeout is not None:
        overrides["timeout_per_table"] = args.timeout
    if args.fail_fast:
        overrides["fail_fast"] = True
    if overrides:
        config = replace(config, **overrides)

    source = _connection(args.source, config)
    target = _connection(args.target, config)
    tables = _read_tables(args)

    logger.info(
        f"Comparing {len(tables) if tables is not None else 'all'} table(s): "
        f"{source.describe()} -> {target.describe()}"
    )

    def progress(update):
        logger.debug(f"Progress {update.processed}/{update.total}: {update.current_table}")

    service = ComparisonService(config=config)
    summaries = service.compare_many(tables, source, target, progress=progress)
    report = generate_report(summaries, source.describe(), target.describe())

    if args.format == "console" or not args.output:
        if args.format != "console":
            logger.warning(f"No --output given for {args.format} report; printing to console")
        print(format_report_console(report))
    else:
        output_path = Path(args.output)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        if args.format == "json":
            export_report_json(report, str(output_path))
        else:
            export_report_csv(report, str(output_path))
        logger.info(f"Report saved to {output_path}")

    if report["status"] == "ERROR":
        logger.error(f"{report['tables_failed']} table(s) failed to compare")
        return EXIT_ERROR
    if report["status"] == "FAIL":
        logger.warning("Comparison found differences")
        return EXIT_DIFFERENCES
    logger.info("Comparison completed: no differences")
    return EXIT_OK


def cmd_diff(args: argparse.Namespace, config: CompareConfig) -> int:
    """
    Compare one table and show its differing rows

    Args:
        args: Parsed command-line arguments
        config: Loaded configuration
    """
    _, target, result = _compare_table(args, config)
    pairs = _filtered_pairs(args, result)

    if args.format == "json":
        document = {
            "table": result.table_name,
            "key_columns": result.key_columns,
            "key_degraded": result.key_degraded,
            "columns": [c.to_dict() for c in result.columns],
            "columns_only_in_source": result.columns_only_in_source,
            "columns_only_in_target": result.columns_only_in_target,
            "warnings": [str(w) for w in result.warnings],
            "pairs": [p.to_dict() for p in pairs],
        }
        text = json.dumps(document, indent=2, ensure_ascii=False, default=str)
        if args.output:
            Path(args.output).write_text(text, encoding="utf-8")
            logger.info(f"Rows saved to {args.output}")
        else:
            print(text)
    else:
        print(format_pairs_console(result.table_name, result.key_columns, pairs, args.limit))

    if args.repair_script:
        dialect = args.dialect or REPAIR_DIALECTS.get(target.kind)
        if dialect is None:
            raise ConfigurationError(
                f"No SQL dialect for a {target.kind.value} target; pass --dialect"
            )
        script = generate_repair_script(result.table_name, result.key_columns, pairs, dialect)
        Path(args.repair_script).write_text(script, encoding="utf-8")
        logger.info(f"Repair script written to {args.repair_script}")

    return EXIT_DIFFERENCES if pairs else EXIT_OK


def cmd_apply(args: argparse.Namespace, config: CompareConfig) -> int:
    """
    Apply the (filtered) differing rows of one table to the target

    Args:
        args: Parsed command-line arguments
        config: Loaded configuration
    """
    _, target, result = _compare_table(args, config)
    pairs = _filtered_pairs(args, result)

    if not pairs:
        logger.info(f"{result.table_name}: nothing to apply")
        return EXIT_OK

    if args.dry_run:
        print(format_pairs_console(result.table_name, result.key_columns, pairs, len(pairs)))
        logger.info(f"Dry run: {len(pairs)} row change(s) not applied")
        return EXIT_OK

    engine = ReconciliationEngine()
    counts = engine.apply(target, result.table_name, result.key_columns, pairs)
    print(
        f"{result.table_name}: {counts['inserted']} inserted, "
        f"{counts['updated']} updated, {counts['deleted']} deleted"
    )
    return EXIT_OK


def cmd_replace(args: argparse.Namespace, config: CompareConfig) -> int:
    """
    Overwrite a target table with the source table's rows

    Args:
        args: Parsed command-line arguments
        config: Loaded configuration
    """
    source = _connection(args.source, config)
    target = _connection(args.target, config)

    snapshot = default_registry().for_connection(source).load_full_table(source, args.table)
    inserted = ReconciliationEngine().replace(target, args.table, snapshot)
    print(f"{args.table}: replaced with {inserted} row(s)")
    return EXIT_OK


def cmd_drop(args: argparse.Namespace, config: CompareConfig) -> int:
    """
    Drop a table

    Args:
        args: Parsed command-line arguments
        config: Loaded configuration
    """
    conn = _connection(args.connection, config)
    ReconciliationEngine().drop(conn, args.table)
    print(f"{args.table}: dropped")
    return EXIT_OK
