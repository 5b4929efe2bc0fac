"""
Command-line interface for table comparison and reconciliation.

Available commands:
- tables: List the tables of a connection
- compare: Compare tables in bulk and report counts
- diff: Show the differing rows of one table
- apply: Write differing rows from source to target
- replace: Overwrite a target table with the source table
- drop: Drop a table
"""

import logging
import sys

from utils.logging import configure_from_env, shutdown_logging
from utils.metrics import initialize_metrics
from utils.tracing import initialize_tracing, shutdown_tracing

from .. import __version__
from ..config import CompareConfig, config_from_env, load_config
from ..errors import CancellationRequested, TableDiffError
from .commands import (
    EXIT_ERROR,
    cmd_apply,
    cmd_compare,
    cmd_diff,
    cmd_drop,
    cmd_replace,
    cmd_tables,
)
from .parser import create_parser

logger = logging.getLogger(__name__)

COMMANDS = {
    "tables": cmd_tables,
    "compare": cmd_compare,
    "diff": cmd_diff,
    "apply": cmd_apply,
    "replace": cmd_replace,
    "drop": cmd_drop,
}


def _load_config(path: str | None) -> CompareConfig:
    if path:
        return config_from_env(load_config(path))
    return config_from_env()


def run(argv: list[str] | None = None) -> int:
    """
    Parse arguments, set up logging and observability, run one command.

    Returns:
        Process exit code
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    configure_from_env(level=args.log_level, log_file=args.log_file, json_format=args.log_json)

    command = COMMANDS.get(args.command)
    if command is None:
        parser.print_help()
        return EXIT_ERROR

    if args.otlp_endpoint:
        initialize_tracing(otlp_endpoint=args.otlp_endpoint)
    if args.metrics_port:
        initialize_metrics(port=args.metrics_port, version=__version__)

    try:
        config = _load_config(args.config)
        return command(args, config)
    except CancellationRequested as e:
        logger.warning(f"Cancelled: {e}")
        return EXIT_ERROR
    except KeyboardInterrupt:
        logger.warning("Interrupted")
        return 130
    except (TableDiffError, FileNotFoundError) as e:
        logger.error(f"{args.command} failed: {e}")
        return EXIT_ERROR
    finally:
        if args.otlp_endpoint:
            shutdown_tracing()


def main() -> None:
    """Main entry point for the tablediff CLI"""
    try:
        code = run()
    finally:
        shutdown_logging()
    sys.exit(code)


__all__ = [
    "main",
    "run",
    "create_parser",
    "cmd_tables",
    "cmd_compare",
    "cmd_diff",
    "cmd_apply",
    "cmd_replace",
    "cmd_drop",
]


if __name__ == "__main__":
    main()
