"""
Logging configuration for the table diff engine.

Sets up the root logger once per process: console output (plain or JSON),
an optional size-rotated log file, and quieter levels for chatty drivers.
"""

import logging
import logging.handlers
import os
import sys

from .formatters import ConsoleFormatter, JSONFormatter

# Third-party loggers that are too verbose at INFO
NOISY_LOGGERS = ("urllib3", "openpyxl", "opentelemetry", "psycopg2")


def _build_file_formatter(json_format: bool, app_name: str) -> logging.Formatter:
    if json_format:
        return JSONFormatter(
            include_timestamp=True,
            include_hostname=True,
            app_name=app_name,
        )
    return logging.Formatter(
        fmt="%(asctime)s [%(levelname)s] %(threadName)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def setup_logging(
    level: str = "INFO",
    log_file: str | None = None,
    console_output: bool = True,
    json_format: bool = False,
    app_name: str = "tablediff",
    max_bytes: int = 20 * 1024 * 1024,  # 20MB
    backup_count: int = 5,
) -> None:
    """
    Configure logging for the application

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Path to log file (if None, file logging is disabled)
        console_output: Whether to write log records to stderr
        json_format: Use JSON format for both console and file logs
        app_name: Application name attached to JSON records
        max_bytes: Maximum log file size before rotation
        backup_count: Number of rotated log files to keep
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    # Re-running setup replaces handlers instead of stacking them
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()

    if console_output:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(numeric_level)
        if json_format:
            console_handler.setFormatter(
                JSONFormatter(include_timestamp=True, include_hostname=True, app_name=app_name)
            )
        else:
            console_handler.setFormatter(ConsoleFormatter(use_colors=True))
        root_logger.addHandler(console_handler)

    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            filename=log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(_build_file_formatter(json_format, app_name))
        root_logger.addHandler(file_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).info(
        f"Logging initialized: level={level}, file={log_file or 'none'}, "
        f"console={console_output}, json={json_format}"
    )


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance

    Args:
        name: Logger name (typically __name__)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)


def shutdown_logging() -> None:
    """
    Flush and close every handler attached to the root logger.

    Rotating file handlers keep their file open until closed, so the CLI
    calls this on exit.
    """
    root_logger = logging.getLogger()

    for handler in root_logger.handlers[:]:
        try:
            handler.flush()
            handler.close()
        except (OSError, ValueError) as e:
            sys.stderr.write(f"Failed to close log handler {handler!r}: {e}\n")
        root_logger.removeHandler(handler)

    logging.shutdown()


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


def configure_from_env(
    level: str | None = None,
    log_file: str | None = None,
    json_format: bool = False,
) -> None:
    """
    Configure logging from environment variables

    Explicit arguments (command-line options) take precedence over the
    environment.

    Environment variables:
        LOG_LEVEL: Log level (default: INFO)
        LOG_FILE: Log file path (default: none)
        LOG_JSON: Use JSON format (default: false)
        LOG_CONSOLE: Enable console output (default: true)
    """
    setup_logging(
        level=level or os.getenv("LOG_LEVEL", "INFO"),
        log_file=log_file or os.getenv("LOG_FILE") or None,
        console_output=_env_flag("LOG_CONSOLE", "true"),
        json_format=json_format or _env_flag("LOG_JSON", "false"),
    )
