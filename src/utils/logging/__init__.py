"""
Structured logging for the table diff engine

Provides JSON or colored console output, rotating log files, and a
context-carrying logger wrapper used to tag messages with the table and
connection being processed.

Usage:
    from utils.logging import setup_logging, get_logger

    setup_logging(level="INFO", log_file="/var/log/tablediff/app.log")

    logger = get_logger(__name__)
    logger.info("Comparing table", extra={"table_name": "Device"})
"""

from .config import configure_from_env, get_logger, setup_logging, shutdown_logging
from .formatters import ConsoleFormatter, JSONFormatter
from .handlers import ContextLogger

__all__ = [
    "setup_logging",
    "get_logger",
    "configure_from_env",
    "shutdown_logging",
    "JSONFormatter",
    "ConsoleFormatter",
    "ContextLogger",
]
