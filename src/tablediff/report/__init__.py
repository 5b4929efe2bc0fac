"""
Comparison report generation and formatting.
"""

from .formatters import (
    export_report_csv,
    export_report_json,
    format_pairs_console,
    format_report_console,
)
from .generator import generate_report

__all__ = [
    "generate_report",
    "export_report_json",
    "export_report_csv",
    "format_report_console",
    "format_pairs_console",
]
