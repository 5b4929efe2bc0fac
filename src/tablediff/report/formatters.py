"""
Report formatting and export utilities.

Exports comparison reports as JSON, CSV and console text.
"""

import csv
import json
from typing import Any

CSV_COLUMNS = [
    "Table",
    "Status",
    "Only In Source",
    "Only In Target",
    "Different",
    "Key Degraded",
    "Duration (s)",
    "Warnings",
    "Error",
]


def export_report_json(report: dict[str, Any], output_path: str) -> None:
    """
    Export report to JSON file

    Args:
        report: Report dictionary
        output_path: Path to output file
    """
    with open(output_path, "w", encoding="utf-8") as f:
        json.dump(report, f, indent=2, ensure_ascii=False)


def export_report_csv(report: dict[str, Any], output_path: str) -> None:
    """
    Export the per-table rows of a report to a CSV file

    Args:
        report: Report dictionary
        output_path: Path to output file
    """
    with open(output_path, "w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(CSV_COLUMNS)
        for table in report.get("tables", []):
            writer.writerow(
                [
                    table.get("table", ""),
                    table.get("status", ""),
                    table.get("only_in_source", 0),
                    table.get("only_in_target", 0),
                    table.get("different", 0),
                    "yes" if table.get("key_degraded") else "no",
                    table.get("duration_seconds", ""),
                    "; ".join(table.get("warnings") or []),
                    table.get("error") or "",
                ]
            )


def format_report_console(report: dict[str, Any]) -> str:
    """
    Format report for console output

    Args:
        report: Report dictionary

    Returns:
        Formatted string for console display
    """
    lines = []

    lines.append("=" * 80)
    lines.append("TABLE COMPARISON REPORT")
    lines.append("=" * 80)
    lines.append(f"Status: {report['status']}")
    lines.append(f"Timestamp: {report['timestamp']}")
    if report.get("source"):
        lines.append(f"Source: {report['source']}")
    if report.get("target"):
        lines.append(f"Target: {report['target']}")
    lines.append(f"Total Tables: {report['total_tables']}")
    lines.append(f"Tables Matched: {report['tables_matched']}")
    lines.append(f"Tables Mismatched: {report['tables_mismatched']}")
    lines.append(f"Tables Failed: {report['tables_failed']}")
    lines.append(f"Total Differences: {report['total_differences']:,}")
    lines.append("")

    lines.append("SUMMARY")
    lines.append("-" * 80)
    lines.append(report["summary"])
    lines.append("")

    if report["tables"]:
        lines.append("TABLES")
        lines.append("-" * 80)
        lines.append(f"{'Table':<40} {'Status':<9} {'Src':>7} {'Tgt':>7} {'Diff':>7}")
        for table in report["tables"]:
            name = table["table"]
            if table.get("key_degraded"):
                name += " *"
            lines.append(
                f"{name[:40]:<40} {table['status']:<9} "
                f"{table['only_in_source']:>7} {table['only_in_target']:>7} {table['different']:>7}"
            )
            if table.get("error"):
                lines.append(f"    error: {table['error']}")
            for warning in table.get("warnings") or []:
                lines.append(f"    warning: {warning}")
        if any(t.get("key_degraded") for t in report["tables"]):
            lines.append("  * matched on all columns (no identity key)")
        lines.append("")

    if report["recommendations"]:
        lines.append("RECOMMENDATIONS")
        lines.append("-" * 80)
        for i, rec in enumerate(report["recommendations"], 1):
            lines.append(f"{i}. {rec}")
        lines.append("")

    lines.append("=" * 80)

    return "\n".join(lines)


def format_pairs_console(table: str, key_columns: list[str], pairs: list, limit: int = 50) -> str:
    """Render row pairs of one table for console inspection."""
    lines = [f"{table} (key: {', '.join(key_columns)}): {len(pairs)} differing rows"]
    for pair in pairs[:limit]:
        lines.append(f"  [{pair.diff_type.value}] {pair.key}")
        if pair.changed_columns:
            for column in pair.changed_columns:
                before = (pair.target or {}).get(column)
                after = (pair.source or {}).get(column)
                lines.append(f"      {column}: {before!r} -> {after!r}")
    if len(pairs) > limit:
        lines.append(f"  ... {len(pairs) - limit} more")
    return "\n".join(lines)
