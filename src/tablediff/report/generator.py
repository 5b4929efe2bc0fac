"""
Report generation for bulk comparison results.

Builds a plain dictionary from table summaries so it can be exported as
JSON, CSV or console text.
"""

from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any

from ..errors import SchemaMismatch
from ..models import TableDiffSummary


def _calculate_severity(differences: int) -> str:
    """
    Severity of a mismatching table by its number of differing rows.

    Returns:
        LOW, MEDIUM, HIGH or CRITICAL
    """
    if differences < 10:
        return "LOW"
    elif differences < 100:
        return "MEDIUM"
    elif differences < 1000:
        return "HIGH"
    return "CRITICAL"


def _generate_summary(total: int, matched: int, mismatched: int, errors: int) -> str:
    if total == 0:
        return "No tables were compared"
    if mismatched == 0 and errors == 0:
        return f"All {total} tables match."
    parts = [f"{mismatched} of {total} tables differ"]
    if errors:
        parts.append(f"{errors} failed to compare")
    parts.append(f"{matched} match")
    return ", ".join(parts[:-1]) + f" and {parts[-1]}."


def _generate_recommendations(summaries: Sequence[TableDiffSummary]) -> list[str]:
    recommendations = []

    errors = [s for s in summaries if s.error is not None]
    if errors:
        recommendations.append(
            f"{len(errors)} table(s) could not be compared. Check the connection "
            "strings and the error column, then rerun those tables."
        )

    degraded = [s.table_name for s in summaries if s.key_degraded]
    if degraded:
        recommendations.append(
            "No identity key was found for: " + ", ".join(degraded) + ". "
            "Rows were matched on all columns, so edits show up as one missing "
            "and one extra row. Add custom keys for these tables."
        )

    reshaped = [s.table_name for s in summaries if any(isinstance(w, SchemaMismatch) for w in s.warnings)]
    if reshaped:
        recommendations.append(
            "Column sets differ for: " + ", ".join(reshaped) + ". "
            "Missing columns were compared as NULL."
        )

    missing = sum(s.only_in_source_count for s in summaries if s.error is None)
    extra = sum(s.only_in_target_count for s in summaries if s.error is None)
    different = sum(s.different_count for s in summaries if s.error is None)
    if missing:
        recommendations.append(f"Target is missing {missing} row(s) present in the source.")
    if extra:
        recommendations.append(f"Target has {extra} row(s) absent from the source.")
    if different:
        recommendations.append(
            f"{different} row(s) differ. Inspect them with 'tablediff diff' before applying."
        )

    if not recommendations:
        recommendations.append("Source and target are consistent.")
    return recommendations


def generate_report(
    summaries: Sequence[TableDiffSummary],
    source: str | None = None,
    target: str | None = None,
) -> dict[str, Any]:
    """
    Generate a report from bulk comparison summaries.

    Args:
        summaries: One summary per compared table
        source: Source connection description
        target: Target connection description

    Returns:
        Dictionary containing:
        - status: PASS, FAIL, ERROR or NO_DATA
        - source / target: connection descriptions
        - total_tables, tables_matched, tables_mismatched, tables_failed
        - total_differences
        - tables: per-table summary dictionaries
        - discrepancies: mismatching or failed tables with severity
        - summary: Human-readable summary
        - recommendations: List of recommended actions
        - timestamp: Report generation timestamp
    """
    matched = sum(1 for s in summaries if s.status == "MATCH")
    mismatched = sum(1 for s in summaries if s.status == "MISMATCH")
    failed = sum(1 for s in summaries if s.status == "ERROR")

    discrepancies = []
    for s in summaries:
        if s.status == "MATCH":
            continue
        discrepancies.append(
            {
                "table": s.table_name,
                "issue_type": "COMPARE_ERROR" if s.error is not None else "ROW_MISMATCH",
                "severity": "CRITICAL" if s.error is not None else _calculate_severity(s.total_diff_count),
                "details": s.to_dict(),
            }
        )

    if not summaries:
        status = "NO_DATA"
    elif failed:
        status = "ERROR"
    elif mismatched:
        status = "FAIL"
    else:
        status = "PASS"

    return {
        "status": status,
        "source": source,
        "target": target,
        "total_tables": len(summaries),
        "tables_matched": matched,
        "tables_mismatched": mismatched,
        "tables_failed": failed,
        "total_differences": sum(s.total_diff_count for s in summaries if s.error is None),
        "tables": [s.to_dict() for s in summaries],
        "discrepancies": discrepancies,
        "summary": _generate_summary(len(summaries), matched, mismatched, failed),
        "recommendations": _generate_recommendations(summaries) if summaries else [],
        "timestamp": datetime.now(UTC).isoformat(),
    }
