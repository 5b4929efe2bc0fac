"""
Applying comparison results to a target.

The reconciliation engine writes approved pairs, full replacements and
drops through the target adapter; ``generate_repair_script`` renders the
equivalent SQL for review.
"""

from .engine import ReconciliationEngine
from .repair import generate_repair_script, get_dialect

__all__ = [
    "ReconciliationEngine",
    "generate_repair_script",
    "get_dialect",
]
