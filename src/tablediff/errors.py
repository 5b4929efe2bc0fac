"""
Error taxonomy for the table diff engine.

Callers match on these categories rather than on driver-specific exception
types; every adapter translates its failures into them.
"""

from typing import Any


class TableDiffError(Exception):
    """Base class for all engine errors."""

    pass


class ConfigurationError(TableDiffError):
    """Malformed connection descriptor or configuration, raised before any I/O."""

    pass


class BackendUnavailable(TableDiffError):
    """Driver or runtime for a backend is missing."""

    def __init__(self, message: str, remediation: str = ""):
        self.remediation = remediation
        full = f"{message}. {remediation}" if remediation else message
        super().__init__(full)


class UnsupportedOperation(TableDiffError):
    """Mutation requested against a backend that lacks the capability."""

    def __init__(self, operation: str, backend: str):
        self.operation = operation
        self.backend = backend
        super().__init__(f"{backend} does not support {operation}")


class SchemaMismatch(TableDiffError):
    """
    Column sets differ between source and target.

    Non-fatal: attached to comparison results as a warning while the
    comparison runs over the union of columns.
    """

    def __init__(
        self,
        table: str,
        only_in_source: list[str],
        only_in_target: list[str],
    ):
        self.table = table
        self.only_in_source = list(only_in_source)
        self.only_in_target = list(only_in_target)
        super().__init__(
            f"Column sets differ for {table}: "
            f"only in source={self.only_in_source}, "
            f"only in target={self.only_in_target}"
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": "SchemaMismatch",
            "table": self.table,
            "only_in_source": self.only_in_source,
            "only_in_target": self.only_in_target,
        }


class KeyResolutionFailure(TableDiffError):
    """
    No natural or custom key exists for a table.

    Non-fatal: the comparison degrades to whole-row keys.
    """

    def __init__(self, table: str):
        self.table = table
        super().__init__(
            f"No primary or custom key for {table}; using all columns as key"
        )

    def to_dict(self) -> dict[str, Any]:
        return {"type": "KeyResolutionFailure", "table": self.table}


class ApplyFailure(TableDiffError):
    """
    A row operation failed during reconciliation and the transaction was rolled back.

    The driver exception is chained as ``__cause__`` and kept unmodified in
    ``original``.
    """

    def __init__(self, table: str, original: BaseException, operation: str | None = None):
        self.table = table
        self.original = original
        self.operation = operation
        where = f" during {operation}" if operation else ""
        super().__init__(
            f"Apply to {table} rolled back{where}: {type(original).__name__}: {original}"
        )


class CancellationRequested(Exception):
    """
    Cooperative cancellation was observed.

    Not a TableDiffError: it is not a failure. ``partial`` carries whatever
    finished before cancellation (completed table summaries in bulk mode,
    None for a single table whose partial map was discarded).
    """

    def __init__(self, message: str = "Operation cancelled", partial: Any = None):
        self.partial = partial
        super().__init__(message)
