"""
Spreadsheet workbook adapter.

``.xlsx``/``.xlsm`` workbooks are read with openpyxl; legacy ``.xls``/``.xla``,
add-in ``.xlam`` and OpenDocument ``.ods`` workbooks with python-calamine.
Each worksheet is a table with a pseudo key column ``Row`` (1-based row
number) followed by letter-named columns A, B, ... up to the last column that
holds a meaningful value anywhere on the sheet. Cell values are rendered to
culture-invariant text. Read-only.
"""

import io
import logging
import os
import threading
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from typing import Any, BinaryIO

from openpyxl import load_workbook
from openpyxl.utils import get_column_letter
from python_calamine import CalamineWorkbook

from ..connection import ConnectionDescriptor, ConnectionKind
from ..hashing import canonical_text
from ..models import ColumnDescriptor, TableSnapshot, ValueType
from ..session import BatchHandle, active_handle
from .base import (
    BackendAdapter,
    BatchSupport,
    FastHashSupport,
    build_key_hash_map,
    check_cancelled,
)

logger = logging.getLogger(__name__)

ROW_NUMBER_COLUMN = "Row"

CALAMINE_EXTENSIONS = (".xls", ".xla", ".xlam", ".ods")


def has_meaningful_value(value: Any) -> bool:
    """Non-blank strings and any non-string value (including 0) count."""
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    return True


def cell_text(value: Any) -> str | None:
    if value is None:
        return None
    return canonical_text(value)


class OpenpyxlBook:
    """Read-only openpyxl workbook."""

    def __init__(self, source: str | BinaryIO):
        self._workbook = load_workbook(source, read_only=True, data_only=True)

    @property
    def sheet_names(self) -> list[str]:
        return list(self._workbook.sheetnames)

    def rows(self, sheet: str) -> Iterator[Sequence[Any]]:
        return self._workbook[sheet].iter_rows(values_only=True)

    def close(self) -> None:
        self._workbook.close()


class CalamineBook:
    """
    python-calamine workbook.

    Calamine reports empty cells as "" and every number as float; both are
    mapped to what openpyxl yields (None, int for whole numbers) so a sheet
    reads the same whatever format it was saved in.
    """

    def __init__(self, source: str | BinaryIO):
        if isinstance(source, str):
            self._workbook = CalamineWorkbook.from_path(source)
        else:
            self._workbook = CalamineWorkbook.from_filelike(source)

    @property
    def sheet_names(self) -> list[str]:
        return list(self._workbook.sheet_names)

    @staticmethod
    def _value(value: Any) -> Any:
        if value == "":
            return None
        if isinstance(value, float) and value.is_integer():
            return int(value)
        return value

    def rows(self, sheet: str) -> Iterator[Sequence[Any]]:
        data = self._workbook.get_sheet_by_name(sheet).to_python(skip_empty_area=False)
        for row in data:
            yield tuple(self._value(v) for v in row)

    def close(self) -> None:
        self._workbook.close()


def open_book(path: str, source: str | BinaryIO) -> OpenpyxlBook | CalamineBook:
    """Reader for a workbook by the extension of its file name."""
    if os.path.splitext(path)[1].lower() in CALAMINE_EXTENSIONS:
        return CalamineBook(source)
    return OpenpyxlBook(source)


class ExcelAdapter(BackendAdapter, FastHashSupport, BatchSupport):
    """Worksheets of a spreadsheet workbook; read-only."""

    kind = ConnectionKind.EXCEL
    display_name = "Excel workbook"

    def begin_batch(self, conn: ConnectionDescriptor) -> BatchHandle:
        with open(self._path(conn), "rb") as f:
            data = f.read()
        logger.debug(f"Cached {len(data)} bytes of {conn.target} for batch")
        return BatchHandle(resource=data)

    def _path(self, conn: ConnectionDescriptor) -> str:
        if not os.path.isfile(conn.target):
            raise FileNotFoundError(f"Workbook not found: {conn.target}")
        return conn.target

    @contextmanager
    def _workbook(self, conn: ConnectionDescriptor) -> Iterator[OpenpyxlBook | CalamineBook]:
        handle = active_handle(conn)
        source = io.BytesIO(handle.resource) if handle is not None else self._path(conn)
        workbook = open_book(conn.target, source)
        try:
            yield workbook
        finally:
            workbook.close()

    def _sheet(self, workbook: OpenpyxlBook | CalamineBook, table: str) -> str:
        names = workbook.sheet_names
        if table in names:
            return table
        lowered = table.lower()
        for name in names:
            if name.lower() == lowered:
                return name
        raise KeyError(f"Worksheet not found: {table}")

    def _effective_width(self, workbook: OpenpyxlBook | CalamineBook, sheet: str) -> int:
        width = 0
        for row in workbook.rows(sheet):
            for i in range(len(row) - 1, width - 1, -1):
                if has_meaningful_value(row[i]):
                    width = i + 1
                    break
        return width

    def _columns(self, width: int) -> list[ColumnDescriptor]:
        columns = [ColumnDescriptor(ROW_NUMBER_COLUMN, ValueType.INT32)]
        columns.extend(
            ColumnDescriptor(get_column_letter(i + 1), ValueType.STRING) for i in range(width)
        )
        return columns

    def _iter_sheet_rows(self, workbook: OpenpyxlBook | CalamineBook, sheet: str, width: int) -> Iterator[tuple]:
        for number, row in enumerate(workbook.rows(sheet), start=1):
            values = [cell_text(row[i]) if i < len(row) else None for i in range(width)]
            yield (number, *values)

    def list_tables(self, conn: ConnectionDescriptor) -> list[str]:
        with self._workbook(conn) as workbook:
            return workbook.sheet_names

    def get_key_columns(self, conn: ConnectionDescriptor, table: str) -> list[str]:
        return [ROW_NUMBER_COLUMN]

    def get_column_schema(self, conn: ConnectionDescriptor, table: str) -> list[ColumnDescriptor]:
        with self._workbook(conn) as workbook:
            return self._columns(self._effective_width(workbook, self._sheet(workbook, table)))

    def load_full_table(
        self,
        conn: ConnectionDescriptor,
        table: str,
        cancel_token: threading.Event | None = None,
    ) -> TableSnapshot:
        with self._workbook(conn) as workbook:
            sheet = self._sheet(workbook, table)
            width = self._effective_width(workbook, sheet)
            rows = []
            for row in self._iter_sheet_rows(workbook, sheet, width):
                check_cancelled(cancel_token, table)
                rows.append(row)

        logger.info(f"Loaded worksheet '{table}' from {conn.target}: {len(rows)} rows, {width} columns")
        return TableSnapshot(table, self._columns(width), rows)

    def load_key_hash_map(
        self,
        conn: ConnectionDescriptor,
        table: str,
        key_columns: Sequence[str],
        schema: Sequence[ColumnDescriptor],
        cancel_token: threading.Event | None = None,
    ) -> dict[str, int]:
        # Width comes from the shared schema so both workbooks hash the same columns
        width = max(0, len(schema) - 1)
        names = [ROW_NUMBER_COLUMN] + [get_column_letter(i + 1) for i in range(width)]
        with self._workbook(conn) as workbook:
            sheet = self._sheet(workbook, table)
            return build_key_hash_map(
                self._iter_sheet_rows(workbook, sheet, width),
                names,
                key_columns,
                schema,
                table,
                cancel_token,
            )
