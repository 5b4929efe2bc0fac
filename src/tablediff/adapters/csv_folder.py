"""
Delimited-file folder adapter.

Every ``*.csv`` file in a folder is a table named after the file (relative
path joined with ``/`` when the folder is scanned recursively). All values are
text; the first column is the key. Files are rewritten atomically on apply,
keeping their delimiter and encoding.
"""

import codecs
import csv
import logging
import os
import tempfile
import threading
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from typing import Any

from ..connection import ConnectionDescriptor, ConnectionKind
from ..errors import ApplyFailure, ConfigurationError
from ..hashing import build_key, canonical_text
from ..models import (
    ColumnDescriptor,
    DiffType,
    ProviderCapabilities,
    RowPair,
    TableSnapshot,
    ValueType,
)
from .base import (
    BackendAdapter,
    FastHashSupport,
    build_key_hash_map,
    check_cancelled,
    find_column,
)
from .sql import row_value

logger = logging.getLogger(__name__)

CSV_EXTENSION = ".csv"
DELIMITER_CANDIDATES = (";", ",", "\t", "|")
DEFAULT_DELIMITER = ";"
EMPTY_TABLE_COLUMN = "Key"
NEW_FILE_ENCODING = "utf-8-sig"
FALLBACK_ENCODING = "cp1251"
SAMPLE_SIZE = 4096


def detect_encoding(path: str) -> str:
    """
    Encoding of a CSV file: BOM first, then UTF-8 validity, else cp1251.

    Missing files report the encoding new files are written with.
    """
    if not os.path.isfile(path):
        return NEW_FILE_ENCODING

    with open(path, "rb") as f:
        sample = f.read(SAMPLE_SIZE)

    if sample.startswith(codecs.BOM_UTF8):
        return "utf-8-sig"
    if sample.startswith((codecs.BOM_UTF16_LE, codecs.BOM_UTF16_BE)):
        return "utf-16"

    try:
        # Incremental decode so a character cut at the sample boundary is not an error
        codecs.getincrementaldecoder("utf-8")().decode(sample, final=False)
        return "utf-8"
    except UnicodeDecodeError:
        return FALLBACK_ENCODING


def detect_delimiter(header_line: str | None) -> str:
    """Most frequent candidate delimiter in the header; ties keep the earlier candidate."""
    if not header_line:
        return DEFAULT_DELIMITER
    best = DEFAULT_DELIMITER
    best_count = -1
    for candidate in DELIMITER_CANDIDATES:
        count = header_line.count(candidate)
        if count > best_count:
            best, best_count = candidate, count
    return best


def make_unique(names: Sequence[str]) -> list[str]:
    """Blank names become ``Column<n>``; repeated names get ``_<n>``, case-insensitively."""
    result = []
    used: dict[str, int] = {}
    for i, raw in enumerate(names, start=1):
        name = raw.strip() if raw and raw.strip() else f"Column{i}"
        count = used.get(name.lower())
        if count is None:
            used[name.lower()] = 1
            result.append(name)
        else:
            count += 1
            used[name.lower()] = count
            result.append(f"{name}_{count}")
    return result or ["Column1"]


def _is_blank(row: list[str]) -> bool:
    return not row or all(not field.strip() for field in row)


class CsvFile:
    """Parsed view of one CSV file."""

    def __init__(self, path: str):
        self.path = path
        self.encoding = detect_encoding(path)
        self.delimiter = DEFAULT_DELIMITER

    @contextmanager
    def rows(self) -> Iterator[tuple[list[str], Iterator[list[str]]]]:
        """Yield (header, data rows); the header is empty for an empty file."""
        with open(self.path, encoding=self.encoding, newline="") as f:
            header_line = ""
            while True:
                position = f.tell()
                line = f.readline()
                if not line:
                    break
                if line.strip():
                    header_line = line
                    f.seek(position)
                    break

            self.delimiter = detect_delimiter(header_line)
            reader = csv.reader(f, delimiter=self.delimiter, quotechar='"', doublequote=True)
            header: list[str] = []
            for row in reader:
                if not _is_blank(row):
                    header = row
                    break

            def data() -> Iterator[list[str]]:
                for row in reader:
                    if _is_blank(row):
                        continue
                    yield row

            yield header, data()


def write_csv(
    path: str,
    columns: Sequence[str],
    rows: Sequence[Sequence[Any]],
    delimiter: str,
    encoding: str,
) -> None:
    """Write a CSV file atomically through a temporary file in the same folder."""
    folder = os.path.dirname(os.path.abspath(path))
    os.makedirs(folder, exist_ok=True)

    fd, temp_path = tempfile.mkstemp(prefix=".tablediff-", suffix=".tmp", dir=folder)
    try:
        with os.fdopen(fd, "w", encoding=encoding, newline="") as f:
            writer = csv.writer(
                f,
                delimiter=delimiter,
                quotechar='"',
                quoting=csv.QUOTE_MINIMAL,
                lineterminator="\r\n",
            )
            writer.writerow(columns)
            for row in rows:
                writer.writerow(["" if v is None else canonical_text(v) for v in row])
        os.replace(temp_path, path)
    except BaseException:
        if os.path.exists(temp_path):
            os.remove(temp_path)
        raise


class CsvFolderAdapter(BackendAdapter, FastHashSupport):
    """CSV files of a folder as text tables; full capabilities."""

    kind = ConnectionKind.CSV_FOLDER
    display_name = "CSV folder"

    def _folder(self, conn: ConnectionDescriptor) -> str:
        if not os.path.isdir(conn.target):
            raise FileNotFoundError(f"CSV folder not found: {conn.target}")
        return conn.target

    def _recursive(self, conn: ConnectionDescriptor) -> bool:
        return conn.flag("Recursive")

    def table_path(self, conn: ConnectionDescriptor, table: str) -> str:
        """
        File behind a table name.

        Raises:
            ConfigurationError: If the name is empty or escapes the folder
        """
        name = (table or "").strip().strip('"')
        if not name:
            raise ConfigurationError("Table name is empty")
        if os.path.isabs(name):
            name = os.path.splitext(os.path.basename(name))[0]
        if not name.lower().endswith(CSV_EXTENSION):
            name += CSV_EXTENSION

        folder = os.path.abspath(conn.target)
        path = os.path.abspath(os.path.join(folder, *name.replace("\\", "/").split("/")))
        if os.path.commonpath([folder, path]) != folder:
            raise ConfigurationError(f"Table name escapes the CSV folder: {table}")
        return path

    def list_tables(self, conn: ConnectionDescriptor) -> list[str]:
        folder = self._folder(conn)
        names = set()
        if self._recursive(conn):
            for root, _, files in os.walk(folder):
                for file_name in files:
                    if file_name.lower().endswith(CSV_EXTENSION):
                        rel = os.path.relpath(os.path.join(root, file_name), folder)
                        names.add(rel[: -len(CSV_EXTENSION)].replace(os.sep, "/"))
        else:
            for file_name in os.listdir(folder):
                full = os.path.join(folder, file_name)
                if file_name.lower().endswith(CSV_EXTENSION) and os.path.isfile(full):
                    names.add(file_name[: -len(CSV_EXTENSION)])

        unique: dict[str, str] = {}
        for name in names:
            unique.setdefault(name.lower(), name)
        return sorted(unique.values(), key=str.lower)

    def get_capabilities(self, conn: ConnectionDescriptor) -> ProviderCapabilities:
        return ProviderCapabilities.FULL

    def get_column_schema(self, conn: ConnectionDescriptor, table: str) -> list[ColumnDescriptor]:
        path = self.table_path(conn, table)
        if not os.path.isfile(path):
            return [ColumnDescriptor(EMPTY_TABLE_COLUMN, ValueType.STRING)]

        csv_file = CsvFile(path)
        with csv_file.rows() as (header, data):
            if not header:
                return [ColumnDescriptor(EMPTY_TABLE_COLUMN, ValueType.STRING)]
            names = make_unique(header)
            width = len(names)
            for row in data:
                width = max(width, len(row))

        if width > len(names):
            names = make_unique(names + [f"Column{i + 1}" for i in range(len(names), width)])
        return [ColumnDescriptor(n, ValueType.STRING) for n in names]

    def get_key_columns(self, conn: ConnectionDescriptor, table: str) -> list[str]:
        schema = self.get_column_schema(conn, table)
        return [schema[0].name] if schema else [EMPTY_TABLE_COLUMN]

    def load_full_table(
        self,
        conn: ConnectionDescriptor,
        table: str,
        cancel_token: threading.Event | None = None,
    ) -> TableSnapshot:
        path = self.table_path(conn, table)
        empty = TableSnapshot(table, [ColumnDescriptor(EMPTY_TABLE_COLUMN, ValueType.STRING)])
        if not os.path.isfile(path):
            return empty

        csv_file = CsvFile(path)
        with csv_file.rows() as (header, data):
            if not header:
                return empty
            names = make_unique(header)
            raw_rows = []
            for row in data:
                check_cancelled(cancel_token, table)
                raw_rows.append(row)

        width = max([len(names)] + [len(r) for r in raw_rows])
        if width > len(names):
            names = make_unique(names + [f"Column{i + 1}" for i in range(len(names), width)])

        rows = [tuple(r[i] if i < len(r) else "" for i in range(width)) for r in raw_rows]
        return TableSnapshot(table, [ColumnDescriptor(n, ValueType.STRING) for n in names], rows)

    def load_key_hash_map(
        self,
        conn: ConnectionDescriptor,
        table: str,
        key_columns: Sequence[str],
        schema: Sequence[ColumnDescriptor],
        cancel_token: threading.Event | None = None,
    ) -> dict[str, int]:
        path = self.table_path(conn, table)
        if not os.path.isfile(path):
            return {}

        csv_file = CsvFile(path)
        with csv_file.rows() as (header, data):
            if not header:
                return {}
            names = make_unique(header)
            # Surplus fields beyond the header map to the Column<n> names the schema uses
            extended = names + [f"Column{i + 1}" for i in range(len(names), len(schema))]
            width = len(extended)

            def padded() -> Iterator[tuple]:
                for row in data:
                    yield tuple(row[i] if i < len(row) else "" for i in range(width))

            return build_key_hash_map(padded(), extended, key_columns, schema, table, cancel_token)

    def _row_key(self, row: dict[str, Any], key_columns: Sequence[str]) -> str:
        values = [row_value(row, k) for k in key_columns]
        return build_key(["" if v is None else v for v in values])

    def apply_row_changes(
        self,
        conn: ConnectionDescriptor,
        table: str,
        key_columns: Sequence[str],
        pairs: Sequence[RowPair],
    ) -> dict[str, int]:
        """
        Upsert OnlyInSource/Different rows and delete OnlyInTarget rows by key.

        The file is rewritten once, atomically; on failure it is left untouched.

        Raises:
            ApplyFailure: If reading or writing the file fails
        """
        path = self.table_path(conn, table)
        counts = {"inserted": 0, "updated": 0, "deleted": 0}
        operation = "load"

        try:
            if os.path.isfile(path):
                snapshot = self.load_full_table(conn, table)
                columns = snapshot.column_names
                rows = [list(r) for r in snapshot.rows]
                csv_file = CsvFile(path)
                with csv_file.rows():
                    delimiter = csv_file.delimiter
                encoding = csv_file.encoding
            else:
                first = next((p.source for p in pairs if p.source is not None), None)
                columns = list(first.keys()) if first else [EMPTY_TABLE_COLUMN]
                rows = []
                delimiter = DEFAULT_DELIMITER
                encoding = NEW_FILE_ENCODING

            keys = list(key_columns) or [columns[0]]
            index: dict[str, int] = {}
            for i, row in enumerate(rows):
                index[self._row_key(dict(zip(columns, row)), keys)] = i

            deleted: set[int] = set()
            for pair in pairs:
                if pair.diff_type == DiffType.ONLY_IN_TARGET:
                    operation = f"delete {pair.key}"
                    position = index.pop(self._row_key(pair.target, keys), None)
                    if position is not None:
                        deleted.add(position)
                        counts["deleted"] += 1
                    continue

                operation = f"upsert {pair.key}"
                source = pair.source
                for name in source:
                    if find_column(columns, name) is None:
                        columns.append(name)
                        for row in rows:
                            row.append("")

                key = self._row_key(source, keys)
                position = index.get(key)
                if position is None and pair.target is not None:
                    # Keys matched after type coercion ("01" vs 1); find the row as the file spells it
                    position = index.pop(self._row_key(pair.target, keys), None)
                    if position is not None:
                        index[key] = position
                if position is None:
                    rows.append([""] * len(columns))
                    position = len(rows) - 1
                    index[key] = position
                    counts["inserted"] += 1
                else:
                    counts["updated"] += 1

                target_row = rows[position]
                for name, value in source.items():
                    target_row[find_column(columns, name)] = "" if value is None else canonical_text(value)

            operation = "write"
            kept = [row for i, row in enumerate(rows) if i not in deleted]
            write_csv(path, columns, kept, delimiter, encoding)
        except Exception as e:
            logger.error(f"CSV apply to {path} failed during {operation}: {e}")
            raise ApplyFailure(table, e, operation) from e

        logger.info(f"Applied changes to {path}: {counts}")
        return counts

    def replace_table(
        self,
        conn: ConnectionDescriptor,
        table: str,
        snapshot: TableSnapshot,
    ) -> int:
        path = self.table_path(conn, table)
        csv_file = CsvFile(path)
        delimiter = DEFAULT_DELIMITER
        if os.path.isfile(path):
            with csv_file.rows():
                delimiter = csv_file.delimiter
        try:
            write_csv(path, snapshot.column_names, snapshot.rows, delimiter, csv_file.encoding)
        except Exception as e:
            raise ApplyFailure(table, e, "replace") from e
        return len(snapshot.rows)

    def drop_table(self, conn: ConnectionDescriptor, table: str) -> None:
        path = self.table_path(conn, table)
        if os.path.isfile(path):
            os.remove(path)
            logger.info(f"Deleted {path}")
