"""
Row identity keys and 64-bit content hashes

Every adapter that streams key->hash maps goes through this module, so two
rows with the same logical content produce the same key and hash no matter
which backend loaded them:
- Values are first coerced to the column's declared ValueType
- Each coerced value is rendered to a canonical, locale-independent text
- FNV-1a 64 mixes, per column: separator 0x1F, the type tag, then the UTF-8 text

Text columns treat NULL and "" as equal (both hash as ""); other NULLs mix a
0xFF marker so they never collide with a real value.
"""

import math
import struct
import uuid
from collections.abc import Sequence
from datetime import date, datetime, time
from decimal import Decimal, InvalidOperation
from typing import Any

from .models import ValueType

FNV_OFFSET = 14695981039346656037
FNV_PRIME = 1099511628211
FNV_MASK = 0xFFFFFFFFFFFFFFFF

COLUMN_SEPARATOR = 0x1F
NULL_MARKER = 0xFF

KEY_SEPARATOR = "|"
NULL_KEY_TOKEN = "<NULL>"

_INTEGER_TYPES = {ValueType.INT16, ValueType.INT32, ValueType.INT64, ValueType.BYTE}
_TRUE_STRINGS = {"true", "1", "-1", "yes", "y", "t"}
_FALSE_STRINGS = {"false", "0", "no", "n", "f"}


def infer_value_type(value: Any) -> ValueType:
    """Map a Python runtime value to the closest ValueType."""
    if value is None:
        return ValueType.OBJECT
    if isinstance(value, bool):
        return ValueType.BOOLEAN
    if isinstance(value, int):
        return ValueType.INT64
    if isinstance(value, float):
        return ValueType.DOUBLE
    if isinstance(value, Decimal):
        return ValueType.DECIMAL
    if isinstance(value, (datetime, date, time)):
        return ValueType.DATETIME
    if isinstance(value, uuid.UUID):
        return ValueType.GUID
    if isinstance(value, (bytes, bytearray, memoryview)):
        return ValueType.BYTES
    if isinstance(value, str):
        return ValueType.STRING
    return ValueType.OBJECT


def _to_int(value: Any) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if value.is_integer():
            return int(value)
        raise ValueError(f"Non-integral float {value!r}")
    if isinstance(value, Decimal):
        if value == value.to_integral_value():
            return int(value)
        raise ValueError(f"Non-integral decimal {value!r}")
    if isinstance(value, str):
        return int(value.strip())
    raise TypeError(f"Cannot convert {type(value).__name__} to int")


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float, Decimal)):
        return value != 0
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    raise ValueError(f"Cannot convert {value!r} to bool")


def _to_float32(value: float) -> float:
    return struct.unpack("<f", struct.pack("<f", value))[0]


def _to_datetime(value: Any) -> datetime | time:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, time())
    if isinstance(value, time):
        return value
    if isinstance(value, str):
        return datetime.fromisoformat(value.strip())
    raise TypeError(f"Cannot convert {type(value).__name__} to datetime")


def _to_uuid(value: Any) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    if isinstance(value, (bytes, bytearray)) and len(value) == 16:
        return uuid.UUID(bytes=bytes(value))
    return uuid.UUID(str(value).strip())


def coerce_value(value: Any, value_type: ValueType) -> Any:
    """
    Coerce a raw driver value to the Python type of a declared column type.

    Conversion is best effort: when the value cannot be represented in the
    declared type (e.g. "abc" stored in a SQLite INTEGER column) it is
    returned unchanged, which still hashes deterministically.

    Args:
        value: Value as returned by a driver or parser
        value_type: Declared column type

    Returns:
        The coerced value, or None for NULL
    """
    if value is None:
        return None

    try:
        if value_type == ValueType.STRING:
            return value if isinstance(value, str) else canonical_text(value)
        if value_type in _INTEGER_TYPES:
            return _to_int(value)
        if value_type == ValueType.BOOLEAN:
            return _to_bool(value)
        if value_type == ValueType.DOUBLE:
            return value if isinstance(value, float) else float(value)
        if value_type == ValueType.FLOAT:
            return _to_float32(float(value))
        if value_type == ValueType.DECIMAL:
            if isinstance(value, Decimal):
                return value
            if isinstance(value, float):
                return Decimal(repr(value))
            return Decimal(str(value).strip())
        if value_type == ValueType.DATETIME:
            return _to_datetime(value)
        if value_type == ValueType.GUID:
            return _to_uuid(value)
        if value_type == ValueType.BYTES:
            if isinstance(value, (bytes, bytearray, memoryview)):
                return bytes(value)
            return value
    except (ValueError, TypeError, ArithmeticError, InvalidOperation):
        return value

    return value


def canonical_text(value: Any) -> str:
    """
    Render a value as culture-invariant text.

    Floats use round-trip repr, decimals are normalized without exponent,
    datetimes are ISO-8601 with microseconds, GUIDs are lowercase and bytes
    are hex.
    """
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if math.isnan(value):
            return "NaN"
        return repr(value)
    if isinstance(value, Decimal):
        if not value.is_finite():
            return str(value)
        if value.is_zero():
            return "0"
        return format(value.normalize(), "f")
    if isinstance(value, datetime):
        return value.isoformat(timespec="microseconds")
    if isinstance(value, time):
        return value.isoformat(timespec="microseconds")
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, uuid.UUID):
        return str(value).lower()
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex()
    return str(value)


def value_token(value: Any, value_type: ValueType) -> tuple[int, str | None]:
    """
    Comparable token of a value under a declared type.

    Two values compare equal exactly when their tokens are equal, which is
    also exactly when they contribute the same bytes to a row hash.

    Returns:
        (tag, text) where text is None for a non-text NULL
    """
    coerced = coerce_value(value, value_type)

    if value_type == ValueType.STRING:
        return int(ValueType.STRING), "" if coerced is None else coerced

    if coerced is None:
        return int(value_type), None

    if value_type == ValueType.OBJECT:
        # Untyped columns carry the runtime type so "5" and 5 stay distinct
        inferred = infer_value_type(coerced)
        return int(inferred) << 8, canonical_text(coerced)

    return int(value_type), canonical_text(coerced)


def values_equal(a: Any, b: Any, value_type: ValueType) -> bool:
    """Compare two cell values the way the row hash does."""
    return value_token(a, value_type) == value_token(b, value_type)


def _mix_byte(h: int, b: int) -> int:
    return ((h ^ b) * FNV_PRIME) & FNV_MASK


def _mix_bytes(h: int, data: bytes) -> int:
    for b in data:
        h = ((h ^ b) * FNV_PRIME) & FNV_MASK
    return h


def compute_hash(values: Sequence[Any], value_types: Sequence[ValueType]) -> int:
    """
    Compute the 64-bit content hash of a row.

    Args:
        values: Row values in fixed column order
        value_types: Declared type per column, aligned with values

    Returns:
        Unsigned 64-bit FNV-1a hash

    Raises:
        ValueError: If values and value_types differ in length
    """
    if len(values) != len(value_types):
        raise ValueError(
            f"Row has {len(values)} values but {len(value_types)} column types"
        )

    h = FNV_OFFSET
    for value, value_type in zip(values, value_types):
        h = _mix_byte(h, COLUMN_SEPARATOR)
        h = _mix_byte(h, int(value_type))

        tag, text = value_token(value, value_type)
        if value_type == ValueType.OBJECT and text is not None:
            h = _mix_byte(h, tag >> 8)
        if text is None:
            h = _mix_byte(h, NULL_MARKER)
            continue
        h = _mix_bytes(h, text.encode("utf-8"))

    return h


def build_key(
    values: Sequence[Any],
    value_types: Sequence[ValueType] | None = None,
) -> str:
    """
    Build a row identity key from key-column values.

    NULL renders as ``<NULL>``, distinct from the empty string. When
    value_types is given the values are coerced first, so a key loaded as
    text from one backend matches the same key loaded as a number from
    another.

    Args:
        values: Key-column values in key order
        value_types: Optional declared types aligned with values

    Returns:
        Key string joined with ``|``
    """
    parts = []
    for i, value in enumerate(values):
        if value_types is not None:
            value = coerce_value(value, value_types[i])
        parts.append(NULL_KEY_TOKEN if value is None else canonical_text(value))
    return KEY_SEPARATOR.join(parts)


def format_hash(value: int) -> str:
    """Render a hash as 16 lowercase hex digits."""
    return f"{value:016x}"
