"""
Unit tests for row keys and content hashes.

Tests verify:
- FNV-1a layout (separator, type tag, value bytes)
- NULL handling in text and non-text columns
- Type sensitivity of untyped columns
- Coercion so equal values loaded by different drivers hash equally
"""

import uuid
from datetime import date, datetime
from decimal import Decimal

import pytest

from tablediff.hashing import (
    FNV_OFFSET,
    FNV_PRIME,
    build_key,
    canonical_text,
    coerce_value,
    compute_hash,
    format_hash,
    infer_value_type,
    values_equal,
)
from tablediff.models import ValueType


def reference_fnv(chunks: list[bytes]) -> int:
    h = FNV_OFFSET
    for chunk in chunks:
        for b in chunk:
            h = ((h ^ b) * FNV_PRIME) & 0xFFFFFFFFFFFFFFFF
    return h


class TestComputeHash:
    """Test compute_hash"""

    def test_empty_row_is_offset_basis(self):
        """Test a row without columns hashes to the FNV offset basis"""
        assert compute_hash([], []) == FNV_OFFSET

    def test_layout_matches_reference(self):
        """Test separator, tag and UTF-8 bytes are mixed in column order"""
        expected = reference_fnv([
            b"\x1f", b"\x03", b"42",
            b"\x1f", b"\x01", "Привет".encode("utf-8"),
        ])

        assert compute_hash([42, "Привет"], [ValueType.INT64, ValueType.STRING]) == expected

    def test_null_in_text_column_equals_empty_string(self):
        """Test NULL and "" hash identically in string columns"""
        types = [ValueType.STRING]
        assert compute_hash([None], types) == compute_hash([""], types)

    def test_null_in_numeric_column_uses_marker(self):
        """Test a non-text NULL mixes the 0xFF marker"""
        expected = reference_fnv([b"\x1f", b"\x03", b"\xff"])

        assert compute_hash([None], [ValueType.INT64]) == expected
        assert compute_hash([None], [ValueType.INT64]) != compute_hash([0], [ValueType.INT64])

    def test_text_five_and_integer_five_differ(self):
        """Test "5" and 5 never collide in an untyped column"""
        types = [ValueType.OBJECT]
        assert compute_hash(["5"], types) != compute_hash([5], types)

    def test_declared_types_differ(self):
        """Test the same text under different declared types hashes differently"""
        assert compute_hash(["5"], [ValueType.STRING]) != compute_hash([5], [ValueType.INT64])

    def test_coercion_makes_driver_values_equal(self):
        """Test an integer stored as text hashes like the integer in an INT column"""
        types = [ValueType.INT64, ValueType.DOUBLE]
        assert compute_hash(["7", 1], types) == compute_hash([7, 1.0], types)

    def test_deterministic(self):
        """Test identical input always yields identical output"""
        row = [1, "x", 2.5, None, datetime(2024, 1, 2, 3, 4, 5, 6)]
        types = [
            ValueType.INT32,
            ValueType.STRING,
            ValueType.DOUBLE,
            ValueType.DECIMAL,
            ValueType.DATETIME,
        ]
        assert compute_hash(row, types) == compute_hash(list(row), list(types))

    def test_length_mismatch_raises(self):
        """Test values and types must align"""
        with pytest.raises(ValueError, match="2 values but 1 column types"):
            compute_hash([1, 2], [ValueType.INT64])

    def test_column_order_matters(self):
        """Test swapping columns changes the hash"""
        types = [ValueType.STRING, ValueType.STRING]
        assert compute_hash(["a", "b"], types) != compute_hash(["b", "a"], types)

    def test_format_hash(self):
        """Test hashes render as 16 hex digits"""
        assert format_hash(255) == "00000000000000ff"
        assert len(format_hash(compute_hash(["x"], [ValueType.STRING]))) == 16


class TestBuildKey:
    """Test build_key"""

    def test_join_with_separator(self):
        """Test values are joined with |"""
        assert build_key([1, "a"]) == "1|a"

    def test_null_sentinel_distinct_from_empty(self):
        """Test NULL renders as <NULL> and "" stays empty"""
        assert build_key([None]) == "<NULL>"
        assert build_key([""]) == ""
        assert build_key([None, ""]) == "<NULL>|"

    def test_typed_key_coerces(self):
        """Test keys loaded as text match numeric keys when types are given"""
        assert build_key(["12"], [ValueType.INT64]) == build_key([12], [ValueType.INT64])

    def test_float_integral_key(self):
        """Test 3.0 in an integer key column renders as 3"""
        assert build_key([3.0], [ValueType.INT32]) == "3"


class TestCanonicalText:
    """Test canonical_text"""

    @pytest.mark.parametrize(
        "value,expected",
        [
            (None, ""),
            (True, "true"),
            (False, "false"),
            (10, "10"),
            (0.1, "0.1"),
            (1e20, "1e+20"),
            (Decimal("1.500"), "1.5"),
            (Decimal("0.00"), "0"),
            (Decimal("1E+3"), "1000"),
            (date(2024, 2, 29), "2024-02-29"),
            (datetime(2024, 2, 29, 13, 5), "2024-02-29T13:05:00.000000"),
            (b"\x00\xff", "00ff"),
        ],
    )
    def test_rendering(self, value, expected):
        """Test invariant rendering of common value types"""
        assert canonical_text(value) == expected

    def test_guid_lowercase(self):
        """Test GUIDs render lowercase"""
        value = uuid.UUID("6F9619FF-8B86-D011-B42D-00C04FC964FF")
        assert canonical_text(value) == "6f9619ff-8b86-d011-b42d-00c04fc964ff"

    def test_nan(self):
        """Test NaN renders as NaN"""
        assert canonical_text(float("nan")) == "NaN"


class TestCoerceValue:
    """Test coerce_value"""

    def test_unconvertible_value_returned_unchanged(self):
        """Test "abc" in an INT column stays "abc" """
        assert coerce_value("abc", ValueType.INT64) == "abc"

    def test_bool_from_text(self):
        """Test Access-style -1 and yes/no strings"""
        assert coerce_value("-1", ValueType.BOOLEAN) is True
        assert coerce_value("no", ValueType.BOOLEAN) is False

    def test_float32_rounding(self):
        """Test FLOAT columns round through single precision"""
        assert coerce_value(0.1, ValueType.FLOAT) != 0.1
        assert coerce_value(0.5, ValueType.FLOAT) == 0.5

    def test_decimal_from_float_uses_repr(self):
        """Test 0.1 becomes Decimal('0.1') not its binary expansion"""
        assert coerce_value(0.1, ValueType.DECIMAL) == Decimal("0.1")

    def test_datetime_from_iso_text(self):
        """Test ISO text in DATETIME columns"""
        assert coerce_value("2024-01-02 03:04:05", ValueType.DATETIME) == datetime(2024, 1, 2, 3, 4, 5)

    def test_guid_from_bytes(self):
        """Test 16-byte values in GUID columns"""
        value = uuid.uuid4()
        assert coerce_value(value.bytes, ValueType.GUID) == value

    def test_string_column_renders_numbers(self):
        """Test numbers in text columns are rendered as text"""
        assert coerce_value(5, ValueType.STRING) == "5"


class TestValuesEqual:
    """Test values_equal"""

    def test_matches_hash_equality(self):
        """Test equal values hash equally and vice versa"""
        assert values_equal(None, "", ValueType.STRING)
        assert not values_equal(None, 0, ValueType.INT64)
        assert values_equal("1", 1, ValueType.INT64)
        assert not values_equal("5", 5, ValueType.OBJECT)

    def test_infer_value_type(self):
        """Test runtime type inference for untyped columns"""
        assert infer_value_type(True) == ValueType.BOOLEAN
        assert infer_value_type(3) == ValueType.INT64
        assert infer_value_type("x") == ValueType.STRING
        assert infer_value_type(b"x") == ValueType.BYTES
        assert infer_value_type(object()) == ValueType.OBJECT
