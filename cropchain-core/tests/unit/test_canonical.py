"""Tests for cropchain_core.ledger.canonical."""
import hashlib
import json
from datetime import datetime

import pytest

from cropchain_core.errors import DuplicateKeyError, ValidationError
from cropchain_core.ledger.canonical import (
    canonical_bytes,
    canonical_json,
    format_number,
    hash_value,
    normalise,
    parse_strict,
    sha256_hex,
)


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------


def test_key_order_does_not_change_encoding() -> None:
    a = {"b": 1, "a": {"y": [1, 2], "x": None}}
    b = {"a": {"x": None, "y": [1, 2]}, "b": 1}
    assert canonical_bytes(a) == canonical_bytes(b)


def test_encoding_has_no_whitespace() -> None:
    assert canonical_json({"a": [1, 2], "b": "c"}) == '{"a":[1,2],"b":"c"}'


def test_non_ascii_is_escaped() -> None:
    assert canonical_json({"k": "gehöft"}) == '{"k":"geh\\u00f6ft"}'


def test_integral_float_hashes_like_int() -> None:
    assert hash_value({"kg": 5.0}) == hash_value({"kg": 5})


def test_fractional_float_kept() -> None:
    assert canonical_json({"m": 12.5}) == '{"m":12.5}'


@pytest.mark.parametrize(
    "value, expected",
    [
        (1e-7, "1e-7"),
        (1e21, "1e+21"),
        (1.5e-7, "1.5e-7"),
        (1.2345e25, "1.2345e+25"),
        (-2.5e-9, "-2.5e-9"),
        (0.000001, "0.000001"),
        (0.000015, "0.000015"),
        (123456789012345680000.0, "123456789012345680000"),
        (2.0**60, "1152921504606847000"),
        (0.1, "0.1"),
        (-12.4, "-12.4"),
    ],
)
def test_numbers_use_ecmascript_form(value: float, expected: str) -> None:
    assert format_number(value) == expected
    assert canonical_json([value]) == f"[{expected}]"


def test_negative_zero_is_zero() -> None:
    assert canonical_json(-0.0) == "0"


def test_output_matches_json_module_for_plain_values() -> None:
    value = {"z": [1, "a", None, True], "a": {"m": 12.5, "\u00e9": "x"}}
    expected = json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=True)
    assert canonical_json(value) == expected


def test_bool_is_not_collapsed_to_int() -> None:
    assert canonical_json([True, 1]) == "[true,1]"


def test_tuple_becomes_list() -> None:
    assert normalise(("a", "b")) == ["a", "b"]


# ---------------------------------------------------------------------------
# Rejections
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("value", [float("nan"), float("inf"), float("-inf")])
def test_non_finite_rejected(value: float) -> None:
    with pytest.raises(ValidationError):
        canonical_json({"x": value})


@pytest.mark.parametrize("value", [2**53, -(2**53), 10**30])
def test_unsafe_integers_rejected(value: int) -> None:
    with pytest.raises(ValidationError, match="safe range"):
        canonical_json({"n": value})


def test_largest_safe_integer_accepted() -> None:
    assert canonical_json(2**53 - 1) == "9007199254740991"


def test_non_string_key_rejected() -> None:
    with pytest.raises(ValidationError, match="must be a string"):
        normalise({1: "a"})


@pytest.mark.parametrize("value", [b"raw", {1, 2}, datetime(2026, 1, 1), object()])
def test_unsupported_types_rejected(value) -> None:
    with pytest.raises(ValidationError):
        canonical_json({"x": value})


def test_error_names_the_nested_path() -> None:
    with pytest.raises(ValidationError, match=r"\$\.outer\[1\]"):
        normalise({"outer": [1, b"x"]})


# ---------------------------------------------------------------------------
# Hashing
# ---------------------------------------------------------------------------


def test_sha256_hex_is_lowercase_64_chars() -> None:
    digest = sha256_hex(b"abc")
    assert digest == hashlib.sha256(b"abc").hexdigest()
    assert len(digest) == 64
    assert digest == digest.lower()


def test_hash_value_is_sha256_of_canonical_bytes() -> None:
    value = {"z": 1, "a": "b"}
    assert hash_value(value) == hashlib.sha256(b'{"a":"b","z":1}').hexdigest()


# ---------------------------------------------------------------------------
# Strict parsing
# ---------------------------------------------------------------------------


def test_parse_strict_accepts_plain_json() -> None:
    assert parse_strict('{"a": {"b": [1, 2]}}') == {"a": {"b": [1, 2]}}


def test_parse_strict_rejects_duplicate_keys() -> None:
    with pytest.raises(DuplicateKeyError):
        parse_strict('{"a": 1, "a": 2}')


def test_parse_strict_rejects_nested_duplicate_keys() -> None:
    with pytest.raises(DuplicateKeyError):
        parse_strict('{"outer": {"k": 1, "k": 1}}')


def test_parse_strict_rejects_nan_literal() -> None:
    with pytest.raises(ValidationError):
        parse_strict('{"a": NaN}')


def test_parse_strict_invalid_json_is_validation_error() -> None:
    with pytest.raises(ValidationError, match="Invalid JSON"):
        parse_strict("{not json")
