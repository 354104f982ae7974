"""Canonical JSON encoding and SHA-256 hashing for ledger blocks.

Canonical JSON rules (used for block hashes, certificate ids and signatures):
  sorted keys, ``,``/``:`` separators with no whitespace, ASCII-only strings
  (``json.dumps`` escaping), encoded as UTF-8.  Numbers are written the way
  ECMAScript ``JSON.stringify`` writes them (``1e-7``, ``1e+21``, ``12.5``),
  so a verifier in another language recomputes the same hash.

Values are normalised first so the same logical value always produces the
same bytes: integral floats collapse to ints (``5.0`` and ``5`` hash alike),
tuples become lists, and anything that is not plain JSON is rejected.
Integers must lie in the IEEE-754 safe range, the only integers every JSON
implementation reads back exactly.

Strict parsing of external JSON rejects duplicate keys at any nesting level.
"""
import hashlib
import json
import math
from typing import Any

from cropchain_core.errors import DuplicateKeyError, ValidationError

MAX_SAFE_INTEGER = 2**53 - 1


# ---------------------------------------------------------------------------
# Normalisation
# ---------------------------------------------------------------------------


def normalise(value: Any, _path: str = "$") -> Any:
    """Return a plain-JSON copy of *value* with a single numeric form.

    Raises
    ------
    ValidationError
        If a map key is not a string, a number is not finite or lies outside
        the safe integer range, or a value has a type with no canonical
        JSON form.
    """
    # bool is an int subclass; test it first.
    if value is None or isinstance(value, (bool, str)):
        return value
    if isinstance(value, int):
        if abs(value) > MAX_SAFE_INTEGER:
            raise ValidationError(f"Integer at {_path} is outside the safe range: {value}")
        return int(value)
    if isinstance(value, float):
        if not math.isfinite(value):
            raise ValidationError(f"Non-finite number at {_path}: {value!r}")
        if value.is_integer() and abs(value) <= MAX_SAFE_INTEGER:
            return int(value)
        return value
    if isinstance(value, dict):
        out: dict[str, Any] = {}
        for k, v in value.items():
            if not isinstance(k, str):
                raise ValidationError(f"Map key at {_path} must be a string, got {type(k).__name__}")
            out[k] = normalise(v, f"{_path}.{k}")
        return out
    if isinstance(value, (list, tuple)):
        return [normalise(v, f"{_path}[{i}]") for i, v in enumerate(value)]
    raise ValidationError(f"Value at {_path} has no canonical JSON form: {type(value).__name__}")


# ---------------------------------------------------------------------------
# Encoding and hashing
# ---------------------------------------------------------------------------


def format_number(value: float) -> str:
    """ECMAScript Number::toString of a finite float.

    Python's ``repr`` already yields the shortest round-tripping digits; only
    the placement of the decimal point and the exponent form differ.
    """
    if value == 0:
        return "0"
    sign = "-" if value < 0 else ""
    mantissa, _, exp = repr(abs(value)).partition("e")
    int_part, _, frac_part = mantissa.partition(".")
    raw = int_part + frac_part
    stripped = raw.lstrip("0")
    # abs(value) == 0.<digits> * 10**point
    point = len(int_part) + int(exp or 0) - (len(raw) - len(stripped))
    digits = stripped.rstrip("0")
    k = len(digits)
    if k <= point <= 21:
        return sign + digits + "0" * (point - k)
    if 0 < point <= 21:
        return sign + digits[:point] + "." + digits[point:]
    if -6 < point <= 0:
        return sign + "0." + "0" * -point + digits
    e = point - 1
    exponent = f"e{'+' if e >= 0 else '-'}{abs(e)}"
    if k == 1:
        return sign + digits + exponent
    return sign + digits[0] + "." + digits[1:] + exponent


def _encode(value: Any, out: list[str]) -> None:
    if value is None:
        out.append("null")
    elif value is True:
        out.append("true")
    elif value is False:
        out.append("false")
    elif isinstance(value, str):
        out.append(json.dumps(value, ensure_ascii=True))
    elif isinstance(value, int):
        out.append(str(value))
    elif isinstance(value, float):
        out.append(format_number(value))
    elif isinstance(value, dict):
        out.append("{")
        for i, key in enumerate(sorted(value)):
            if i:
                out.append(",")
            out.append(json.dumps(key, ensure_ascii=True))
            out.append(":")
            _encode(value[key], out)
        out.append("}")
    else:
        out.append("[")
        for i, item in enumerate(value):
            if i:
                out.append(",")
            _encode(item, out)
        out.append("]")


def canonical_json(value: Any) -> str:
    """Deterministic JSON serialisation with sorted keys and no whitespace."""
    out: list[str] = []
    _encode(normalise(value), out)
    return "".join(out)


def canonical_bytes(value: Any) -> bytes:
    return canonical_json(value).encode("utf-8")


def sha256_hex(data: bytes) -> str:
    """Lowercase hex SHA-256 of *data*."""
    return hashlib.sha256(data).hexdigest()


def hash_value(value: Any) -> str:
    """SHA-256 over the canonical encoding of *value*."""
    return sha256_hex(canonical_bytes(value))


# ---------------------------------------------------------------------------
# Strict parsing
# ---------------------------------------------------------------------------


def _reject_duplicate_keys(pairs: list[tuple[str, Any]]) -> dict[str, Any]:
    """``object_pairs_hook`` for :func:`json.loads` that rejects duplicate keys."""
    d: dict[str, Any] = {}
    for k, v in pairs:
        if k in d:
            raise DuplicateKeyError(f"Duplicate JSON key: {k!r}")
        d[k] = v
    return d


def _reject_constant(name: str) -> Any:
    raise ValidationError(f"Non-finite number literal not allowed: {name}")


def parse_strict(raw_json: str | bytes) -> Any:
    """Parse external JSON, rejecting duplicate keys and NaN/Infinity.

    Raises
    ------
    DuplicateKeyError
        If any JSON object contains duplicate keys.
    ValidationError
        If the JSON is invalid.
    """
    try:
        return json.loads(
            raw_json,
            object_pairs_hook=_reject_duplicate_keys,
            parse_constant=_reject_constant,
        )
    except json.JSONDecodeError as exc:
        raise ValidationError(f"Invalid JSON: {exc}") from exc
