# ansybl/canonical.py
"""
Canonical JSON serialization for signing.

Two documents that are structurally equal serialize to the same string,
whatever order their keys were inserted in:

- Object keys sorted by code point, no insignificant whitespace
- Array order preserved
- Minimal string escaping (quote, backslash, control characters)
- Shortest round-trippable number form

The signature of a feed or item is always computed over the canonical form
with its ``signature`` field removed (see ``signing_payload``).
"""

import json
import math
from typing import Any, Dict, Iterable, List

# Integers beyond this lose precision in IEEE-754 doubles
MAX_SAFE_INTEGER = 2 ** 53 - 1

_ESCAPES = {
    '"': '\\"',
    "\\": "\\\\",
    "\b": "\\b",
    "\f": "\\f",
    "\n": "\\n",
    "\r": "\\r",
    "\t": "\\t",
}


class CanonicalizationError(ValueError):
    """Raised for values that have no canonical form (cycles, NaN, odd types)."""
    pass


def _serialize_string(value: str) -> str:
    parts = ['"']
    for char in value:
        escaped = _ESCAPES.get(char)
        if escaped is not None:
            parts.append(escaped)
        elif ord(char) < 0x20:
            parts.append(f"\\u{ord(char):04x}")
        else:
            parts.append(char)
    parts.append('"')
    return "".join(parts)


def _serialize_number(value) -> str:
    if isinstance(value, int):
        return str(value)

    if not math.isfinite(value):
        raise CanonicalizationError(f"Cannot canonicalize non-finite number: {value!r}")

    # 1.0 and 1 are the same JSON number
    if value == 0:
        return "0"
    if value.is_integer() and abs(value) <= MAX_SAFE_INTEGER:
        return str(int(value))

    return _format_double(value)


def _format_double(value: float) -> str:
    """
    ECMAScript Number::toString form (RFC 8785 section 3.2.2.3).

    ``repr`` supplies the shortest round-trip digits; only the layout
    differs: positional for 1e-7 <= |x| < 1e21, else ``d.ddde+N``.
    """
    sign = "-" if value < 0 else ""
    mantissa, _, exponent = repr(abs(value)).partition("e")
    whole, _, fraction = mantissa.partition(".")
    digits = whole + fraction
    # Decimal point sits after `point` digits
    point = len(whole) + int(exponent or 0)

    stripped = digits.lstrip("0")
    point -= len(digits) - len(stripped)
    digits = stripped.rstrip("0")
    k = len(digits)

    if k <= point <= 21:
        text = digits + "0" * (point - k)
    elif 0 < point <= 21:
        text = digits[:point] + "." + digits[point:]
    elif -6 < point <= 0:
        text = "0." + "0" * -point + digits
    else:
        power = point - 1
        head = digits[0] + ("." + digits[1:] if k > 1 else "")
        text = f"{head}e{'+' if power >= 0 else '-'}{abs(power)}"
    return sign + text


def _serialize(value: Any, active: set) -> str:
    # bool is a subclass of int: check it first
    if value is None:
        return "null"
    if value is True:
        return "true"
    if value is False:
        return "false"
    if isinstance(value, str):
        return _serialize_string(value)
    if isinstance(value, (int, float)):
        return _serialize_number(value)

    if isinstance(value, (dict, list, tuple)):
        marker = id(value)
        if marker in active:
            raise CanonicalizationError("Cannot canonicalize cyclic structure")
        active.add(marker)
        try:
            if isinstance(value, dict):
                pairs = []
                for key in sorted(_checked_keys(value)):
                    pairs.append(_serialize_string(key) + ":" + _serialize(value[key], active))
                return "{" + ",".join(pairs) + "}"
            return "[" + ",".join(_serialize(item, active) for item in value) + "]"
        finally:
            active.discard(marker)

    raise CanonicalizationError(f"Cannot canonicalize type: {type(value).__name__}")


def _checked_keys(obj: Dict) -> Iterable[str]:
    for key in obj:
        if not isinstance(key, str):
            raise CanonicalizationError(f"Object keys must be strings, got {type(key).__name__}")
        yield key


def serialize(value: Any) -> str:
    """
    Serialize a value to its canonical JSON string.

    Args:
        value: dict/list/tuple/str/int/float/bool/None, nested arbitrarily

    Returns:
        Canonical JSON text

    Raises:
        CanonicalizationError: for cycles, non-string keys, NaN/Infinity,
            or types with no JSON representation
    """
    return _serialize(value, set())


def canonical_bytes(value: Any) -> bytes:
    """Canonical form encoded as UTF-8 (the bytes that get signed)."""
    return serialize(value).encode("utf-8")


def signing_payload(document: Dict[str, Any], exclude: Iterable[str] = ("signature",)) -> bytes:
    """
    Canonical bytes of a document with its signature field(s) left out.

    Only top-level fields are excluded: a feed signature covers the item
    signatures nested inside it.
    """
    excluded = set(exclude)
    signable = {k: v for k, v in document.items() if k not in excluded}
    return canonical_bytes(signable)


def are_canonically_equivalent(text_a: str, text_b: str) -> bool:
    """True if two JSON texts have the same canonical form."""
    try:
        return serialize(json.loads(text_a)) == serialize(json.loads(text_b))
    except (json.JSONDecodeError, CanonicalizationError):
        return False


def _find_differences(first: str, second: str) -> List[Dict[str, Any]]:
    differences = []
    for position in range(max(len(first), len(second))):
        expected = first[position] if position < len(first) else "EOF"
        actual = second[position] if position < len(second) else "EOF"
        if expected != actual:
            differences.append({"position": position, "expected": expected, "actual": actual})
    return differences


def check_consistency(text: str) -> Dict[str, Any]:
    """
    Check that a JSON text canonicalizes stably across a parse cycle.

    Returns a report with ``consistent``, ``canonical_form`` and, when the
    two passes disagree, the differing positions.
    """
    try:
        canonical = serialize(json.loads(text))
        recanonical = serialize(json.loads(canonical))
    except (json.JSONDecodeError, CanonicalizationError) as e:
        return {"consistent": False, "error": str(e), "canonical_form": None}

    consistent = canonical == recanonical
    return {
        "consistent": consistent,
        "original_length": len(text),
        "canonical_length": len(canonical),
        "canonical_form": canonical,
        "differences": [] if consistent else _find_differences(canonical, recanonical),
    }
