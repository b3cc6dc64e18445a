# eea/canonical.py
"""
Deterministic canonical form for economic events.

Inbound events are treated as values of a closed recursive JSON type:

    JSONValue = None | bool | int | float | str | list[JSONValue] | dict[str, JSONValue]

Canonicalization rules:
  - mappings are rebuilt with keys sorted by code point, recursively;
  - ``None`` values inside mappings are dropped (absent and null are the
    same thing for an attested event);
  - integral floats are written as integers, so 100.0 and 100 are one
    number;
  - sequences keep element order, each element is canonicalized, and a
    ``None`` element stays ``None`` so positions are preserved;
  - anything outside the closed type is rejected with ``TypeError``.

Two events that differ only in key order therefore produce byte-identical
serializations from :func:`canonical_bytes`.
"""
from __future__ import annotations

import json
import math
from typing import Any, Dict, List, Union

JSONScalar = Union[None, bool, int, float, str]
JSONValue = Union[JSONScalar, List["JSONValue"], Dict[str, "JSONValue"]]

# Integral floats at or above this magnitude keep float form (exponent notation).
_EXPONENT_THRESHOLD = 1e21


def _canonical_value(value: Any) -> Any:
    if value is None or isinstance(value, (bool, str)):
        return value
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            raise TypeError("non-finite numbers have no canonical form")
        # 1.0 and 1 are the same JSON number; both serialize as 1
        if value.is_integer() and abs(value) < _EXPONENT_THRESHOLD:
            return int(value)
        return value
    if isinstance(value, dict):
        return canonicalize(value)
    if isinstance(value, (list, tuple)):
        return [_canonical_value(v) for v in value]
    raise TypeError(f"unsupported value type in event: {type(value).__name__}")


def canonicalize(event: Dict[str, Any]) -> Dict[str, JSONValue]:
    """Return a key-sorted copy of ``event`` with null members removed."""
    if not isinstance(event, dict):
        raise TypeError("canonicalize expects a mapping")
    out: Dict[str, JSONValue] = {}
    for key in sorted(event.keys()):
        if not isinstance(key, str):
            raise TypeError("event keys must be strings")
        value = event[key]
        if value is None:
            continue
        out[key] = _canonical_value(value)
    return out


def canonical_json(value: Any) -> str:
    """
    Serialize an already-canonical value.

    Compact separators, UTF-8 preserved (no ASCII escaping) and keys sorted
    a second time so the output never depends on dict insertion order.
    """
    return json.dumps(
        value,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    )


def canonical_bytes(value: Any) -> bytes:
    return canonical_json(value).encode("utf-8")


__all__ = [
    "JSONValue",
    "canonicalize",
    "canonical_json",
    "canonical_bytes",
]
