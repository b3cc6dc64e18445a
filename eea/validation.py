# eea/validation.py
"""
Admission control for inbound economic events.

Checks run in a fixed order and the first failure wins:

  1. required fields present and non-null       -> MissingRequiredField
  2. event_type in the closed enum              -> SchemaValidationFailed
  3. occurred_at strict ISO-8601, real instant  -> InvalidTimestamp
  4. amount is a decimal string                 -> SchemaValidationFailed
  5. currency is three uppercase letters        -> SchemaValidationFailed
  6. source_system non-empty string             -> SchemaValidationFailed
  7. references is a JSON object                -> SchemaValidationFailed
  8. payload / evidence / meta objects if given -> SchemaValidationFailed
  9. serialized payload within the byte ceiling -> PayloadTooLarge

Nothing is coerced; a value that is not already well-formed is rejected.
"""
from __future__ import annotations

import datetime as _dt
import json
import math
import re
from typing import Any, Dict, Mapping, Optional

from .errors import (
    InvalidJSON,
    InvalidTimestamp,
    MissingRequiredField,
    PayloadTooLarge,
    SchemaValidationFailed,
)

EVENT_TYPES = (
    "payment",
    "refund",
    "invoice_issued",
    "transfer",
    "credit_spend",
    "payout",
    "adjustment",
)

REQUIRED_FIELDS = (
    "event_type",
    "occurred_at",
    "amount",
    "currency",
    "source_system",
    "references",
)

OPTIONAL_OBJECT_FIELDS = ("payload", "evidence", "meta")

DEFAULT_MAX_PAYLOAD_BYTES = 64 * 1024

_ISO8601_RE = re.compile(
    r"^([0-9]{4})-([0-9]{2})-([0-9]{2})T([0-9]{2}):([0-9]{2}):([0-9]{2})(?:\.([0-9]{1,3}))?"
    r"(Z|([+-])([0-9]{2}):([0-9]{2}))$"
)
_AMOUNT_RE = re.compile(r"^-?[0-9]+(\.[0-9]+)?$")
_CURRENCY_RE = re.compile(r"^[A-Z]{3}$")


def parse_iso8601(value: Any) -> Optional[_dt.datetime]:
    """
    Parse the strict ISO-8601 profile accepted for ``occurred_at``.

    Returns an aware datetime, or None when the string does not match the
    profile or names an instant that does not exist (e.g. Feb 30).
    """
    if not isinstance(value, str):
        return None
    m = _ISO8601_RE.fullmatch(value)
    if m is None:
        return None
    year, month, day, hour, minute, second = (int(g) for g in m.group(1, 2, 3, 4, 5, 6))
    frac = m.group(7) or ""
    micros = int(frac.ljust(6, "0")) if frac else 0
    try:
        if m.group(8) == "Z":
            tz = _dt.timezone.utc
        else:
            sign = 1 if m.group(9) == "+" else -1
            offset = _dt.timedelta(hours=int(m.group(10)), minutes=int(m.group(11)))
            tz = _dt.timezone(sign * offset)
        return _dt.datetime(year, month, day, hour, minute, second, micros, tzinfo=tz)
    except ValueError:
        return None


def _is_object(value: Any) -> bool:
    return isinstance(value, dict)


def _serialized_size(value: Any) -> int:
    return len(
        json.dumps(value, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    )


def validate_event(
    event: Mapping[str, Any],
    *,
    max_payload_bytes: int = DEFAULT_MAX_PAYLOAD_BYTES,
) -> None:
    """Raise the first applicable validation error, or return None."""
    for name in REQUIRED_FIELDS:
        if event.get(name) is None:
            raise MissingRequiredField(f"Missing required field: {name}")

    event_type = event["event_type"]
    if not isinstance(event_type, str) or event_type not in EVENT_TYPES:
        raise SchemaValidationFailed(
            f"Invalid event_type. Must be one of: {', '.join(EVENT_TYPES)}"
        )

    if parse_iso8601(event["occurred_at"]) is None:
        raise InvalidTimestamp()

    amount = event["amount"]
    if not isinstance(amount, str) or not _AMOUNT_RE.fullmatch(amount):
        raise SchemaValidationFailed(
            'amount must be a string representing a number (e.g., "100.00")'
        )

    currency = event["currency"]
    if not isinstance(currency, str) or not _CURRENCY_RE.fullmatch(currency):
        raise SchemaValidationFailed(
            'currency must be a 3-letter uppercase code (e.g., "USD")'
        )

    source_system = event["source_system"]
    if not isinstance(source_system, str) or not source_system:
        raise SchemaValidationFailed("source_system must be a non-empty string")

    if not _is_object(event["references"]):
        raise SchemaValidationFailed("references must be an object")

    for name in OPTIONAL_OBJECT_FIELDS:
        if name in event and not _is_object(event[name]):
            raise SchemaValidationFailed(f"{name} must be an object if provided")

    if "payload" in event and _serialized_size(event["payload"]) > max_payload_bytes:
        raise PayloadTooLarge(f"payload exceeds {max_payload_bytes} bytes")


def parse_event_body(body: bytes) -> Dict[str, Any]:
    """
    Decode a request body into an event mapping.

    Rejects invalid UTF-8, invalid JSON, the non-standard NaN/Infinity
    literals and any top-level value that is not an object.
    """
    def _reject_constant(name: str) -> Any:
        raise ValueError(f"non-standard JSON constant {name}")

    def _finite_float(raw: str) -> float:
        value = float(raw)
        if not math.isfinite(value):
            raise ValueError("number out of range")
        return value

    try:
        text = body.decode("utf-8")
        parsed = json.loads(
            text, parse_constant=_reject_constant, parse_float=_finite_float
        )
    except (UnicodeDecodeError, ValueError, RecursionError) as exc:
        raise InvalidJSON() from exc

    if not isinstance(parsed, dict):
        raise InvalidJSON("Request body must be a JSON object")
    return parsed


def format_rfc3339_ms(ts: float) -> str:
    """UTC instant as ``YYYY-MM-DDTHH:MM:SS.mmmZ``."""
    dt = _dt.datetime.fromtimestamp(ts, tz=_dt.timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")
