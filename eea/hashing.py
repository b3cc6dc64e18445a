# eea/hashing.py
"""
Content fingerprints.

Digests are always computed over bytes (the exact canonical serialization),
never over in-memory structures, and carry an algorithm tag so stored
values stay self-describing: ``sha256:<64 hex chars>``.
"""
from __future__ import annotations

import hashlib
from typing import Any, Tuple, Union

from .canonical import canonical_bytes

HASH_ALG = "sha256"
_HEX_DIGITS = frozenset("0123456789abcdef")


def sha256_tagged(data: Union[bytes, bytearray, str]) -> str:
    if isinstance(data, str):
        data = data.encode("utf-8")
    return f"{HASH_ALG}:{hashlib.sha256(bytes(data)).hexdigest()}"


def event_hash(canonical_event: Any) -> str:
    """Fingerprint of a canonical event via its canonical byte form."""
    return sha256_tagged(canonical_bytes(canonical_event))


def split_tagged(value: str) -> Tuple[str, str]:
    """Split ``alg:hex`` into its parts; raises ValueError when malformed."""
    alg, sep, hex_part = (value or "").partition(":")
    if not sep or not alg or not hex_part:
        raise ValueError("tagged digest must look like '<alg>:<hex>'")
    if not set(hex_part) <= _HEX_DIGITS:
        raise ValueError("digest must be lowercase hex")
    return alg, hex_part


def hash_prefix(value: str, length: int = 16) -> str:
    """Short, log-safe prefix of a tagged digest (hex part only)."""
    try:
        _, hex_part = split_tagged(value)
    except ValueError:
        return ""
    return hex_part[:length]
