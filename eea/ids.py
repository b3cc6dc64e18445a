# eea/ids.py
"""
Attestation identifiers.

Layout (after the ``eea_`` domain tag), 26 Crockford base-32 characters:

    tttttttttt rrrrrrrrrrrrrrrr
    |          |
    |          16 chars: 80 bits from the OS CSPRNG
    10 chars: milliseconds since the Unix epoch (48 bits)

The fixed-width time prefix makes string order follow creation order at
millisecond resolution. IDs are never checked against the store for
collisions; 80 random bits per millisecond is ample for expected issuance.
"""
from __future__ import annotations

import secrets
import time
from typing import Optional

ID_PREFIX = "eea_"

_ENCODING = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
_TIME_LEN = 10
_RANDOM_LEN = 16
_MAX_TIME_MS = (1 << 48) - 1


def _encode_time(ms: int, length: int = _TIME_LEN) -> str:
    if ms < 0 or ms > _MAX_TIME_MS:
        raise ValueError("timestamp out of range for identifier encoding")
    chars = []
    for _ in range(length):
        ms, mod = divmod(ms, 32)
        chars.append(_ENCODING[mod])
    return "".join(reversed(chars))


def _encode_random(length: int = _RANDOM_LEN) -> str:
    # 256 is a multiple of 32, so the modulo keeps the distribution uniform.
    return "".join(_ENCODING[b % 32] for b in secrets.token_bytes(length))


def new_id(now_ms: Optional[int] = None) -> str:
    if now_ms is None:
        now_ms = time.time_ns() // 1_000_000
    return f"{ID_PREFIX}{_encode_time(int(now_ms))}{_encode_random()}"


def looks_like_id(value: str) -> bool:
    """Cheap shape check used to short-circuit lookups of foreign IDs."""
    return isinstance(value, str) and value.startswith(ID_PREFIX)


def id_timestamp_ms(attestation_id: str) -> int:
    """Recover the millisecond timestamp embedded in an identifier."""
    if not looks_like_id(attestation_id):
        raise ValueError("not an attestation identifier")
    body = attestation_id[len(ID_PREFIX):len(ID_PREFIX) + _TIME_LEN]
    if len(body) != _TIME_LEN:
        raise ValueError("identifier too short")
    ms = 0
    for ch in body:
        idx = _ENCODING.find(ch)
        if idx < 0:
            raise ValueError("identifier contains non base-32 characters")
        ms = ms * 32 + idx
    return ms
