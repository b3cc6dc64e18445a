# eea/signing.py
"""
Tamper-evident attestation signatures.

    sig_payload = "<schema_version>|<attestation_id>|<event_hash>|<attested_at>"
    signature   = "hmacsha256:" + hex(HMAC-SHA256(secret, utf8(sig_payload)))

The signature binds the (id, hash, time) triple to the holder of the
secret. It says nothing about whether the attested event is true.
"""
from __future__ import annotations

import hashlib
import hmac

from .config import SCHEMA_VERSION

SIG_PREFIX = "hmacsha256:"
_DELIM = "|"


def _b(s: str) -> bytes:
    return s.encode("utf-8")


def signature_payload(
    attestation_id: str,
    event_hash: str,
    attested_at: str,
    *,
    schema_version: str = SCHEMA_VERSION,
) -> str:
    return _DELIM.join((schema_version, attestation_id, event_hash, attested_at))


def sign(
    secret: str,
    attestation_id: str,
    event_hash: str,
    attested_at: str,
    *,
    schema_version: str = SCHEMA_VERSION,
) -> str:
    if not secret:
        raise ValueError("signing secret must not be empty")
    payload = signature_payload(
        attestation_id, event_hash, attested_at, schema_version=schema_version
    )
    mac = hmac.new(_b(secret), _b(payload), hashlib.sha256).hexdigest()
    return f"{SIG_PREFIX}{mac}"


def verify(
    secret: str,
    attestation_id: str,
    event_hash: str,
    attested_at: str,
    signature: str,
    *,
    schema_version: str = SCHEMA_VERSION,
) -> bool:
    """
    Recompute and compare in constant time.

    A missing or non-string signature is simply a mismatch.
    """
    if not isinstance(signature, str) or not secret:
        return False
    expected = sign(
        secret, attestation_id, event_hash, attested_at, schema_version=schema_version
    )
    return hmac.compare_digest(_b(expected), _b(signature))
