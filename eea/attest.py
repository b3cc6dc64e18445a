# eea/attest.py
"""
Request orchestration for attestation create and fetch.

Create walks a fixed sequence and the first failure terminates the request:

    received -> authenticated -> rate_checked -> size_checked -> parsed
             -> validated -> canonicalized -> hashed
             -> (idempotent_hit | minted)

An idempotent hit returns the stored record unchanged (same id, same
attested_at). A mint assigns id and time, signs, then persists. There is no
retry inside a request; identical resubmission is safe because the record is
addressed by the hash of its canonical event.

Fetch authenticates and performs a single read. Expired and never-existing
ids are both reported as not found.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

from .auth import KeyRegistry
from .canonical import canonicalize
from .config import Settings
from .errors import EEAError, InternalError, NotFound, PayloadTooLarge, RateLimited
from .hashing import event_hash
from .ids import looks_like_id, new_id
from .ratelimit import FixedWindowRateLimiter
from .signing import sign
from .storage import AttestationRecord, AttestationStore, KeyValueStore
from .validation import format_rfc3339_ms, parse_event_body, validate_event

_log = logging.getLogger(__name__)


@dataclass
class RequestTrace:
    """
    Mutable per-request facts collected while the request moves through the
    pipeline. The HTTP layer reads it for the access log and response
    headers, including on failure.
    """

    request_id: str
    key_id: Optional[str] = None
    event_hash: Optional[str] = None
    error_code: Optional[str] = None
    rate_headers: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class AttestOutcome:
    record: AttestationRecord
    idempotent: bool


class Attestor:
    def __init__(
        self,
        settings: Settings,
        kv: KeyValueStore,
        *,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.settings = settings
        self._clock = clock or time.time
        self.registry = KeyRegistry(
            kv,
            default_rate_limit=settings.default_rate_limit_per_min,
            clock=self._clock,
        )
        self.limiter = FixedWindowRateLimiter(kv, clock=self._clock)
        self.store = AttestationStore(kv, retention_seconds=settings.retention_seconds)

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def attest(
        self,
        api_key: Optional[str],
        body: bytes,
        trace: RequestTrace,
        *,
        content_length: Optional[int] = None,
    ) -> AttestOutcome:
        try:
            return self._attest(api_key, body, trace, content_length)
        except EEAError as e:
            trace.error_code = e.code
            raise
        except Exception as exc:
            _log.exception("attest failed request_id=%s", trace.request_id)
            trace.error_code = InternalError.code
            raise InternalError() from exc

    def _attest(
        self,
        api_key: Optional[str],
        body: bytes,
        trace: RequestTrace,
        content_length: Optional[int],
    ) -> AttestOutcome:
        entry = self.registry.authenticate(api_key)
        trace.key_id = entry.key_id

        decision = self.limiter.check_and_increment(
            entry.key_id, self.registry.rate_limit_for(entry)
        )
        trace.rate_headers = decision.headers()
        if not decision.allowed:
            raise RateLimited(headers=decision.headers())

        max_body = self.settings.max_body_bytes
        if (content_length is not None and content_length > max_body) or len(body) > max_body:
            raise PayloadTooLarge()

        event = parse_event_body(body)
        validate_event(event, max_payload_bytes=self.settings.max_payload_bytes)

        canonical = canonicalize(event)
        digest = event_hash(canonical)
        trace.event_hash = digest

        existing_id = self.store.get_id_by_hash(digest)
        if existing_id is not None:
            existing = self.store.get_by_id(existing_id)
            if existing is not None:
                return AttestOutcome(record=existing, idempotent=True)
            # Index outlived its record; fall through and mint a fresh one.
            _log.warning(
                "hash index points at missing record request_id=%s", trace.request_id
            )

        return AttestOutcome(record=self._mint(canonical, digest), idempotent=False)

    def _mint(self, canonical: dict, digest: str) -> AttestationRecord:
        now = self._clock()
        attestation_id = new_id(int(now * 1000))
        attested_at = format_rfc3339_ms(now)
        schema_version = self.settings.schema_version
        record = AttestationRecord(
            attestation_id=attestation_id,
            schema_version=schema_version,
            attested_at=attested_at,
            event_hash=digest,
            attestation_sig=sign(
                self.settings.signing_secret(),
                attestation_id,
                digest,
                attested_at,
                schema_version=schema_version,
            ),
            canonical_event=canonical,
        )
        self.store.put(record)
        return record

    # ------------------------------------------------------------------
    # Fetch
    # ------------------------------------------------------------------

    def fetch(
        self,
        api_key: Optional[str],
        attestation_id: str,
        trace: RequestTrace,
    ) -> AttestationRecord:
        try:
            entry = self.registry.authenticate(api_key)
            trace.key_id = entry.key_id
            if not looks_like_id(attestation_id):
                raise NotFound()
            record = self.store.get_by_id(attestation_id)
            if record is None:
                raise NotFound()
            trace.event_hash = record.event_hash
            return record
        except EEAError as e:
            trace.error_code = e.code
            raise
        except Exception as exc:
            _log.exception("fetch failed request_id=%s", trace.request_id)
            trace.error_code = InternalError.code
            raise InternalError() from exc
