# eea/schemas.py
from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


# =============================================================================
# Shared / nested models
# =============================================================================


class AttestationView(BaseModel):
    """Full stored attestation as returned by the fetch endpoint."""

    attestation_id: str = Field(..., description="Time-sortable id, 'eea_' prefixed")
    schema_version: str = Field(..., description="Record schema tag, e.g. 'eea.v1'")
    attested_at: str = Field(..., description="Server-assigned RFC3339 instant (ms, UTC)")
    event_hash: str = Field(..., description="'sha256:<hex>' of the canonical event bytes")
    attestation_sig: str = Field(
        ...,
        description="'hmacsha256:<hex>' over schema_version|id|hash|attested_at",
    )
    canonical_event: Dict[str, Any] = Field(
        ..., description="Key-sorted, null-free event the hash covers"
    )

    class Config:
        extra = "ignore"
        frozen = True


class ErrorDetail(BaseModel):
    code: str
    message: str
    request_id: str


# =============================================================================
# Endpoint payloads
# =============================================================================


class HealthOut(BaseModel):
    ok: bool = True
    service: str
    version: str
    timestamp: str


class AttestOut(BaseModel):
    """
    Create response. ``idempotent`` is only present (and true) when the
    event had already been attested.
    """

    ok: bool = True
    attestation_id: str
    event_hash: str
    attestation_sig: str
    schema_version: str
    attested_at: str
    idempotent: Optional[bool] = None

    class Config:
        extra = "forbid"
        frozen = True


class FetchOut(BaseModel):
    ok: bool = True
    record: AttestationView


class ErrorOut(BaseModel):
    ok: bool = False
    error: ErrorDetail


__all__ = [
    "AttestationView",
    "ErrorDetail",
    "HealthOut",
    "AttestOut",
    "FetchOut",
    "ErrorOut",
]
