# eea/errors.py
from __future__ import annotations

from typing import Any, Dict, Optional


class EEAError(Exception):
    """
    Base for every failure that ends a request with a structured error.

    Subclasses pin the wire ``code`` and HTTP status. ``headers`` lets a
    failure carry protocol hints (for example ``Retry-After``).
    """

    code: str = "INTERNAL_ERROR"
    http_status: int = 500
    default_message: str = "Internal server error"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        self.message = message or self.default_message
        self.headers: Dict[str, str] = dict(headers or {})
        super().__init__(self.message)

    def to_body(self, request_id: str) -> Dict[str, Any]:
        return {
            "ok": False,
            "error": {
                "code": self.code,
                "message": self.message,
                "request_id": request_id,
            },
        }


class Unauthorized(EEAError):
    code = "UNAUTHORIZED"
    http_status = 401
    default_message = "Invalid API key"


class InvalidJSON(EEAError):
    code = "INVALID_JSON"
    http_status = 400
    default_message = "Request body must be valid JSON"


class MissingRequiredField(EEAError):
    code = "MISSING_REQUIRED_FIELD"
    http_status = 400
    default_message = "Missing required field"


class SchemaValidationFailed(EEAError):
    code = "SCHEMA_VALIDATION_FAILED"
    http_status = 400
    default_message = "Event failed schema validation"


class InvalidTimestamp(EEAError):
    code = "INVALID_TIMESTAMP"
    http_status = 400
    default_message = (
        "occurred_at must be a valid ISO-8601 timestamp (e.g., 2024-01-15T10:30:00Z)"
    )


class PayloadTooLarge(EEAError):
    code = "PAYLOAD_TOO_LARGE"
    http_status = 413
    default_message = "Request body too large"


class RateLimited(EEAError):
    code = "RATE_LIMITED"
    http_status = 429
    default_message = "Rate limit exceeded"


class NotFound(EEAError):
    code = "NOT_FOUND"
    http_status = 404
    default_message = "Attestation not found"


class InternalError(EEAError):
    code = "INTERNAL_ERROR"
    http_status = 500
    default_message = "Internal server error"


ERROR_CODES = tuple(
    cls.code
    for cls in (
        Unauthorized,
        InvalidJSON,
        MissingRequiredField,
        SchemaValidationFailed,
        InvalidTimestamp,
        PayloadTooLarge,
        RateLimited,
        NotFound,
        InternalError,
    )
)
