# eea/auth.py
from __future__ import annotations

import hashlib
import json
import logging
import secrets
import time
from dataclasses import asdict, dataclass, replace
from typing import Callable, Dict, Optional

from .errors import Unauthorized
from .storage import KeyValueStore
from .validation import format_rfc3339_ms

_log = logging.getLogger(__name__)

KEY_PREFIX_APIKEY = "apikeyhash:"

STATUS_ACTIVE = "active"
STATUS_DISABLED = "disabled"

PLAN_RATE_LIMITS: Dict[str, int] = {
    "free": 20,
    "standard": 60,
    "enterprise": 300,
}

MISSING_KEY_MESSAGE = "Missing x-api-key header"


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ApiKeyEntry:
    """
    Tenant identity as stored in the registry.

    Fields:
      - key_id            : stable tenant identifier, used for rate buckets
      - status            : "active" | "disabled"
      - plan              : "free" | "standard" | "enterprise" (free-form
                            values are kept as-is)
      - rate_limit_per_min: 0 means "use the deployment default"
      - created_at        : RFC3339 string set by the provisioning tool
      - description       : optional operator note
    """

    key_id: str
    status: str = STATUS_ACTIVE
    plan: str = "standard"
    rate_limit_per_min: int = 0
    created_at: str = ""
    description: Optional[str] = None

    @property
    def active(self) -> bool:
        return self.status == STATUS_ACTIVE

    def to_json(self) -> str:
        return json.dumps(asdict(self), separators=(",", ":"), ensure_ascii=False)

    @classmethod
    def from_json(cls, raw: str) -> "ApiKeyEntry":
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise ValueError("api key entry must be a JSON object")
        try:
            limit = int(data.get("rate_limit_per_min") or 0)
        except (TypeError, ValueError):
            limit = 0
        return cls(
            key_id=str(data["key_id"]),
            status=str(data.get("status", STATUS_ACTIVE)),
            plan=str(data.get("plan", "standard")),
            rate_limit_per_min=limit,
            created_at=str(data.get("created_at", "")),
            description=data.get("description"),
        )


# ---------------------------------------------------------------------------
# Key material
# ---------------------------------------------------------------------------


def hash_api_key(raw_key: str) -> str:
    """One-way hash used as the registry lookup key (``sha256:<hex>``)."""
    return "sha256:" + hashlib.sha256(raw_key.encode("utf-8")).hexdigest()


def generate_api_key() -> str:
    return secrets.token_hex(32)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class KeyRegistry:
    """
    API key lookup over the shared key-value substrate.

    The core only reads entries. ``create``/``disable`` exist for the
    operator CLI and for tests.
    """

    def __init__(
        self,
        kv: KeyValueStore,
        *,
        default_rate_limit: int = 60,
        clock: Optional[Callable[[], float]] = None,
    ):
        self._kv = kv
        self._default_limit = int(default_rate_limit)
        self._clock = clock or time.time

    @staticmethod
    def _kv_key(key_hash: str) -> str:
        return f"{KEY_PREFIX_APIKEY}{key_hash}"

    def lookup(self, key_hash: str) -> Optional[ApiKeyEntry]:
        raw = self._kv.get(self._kv_key(key_hash))
        if raw is None:
            return None
        try:
            return ApiKeyEntry.from_json(raw)
        except (ValueError, KeyError, TypeError):
            _log.warning("unreadable api key entry for %s", key_hash[:19])
            return None

    def authenticate(self, raw_key: Optional[str]) -> ApiKeyEntry:
        """
        Resolve a caller-supplied key to its active entry.

        Unknown and disabled keys raise the same Unauthorized error.
        """
        if not raw_key:
            raise Unauthorized(MISSING_KEY_MESSAGE)
        entry = self.lookup(hash_api_key(raw_key))
        if entry is None or not entry.active:
            raise Unauthorized()
        return entry

    def rate_limit_for(self, entry: ApiKeyEntry) -> int:
        if entry.rate_limit_per_min and entry.rate_limit_per_min > 0:
            return entry.rate_limit_per_min
        return self._default_limit

    def store_entry(self, key_hash: str, entry: ApiKeyEntry) -> None:
        self._kv.put(self._kv_key(key_hash), entry.to_json())

    def create(
        self,
        key_id: str,
        plan: str = "standard",
        *,
        description: Optional[str] = None,
        rate_limit_per_min: Optional[int] = None,
    ) -> tuple[str, str, ApiKeyEntry]:
        """
        Provision a new key. Returns (raw_key, key_hash, entry); the raw key
        is not recoverable afterwards.
        """
        if not key_id:
            raise ValueError("key_id must not be empty")
        if rate_limit_per_min is None:
            rate_limit_per_min = PLAN_RATE_LIMITS.get(plan, self._default_limit)
        if rate_limit_per_min < 0:
            raise ValueError("rate_limit_per_min must not be negative")
        raw_key = generate_api_key()
        key_hash = hash_api_key(raw_key)
        entry = ApiKeyEntry(
            key_id=key_id,
            status=STATUS_ACTIVE,
            plan=plan,
            rate_limit_per_min=int(rate_limit_per_min),
            created_at=format_rfc3339_ms(self._clock()),
            description=description,
        )
        self.store_entry(key_hash, entry)
        _log.info("api key created key_id=%s plan=%s", key_id, plan)
        return raw_key, key_hash, entry

    def disable(self, key_hash: str) -> Optional[ApiKeyEntry]:
        """Mark an entry disabled; returns None when no entry exists."""
        entry = self.lookup(key_hash)
        if entry is None:
            return None
        disabled = replace(entry, status=STATUS_DISABLED)
        self.store_entry(key_hash, disabled)
        _log.info("api key disabled key_id=%s", entry.key_id)
        return disabled
