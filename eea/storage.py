# eea/storage.py
"""
Storage for attestations on top of a minimal key-value substrate.

  - KeyValueStore:
      get / put-with-ttl / delete, nothing more. There is deliberately no
      increment or compare-and-set primitive, so every multi-step update
      built on it is a read-then-write.

  - AttestationStore:
      Two logical maps sharing one retention TTL:
        attestation:<attestation_id> -> record JSON
        hash:<event_hash>            -> attestation_id

Consistency model:

  - ``AttestationStore.put`` writes the record first, then the hash index.
    The two writes are not atomic. A failure between them leaves a record
    that no hash points to, and a retried identical submission mints a
    second record with a new id. The retry still carries the same
    event_hash, so clients can reconcile on that value.

  - Concurrent identical submissions can both miss the hash lookup and both
    mint. The substrate offers no cross-key transaction to prevent this.
"""
from __future__ import annotations

import json
import sqlite3
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, Optional, Tuple

Clock = Callable[[], float]

KEY_PREFIX_ATTESTATION = "attestation:"
KEY_PREFIX_HASH = "hash:"


# ------------------------------
# Key-value substrate
# ------------------------------


class KeyValueStore(ABC):
    """String-to-string store with optional per-key expiry."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Return the live value for key, or None if absent or expired."""

    @abstractmethod
    def put(self, key: str, value: str, *, ttl_seconds: Optional[int] = None) -> None:
        """Set key to value; ttl_seconds=None means no expiry."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove key if present."""


class InMemoryKeyValueStore(KeyValueStore):
    """
    Process-local store for tests and local development.

    Expiry is evaluated lazily against ``clock`` on read, so tests can move
    time forward without sleeping.
    """

    def __init__(self, *, clock: Optional[Clock] = None):
        self._clock: Clock = clock or time.time
        self._data: Dict[str, Tuple[str, Optional[float]]] = {}
        self._g = threading.RLock()

    def get(self, key: str) -> Optional[str]:
        with self._g:
            item = self._data.get(key)
            if item is None:
                return None
            value, expires_at = item
            if expires_at is not None and self._clock() >= expires_at:
                self._data.pop(key, None)
                return None
            return value

    def put(self, key: str, value: str, *, ttl_seconds: Optional[int] = None) -> None:
        expires_at = None
        if ttl_seconds is not None:
            expires_at = self._clock() + max(0, int(ttl_seconds))
        with self._g:
            self._data[key] = (str(value), expires_at)

    def delete(self, key: str) -> None:
        with self._g:
            self._data.pop(key, None)


_SQL_SCHEMA = """
CREATE TABLE IF NOT EXISTS kv (
    key        TEXT PRIMARY KEY,
    value      TEXT NOT NULL,
    expires_at REAL
);
CREATE INDEX IF NOT EXISTS idx_kv_expires ON kv(expires_at);
"""


class _SQLite:
    """
    Small wrapper around sqlite3 to centralize connection & transactions.

    Single shared connection with check_same_thread=False, guarded by a
    re-entrant lock; IMMEDIATE transactions for writes.
    """

    def __init__(self, path: str):
        self._path = path
        self._g = threading.RLock()
        self._conn = sqlite3.connect(
            self._path,
            check_same_thread=False,
            isolation_level=None,
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA busy_timeout=30000;")
        self._conn.executescript(_SQL_SCHEMA)

    def tx(self):
        """
        Context manager for IMMEDIATE transactions.

        Usage:
            with db.tx() as conn:
                conn.execute(...)
        """
        outer = self

        class _Tx:
            def __enter__(self):
                outer._g.acquire()
                outer._conn.execute("BEGIN IMMEDIATE;")
                return outer._conn

            def __exit__(self, exc_type, exc, tb):
                try:
                    if exc_type is None:
                        outer._conn.execute("COMMIT;")
                    else:
                        outer._conn.execute("ROLLBACK;")
                finally:
                    outer._g.release()

        return _Tx()

    def query_one(self, sql: str, params: Tuple[Any, ...]) -> Optional[sqlite3.Row]:
        with self._g:
            return self._conn.execute(sql, params).fetchone()

    def close(self) -> None:
        with self._g:
            self._conn.close()


class SQLiteKeyValueStore(KeyValueStore):
    """
    SQLite-backed substrate.

    Expired rows are invisible to get() and are removed lazily when read,
    plus in bulk by purge_expired().
    """

    def __init__(self, path: str = "eea.db", *, clock: Optional[Clock] = None):
        self._db = _SQLite(path)
        self._clock: Clock = clock or time.time

    def get(self, key: str) -> Optional[str]:
        row = self._db.query_one(
            "SELECT value, expires_at FROM kv WHERE key = ?", (key,)
        )
        if row is None:
            return None
        expires_at = row["expires_at"]
        if expires_at is not None and self._clock() >= float(expires_at):
            with self._db.tx() as conn:
                conn.execute(
                    "DELETE FROM kv WHERE key = ? AND expires_at = ?", (key, expires_at)
                )
            return None
        return row["value"]

    def put(self, key: str, value: str, *, ttl_seconds: Optional[int] = None) -> None:
        expires_at = None
        if ttl_seconds is not None:
            expires_at = self._clock() + max(0, int(ttl_seconds))
        with self._db.tx() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO kv (key, value, expires_at) VALUES (?, ?, ?)",
                (key, str(value), expires_at),
            )

    def delete(self, key: str) -> None:
        with self._db.tx() as conn:
            conn.execute("DELETE FROM kv WHERE key = ?", (key,))

    def purge_expired(self) -> int:
        with self._db.tx() as conn:
            cur = conn.execute(
                "DELETE FROM kv WHERE expires_at IS NOT NULL AND expires_at <= ?",
                (self._clock(),),
            )
            return int(cur.rowcount or 0)

    def close(self) -> None:
        self._db.close()


def make_kv(dsn: Optional[str], *, clock: Optional[Clock] = None) -> KeyValueStore:
    """
    Factory for KeyValueStore backends.

    Accepted DSNs:
      - None or "mem://"            -> InMemoryKeyValueStore
      - "sqlite:///path/to/eea.db"  -> SQLiteKeyValueStore(path="path/to/eea.db")
      - "sqlite:///:memory:"        -> SQLiteKeyValueStore(path=":memory:")

    The in-memory backend is process-local and suitable for tests and local
    development only.
    """
    if not dsn or dsn.strip().lower().startswith("mem://"):
        return InMemoryKeyValueStore(clock=clock)
    dsn = dsn.strip()
    if dsn.lower().startswith("sqlite:///"):
        path = dsn[len("sqlite:///"):]
        if not path:
            raise ValueError("sqlite dsn needs a path")
        return SQLiteKeyValueStore(path=path, clock=clock)
    raise ValueError(f"Unsupported kv dsn: {dsn}")


# ------------------------------
# Attestation records
# ------------------------------


@dataclass(frozen=True)
class AttestationRecord:
    """
    Immutable attestation as persisted.

    Fields:
      - attestation_id: opaque, time-sortable id (``eea_...``).
      - schema_version: record schema tag fixed per deployment.
      - attested_at: server-assigned creation instant (RFC3339, ms, UTC).
      - event_hash: ``sha256:<hex>`` of the canonical event bytes.
      - attestation_sig: ``hmacsha256:<hex>`` over version/id/hash/time.
      - canonical_event: normalized event the hash was computed over.
    """

    attestation_id: str
    schema_version: str
    attested_at: str
    event_hash: str
    attestation_sig: str
    canonical_event: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"), ensure_ascii=False)

    @classmethod
    def from_json(cls, raw: str) -> "AttestationRecord":
        data = json.loads(raw)
        return cls(
            attestation_id=data["attestation_id"],
            schema_version=data["schema_version"],
            attested_at=data["attested_at"],
            event_hash=data["event_hash"],
            attestation_sig=data.get("attestation_sig", ""),
            canonical_event=data["canonical_event"],
        )


class AttestationStore:
    """Record and hash-index maps over a KeyValueStore, both TTL-bound."""

    def __init__(self, kv: KeyValueStore, *, retention_seconds: int):
        if retention_seconds <= 0:
            raise ValueError("retention_seconds must be positive")
        self._kv = kv
        self._ttl = int(retention_seconds)

    @property
    def retention_seconds(self) -> int:
        return self._ttl

    def put(self, record: AttestationRecord) -> None:
        # Record first, index second; see the module docstring for the
        # failure window between the two writes.
        self._kv.put(
            f"{KEY_PREFIX_ATTESTATION}{record.attestation_id}",
            record.to_json(),
            ttl_seconds=self._ttl,
        )
        self._kv.put(
            f"{KEY_PREFIX_HASH}{record.event_hash}",
            record.attestation_id,
            ttl_seconds=self._ttl,
        )

    def get_by_id(self, attestation_id: str) -> Optional[AttestationRecord]:
        raw = self._kv.get(f"{KEY_PREFIX_ATTESTATION}{attestation_id}")
        if raw is None:
            return None
        return AttestationRecord.from_json(raw)

    def get_id_by_hash(self, event_hash: str) -> Optional[str]:
        return self._kv.get(f"{KEY_PREFIX_HASH}{event_hash}")
