# eea/ratelimit.py
"""
Fixed-window per-tenant rate limiting over the key-value substrate.

Each (key_id, minute) pair owns one counter at ``ratelimit:<key_id>:<window>``
with a TTL covering the current and previous window. The counter is read,
compared, then written back as a separate step. Concurrent requests from one
tenant can therefore overshoot the limit briefly; the limit is a target, not
a hard cap.
"""
from __future__ import annotations

import math
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from .storage import KeyValueStore

KEY_PREFIX_RATELIMIT = "ratelimit:"


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    current: int
    limit: int
    reset_at: int
    retry_after: int

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.current)

    def headers(self) -> Dict[str, str]:
        h = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_at),
        }
        if not self.allowed:
            h["Retry-After"] = str(self.retry_after)
        return h


class FixedWindowRateLimiter:
    def __init__(
        self,
        kv: KeyValueStore,
        *,
        window_seconds: int = 60,
        ttl_seconds: int = 120,
        clock: Optional[Callable[[], float]] = None,
    ):
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self._kv = kv
        self._window = int(window_seconds)
        self._ttl = int(ttl_seconds)
        self._clock = clock or time.time

    def _read(self, key: str) -> int:
        raw = self._kv.get(key)
        if raw is None:
            return 0
        try:
            return max(0, int(raw))
        except ValueError:
            return 0

    def check_and_increment(self, key_id: str, limit: int) -> RateLimitDecision:
        now = self._clock()
        window = int(now // self._window)
        reset_at = (window + 1) * self._window
        retry_after = max(1, int(math.ceil(reset_at - now)))
        key = f"{KEY_PREFIX_RATELIMIT}{key_id}:{window}"

        current = self._read(key)
        if current >= limit:
            return RateLimitDecision(
                allowed=False,
                current=current,
                limit=limit,
                reset_at=reset_at,
                retry_after=retry_after,
            )

        current += 1
        self._kv.put(key, str(current), ttl_seconds=self._ttl)
        return RateLimitDecision(
            allowed=True,
            current=current,
            limit=limit,
            reset_at=reset_at,
            retry_after=retry_after,
        )
