from __future__ import annotations

import os
import threading
import time
from dataclasses import dataclass
from typing import Callable

DEFAULT_UPLOAD_LIMIT = 10
DEFAULT_WINDOW_SECONDS = 60 * 60
DEFAULT_SWEEP_INTERVAL_SECONDS = 5 * 60


@dataclass
class RateLimitDecision:
    allowed: bool
    remaining: int
    reset_at: float


@dataclass
class _WindowEntry:
    count: int
    reset_at: float


class UploadRateLimiter:
    """Fixed-window upload counter keyed by caller.

    Shared across request threads, so every access to the window map holds
    the lock. Expired windows are dropped by ``check`` at most once per
    sweep interval.
    """

    def __init__(
        self,
        *,
        limit: int = DEFAULT_UPLOAD_LIMIT,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
        sweep_interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if limit <= 0:
            raise ValueError("limit must be greater than zero.")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be greater than zero.")
        if sweep_interval_seconds <= 0:
            raise ValueError("sweep_interval_seconds must be greater than zero.")
        self.limit = limit
        self.window_seconds = window_seconds
        self.sweep_interval_seconds = sweep_interval_seconds
        self._clock = clock
        self._entries: dict[str, _WindowEntry] = {}
        self._lock = threading.Lock()
        self._next_sweep_at = clock() + sweep_interval_seconds

    @classmethod
    def from_env(cls) -> "UploadRateLimiter":
        return cls(
            limit=_parse_positive_int(os.getenv("SCORESHOT_UPLOAD_RATE_LIMIT"), fallback=DEFAULT_UPLOAD_LIMIT),
            window_seconds=_parse_positive_int(
                os.getenv("SCORESHOT_UPLOAD_RATE_WINDOW_SECONDS"),
                fallback=DEFAULT_WINDOW_SECONDS,
            ),
        )

    def check(self, key: str) -> RateLimitDecision:
        now = self._clock()
        with self._lock:
            if now >= self._next_sweep_at:
                self._drop_expired(now)
                self._next_sweep_at = now + self.sweep_interval_seconds

            entry = self._entries.get(key)
            if entry is None or now > entry.reset_at:
                entry = _WindowEntry(count=1, reset_at=now + self.window_seconds)
                self._entries[key] = entry
                return RateLimitDecision(allowed=True, remaining=self.limit - 1, reset_at=entry.reset_at)

            if entry.count >= self.limit:
                return RateLimitDecision(allowed=False, remaining=0, reset_at=entry.reset_at)

            entry.count += 1
            return RateLimitDecision(
                allowed=True,
                remaining=self.limit - entry.count,
                reset_at=entry.reset_at,
            )

    def sweep(self) -> int:
        now = self._clock()
        with self._lock:
            return self._drop_expired(now)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _drop_expired(self, now: float) -> int:
        # Caller holds the lock.
        expired = [key for key, entry in self._entries.items() if now > entry.reset_at]
        for key in expired:
            del self._entries[key]
        return len(expired)


def _parse_positive_int(raw_value: str | None, *, fallback: int) -> int:
    if raw_value is None:
        return fallback
    try:
        parsed = int(raw_value)
    except ValueError:
        return fallback
    if parsed <= 0:
        return fallback
    return parsed
