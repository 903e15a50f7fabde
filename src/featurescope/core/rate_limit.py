"""
Simple in-process rate limiting utilities.

One limiter is shared by every source task of a resolver, so outbound traffic stays
under a global requests-per-minute budget even when many sources run in parallel.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field

from featurescope.core.errors import DeadlineExceededError


@dataclass
class TokenBucketRateLimiter:
    """Thread-safe token bucket limiter for N events per minute (best-effort)."""

    max_per_minute: float
    burst: float | None = None
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def __post_init__(self) -> None:
        rpm = float(self.max_per_minute)
        if rpm <= 0:
            raise ValueError("max_per_minute must be > 0")
        self._capacity = float(self.burst) if self.burst is not None else float(rpm)
        self._tokens = self._capacity
        self._refill_per_sec = rpm / 60.0
        self._last = time.monotonic()

    def _refill(self) -> None:
        now = time.monotonic()
        elapsed = now - self._last
        if elapsed <= 0:
            return
        self._tokens = min(self._capacity, self._tokens + elapsed * self._refill_per_sec)
        self._last = now

    def try_acquire(self, tokens: float = 1.0) -> float:
        """Take `tokens` if available; return 0.0 on success, otherwise the seconds to wait."""
        need = float(tokens)
        if need <= 0:
            return 0.0
        with self._lock:
            self._refill()
            if self._tokens >= need:
                self._tokens -= need
                return 0.0
            missing = need - self._tokens
            return max(0.05, missing / max(1e-6, self._refill_per_sec))

    def acquire(self, tokens: float = 1.0, *, deadline: float | None = None) -> None:
        """Block until `tokens` are available; raise if the wait would run past the monotonic `deadline`."""
        # Sleep outside the lock so other workers can keep refilling/consuming.
        while True:
            wait_s = self.try_acquire(tokens)
            if wait_s <= 0:
                return
            if deadline is not None and time.monotonic() + wait_s > deadline:
                raise DeadlineExceededError(f"rate limit wait of {wait_s:.2f}s would pass the deadline")
            time.sleep(min(1.0, wait_s))
