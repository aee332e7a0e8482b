"""
Token Bucket: Rate Accounting Primitive
==========================================

Bounds admitted operations to a steady rate with a bounded burst.

Algorithm:
  - Bucket starts full (``capacity`` tokens)
  - Tokens regenerate continuously at ``refill_rate`` per second
  - Each admitted operation consumes exactly one token
  - No I/O; the caller decides how to wait when a token is unavailable

All state updates happen inside one synchronous method call, so on a single
event loop no await can interleave with a refill-and-consume step.
"""

from __future__ import annotations

import time
from collections.abc import Callable

class TokenBucket:
    """
    Continuous-refill token bucket.

    Usage:
        bucket = TokenBucket(capacity=20, refill_rate=10.0)
        if not bucket.try_consume():
            await asyncio.sleep(bucket.time_until_next_token())
    """

    __slots__ = ("_capacity", "_clock", "_last_refill", "_refill_rate", "_tokens")

    def __init__(
        self,
        capacity: int,
        refill_rate: float,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        if refill_rate <= 0:
            raise ValueError(f"refill_rate must be > 0, got {refill_rate}")
        self._capacity = float(capacity)
        self._refill_rate = float(refill_rate)
        self._clock = clock
        self._tokens = float(capacity)
        self._last_refill = clock()

    @property
    def capacity(self) -> float:
        return self._capacity

    @property
    def refill_rate(self) -> float:
        return self._refill_rate

    @property
    def tokens(self) -> float:
        """Token count as of the last refill (no implicit refill)."""
        return self._tokens

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._last_refill)
        self._tokens = min(self._capacity, self._tokens + elapsed * self._refill_rate)
        self._last_refill = now

    def try_consume(self) -> bool:
        """Refill, then take one token if available. Returns True when admitted."""
        self._refill()
        if self._tokens >= 1:
            self._tokens -= 1
            return True
        return False

    def time_until_next_token(self) -> float:
        """Seconds until one whole token is available (0 if one is already)."""
        if self._tokens >= 1:
            return 0.0
        return (1 - self._tokens) / self._refill_rate

    def get_stats(self) -> dict[str, float]:
        return {
            "tokens": round(self._tokens, 3),
            "capacity": self._capacity,
            "refill_rate": self._refill_rate,
        }
