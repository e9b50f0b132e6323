"""Async token-bucket rate limiter for outbound sends."""

from __future__ import annotations

import asyncio
import time


class SendRateLimiter:
    """Token bucket capping outbound sends per second.

    Waiters queue on a lock, so tokens are handed out in arrival order
    across all concurrent deliveries.
    """

    def __init__(self, per_sec: float = 20, burst: float | None = None) -> None:
        if per_sec <= 0:
            raise ValueError("per_sec must be positive")
        self._rate = float(per_sec)
        self._capacity = float(burst or per_sec)
        self._tokens = self._capacity
        self._stamp = time.monotonic()
        self._lock = asyncio.Lock()

    @property
    def available(self) -> float:
        self._refill()
        return self._tokens

    def _refill(self) -> None:
        now = time.monotonic()
        self._tokens = min(self._capacity, self._tokens + (now - self._stamp) * self._rate)
        self._stamp = now

    async def acquire(self) -> None:
        """Wait for a token, then consume it."""
        async with self._lock:
            self._refill()
            while self._tokens < 1.0:
                await asyncio.sleep((1.0 - self._tokens) / self._rate)
                self._refill()
            self._tokens -= 1.0
