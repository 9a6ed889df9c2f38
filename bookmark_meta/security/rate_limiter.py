# bookmark_meta/security/rate_limiter.py
"""
In-memory token-bucket rate limiter.

Buckets refill lazily on access; there is no timer per key. A single sweeper
task evicts buckets that have not refilled for ``stale_after_ms`` so the
mapping stays bounded by the number of recently active identities.
"""
from __future__ import annotations

import asyncio
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Sequence, Tuple

from bookmark_meta.logger import get_logger

__all__ = ("RateLimitEntry", "RateLimiter", "monotonic_ms")

log = get_logger("rate_limiter")

Clock = Callable[[], float]

USER_LIMIT = 30
IP_LIMIT = 60
WINDOW_MS = 60_000
SWEEP_INTERVAL_S = 5 * 60
STALE_AFTER_MS = 60 * 60 * 1000


def monotonic_ms() -> float:
    return time.monotonic() * 1000.0


@dataclass(slots=True)
class RateLimitEntry:
    tokens: float
    last_refill: float


class RateLimiter:
    """Token bucket per identity key (``user:<id>``, ``ip:<address>``)."""

    def __init__(
        self,
        clock: Optional[Clock] = None,
        *,
        stale_after_ms: float = STALE_AFTER_MS,
        user_limit: int = USER_LIMIT,
        ip_limit: int = IP_LIMIT,
        window_ms: int = WINDOW_MS,
    ) -> None:
        self.clock: Clock = clock or monotonic_ms
        self.stale_after_ms = stale_after_ms
        self.user_limit = user_limit
        self.ip_limit = ip_limit
        self.window_ms = window_ms
        self._store: Dict[str, RateLimitEntry] = {}
        self._lock = threading.Lock()
        self._sweeper: Optional[asyncio.Task[None]] = None

    def admit(self, identity: str, limit: int, window_ms: int) -> bool:
        """Consume one token for *identity*; False when the bucket is empty."""
        return self.admit_all([(identity, limit, window_ms)]) is None

    def admit_all(self, buckets: Sequence[Tuple[str, int, int]]) -> Optional[str]:
        """
        Consume one token from every ``(identity, limit, window_ms)`` bucket, or
        from none of them. Returns the first identity whose bucket is empty, or
        None when the request is admitted.
        """
        for _, limit, window_ms in buckets:
            if limit < 1 or window_ms <= 0:
                raise ValueError("limit must be >= 1 and window_ms > 0")
        with self._lock:
            now = self.clock()
            pending = []
            for identity, limit, window_ms in buckets:
                entry = self._store.get(identity)
                if entry is None:
                    pending.append((identity, None, limit, 0))
                    continue
                elapsed = max(0.0, now - entry.last_refill)
                added = math.floor(elapsed * limit / window_ms)
                tokens = min(limit, entry.tokens + added)
                if tokens < 1:
                    return identity
                pending.append((identity, entry, tokens, added))

            for identity, entry, tokens, added in pending:
                if entry is None:
                    self._store[identity] = RateLimitEntry(tokens=tokens - 1, last_refill=now)
                    continue
                entry.tokens = tokens - 1
                # keep the old timestamp so fractional refill is not lost between calls
                if added > 0:
                    entry.last_refill = now
            return None

    def admit_user(self, user_id: str) -> bool:
        return self.admit(f"user:{user_id}", self.user_limit, self.window_ms)

    def admit_ip(self, address: str) -> bool:
        return self.admit(f"ip:{address}", self.ip_limit, self.window_ms)

    def admit_request(self, user_id: str, address: Optional[str] = None) -> Optional[str]:
        """Charge the user bucket and, when *address* is given, the address bucket together."""
        buckets = [(f"user:{user_id}", self.user_limit, self.window_ms)]
        if address:
            buckets.append((f"ip:{address}", self.ip_limit, self.window_ms))
        return self.admit_all(buckets)

    def peek(self, identity: str) -> Optional[RateLimitEntry]:
        with self._lock:
            entry = self._store.get(identity)
            return None if entry is None else RateLimitEntry(entry.tokens, entry.last_refill)

    def sweep(self) -> int:
        """Drop entries idle for longer than ``stale_after_ms``; returns how many."""
        with self._lock:
            now = self.clock()
            stale = [k for k, e in self._store.items() if now - e.last_refill > self.stale_after_ms]
            for key in stale:
                del self._store[key]
        if stale:
            log.debug("Evicted %d idle rate-limit entries", len(stale))
        return len(stale)

    async def _sweep_forever(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            self.sweep()

    def start_sweeper(self, interval: float = SWEEP_INTERVAL_S) -> asyncio.Task[None]:
        """Run :meth:`sweep` every *interval* seconds on the current event loop."""
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.get_running_loop().create_task(self._sweep_forever(interval))
        return self._sweeper

    async def stop_sweeper(self) -> None:
        if self._sweeper is not None:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None

    async def close(self) -> None:
        await self.stop_sweeper()
        self.clear()

    def clear(self) -> None:
        with self._lock:
            self._store.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)
