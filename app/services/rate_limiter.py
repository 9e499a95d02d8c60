"""Fixed-window rate limiter.

Each key gets a window that starts at its first request and lasts
``window_ms``. Requests are admitted until ``max_requests`` is reached; after
that they are rejected until the window expires, at which point the next
request opens a fresh window.

The limiter owns no global state: construct one, inject it where requests
are handled, and pass a per-endpoint RateLimitConfig on every check.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from app.adapters.rate_limit.base import (
    AbstractRateLimitStore,
    RateLimitConfig,
    RateLimitEntry,
    RateLimitResult,
)
from app.adapters.rate_limit.in_memory import InMemoryRateLimitStore

logger = logging.getLogger(__name__)


def system_clock_ms() -> int:
    """Return the current UNIX time in milliseconds."""
    return time.time_ns() // 1_000_000


class RateLimiter:
    """Admit/reject decisions over a pluggable entry store.

    Thread-safe: the read-modify-write on an entry runs under a single lock,
    so two concurrent requests for the same key can never both take the last
    slot of a window.
    """

    def __init__(
        self,
        *,
        store: AbstractRateLimitStore | None = None,
        clock: Callable[[], int] = system_clock_ms,
        sweep_interval_ms: int | None = None,
    ) -> None:
        """Initialize the limiter.

        Args:
            store: Entry storage. Defaults to an unbounded in-memory store.
            clock: Time source returning UNIX time in milliseconds.
            sweep_interval_ms: When set, expired entries are purged from the
                store at most once per interval during ``check``.

        Raises:
            ValueError: If sweep_interval_ms is not positive.
        """
        if sweep_interval_ms is not None and sweep_interval_ms < 1:
            raise ValueError("sweep_interval_ms must be >= 1")

        self._store = store if store is not None else InMemoryRateLimitStore()
        self._clock = clock
        self._sweep_interval_ms = sweep_interval_ms
        self._lock = threading.RLock()
        self._last_sweep_ms = clock()

    @property
    def store(self) -> AbstractRateLimitStore:
        return self._store

    @property
    def tracked_keys(self) -> int:
        with self._lock:
            return len(self._store)

    def now_ms(self) -> int:
        """Read the limiter's clock."""
        return self._clock()

    def check(self, identifier: str, config: RateLimitConfig) -> RateLimitResult:
        """Decide whether to admit one request for identifier.

        Quota exhaustion is a normal outcome reported through
        ``RateLimitResult.allowed``; it never raises.

        Args:
            identifier: Caller identity (user id, IP, tenant id).
            config: Limit to enforce for this endpoint.

        Returns:
            RateLimitResult with the decision and quota state.

        Raises:
            ValueError: If identifier is empty.
        """
        if not identifier:
            raise ValueError("identifier must be a non-empty string")

        key = config.key_for(identifier)

        with self._lock:
            now = self._clock()
            self._maybe_sweep_locked(now)

            entry = self._store.get(key)

            if entry is None or entry.is_expired(now):
                reset_at = now + config.window_ms
                self._store.set(key, RateLimitEntry(count=1, reset_at=reset_at))
                return RateLimitResult(
                    allowed=True,
                    remaining=config.max_requests - 1,
                    reset_at=reset_at,
                )

            if entry.count >= config.max_requests:
                return RateLimitResult(allowed=False, remaining=0, reset_at=entry.reset_at)

            entry.count += 1
            self._store.set(key, entry)
            return RateLimitResult(
                allowed=True,
                remaining=config.max_requests - entry.count,
                reset_at=entry.reset_at,
            )

    def sweep(self) -> int:
        """Remove expired entries from the store.

        Returns:
            Number of removed entries.
        """
        with self._lock:
            now = self._clock()
            return self._sweep_locked(now)

    def _maybe_sweep_locked(self, now: int) -> None:
        if self._sweep_interval_ms is None:
            return
        if now - self._last_sweep_ms >= self._sweep_interval_ms:
            self._sweep_locked(now)

    def _sweep_locked(self, now: int) -> int:
        removed = self._store.delete_expired(now)
        self._last_sweep_ms = now
        logger.debug(
            "rate_limit.sweep",
            extra={
                "removed": removed,
                "tracked_keys": len(self._store),
            },
        )
        return removed
