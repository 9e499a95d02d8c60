"""In-memory rate limit store.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Storage lives for the process lifetime and resets on restart.
- Optionally bounded: with max_entries set, least recently used keys are
  evicted so high-cardinality identifiers (per-IP) cannot grow it forever.
"""

from __future__ import annotations

import logging
from collections import OrderedDict

from app.adapters.rate_limit.base import AbstractRateLimitStore, RateLimitEntry

logger = logging.getLogger(__name__)


class InMemoryRateLimitStore(AbstractRateLimitStore):
    """OrderedDict-backed store with optional LRU bound.

    Not thread-safe on its own; RateLimiter holds a lock around every
    access.

    Attributes:
        max_entries: Maximum number of tracked keys (None for unlimited).
    """

    def __init__(self, max_entries: int | None = None) -> None:
        if max_entries is not None and max_entries < 1:
            raise ValueError("max_entries must be >= 1")

        self._max_entries = max_entries
        self._entries: OrderedDict[str, RateLimitEntry] = OrderedDict()
        self._evictions = 0

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return (
            f"InMemoryRateLimitStore(max_entries={self._max_entries}, "
            f"size={len(self._entries)}, evictions={self._evictions})"
        )

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def max_entries(self) -> int | None:
        return self._max_entries

    @property
    def evictions(self) -> int:
        return self._evictions

    def get(self, key: str) -> RateLimitEntry | None:
        entry = self._entries.get(key)
        if entry is not None:
            self._entries.move_to_end(key)  # mark as recently used
        return entry

    def set(self, key: str, entry: RateLimitEntry) -> None:
        self._entries[key] = entry
        self._entries.move_to_end(key)
        self._evict_if_over_capacity()

    def delete_expired(self, now_ms: int) -> int:
        expired_keys = [k for k, entry in self._entries.items() if entry.is_expired(now_ms)]
        for key in expired_keys:
            del self._entries[key]
        return len(expired_keys)

    def clear(self) -> None:
        """Remove all entries and reset the eviction counter."""
        self._entries.clear()
        self._evictions = 0

    def _evict_if_over_capacity(self) -> None:
        if self._max_entries is None:
            return

        while len(self._entries) > self._max_entries:
            # popitem(last=False) removes the least recently used entry
            self._entries.popitem(last=False)
            self._evictions += 1
            logger.debug(
                "rate_limit.evicted",
                extra={
                    "size": len(self._entries),
                    "max_entries": self._max_entries,
                },
            )
