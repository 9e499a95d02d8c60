"""Rate limiter types and storage interface.

The limiter depends on this abstraction (not the concrete store) so the
in-memory map can later be swapped for a shared store (e.g., Redis or a
database table) without touching the admit/reject logic.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class RateLimitConfig:
    """Per-endpoint rate limit configuration.

    Attributes:
        max_requests: Ceiling of admitted requests per window.
        window_ms: Window length in milliseconds.
        key_prefix: Namespace separating limiters that share one store.

    Raises:
        ValueError: If max_requests or window_ms are not positive.
    """

    max_requests: int
    window_ms: int
    key_prefix: str = "rl"

    def __post_init__(self) -> None:
        if self.max_requests < 1:
            raise ValueError("max_requests must be >= 1")
        if self.window_ms < 1:
            raise ValueError("window_ms must be >= 1")

    def key_for(self, identifier: str) -> str:
        """Build the storage key for a caller identifier."""
        return f"{self.key_prefix}:{identifier}"


@dataclass
class RateLimitEntry:
    """Window state stored per key.

    Attributes:
        count: Requests admitted in the current window.
        reset_at: Epoch milliseconds at which the window expires.
    """

    count: int
    reset_at: int

    def is_expired(self, now_ms: int) -> bool:
        return self.reset_at <= now_ms


@dataclass(frozen=True)
class RateLimitResult:
    """Result of a rate limit check.

    Attributes:
        allowed: Whether the request is admitted.
        remaining: Requests left in the current window (0 when rejected).
        reset_at: Epoch milliseconds when the current window resets.
    """

    allowed: bool
    remaining: int
    reset_at: int


class AbstractRateLimitStore(ABC):
    """Interface for rate limit entry storage.

    Implementations only store entries. Callers serialize the
    read-modify-write sequence themselves.
    """

    @abstractmethod
    def get(self, key: str) -> RateLimitEntry | None:
        """Return the entry stored for key, expired or not."""
        raise NotImplementedError

    @abstractmethod
    def set(self, key: str, entry: RateLimitEntry) -> None:
        """Store (or replace) the entry for key."""
        raise NotImplementedError

    @abstractmethod
    def delete_expired(self, now_ms: int) -> int:
        """Remove entries whose window has passed.

        Args:
            now_ms: Current time in epoch milliseconds.

        Returns:
            Number of removed entries.
        """
        raise NotImplementedError

    @abstractmethod
    def __len__(self) -> int:
        raise NotImplementedError
