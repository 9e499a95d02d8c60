"""Schemas for the rate limit quota endpoints."""

from __future__ import annotations

from pydantic import BaseModel, Field

from app.adapters.rate_limit.base import RateLimitConfig


class RateLimitPreset(BaseModel):
    """A named per-endpoint budget."""

    scope: str = Field(..., description="Preset name used in /v1/limits/{scope}/consume")
    max_requests: int = Field(..., description="Requests admitted per window", ge=1)
    window_ms: int = Field(..., description="Window length in milliseconds", ge=1)
    key_prefix: str = Field(..., description="Storage namespace of the preset")

    @classmethod
    def from_config(cls, scope: str, config: RateLimitConfig) -> "RateLimitPreset":
        return cls(
            scope=scope,
            max_requests=config.max_requests,
            window_ms=config.window_ms,
            key_prefix=config.key_prefix,
        )


class QuotaResponse(BaseModel):
    """Outcome of an admitted quota consumption."""

    scope: str
    allowed: bool
    limit: int = Field(..., description="Configured ceiling for the window")
    remaining: int = Field(..., description="Requests left in the current window", ge=0)
    reset_at: int = Field(..., description="Epoch milliseconds when the window resets")


class SweepResponse(BaseModel):
    """Result of purging expired entries."""

    removed: int = Field(..., ge=0)
    tracked_keys: int = Field(..., ge=0)
