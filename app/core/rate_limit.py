"""Rate limiting for FastAPI routes.

This module wires the limiter into the HTTP layer:
- Presets: one RateLimitConfig per protected edge endpoint.
- Responses: the 429 rejection contract and quota headers on success.
- A process-wide limiter built from settings.
- RateLimitGuard: a route dependency enforcing one preset.

Rate limiting strategy:
- Fixed window per caller and endpoint (``{key_prefix}:{identifier}``).
- Identifier is the JWT subject when present, client IP otherwise.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from typing import Mapping

from fastapi import Request, Response
from fastapi.responses import JSONResponse

from app.adapters.rate_limit.base import RateLimitConfig, RateLimitResult
from app.adapters.rate_limit.in_memory import InMemoryRateLimitStore
from app.core.config import settings
from app.core.cors import cors_headers
from app.core.errors import RateLimitExceededError
from app.core.identity import get_request_identifier, hash_identifier
from app.services.rate_limiter import RateLimiter, system_clock_ms

logger = logging.getLogger(__name__)

MINUTE_MS = 60 * 1000
HOUR_MS = 60 * MINUTE_MS

RATE_LIMITS: dict[str, RateLimitConfig] = {
    # AI/chat functions - expensive operations
    "ai-chat": RateLimitConfig(max_requests=30, window_ms=MINUTE_MS, key_prefix="ai"),
    # WhatsApp sending - prevent spam
    "whatsapp": RateLimitConfig(max_requests=100, window_ms=HOUR_MS, key_prefix="wa"),
    "whatsapp-cloud": RateLimitConfig(max_requests=100, window_ms=HOUR_MS, key_prefix="whatsapp-cloud"),
    # Transactional email (bills) and generic email
    "email": RateLimitConfig(max_requests=50, window_ms=HOUR_MS, key_prefix="email"),
    "send-email": RateLimitConfig(max_requests=100, window_ms=HOUR_MS, key_prefix="send-email"),
    # General API endpoints
    "standard": RateLimitConfig(max_requests=100, window_ms=MINUTE_MS, key_prefix="std"),
    # Sensitive operations (auth, backups)
    "sensitive": RateLimitConfig(max_requests=10, window_ms=MINUTE_MS, key_prefix="sec"),
    "uploads": RateLimitConfig(max_requests=20, window_ms=HOUR_MS, key_prefix="upl"),
}


def _iso_timestamp_ms(epoch_ms: int) -> str:
    """Format epoch milliseconds as ``YYYY-MM-DDTHH:MM:SS.mmmZ``."""
    seconds, millis = divmod(epoch_ms, 1000)
    moment = datetime.fromtimestamp(seconds, tz=timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{millis:03d}Z"


def retry_after_seconds(reset_at: int, now_ms: int) -> int:
    """Seconds until reset_at, rounded up and never negative."""
    return max(0, math.ceil((reset_at - now_ms) / 1000))


def build_rejection_response(
    result: RateLimitResult,
    headers: Mapping[str, str] | None = None,
    *,
    now_ms: int | None = None,
) -> JSONResponse:
    """Build the 429 response for a rejected request.

    Args:
        result: Rejected RateLimitResult.
        headers: Protocol headers to merge in (e.g., CORS).
        now_ms: Current time in epoch milliseconds; defaults to the system clock.

    Returns:
        JSONResponse with status 429, Retry-After and X-RateLimit-* headers.
    """
    now = system_clock_ms() if now_ms is None else now_ms
    retry_after = retry_after_seconds(result.reset_at, now)

    response_headers = dict(headers or {})
    response_headers.update(
        {
            "Content-Type": "application/json",
            "X-RateLimit-Remaining": "0",
            "X-RateLimit-Reset": str(result.reset_at),
            "Retry-After": str(retry_after),
        }
    )

    return JSONResponse(
        status_code=429,
        content={
            "error": "Rate limit exceeded",
            "message": f"Too many requests. Please try again in {retry_after} seconds.",
            "retryAfter": retry_after,
            "resetAt": _iso_timestamp_ms(result.reset_at),
        },
        headers=response_headers,
    )


def annotate_success_response(response: Response, result: RateLimitResult, max_requests: int) -> Response:
    """Add quota headers to an admitted response; body and status are untouched."""
    response.headers["X-RateLimit-Limit"] = str(max_requests)
    response.headers["X-RateLimit-Remaining"] = str(result.remaining)
    response.headers["X-RateLimit-Reset"] = str(result.reset_at)
    return response


_limiter: RateLimiter | None = None
_limiter_config: tuple[int | None, int | None] | None = None


def get_rate_limiter() -> RateLimiter:
    """Return the process-wide limiter.

    The instance is cached in-module so state survives across requests.
    If storage settings change (primarily in tests), it is rebuilt.
    """

    global _limiter, _limiter_config

    config = (
        settings.rate_limit.max_tracked_keys,
        settings.rate_limit.sweep_interval_seconds,
    )

    if _limiter is None or _limiter_config != config:
        max_tracked_keys, sweep_interval_seconds = config
        _limiter = RateLimiter(
            store=InMemoryRateLimitStore(max_entries=max_tracked_keys),
            sweep_interval_ms=sweep_interval_seconds * 1000 if sweep_interval_seconds else None,
        )
        _limiter_config = config

    return _limiter


def reset_rate_limiter() -> None:
    """Drop the cached limiter so the next call starts from empty state."""

    global _limiter, _limiter_config
    _limiter = None
    _limiter_config = None


class RateLimitGuard:
    """FastAPI dependency enforcing one rate limit preset.

    Usage:
        @router.post("/ai-chat", dependencies=[Depends(RateLimitGuard(RATE_LIMITS["ai-chat"]))])

    On rejection raises RateLimitExceededError, rendered as the 429 contract
    by the global exception handler. On admission the quota headers are
    added to the route's response.
    """

    def __init__(self, config: RateLimitConfig, *, scope: str | None = None) -> None:
        self.config = config
        self.scope = scope or config.key_prefix

    async def __call__(self, request: Request, response: Response) -> RateLimitResult | None:
        if not settings.rate_limit.enabled:
            return None

        limiter = get_rate_limiter()
        identifier = get_request_identifier(request)
        log_extra = {
            "scope": self.scope,
            "key_type": identifier.split(":", 1)[0],
            "identifier_hash": hash_identifier(identifier),
            "limit": self.config.max_requests,
            "window_ms": self.config.window_ms,
        }

        result = limiter.check(identifier, self.config)
        if result.allowed:
            logger.info("rate_limit.allowed", extra={**log_extra, "remaining": result.remaining})
            response.headers.update(cors_headers())
            if settings.rate_limit.include_headers:
                annotate_success_response(response, result, self.config.max_requests)
            return result

        retry_after = retry_after_seconds(result.reset_at, limiter.now_ms())
        logger.warning("rate_limit.exceeded", extra={**log_extra, "retry_after_s": retry_after})
        raise RateLimitExceededError(
            code="rate_limit_exceeded",
            message="Rate limit exceeded",
            details={"scope": self.scope, "retry_after": retry_after},
            result=result,
        )
