from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request, Response, status

from app.adapters.rate_limit.base import RateLimitConfig
from app.core.auth import verify_api_key
from app.core.cors import cors_headers
from app.core.errors import NotFoundAppError
from app.core.rate_limit import RATE_LIMITS, RateLimitGuard, get_rate_limiter
from app.schemas.limits import QuotaResponse, RateLimitPreset, SweepResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Limits"])


def _resolve_preset(scope: str) -> RateLimitConfig:
    config = RATE_LIMITS.get(scope)
    if config is None:
        raise NotFoundAppError(
            code="unknown_scope",
            message=f"Unknown rate limit scope: {scope}",
            details={"scope": scope, "hint": "GET /v1/limits lists the available scopes"},
        )
    return config


@router.get("/limits", response_model=list[RateLimitPreset])
def list_limits() -> list[RateLimitPreset]:
    """List the configured per-endpoint rate limit presets."""

    return [RateLimitPreset.from_config(scope, config) for scope, config in RATE_LIMITS.items()]


@router.options("/limits/{scope}/consume", status_code=status.HTTP_204_NO_CONTENT)
def consume_preflight(scope: str) -> Response:
    """Answer CORS preflight requests for the consume endpoint."""

    return Response(status_code=status.HTTP_204_NO_CONTENT, headers=cors_headers())


@router.post("/limits/{scope}/consume", response_model=QuotaResponse)
async def consume_quota(scope: str, request: Request, response: Response) -> QuotaResponse:
    """Consume one request from the caller's budget for ``scope``.

    Edge functions call this before doing their own work. The caller is
    identified by the JWT subject in Authorization, or by client IP.

    Returns:
        QuotaResponse with the remaining budget; quota headers are set on the
        response as well.

    Raises:
        NotFoundAppError: Unknown scope (404).
        RateLimitExceededError: Budget exhausted (429 with Retry-After).
    """
    config = _resolve_preset(scope)
    result = await RateLimitGuard(config, scope=scope)(request, response)

    if result is None:
        # Rate limiting disabled: report a full budget without tracking it.
        return QuotaResponse(
            scope=scope,
            allowed=True,
            limit=config.max_requests,
            remaining=config.max_requests,
            reset_at=get_rate_limiter().now_ms() + config.window_ms,
        )

    return QuotaResponse(
        scope=scope,
        allowed=result.allowed,
        limit=config.max_requests,
        remaining=result.remaining,
        reset_at=result.reset_at,
    )


@router.post(
    "/limits/sweep",
    response_model=SweepResponse,
    dependencies=[Depends(verify_api_key)],
)
def sweep_limits() -> SweepResponse:
    """Purge expired rate limit entries from the process store."""

    limiter = get_rate_limiter()
    removed = limiter.sweep()
    logger.info(
        "rate_limit.manual_sweep",
        extra={"removed": removed, "tracked_keys": limiter.tracked_keys},
    )
    return SweepResponse(removed=removed, tracked_keys=limiter.tracked_keys)
