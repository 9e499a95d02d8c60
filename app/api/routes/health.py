from __future__ import annotations

from fastapi import APIRouter

from app.core.rate_limit import get_rate_limiter

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check() -> dict:
    """Liveness check used by load balancers and monitors.

    Returns:
        dict: ``status`` set to "ok" and the number of keys the limiter
            currently tracks.
    """

    return {"status": "ok", "tracked_keys": get_rate_limiter().tracked_keys}
