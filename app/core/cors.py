"""CORS headers shared by the protected edge endpoints."""

from __future__ import annotations

from app.core.config import CorsSettings, settings


def cors_headers(cors_settings: CorsSettings | None = None) -> dict[str, str]:
    """Return the CORS header set merged into rate limit responses."""
    cfg = cors_settings or settings.cors
    return {
        "Access-Control-Allow-Origin": cfg.allow_origin,
        "Access-Control-Allow-Headers": cfg.allow_headers,
    }
