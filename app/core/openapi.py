"""OpenAPI customization utilities.

Adds the admin API key security scheme, tags metadata, and documents the
429 rate limit response on quota endpoints.
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import FastAPI

_RATE_LIMITED_RESPONSE: Dict[str, Any] = {
    "description": "Rate limit exceeded",
    "headers": {
        "Retry-After": {"schema": {"type": "integer"}, "description": "Seconds until the window resets"},
        "X-RateLimit-Remaining": {"schema": {"type": "string"}, "description": "Always 0"},
        "X-RateLimit-Reset": {"schema": {"type": "string"}, "description": "Reset time in epoch milliseconds"},
    },
    "content": {
        "application/json": {
            "example": {
                "error": "Rate limit exceeded",
                "message": "Too many requests. Please try again in 42 seconds.",
                "retryAfter": 42,
                "resetAt": "2024-01-01T12:00:00.000Z",
            }
        }
    },
}


def apply_openapi_customizations(app: FastAPI) -> None:
    """Patch FastAPI's OpenAPI generation.

    - Registers the ``X-API-Key`` scheme and applies it to admin operations
      (the sweep endpoint) only
    - Documents the 429 response on every ``/consume`` operation
    - Adds tags metadata if not present
    """

    original_openapi = app.openapi

    def custom_openapi() -> Dict[str, Any]:
        schema = original_openapi()

        components = schema.setdefault("components", {})
        security_schemes = components.setdefault("securitySchemes", {})
        security_schemes.setdefault(
            "ApiKeyAuth",
            {
                "type": "apiKey",
                "in": "header",
                "name": "X-API-Key",
                "description": "Admin API key for maintenance endpoints.",
            },
        )

        tags = schema.setdefault("tags", [])
        existing_tag_names = {t.get("name") for t in tags}
        for tag in (
            {"name": "Limits", "description": "Quota presets and consumption."},
            {"name": "Health", "description": "Liveness checks."},
        ):
            if tag["name"] not in existing_tag_names:
                tags.append(tag)

        for path, methods in schema.get("paths", {}).items():
            for method, method_obj in methods.items():
                if not isinstance(method_obj, dict):
                    continue
                if path.endswith("/sweep"):
                    method_obj["security"] = [{"ApiKeyAuth": []}]
                if path.endswith("/consume") and method == "post":
                    method_obj.setdefault("responses", {})["429"] = _RATE_LIMITED_RESPONSE

        return schema

    app.openapi = custom_openapi  # type: ignore[assignment]
