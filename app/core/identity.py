"""Caller identity used to partition rate limit quotas.

Strategy:
- Authenticated callers are keyed by the JWT ``sub`` claim (``user:<sub>``).
- Everyone else falls back to the client address (``ip:<addr>``), taken from
  X-Forwarded-For, then X-Real-IP, then the socket peer.

The JWT signature is NOT verified here; the upstream gateway has already
authenticated the request. A forged token only changes which bucket the
caller is counted in.
"""

from __future__ import annotations

import hashlib

from fastapi import Request
from jose import JWTError, jwt


def _decode_jwt_subject(token: str) -> str | None:
    """Extract the ``sub`` claim from an unverified JWT.

    Args:
        token: Raw token, with or without a "Bearer " prefix.

    Returns:
        The subject as a string, or None when the token is not a decodable
        three-part JWT carrying a non-empty ``sub``.
    """
    if token[:7].lower() == "bearer ":
        token = token[7:]

    try:
        claims = jwt.get_unverified_claims(token.strip())
    except (JWTError, RecursionError):
        # Deeply nested payloads exhaust the JSON decoder; treat as undecodable.
        return None

    subject = claims.get("sub")
    if isinstance(subject, bool) or not isinstance(subject, (str, int)) or not subject:
        return None
    return str(subject)


def _client_address(request: Request) -> str:
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first

    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()

    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def get_request_identifier(request: Request) -> str:
    """Build a deterministic per-caller identifier for rate limiting.

    Args:
        request: Incoming request.

    Returns:
        ``user:<sub>`` for callers with a decodable JWT, else ``ip:<addr>``.
    """
    auth_header = request.headers.get("authorization")
    if auth_header:
        subject = _decode_jwt_subject(auth_header)
        if subject:
            return f"user:{subject}"

    return f"ip:{_client_address(request)}"


def hash_identifier(identifier: str) -> str:
    """Hash an identifier for logging without exposing it."""
    return hashlib.sha256(identifier.encode()).hexdigest()[:16]
