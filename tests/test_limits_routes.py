"""Tests for the quota HTTP endpoints.

The process-wide limiter is reset before every test (see conftest.py);
tests that need to control time patch ``get_rate_limiter`` with a limiter
driven by a mock clock.
"""

import base64
from unittest.mock import Mock, patch

import pytest
from fastapi.testclient import TestClient

from app.adapters.rate_limit.base import RateLimitConfig
from app.main import app
from app.services.rate_limiter import RateLimiter


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


@pytest.fixture
def tiny_presets():
    presets = {"tiny": RateLimitConfig(max_requests=2, window_ms=10_000, key_prefix="tiny")}
    with patch.dict("app.core.rate_limit.RATE_LIMITS", presets, clear=True):
        yield presets


@pytest.fixture
def clocked_limiter():
    clock = Mock(return_value=1_000_000)
    limiter = RateLimiter(clock=clock)
    with patch("app.core.rate_limit.get_rate_limiter", return_value=limiter), patch(
        "app.api.routes.limits.get_rate_limiter", return_value=limiter
    ):
        yield limiter, clock


def test_list_limits(client: TestClient) -> None:
    resp = client.get("/v1/limits")

    assert resp.status_code == 200
    by_scope = {item["scope"]: item for item in resp.json()}
    assert by_scope["email"] == {
        "scope": "email",
        "max_requests": 50,
        "window_ms": 3_600_000,
        "key_prefix": "email",
    }
    assert "whatsapp-cloud" in by_scope
    assert "ai-chat" in by_scope


def test_consume_admits_and_sets_quota_headers(client: TestClient) -> None:
    resp = client.post("/v1/limits/email/consume", headers={"X-Forwarded-For": "198.51.100.7"})

    assert resp.status_code == 200
    data = resp.json()
    assert data["scope"] == "email"
    assert data["allowed"] is True
    assert data["limit"] == 50
    assert data["remaining"] == 49
    assert resp.headers["X-RateLimit-Limit"] == "50"
    assert resp.headers["X-RateLimit-Remaining"] == "49"
    assert resp.headers["X-RateLimit-Reset"] == str(data["reset_at"])
    assert resp.headers["Access-Control-Allow-Origin"] == "*"


def test_consume_rejects_with_429_contract(client: TestClient, tiny_presets, clocked_limiter) -> None:
    headers = {"X-Forwarded-For": "198.51.100.7"}

    assert client.post("/v1/limits/tiny/consume", headers=headers).status_code == 200
    assert client.post("/v1/limits/tiny/consume", headers=headers).status_code == 200

    _, clock = clocked_limiter
    clock.return_value = 1_004_000
    resp = client.post("/v1/limits/tiny/consume", headers=headers)

    assert resp.status_code == 429
    assert resp.headers["content-type"] == "application/json"
    assert resp.headers["Retry-After"] == "6"
    assert resp.headers["X-RateLimit-Remaining"] == "0"
    assert resp.headers["X-RateLimit-Reset"] == "1010000"
    assert resp.headers["Access-Control-Allow-Origin"] == "*"
    assert resp.headers["Access-Control-Allow-Headers"] == "authorization, x-client-info, apikey, content-type"
    assert resp.json() == {
        "error": "Rate limit exceeded",
        "message": "Too many requests. Please try again in 6 seconds.",
        "retryAfter": 6,
        "resetAt": "1970-01-01T00:16:50.000Z",
    }


def test_window_reset_over_http(client: TestClient, tiny_presets, clocked_limiter) -> None:
    headers = {"X-Forwarded-For": "198.51.100.7"}
    _, clock = clocked_limiter

    for _ in range(2):
        client.post("/v1/limits/tiny/consume", headers=headers)
    assert client.post("/v1/limits/tiny/consume", headers=headers).status_code == 429

    clock.return_value = 1_010_000
    resp = client.post("/v1/limits/tiny/consume", headers=headers)

    assert resp.status_code == 200
    assert resp.json()["remaining"] == 1
    assert resp.json()["reset_at"] == 1_020_000


def test_callers_are_isolated(client: TestClient, tiny_presets) -> None:
    for _ in range(2):
        client.post("/v1/limits/tiny/consume", headers={"X-Forwarded-For": "198.51.100.7"})
    assert client.post("/v1/limits/tiny/consume", headers={"X-Forwarded-For": "198.51.100.7"}).status_code == 429

    resp = client.post("/v1/limits/tiny/consume", headers={"X-Forwarded-For": "198.51.100.8"})
    assert resp.status_code == 200
    assert resp.json()["remaining"] == 1


def test_unknown_scope_returns_404(client: TestClient) -> None:
    resp = client.post("/v1/limits/does-not-exist/consume")

    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "unknown_scope"
    assert resp.headers["Access-Control-Allow-Origin"] == "*"
    assert resp.headers["Access-Control-Allow-Headers"] == "authorization, x-client-info, apikey, content-type"


def test_preflight_returns_cors_headers(client: TestClient) -> None:
    resp = client.options("/v1/limits/email/consume")

    assert resp.status_code == 204
    assert resp.headers["Access-Control-Allow-Origin"] == "*"


@patch("app.core.rate_limit.settings")
def test_disabled_rate_limit_reports_full_budget(mock_settings, client: TestClient, tiny_presets) -> None:
    mock_settings.rate_limit.enabled = False
    mock_settings.rate_limit.max_tracked_keys = None
    mock_settings.rate_limit.sweep_interval_seconds = None

    for _ in range(5):
        resp = client.post("/v1/limits/tiny/consume")
        assert resp.status_code == 200
        assert resp.json()["remaining"] == 2
    assert "X-RateLimit-Limit" not in resp.headers


@patch("app.core.rate_limit.settings")
def test_quota_headers_can_be_disabled(mock_settings, client: TestClient, tiny_presets) -> None:
    mock_settings.rate_limit.enabled = True
    mock_settings.rate_limit.include_headers = False
    mock_settings.rate_limit.max_tracked_keys = None
    mock_settings.rate_limit.sweep_interval_seconds = None

    resp = client.post("/v1/limits/tiny/consume")

    assert resp.status_code == 200
    assert resp.json()["remaining"] == 1
    assert "X-RateLimit-Remaining" not in resp.headers


def test_sweep_requires_api_key(client: TestClient) -> None:
    resp = client.post("/v1/limits/sweep")

    assert resp.status_code == 403
    assert resp.json()["error"]["code"] == "missing_api_key"
    assert resp.headers["Access-Control-Allow-Origin"] == "*"


def test_sweep_rejects_non_ascii_api_key(client: TestClient) -> None:
    resp = client.post("/v1/limits/sweep", headers={"X-API-Key": b"caf\xe9"})

    assert resp.status_code == 403
    assert resp.json()["error"]["code"] == "invalid_api_key"


def test_deeply_nested_token_is_counted_by_address(client: TestClient, tiny_presets) -> None:
    nested = base64.urlsafe_b64encode(b"[" * 100_000).rstrip(b"=").decode()
    token = f"eyJhbGciOiJIUzI1NiJ9.{nested}.c2lnbmF0dXJl"
    address = {"X-Forwarded-For": "198.51.100.7"}

    resp = client.post("/v1/limits/tiny/consume", headers={**address, "Authorization": f"Bearer {token}"})
    assert resp.status_code == 200
    assert resp.json()["remaining"] == 1

    resp = client.post("/v1/limits/tiny/consume", headers=address)
    assert resp.json()["remaining"] == 0


def test_sweep_removes_expired_entries(client: TestClient, tiny_presets, clocked_limiter) -> None:
    _, clock = clocked_limiter
    client.post("/v1/limits/tiny/consume", headers={"X-Forwarded-For": "198.51.100.7"})
    client.post("/v1/limits/tiny/consume", headers={"X-Forwarded-For": "198.51.100.8"})

    clock.return_value = 2_000_000
    resp = client.post("/v1/limits/sweep", headers={"X-API-Key": "test-api-key-123"})

    assert resp.status_code == 200
    assert resp.json() == {"removed": 2, "tracked_keys": 0}


def test_health_reports_tracked_keys(client: TestClient) -> None:
    client.post("/v1/limits/email/consume", headers={"X-Forwarded-For": "198.51.100.7"})

    resp = client.get("/health")

    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "tracked_keys": 1}
