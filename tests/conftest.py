"""Pytest configuration and fixtures shared across all test modules.

Environment variables are set before any app import so the global settings
instance picks them up.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["APP_ENV"] = "testing"
os.environ.setdefault("APP_API_KEY_REQUIRED", "true")
os.environ.setdefault("APP_API_KEYS", "test-api-key-123,test-api-key-456")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest

from app.core.rate_limit import reset_rate_limiter


@pytest.fixture(autouse=True)
def fresh_rate_limiter():
    """Start every test with an empty process-wide limiter."""
    reset_rate_limiter()
    yield
    reset_rate_limiter()
