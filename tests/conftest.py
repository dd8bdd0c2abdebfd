"""Pytest configuration and fixtures shared across all test modules.

This file is loaded by pytest before any test module imports the app, so the
environment below is in place when settings are built.
"""

import os
from unittest.mock import Mock

import pytest

# CRITICAL: Set this before any imports that might load settings
# This prevents the .env file from being loaded during tests
os.environ["TESTING"] = "true"

os.environ.setdefault("APP_API_KEY_REQUIRED", "true")
os.environ.setdefault("APP_API_KEYS", "test-api-key-123,test-api-key-456")
os.environ.setdefault("APP_RATE_LIMIT_ENABLED", "true")
os.environ.setdefault("LOG_LEVEL", "WARNING")


@pytest.fixture
def clock() -> Mock:
    """Controllable millisecond clock starting at t=1_000_000 ms."""
    return Mock(return_value=1_000_000)


@pytest.fixture
def valid_api_key_headers() -> dict[str, str]:
    return {"X-API-Key": "test-api-key-123"}
