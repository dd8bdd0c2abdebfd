"""Tests for the FastAPI rate limit dependency and its 429 translation."""

from unittest.mock import Mock, patch

import pytest
from fastapi import Depends, FastAPI, Request
from fastapi.testclient import TestClient

from app.adapters.rate_limit.base import RateLimitResult
from app.adapters.rate_limit.in_memory import InMemoryFixedWindowRateLimiter
from app.core.app_factory import create_app
from app.core.errors import ValidationAppError
from app.core.keys import ip_key
from app.core.rate_limit import (
    build_rate_limit_headers,
    build_rate_limiter,
    composite_rate_limit,
    rate_limit,
)


@pytest.fixture
def limiter(clock: Mock) -> InMemoryFixedWindowRateLimiter:
    return InMemoryFixedWindowRateLimiter(clock=clock)


@pytest.fixture
def app(limiter: InMemoryFixedWindowRateLimiter) -> FastAPI:
    app = create_app(rate_limiter=limiter)

    @app.post("/v1/auth/login", dependencies=[Depends(rate_limit("auth"))])
    async def login() -> dict:
        return {"ok": True}

    @app.post("/v1/vocal", dependencies=[Depends(rate_limit("vocal", key_func=ip_key))])
    async def vocal() -> dict:
        return {"ok": True}

    @app.get("/v1/export")
    async def export(result: RateLimitResult | None = Depends(rate_limit("export"))) -> dict:
        return {"remaining": result.remaining if result else None}

    password_limit = rate_limit("auth")

    @app.post("/v1/auth/password", dependencies=[Depends(password_limit)])
    async def password(request: Request, ok: bool = False) -> dict:
        if ok:
            password_limit.reset_failures(request)
        else:
            password_limit.record_failure(request)
        return {"ok": ok}

    def _is_internal(request: Request) -> bool:
        return request.headers.get("X-Internal-Job") == "1"

    @app.get("/v1/search", dependencies=[Depends(rate_limit("search", skip=_is_internal))])
    async def search() -> dict:
        return {"ok": True}

    @app.get(
        "/v1/tasks",
        dependencies=[Depends(composite_rate_limit(global_policy="vocal", per_user="export"))],
    )
    async def tasks() -> dict:
        return {"ok": True}

    return app


@pytest.fixture
def client(app: FastAPI) -> TestClient:
    return TestClient(app)


def test_allows_until_policy_limit(client: TestClient) -> None:
    for _ in range(5):
        assert client.post("/v1/auth/login").status_code == 200

    resp = client.post("/v1/auth/login")
    assert resp.status_code == 429


def test_429_body_and_headers(client: TestClient, clock: Mock) -> None:
    for _ in range(5):
        client.post("/v1/auth/login")

    clock.return_value = 1_000_000 + 45_500
    resp = client.post("/v1/auth/login", headers={"X-Request-ID": "req-429"})

    assert resp.status_code == 429
    error = resp.json()["error"]
    assert error["code"] == "rate_limited"
    assert error["message"] == "Too many authentication attempts. Please try again later."
    assert error["request_id"] == "req-429"
    assert error["details"] == {
        "policy": "auth",
        "limit": 5,
        "remaining": 0,
        "reset_in_seconds": 15,
    }

    assert resp.headers["X-RateLimit-Limit"] == "5"
    assert resp.headers["X-RateLimit-Remaining"] == "0"
    assert resp.headers["X-RateLimit-Reset"] == "15"
    assert resp.headers["Retry-After"] == "15"


def test_window_expiry_restores_access(client: TestClient, clock: Mock) -> None:
    for _ in range(6):
        client.post("/v1/auth/login")

    clock.return_value = 1_000_000 + 60_000
    assert client.post("/v1/auth/login").status_code == 200


def test_users_are_throttled_independently(client: TestClient) -> None:
    alice = {"Authorization": "Bearer alice-token"}
    bob = {"Authorization": "Bearer bob-token"}

    for _ in range(5):
        client.post("/v1/auth/login", headers=alice)
    assert client.post("/v1/auth/login", headers=alice).status_code == 429

    assert client.post("/v1/auth/login", headers=bob).status_code == 200


def test_policies_do_not_share_quota(client: TestClient) -> None:
    for _ in range(6):
        client.post("/v1/auth/login")

    assert client.post("/v1/vocal").status_code == 200


def test_key_func_controls_partitioning(client: TestClient) -> None:
    # ip_key ignores the bearer token, so both callers share one quota
    for i in range(10):
        headers = {"Authorization": f"Bearer user-{i % 2}"}
        assert client.post("/v1/vocal", headers=headers).status_code == 200

    assert client.post("/v1/vocal", headers={"Authorization": "Bearer someone-else"}).status_code == 429


def test_dependency_returns_result(client: TestClient) -> None:
    assert client.get("/v1/export").json() == {"remaining": 4}
    assert client.get("/v1/export").json() == {"remaining": 3}


def test_entries_are_namespaced_by_policy(client: TestClient, limiter: InMemoryFixedWindowRateLimiter) -> None:
    client.post("/v1/auth/login")

    assert limiter.reset("auth:ip:testclient:/v1/auth/login") is True


@patch("app.core.rate_limit.settings")
def test_disabled_limiter_is_noop(mock_settings, client: TestClient, limiter: InMemoryFixedWindowRateLimiter) -> None:
    mock_settings.app.rate_limit_enabled = False

    for _ in range(10):
        assert client.post("/v1/auth/login").status_code == 200
    assert client.get("/v1/export").json() == {"remaining": None}
    assert limiter.stats().total_entries == 0


@patch("app.core.rate_limit.settings")
def test_headers_can_be_disabled(mock_settings, client: TestClient) -> None:
    mock_settings.app.rate_limit_enabled = True
    mock_settings.app.rate_limit_include_headers = False

    for _ in range(5):
        client.post("/v1/auth/login")
    resp = client.post("/v1/auth/login")

    assert resp.status_code == 429
    assert "X-RateLimit-Limit" not in resp.headers
    assert "Retry-After" not in resp.headers


def test_unknown_policy_fails_at_definition() -> None:
    with pytest.raises(ValidationAppError):
        rate_limit("does-not-exist")


def test_each_app_owns_its_limiter() -> None:
    first = create_app()
    second = create_app()

    assert first.state.rate_limiter is not second.state.rate_limiter


def test_build_rate_limiter_uses_configured_shards() -> None:
    cfg = Mock(rate_limit_shards=3)
    assert build_rate_limiter(cfg).stats().shards == 3


def test_headers_for_allowed_result() -> None:
    headers = build_rate_limit_headers(
        RateLimitResult(limited=False, remaining=7, reset_in_ms=30_001, limit=10)
    )

    assert headers == {
        "X-RateLimit-Limit": "10",
        "X-RateLimit-Remaining": "7",
        "X-RateLimit-Reset": "31",
    }


def test_allowed_response_carries_quota_headers(client: TestClient) -> None:
    resp = client.post("/v1/auth/login")

    assert resp.status_code == 200
    assert resp.headers["X-RateLimit-Limit"] == "5"
    assert resp.headers["X-RateLimit-Remaining"] == "4"
    assert resp.headers["X-RateLimit-Reset"] == "60"
    assert "Retry-After" not in resp.headers


@patch("app.core.rate_limit.settings")
def test_allowed_headers_can_be_disabled(mock_settings, client: TestClient) -> None:
    mock_settings.app.rate_limit_enabled = True
    mock_settings.app.rate_limit_include_headers = False

    resp = client.post("/v1/auth/login")

    assert resp.status_code == 200
    assert "X-RateLimit-Limit" not in resp.headers


def test_skipped_requests_are_not_counted(client: TestClient, limiter: InMemoryFixedWindowRateLimiter) -> None:
    internal = {"X-Internal-Job": "1"}
    for _ in range(40):
        assert client.get("/v1/search", headers=internal).status_code == 200

    assert limiter.stats().total_entries == 0
    assert client.get("/v1/search", headers=internal).headers["X-RateLimit-Remaining"] == "30"

    for _ in range(30):
        assert client.get("/v1/search").status_code == 200
    assert client.get("/v1/search").status_code == 429
    assert client.get("/v1/search", headers=internal).status_code == 200


def test_failed_attempts_shrink_quota(client: TestClient, clock: Mock) -> None:
    first = client.post("/v1/auth/password")
    assert first.headers["X-RateLimit-Limit"] == "5"

    # One failure recorded: limit 5 // 2
    second = client.post("/v1/auth/password")
    assert second.status_code == 200
    assert second.headers["X-RateLimit-Limit"] == "2"
    assert second.headers["X-RateLimit-Remaining"] == "0"

    # Two failures: limit 5 // 4
    third = client.post("/v1/auth/password")
    assert third.status_code == 429
    assert third.json()["error"]["details"]["limit"] == 1


def test_successful_attempt_resets_backoff(client: TestClient, clock: Mock) -> None:
    client.post("/v1/auth/password")
    client.post("/v1/auth/password")

    clock.return_value = 1_000_000 + 60_000
    ok = client.post("/v1/auth/password", params={"ok": "true"})
    assert ok.status_code == 200
    assert ok.headers["X-RateLimit-Limit"] == "1"

    after = client.post("/v1/auth/password", params={"ok": "true"})
    assert after.status_code == 200
    assert after.headers["X-RateLimit-Limit"] == "5"
    assert after.headers["X-RateLimit-Remaining"] == "3"


def test_composite_reports_tightest_quota(client: TestClient) -> None:
    resp = client.get("/v1/tasks", headers={"Authorization": "Bearer alice-token"})

    assert resp.status_code == 200
    # global "vocal" has 9 left, alice's "export" quota has 4
    assert resp.headers["X-RateLimit-Limit"] == "5"
    assert resp.headers["X-RateLimit-Remaining"] == "4"


def test_composite_reports_limiting_scope(client: TestClient) -> None:
    alice = {"Authorization": "Bearer alice-token"}
    bob = {"Authorization": "Bearer bob-token"}

    for _ in range(5):
        assert client.get("/v1/tasks", headers=alice).status_code == 200
    per_user = client.get("/v1/tasks", headers=alice)
    assert per_user.status_code == 429
    details = per_user.json()["error"]["details"]
    assert details["limited_by"] == "user"
    assert details["policy"] == "export"
    assert per_user.json()["error"]["message"] == "Too many export requests. Please try again later."

    # The global scope counted all six of alice's requests
    for _ in range(4):
        assert client.get("/v1/tasks", headers=bob).status_code == 200
    global_hit = client.get("/v1/tasks", headers=bob)
    assert global_hit.status_code == 429
    assert global_hit.json()["error"]["details"]["limited_by"] == "global"
    assert global_hit.json()["error"]["details"]["policy"] == "vocal"


def test_composite_stops_at_first_limited_scope(client: TestClient, limiter: InMemoryFixedWindowRateLimiter) -> None:
    for i in range(11):
        client.get("/v1/tasks", headers={"Authorization": f"Bearer user-{i}"})

    # The 11th request was rejected globally before its user scope was counted
    assert limiter.reset("export:user:user:user-10") is False
    assert limiter.reset("export:user:user:user-9") is True


def test_composite_requires_a_scope() -> None:
    with pytest.raises(ValueError):
        composite_rate_limit()


def test_composite_scopes_do_not_share_counters(limiter: InMemoryFixedWindowRateLimiter) -> None:
    app = create_app(rate_limiter=limiter)

    @app.get("/v1/both", dependencies=[Depends(composite_rate_limit(per_ip="export", per_user="export"))])
    async def both() -> dict:
        return {"ok": True}

    client = TestClient(app)
    # Anonymous callers resolve to the same identity for both scopes
    for _ in range(5):
        assert client.get("/v1/both").status_code == 200
    assert client.get("/v1/both").json()["error"]["details"]["limited_by"] == "ip"
