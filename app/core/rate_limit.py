"""Rate limiting dependencies for FastAPI routes.

This module wires the rate limiting adapter into the HTTP layer.

Design goals:
- Minimal coupling: routes depend on a dependency object only.
- Explicit ownership: the limiter lives on ``app.state`` and is built once by
  the app factory, so each app (and each test) gets its own store.
- Consistent quotas: routes pick a named policy from ``RATE_LIMITS``.

Usage:
    login_limit = rate_limit("auth")

    @router.post("/login", dependencies=[Depends(login_limit)])
    async def login(request: Request):
        ...
        login_limit.record_failure(request)  # on bad credentials

Allowed responses carry ``X-RateLimit-*`` headers; limited requests raise
``RateLimitedAppError``, which the global handler turns into a 429.
"""

import logging
from typing import Callable, Sequence

from fastapi import Request, Response

from app.adapters.rate_limit.base import AbstractRateLimiter, RateLimitResult
from app.adapters.rate_limit.in_memory import InMemoryFixedWindowRateLimiter
from app.core.config import AppSettings, settings
from app.core.errors import ErrorDetails, RateLimitedAppError
from app.core.keys import KeyFunc, default_key, endpoint_key, hash_key, ip_key, user_key
from app.core.policies import get_policy

logger = logging.getLogger(__name__)

SkipFunc = Callable[[Request], bool]


def build_rate_limiter(app_settings: AppSettings | None = None) -> AbstractRateLimiter:
    """Construct the limiter configured for this process.

    Args:
        app_settings: Optional settings override; defaults to global settings.

    Returns:
        AbstractRateLimiter: Fresh limiter with empty storage.
    """

    cfg = app_settings or settings.app
    return InMemoryFixedWindowRateLimiter(shards=cfg.rate_limit_shards)


def get_rate_limiter(request: Request) -> AbstractRateLimiter:
    """FastAPI dependency returning the limiter owned by the running app."""

    return request.app.state.rate_limiter


def build_rate_limit_headers(result: RateLimitResult) -> dict[str, str]:
    """Build ``X-RateLimit-*`` headers for a limiter result.

    ``X-RateLimit-Reset`` is expressed in seconds until the window resets.
    ``Retry-After`` is only added for limited results.
    """

    headers = {
        "X-RateLimit-Limit": str(result.limit),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": str(result.reset_in_seconds),
    }
    if result.limited:
        headers["Retry-After"] = str(result.reset_in_seconds)
    return headers


def _apply_headers(response: Response, result: RateLimitResult) -> None:
    if settings.app.rate_limit_include_headers:
        response.headers.update(build_rate_limit_headers(result))


class RateLimit:
    """Dependency enforcing one named policy.

    Attributes:
        policy_name: Name in ``RATE_LIMITS``.
        policy: The resolved policy.
    """

    def __init__(
        self,
        policy_name: str,
        *,
        key_func: KeyFunc = default_key,
        skip: SkipFunc | None = None,
    ) -> None:
        # Resolved eagerly so a typo fails at import time, not on first request
        self.policy = get_policy(policy_name)
        self.policy_name = policy_name
        self.key_func = key_func
        self.skip = skip

    def key_for(self, request: Request) -> str:
        return f"{self.policy_name}:{self.key_func(request)}"

    def check(self, request: Request) -> RateLimitResult | None:
        """Count the request without raising.

        Returns:
            The limiter result, an untouched full quota when ``skip`` matches,
            or None when rate limiting is disabled.
        """
        if not settings.app.rate_limit_enabled:
            return None

        if self.skip is not None and self.skip(request):
            logger.debug("rate_limit.skipped", extra={"policy": self.policy_name})
            return RateLimitResult(
                limited=False,
                remaining=self.policy.limit,
                reset_in_ms=self.policy.window_ms,
                limit=self.policy.limit,
            )

        key = self.key_for(request)
        result = get_rate_limiter(request).check(key, self.policy)

        log_extra = {
            "policy": self.policy_name,
            "key_hash": hash_key(key),
            "limit": result.limit,
            "remaining": result.remaining,
            "window_ms": self.policy.window_ms,
        }
        if result.limited:
            logger.warning("rate_limit.exceeded", extra={**log_extra, "retry_after_s": result.reset_in_seconds})
        else:
            logger.info("rate_limit.allowed", extra=log_extra)
        return result

    def limited_error(self, result: RateLimitResult, *, limited_by: str | None = None) -> RateLimitedAppError:
        details: ErrorDetails = {
            "policy": self.policy_name,
            "limit": result.limit,
            "remaining": result.remaining,
            "reset_in_seconds": result.reset_in_seconds,
        }
        if limited_by:
            details["limited_by"] = limited_by

        headers: dict[str, str] = {}
        if settings.app.rate_limit_include_headers:
            headers = build_rate_limit_headers(result)

        return RateLimitedAppError(
            code="rate_limited",
            message=self.policy.message,
            details=details,
            headers=headers,
        )

    async def __call__(self, request: Request, response: Response) -> RateLimitResult | None:
        result = self.check(request)
        if result is None:
            return None
        if result.limited:
            raise self.limited_error(result)

        _apply_headers(response, result)
        return result

    def record_failure(self, request: Request) -> int:
        """Record a failed attempt (e.g., bad credentials) for this caller.

        Only shrinks the quota when the policy is adaptive.
        """
        key = self.key_for(request)
        failures = get_rate_limiter(request).record_failure(key)
        logger.info(
            "rate_limit.failure_recorded",
            extra={"policy": self.policy_name, "key_hash": hash_key(key), "failures": failures},
        )
        return failures

    def reset_failures(self, request: Request) -> bool:
        """Forget failures for this caller, typically after a successful login."""
        return get_rate_limiter(request).reset_failures(self.key_for(request))


def rate_limit(
    policy_name: str,
    *,
    key_func: KeyFunc = default_key,
    skip: SkipFunc | None = None,
) -> RateLimit:
    """Create a dependency enforcing a named policy.

    Args:
        policy_name: Name in ``RATE_LIMITS``.
        key_func: Builds the caller key from the request.
        skip: Optional predicate; matching requests are neither counted nor limited.

    Raises:
        ValidationAppError: If the policy name is unknown.
    """

    return RateLimit(policy_name, key_func=key_func, skip=skip)


def _global_key(request: Request) -> str:
    return "global"


class CompositeRateLimit:
    """Dependency checking several scoped limits in order.

    Scopes are checked as global, per-IP, per-user, then per-endpoint. The
    first scope that is exhausted rejects the request and is reported as
    ``limited_by``; later scopes are not counted for that request.
    """

    def __init__(self, layers: Sequence[tuple[str, RateLimit]]) -> None:
        if not layers:
            raise ValueError("at least one scope is required")
        self.layers = tuple(layers)

    async def __call__(self, request: Request, response: Response) -> RateLimitResult | None:
        tightest: RateLimitResult | None = None
        for scope, layer in self.layers:
            result = layer.check(request)
            if result is None:
                return None
            if result.limited:
                raise layer.limited_error(result, limited_by=scope)
            if tightest is None or result.remaining < tightest.remaining:
                tightest = result

        if tightest is not None:
            _apply_headers(response, tightest)
        return tightest


def composite_rate_limit(
    *,
    global_policy: str | None = None,
    per_ip: str | None = None,
    per_user: str | None = None,
    per_endpoint: str | None = None,
    skip: SkipFunc | None = None,
) -> CompositeRateLimit:
    """Create a dependency combining scoped policies.

    Each argument names a policy in ``RATE_LIMITS`` for that scope; omitted
    scopes are not checked. Keys are prefixed with the scope so two scopes
    sharing a policy never share a counter.

    Raises:
        ValueError: If no scope is given.
        ValidationAppError: If a policy name is unknown.
    """

    scopes: list[tuple[str, str | None, KeyFunc]] = [
        ("global", global_policy, _global_key),
        ("ip", per_ip, ip_key),
        ("user", per_user, user_key),
        ("endpoint", per_endpoint, endpoint_key),
    ]

    layers = []
    for scope, policy_name, key_func in scopes:
        if policy_name is None:
            continue

        def scoped_key(request: Request, _scope: str = scope, _key_func: KeyFunc = key_func) -> str:
            return f"{_scope}:{_key_func(request)}"

        layers.append((scope, RateLimit(policy_name, key_func=scoped_key, skip=skip)))

    return CompositeRateLimit(layers)
