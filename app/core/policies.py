"""Named rate limit policies.

Route handlers select a policy by use case instead of building one ad hoc, so
every call site protecting the same feature shares the same quota.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Mapping

from app.adapters.rate_limit.base import AdaptivePolicy, RateLimitPolicy
from app.core.errors import ValidationAppError

_MINUTE_MS = 60_000

RATE_LIMITS: Mapping[str, RateLimitPolicy] = MappingProxyType(
    {
        # Voice capture sends audio to transcription
        "vocal": RateLimitPolicy(
            limit=10,
            window_ms=_MINUTE_MS,
            message="Too many voice requests. Please wait a moment.",
        ),
        "auth": RateLimitPolicy(
            limit=5,
            window_ms=_MINUTE_MS,
            message="Too many authentication attempts. Please try again later.",
            adaptive=AdaptivePolicy(
                backoff_multiplier=2,
                max_backoff_multiplier=32,
                failure_window_ms=3_600_000,
            ),
        ),
        "stripe": RateLimitPolicy(
            limit=20,
            window_ms=_MINUTE_MS,
            message="Too many payment requests. Please try again later.",
        ),
        "export": RateLimitPolicy(
            limit=5,
            window_ms=_MINUTE_MS,
            message="Too many export requests. Please try again later.",
        ),
        "standard": RateLimitPolicy(
            limit=60,
            window_ms=_MINUTE_MS,
            message="Too many requests. Please try again later.",
        ),
        "search": RateLimitPolicy(
            limit=30,
            window_ms=_MINUTE_MS,
            message="Too many search requests. Please slow down.",
        ),
        "internal": RateLimitPolicy(
            limit=1000,
            window_ms=_MINUTE_MS,
            message="Internal rate limit exceeded.",
        ),
    }
)


def get_policy(name: str) -> RateLimitPolicy:
    """Resolve a policy by use-case name.

    Args:
        name: Key in ``RATE_LIMITS`` (e.g., ``"vocal"``).

    Returns:
        The matching policy.

    Raises:
        ValidationAppError: If no policy has that name.
    """
    try:
        return RATE_LIMITS[name]
    except KeyError:
        raise ValidationAppError(
            code="unknown_rate_limit_policy",
            message=f"Unknown rate limit policy: {name}",
            details={"policy": name, "available_policies": sorted(RATE_LIMITS)},
        ) from None
