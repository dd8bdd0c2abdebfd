"""Operator endpoints for the rate limiter.

Everything here sits behind the API key and the ``internal`` policy.
"""

import logging

from fastapi import APIRouter, Depends

from app.adapters.rate_limit.base import AbstractRateLimiter
from app.core.auth import verify_api_key
from app.core.config import settings
from app.core.keys import hash_key, user_key
from app.core.policies import RATE_LIMITS
from app.core.rate_limit import get_rate_limiter, rate_limit
from app.schemas.rate_limit import (
    RateLimitKeyResetResponse,
    RateLimitPoliciesResponse,
    RateLimitPolicyResponse,
    RateLimitStatsResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/rate-limits",
    tags=["Rate limits"],
    dependencies=[Depends(verify_api_key), Depends(rate_limit("internal", key_func=user_key))],
)


@router.get("/policies", response_model=RateLimitPoliciesResponse)
async def list_policies() -> RateLimitPoliciesResponse:
    """Return the static policy table."""
    return RateLimitPoliciesResponse(
        policies={
            name: RateLimitPolicyResponse(**policy.as_dict())
            for name, policy in RATE_LIMITS.items()
        }
    )


@router.get("/stats", response_model=RateLimitStatsResponse)
async def get_stats(
    limiter: AbstractRateLimiter = Depends(get_rate_limiter),
) -> RateLimitStatsResponse:
    """Report how many keys the limiter is tracking.

    When ``APP_RATE_LIMIT_SWEEP_ON_STATS`` is enabled, expired entries are
    evicted first, so polling this endpoint doubles as periodic cleanup.
    """
    swept = 0
    if settings.app.rate_limit_sweep_on_stats:
        swept = limiter.sweep_expired()

    stats = limiter.stats()
    return RateLimitStatsResponse(
        total_entries=stats.total_entries,
        active_entries=stats.active_entries,
        shards=stats.shards,
        swept=swept,
    )


@router.delete("/keys/{key:path}", response_model=RateLimitKeyResetResponse)
async def reset_key(
    key: str,
    limiter: AbstractRateLimiter = Depends(get_rate_limiter),
) -> RateLimitKeyResetResponse:
    """Forget one limiter key, e.g. to unblock a user after support review."""
    key_hash = hash_key(key)
    cleared = limiter.reset(key)
    logger.info("rate_limit.key_reset", extra={"key_hash": key_hash, "cleared": cleared})
    return RateLimitKeyResetResponse(key_hash=key_hash, cleared=cleared)
