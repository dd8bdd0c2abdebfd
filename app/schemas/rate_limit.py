"""Pydantic schemas for rate limiter introspection responses."""

from __future__ import annotations

from typing import Dict, Optional

from pydantic import BaseModel, Field


class AdaptivePolicyResponse(BaseModel):
    backoff_multiplier: int = Field(..., description="Divisor growth per recorded failure.", ge=1)
    max_backoff_multiplier: int = Field(..., description="Upper bound of the divisor.", ge=1)
    failure_window_ms: int = Field(
        ..., description="Failures are forgotten after this long without a new one.", ge=1
    )


class RateLimitPolicyResponse(BaseModel):
    """A named quota as exposed to operators."""

    limit: int = Field(..., description="Maximum requests allowed per window.", ge=1)
    window_ms: int = Field(..., description="Window duration in milliseconds.", ge=1)
    message: str = Field(..., description="Message returned with a 429 for this policy.")
    adaptive: Optional[AdaptivePolicyResponse] = Field(
        None, description="Failure backoff shrinking the limit, if any."
    )


class RateLimitPoliciesResponse(BaseModel):
    policies: Dict[str, RateLimitPolicyResponse] = Field(
        ..., description="Policy table keyed by use-case name (e.g. 'vocal', 'auth')."
    )


class RateLimitStatsResponse(BaseModel):
    """Snapshot of the limiter's in-memory storage."""

    total_entries: int = Field(
        ..., description="Keys currently tracked, including expired ones not yet overwritten.", ge=0
    )
    active_entries: int = Field(
        ..., description="Keys whose window has not expired at call time.", ge=0
    )
    shards: int = Field(..., description="Number of lock partitions backing the store.", ge=1)
    swept: int = Field(
        0,
        description="Expired entries evicted by this call (only when sweeping on stats is enabled).",
        ge=0,
    )


class RateLimitKeyResetResponse(BaseModel):
    key_hash: str = Field(..., description="Truncated SHA-256 of the reset key.")
    cleared: bool = Field(..., description="Whether the key was being tracked.")
