"""Rate limiter interfaces.

Routes and dependencies should depend on this abstraction (not the concrete
implementation) so the storage backend can be swapped without touching the
HTTP layer.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class AdaptivePolicy:
    """Backoff applied after recorded failures (e.g., wrong passwords).

    Each failure multiplies the divisor of the limit by ``backoff_multiplier``,
    up to ``max_backoff_multiplier``. Failures are forgotten once
    ``failure_window_ms`` passes without a new one.
    """

    backoff_multiplier: int = 2
    max_backoff_multiplier: int = 16
    failure_window_ms: int = 3_600_000

    def effective_limit(self, limit: int, failures: int) -> int:
        # Exponent is capped so repeated failures cannot build huge integers
        divisor = min(self.max_backoff_multiplier, self.backoff_multiplier ** min(failures, 64))
        return max(1, limit // max(1, divisor))


@dataclass(frozen=True)
class RateLimitPolicy:
    """Quota for one named use case.

    Attributes:
        limit: Maximum requests allowed per window.
        window_ms: Window duration in milliseconds.
        message: Message returned to clients when the quota is exhausted.
        adaptive: Optional failure backoff shrinking the limit.
    """

    limit: int
    window_ms: int
    message: str = "Too many requests. Please try again later."
    adaptive: AdaptivePolicy | None = None

    def as_dict(self) -> dict[str, Any]:
        adaptive = None
        if self.adaptive is not None:
            adaptive = {
                "backoff_multiplier": self.adaptive.backoff_multiplier,
                "max_backoff_multiplier": self.adaptive.max_backoff_multiplier,
                "failure_window_ms": self.adaptive.failure_window_ms,
            }
        return {
            "limit": self.limit,
            "window_ms": self.window_ms,
            "message": self.message,
            "adaptive": adaptive,
        }


@dataclass(frozen=True)
class RateLimitResult:
    """Result of a rate limit check.

    Attributes:
        limited: Whether the request must be rejected.
        remaining: Remaining requests in the current window (0 when limited).
        reset_in_ms: Milliseconds until the current window resets.
        limit: Max requests per window, after any adaptive backoff.
    """

    limited: bool
    remaining: int
    reset_in_ms: int
    limit: int

    @property
    def allowed(self) -> bool:
        return not self.limited

    @property
    def reset_in_seconds(self) -> int:
        return int(math.ceil(self.reset_in_ms / 1000))


@dataclass(frozen=True)
class RateLimitStats:
    """Snapshot of limiter storage.

    Attributes:
        total_entries: Keys currently stored, expired ones included.
        active_entries: Keys whose window has not expired yet.
        shards: Number of lock partitions backing the store.
    """

    total_entries: int
    active_entries: int
    shards: int = 1


class AbstractRateLimiter(ABC):
    """Interface for rate limiters."""

    @abstractmethod
    def check(self, key: str, policy: RateLimitPolicy) -> RateLimitResult:
        """Count one request for key and decide whether it is allowed.

        Args:
            key: Unique identifier (e.g., ``user:42:/v1/vocal``).
            policy: Quota to enforce for this key.

        Returns:
            RateLimitResult describing the decision.
        """
        raise NotImplementedError

    @abstractmethod
    def stats(self) -> RateLimitStats:
        """Return entry counts without mutating state."""
        raise NotImplementedError

    @abstractmethod
    def clear(self) -> None:
        """Drop every tracked key and failure record."""
        raise NotImplementedError

    @abstractmethod
    def reset(self, key: str) -> bool:
        """Forget a single key. Returns True if it was tracked."""
        raise NotImplementedError

    @abstractmethod
    def sweep_expired(self) -> int:
        """Remove entries whose window has expired. Returns how many were removed."""
        raise NotImplementedError

    @abstractmethod
    def record_failure(self, key: str) -> int:
        """Record a failed attempt for key. Returns the failure count."""
        raise NotImplementedError

    @abstractmethod
    def reset_failures(self, key: str) -> bool:
        """Forget recorded failures for key. Returns True if any were recorded."""
        raise NotImplementedError
