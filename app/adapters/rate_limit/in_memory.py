"""In-memory fixed-window rate limiter.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: keys are partitioned into shards, each guarded by its own lock.
- Entries are only overwritten lazily; call ``sweep_expired`` to reclaim
  memory held by keys that never come back.
"""

from __future__ import annotations

import logging
import threading
import time
import zlib
from dataclasses import dataclass
from typing import Callable

from app.adapters.rate_limit.base import (
    AbstractRateLimiter,
    RateLimitPolicy,
    RateLimitResult,
    RateLimitStats,
)

logger = logging.getLogger(__name__)


def _wall_clock_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class _WindowState:
    window_start_ms: int
    window_ms: int
    count: int

    def is_expired(self, now_ms: int) -> bool:
        return now_ms - self.window_start_ms >= self.window_ms


@dataclass
class _FailureState:
    count: int
    last_failure_ms: int


class _Shard:
    __slots__ = ("lock", "entries", "failures")

    def __init__(self) -> None:
        self.lock = threading.RLock()
        self.entries: dict[str, _WindowState] = {}
        self.failures: dict[str, _FailureState] = {}


class InMemoryFixedWindowRateLimiter(AbstractRateLimiter):
    """Rate limiter using a fixed window per key.

    The window for a key starts at its first request and lasts
    ``policy.window_ms``. Requests are counted even once the key is limited,
    and the counter resets on the first request after the window expires.

    Because windows are fixed, a caller can get up to ``2 * limit`` requests
    through around a window edge. Limits are chosen with that in mind.

    Policies with ``adaptive`` set shrink the limit for keys with recent
    failures (see ``record_failure``); the window itself is unchanged.

    Important:
        This limiter is per-process only. If the API runs with multiple workers
        (e.g., multiple Uvicorn/Gunicorn workers), each worker will enforce its
        own independent limits.
    """

    def __init__(
        self,
        *,
        shards: int = 16,
        clock: Callable[[], int] = _wall_clock_ms,
    ) -> None:
        """Initialize the in-memory rate limiter.

        Args:
            shards: Number of lock partitions for the key space.
            clock: Time source returning UNIX time in milliseconds.

        Raises:
            ValueError: If shards is invalid.
        """
        if shards < 1:
            raise ValueError("shards must be >= 1")

        self._clock = clock
        self._shards = tuple(_Shard() for _ in range(shards))

    def _shard_for(self, key: str) -> _Shard:
        # crc32 rather than hash() so placement is stable across processes
        index = zlib.crc32(key.encode()) % len(self._shards)
        return self._shards[index]

    def _now(self) -> int:
        return int(self._clock())

    def _effective_limit_locked(self, shard: _Shard, key: str, policy: RateLimitPolicy, now: int) -> int:
        adaptive = policy.adaptive
        failure = shard.failures.get(key)
        if adaptive is None or failure is None:
            return policy.limit

        if now - failure.last_failure_ms > adaptive.failure_window_ms:
            del shard.failures[key]
            return policy.limit

        return adaptive.effective_limit(policy.limit, failure.count)

    def check(self, key: str, policy: RateLimitPolicy) -> RateLimitResult:
        """Count a request for key against policy.

        Args:
            key: Unique identifier for rate limiting (e.g., ``ip:1.2.3.4:/v1/auth``).
            policy: Limit and window to enforce.

        Returns:
            RateLimitResult with the decision and quota metadata.

        Raises:
            ValueError: If key is empty or the policy is not positive.
        """
        if not key:
            raise ValueError("key must be a non-empty string")
        if policy.limit < 1:
            raise ValueError("policy.limit must be >= 1")
        if policy.window_ms < 1:
            raise ValueError("policy.window_ms must be >= 1")

        shard = self._shard_for(key)

        with shard.lock:
            # Read under the lock so a stored window never starts after now
            now = self._now()
            limit = self._effective_limit_locked(shard, key, policy, now)

            state = shard.entries.get(key)
            if state is None or now - state.window_start_ms >= policy.window_ms:
                state = _WindowState(window_start_ms=now, window_ms=policy.window_ms, count=1)
                shard.entries[key] = state
                logger.debug(
                    "rate_limit.window_started",
                    extra={"limit": limit, "window_ms": policy.window_ms},
                )
            else:
                if now < state.window_start_ms:
                    # Clock stepped backwards: same window, anchored at now
                    state.window_start_ms = now
                state.count += 1

            limited = state.count > limit
            remaining = 0 if limited else limit - state.count
            reset_in_ms = min(
                policy.window_ms,
                max(0, state.window_start_ms + policy.window_ms - now),
            )

        return RateLimitResult(
            limited=limited,
            remaining=remaining,
            reset_in_ms=reset_in_ms,
            limit=limit,
        )

    def stats(self) -> RateLimitStats:
        total = 0
        active = 0
        for shard in self._shards:
            with shard.lock:
                now = self._now()
                total += len(shard.entries)
                active += sum(1 for state in shard.entries.values() if not state.is_expired(now))
        return RateLimitStats(total_entries=total, active_entries=active, shards=len(self._shards))

    def clear(self) -> None:
        for shard in self._shards:
            with shard.lock:
                shard.entries.clear()
                shard.failures.clear()

    def reset(self, key: str) -> bool:
        shard = self._shard_for(key)
        with shard.lock:
            shard.failures.pop(key, None)
            return shard.entries.pop(key, None) is not None

    def sweep_expired(self) -> int:
        """Drop entries whose window has expired.

        Returns:
            Number of entries removed across all shards.
        """
        removed = 0
        for shard in self._shards:
            with shard.lock:
                now = self._now()
                expired = [k for k, state in shard.entries.items() if state.is_expired(now)]
                for key in expired:
                    del shard.entries[key]
                removed += len(expired)

        if removed:
            logger.info("rate_limit.swept", extra={"removed": removed})
        return removed

    def record_failure(self, key: str) -> int:
        """Count a failed attempt (e.g., a wrong password) for key.

        Only policies with ``adaptive`` set react to failures.

        Returns:
            Number of failures currently recorded for key.
        """
        if not key:
            raise ValueError("key must be a non-empty string")

        shard = self._shard_for(key)
        with shard.lock:
            now = self._now()
            failure = shard.failures.get(key)
            if failure is None:
                failure = _FailureState(count=0, last_failure_ms=now)
                shard.failures[key] = failure
            failure.count += 1
            failure.last_failure_ms = now
            return failure.count

    def reset_failures(self, key: str) -> bool:
        shard = self._shard_for(key)
        with shard.lock:
            return shard.failures.pop(key, None) is not None
