"""Tiered AI request rate limiter.

Four limits are enforced per user: a token bucket for bursts and the
per-minute rate, sliding hourly and daily windows, and a cap on concurrent
in-flight requests. All state is refilled and pruned lazily on access, so the
only background work is the optional periodic ``cleanup``.

None of the public methods await, so under asyncio each call runs to
completion without interleaving with another request for the same user.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import dataclass, field
from typing import Callable

from ea_plan_ai.services.quota_store import (
    DAILY,
    HOURLY,
    MINUTE,
    WINDOW_SECONDS,
    InMemoryQuotaStore,
    QuotaStore,
    TokenBucket,
    WindowCounter,
)

logger = logging.getLogger(__name__)

UNLIMITED = -1
BUCKET_IDLE_SECONDS = 3600.0
TOP_USERS_LIMIT = 10


@dataclass(frozen=True)
class RateLimitConfig:
    requests_per_minute: int
    requests_per_hour: int
    requests_per_day: int
    concurrent_requests: int
    burst_allowance: int
    window_size: float = 60.0


USER_LIMITS: dict[str, RateLimitConfig] = {
    "admin": RateLimitConfig(
        requests_per_minute=UNLIMITED,
        requests_per_hour=UNLIMITED,
        requests_per_day=UNLIMITED,
        concurrent_requests=50,
        burst_allowance=100,
    ),
    "subadmin": RateLimitConfig(
        requests_per_minute=100,
        requests_per_hour=1000,
        requests_per_day=10000,
        concurrent_requests=20,
        burst_allowance=50,
    ),
    "user": RateLimitConfig(
        requests_per_minute=30,
        requests_per_hour=300,
        requests_per_day=1000,
        concurrent_requests=5,
        burst_allowance=10,
    ),
}


@dataclass(frozen=True)
class RateLimitResult:
    """Admission decision.

    ``reset_time`` is epoch seconds; ``retry_after`` is milliseconds.
    ``remaining`` is ``-1`` when every applicable limit is unlimited.
    """

    allowed: bool
    remaining: int
    reset_time: float
    retry_after: int | None = None
    reason: str | None = None


@dataclass(frozen=True)
class LimitStatus:
    limits: RateLimitConfig
    current: dict[str, float]
    remaining: dict[str, float]
    reset_times: dict[str, float]


@dataclass(frozen=True)
class UserVolume:
    user_id: str
    requests: float


@dataclass(frozen=True)
class GlobalStats:
    total_users: int
    total_active_requests: int
    average_requests_per_user: float
    top_users: list[UserVolume] = field(default_factory=list)


def level_multiplier(user_level: int | None) -> float:
    """Limit multiplier for a user level: +20% per level above 1, capped at 2x."""
    if not user_level or user_level < 1:
        return 1.0
    return min(1 + (user_level - 1) * 0.2, 2.0)


def _scale(value: int, multiplier: float) -> int:
    if value == UNLIMITED:
        return UNLIMITED
    # Guard against 300 * 1.2 landing on 359.999...
    return int(math.floor(value * multiplier + 1e-9))


def get_limits(role: str, user_level: int | None = None) -> RateLimitConfig:
    """Return the effective limits for a role, scaled by user level.

    Unknown roles get the ``user`` tier. Admin limits are never scaled.
    """
    base = USER_LIMITS.get(role, USER_LIMITS["user"])
    if role == "admin":
        return base
    multiplier = level_multiplier(user_level)
    return RateLimitConfig(
        requests_per_minute=_scale(base.requests_per_minute, multiplier),
        requests_per_hour=_scale(base.requests_per_hour, multiplier),
        requests_per_day=_scale(base.requests_per_day, multiplier),
        concurrent_requests=_scale(base.concurrent_requests, multiplier),
        burst_allowance=_scale(base.burst_allowance, multiplier),
        window_size=base.window_size,
    )


class RateLimiter:
    """Track per user request quotas across buckets, windows and concurrency."""

    def __init__(
        self,
        store: QuotaStore | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store or InMemoryQuotaStore()
        self._clock = clock

    def check_rate_limit(
        self,
        user_id: str,
        role: str,
        user_level: int | None = None,
        weight: float = 1,
    ) -> RateLimitResult:
        """Admit or reject one request of ``weight`` units.

        Checks run in order (token bucket, hourly, daily, concurrency) and
        the first failure is returned. Counters only change when every check
        passes. Never raises; internal errors come back as a rejection.
        """
        now = self._clock()
        try:
            limits = get_limits(role, user_level)
            if role == "admin":
                return RateLimitResult(
                    allowed=True,
                    remaining=UNLIMITED,
                    reset_time=now + limits.window_size,
                )
            if weight <= 0:
                raise ValueError(f"request weight must be positive, got {weight!r}")
            return self._evaluate(user_id, limits, weight, now)
        except Exception as exc:
            logger.exception("Rate limit check failed for user %s", user_id)
            return RateLimitResult(
                allowed=False,
                remaining=0,
                reset_time=now + WINDOW_SECONDS[MINUTE],
                reason=f"Rate limit check failed: {exc}",
            )

    def _evaluate(
        self,
        user_id: str,
        limits: RateLimitConfig,
        weight: float,
        now: float,
    ) -> RateLimitResult:
        remaining_counts: list[int] = []

        oversized = self._oversized_reason(limits, weight)
        if oversized is not None:
            return RateLimitResult(
                allowed=False,
                remaining=0,
                reset_time=now,
                retry_after=None,
                reason=oversized,
            )

        # 1. Token bucket: burst capacity refilled at the per-minute rate.
        bucket: TokenBucket | None = None
        if limits.requests_per_minute != UNLIMITED:
            bucket = self._load_bucket(user_id, limits, now)
            if bucket.tokens < weight:
                if bucket.refill_rate > 0:
                    wait_ms = math.ceil((weight - bucket.tokens) / bucket.refill_rate * 1000)
                else:
                    wait_ms = int(limits.window_size * 1000)
                return RateLimitResult(
                    allowed=False,
                    remaining=0,
                    reset_time=now + wait_ms / 1000,
                    retry_after=wait_ms,
                    reason=(
                        f"Per-minute request limit exceeded "
                        f"({limits.requests_per_minute} per minute, burst {limits.burst_allowance})"
                    ),
                )
            remaining_counts.append(int(math.floor(bucket.tokens - weight)))

        # 2-3. Sliding hourly and daily windows.
        counters: dict[str, WindowCounter] = {}
        for kind, limit, label in (
            (HOURLY, limits.requests_per_hour, "Hourly"),
            (DAILY, limits.requests_per_day, "Daily"),
        ):
            counter = self._load_window(user_id, kind, now)
            counters[kind] = counter
            if limit == UNLIMITED:
                continue
            if counter.total_weight + weight > limit:
                window_seconds = WINDOW_SECONDS[kind]
                oldest = counter.entries[0] if counter.entries else None
                reset_time = oldest.timestamp + window_seconds if oldest else now + window_seconds
                return RateLimitResult(
                    allowed=False,
                    remaining=0,
                    reset_time=reset_time,
                    retry_after=max(0, math.ceil((reset_time - now) * 1000)),
                    reason=f"{label} request limit exceeded ({limit} requests)",
                )
            remaining_counts.append(int(math.floor(limit - counter.total_weight - weight)))

        # 4. Concurrent in-flight requests.
        active = self.store.get_concurrent(user_id)
        if active >= limits.concurrent_requests:
            return RateLimitResult(
                allowed=False,
                remaining=0,
                reset_time=now + limits.window_size,
                reason=f"Concurrent request limit exceeded ({limits.concurrent_requests} requests)",
            )

        if bucket is not None:
            bucket.tokens -= weight
            self.store.put_bucket(user_id, bucket)
        counters[MINUTE] = self._load_window(user_id, MINUTE, now)
        for kind, counter in counters.items():
            counter.add(now, weight)
            self.store.put_window(user_id, kind, counter)

        return RateLimitResult(
            allowed=True,
            remaining=min(remaining_counts) if remaining_counts else UNLIMITED,
            reset_time=now + limits.window_size,
        )

    @staticmethod
    def _oversized_reason(limits: RateLimitConfig, weight: float) -> str | None:
        """Reason text when ``weight`` can never fit, whatever the wait."""
        if limits.requests_per_minute != UNLIMITED and weight > limits.burst_allowance:
            return f"Request weight {weight:g} exceeds burst allowance ({limits.burst_allowance})"
        for limit, label in ((limits.requests_per_hour, "hourly"), (limits.requests_per_day, "daily")):
            if limit != UNLIMITED and weight > limit:
                return f"Request weight {weight:g} exceeds {label} limit ({limit} requests)"
        return None

    def _bucket_tokens(self, user_id: str, limits: RateLimitConfig, now: float) -> float:
        """Tokens the bucket would hold at ``now``, without writing to the store."""
        bucket = self.store.get_bucket(user_id)
        if bucket is None:
            return float(limits.burst_allowance)
        elapsed = max(0.0, now - bucket.last_refill)
        refill_rate = limits.requests_per_minute / 60.0
        return min(float(limits.burst_allowance), max(0.0, bucket.tokens + elapsed * refill_rate))

    def _load_bucket(self, user_id: str, limits: RateLimitConfig, now: float) -> TokenBucket:
        capacity = float(limits.burst_allowance)
        refill_rate = limits.requests_per_minute / 60.0
        bucket = self.store.get_bucket(user_id)
        if bucket is None:
            bucket = TokenBucket(
                tokens=capacity,
                last_refill=now,
                capacity=capacity,
                refill_rate=refill_rate,
            )
        else:
            # Role or level may have changed since the bucket was created.
            bucket.capacity = capacity
            bucket.refill_rate = refill_rate
            bucket.refill(now)
        self.store.put_bucket(user_id, bucket)
        return bucket

    def _load_window(self, user_id: str, kind: str, now: float) -> WindowCounter:
        counter = self.store.get_window(user_id, kind)
        if counter is None:
            return WindowCounter()
        counter.prune(now, WINDOW_SECONDS[kind])
        if not counter.entries:
            self.store.delete_window(user_id, kind)
            return WindowCounter()
        return counter

    def track_request_start(self, user_id: str) -> None:
        self.store.set_concurrent(user_id, self.store.get_concurrent(user_id) + 1)

    def track_request_end(self, user_id: str) -> None:
        """Decrement the in-flight count; a call with nothing in flight is a no-op."""
        current = self.store.get_concurrent(user_id)
        if current <= 0:
            logger.warning("Unmatched request end for user %s ignored", user_id)
            self.store.set_concurrent(user_id, 0)
            return
        self.store.set_concurrent(user_id, current - 1)

    def get_limit_status(
        self,
        user_id: str,
        role: str,
        user_level: int | None = None,
    ) -> LimitStatus:
        """Snapshot of limits, usage, remaining quota and reset times. Read only."""
        limits = get_limits(role, user_level)
        now = self._clock()

        current: dict[str, float] = {}
        reset_times: dict[str, float] = {}
        for kind, key in ((MINUTE, "minute"), (HOURLY, "hour"), (DAILY, "day")):
            window_seconds = WINDOW_SECONDS[kind]
            counter = self.store.get_window(user_id, kind)
            if counter is None:
                current[key] = 0
                reset_times[key] = now + window_seconds
                continue
            current[key] = counter.live_weight(now, window_seconds)
            oldest = counter.oldest_live(now, window_seconds)
            reset_times[key] = (oldest.timestamp if oldest else now) + window_seconds
        current["concurrent"] = self.store.get_concurrent(user_id)

        def _remaining(limit: int, used: float) -> float:
            if limit == UNLIMITED:
                return UNLIMITED
            return max(0, limit - used)

        remaining = {
            "minute": _remaining(limits.requests_per_minute, current["minute"]),
            "hour": _remaining(limits.requests_per_hour, current["hour"]),
            "day": _remaining(limits.requests_per_day, current["day"]),
            "concurrent": max(0, limits.concurrent_requests - current["concurrent"]),
        }
        # The bucket is what admits per-minute traffic, so report what it holds.
        if limits.requests_per_minute == UNLIMITED:
            remaining["burst"] = UNLIMITED
            reset_times["burst"] = now
        else:
            tokens = self._bucket_tokens(user_id, limits, now)
            remaining["burst"] = math.floor(tokens)
            refill_rate = limits.requests_per_minute / 60.0
            missing = limits.burst_allowance - tokens
            reset_times["burst"] = now + (missing / refill_rate if refill_rate > 0 else 0.0)
        return LimitStatus(
            limits=limits,
            current=current,
            remaining=remaining,
            reset_times=reset_times,
        )

    def emergency_reset(self, user_id: str) -> None:
        """Drop every counter and the bucket for a user."""
        self.store.clear_user(user_id)
        logger.warning("Rate limit state reset for user %s", user_id)

    def get_global_stats(self) -> GlobalStats:
        """Aggregate load across users. Volume is the live daily window weight."""
        now = self._clock()
        users: set[str] = set()
        total_active = 0
        for user_id, count in self.store.iter_concurrent():
            users.add(user_id)
            total_active += max(0, count)

        volumes: dict[str, float] = {}
        for user_id, kind, counter in self.store.iter_windows():
            users.add(user_id)
            if kind == DAILY:
                volumes[user_id] = counter.live_weight(now, WINDOW_SECONDS[DAILY])

        total_volume = sum(volumes.values())
        top = sorted(volumes.items(), key=lambda item: (-item[1], item[0]))[:TOP_USERS_LIMIT]
        return GlobalStats(
            total_users=len(users),
            total_active_requests=total_active,
            average_requests_per_user=total_volume / len(users) if users else 0.0,
            top_users=[UserVolume(user_id=user_id, requests=volume) for user_id, volume in top],
        )

    def cleanup(self) -> dict[str, int]:
        """Prune expired window entries, idle buckets and zero concurrency entries."""
        now = self._clock()
        removed = {"entries": 0, "windows": 0, "buckets": 0, "concurrent": 0}

        for user_id, kind, counter in self.store.iter_windows():
            before = len(counter.entries)
            counter.prune(now, WINDOW_SECONDS[kind])
            removed["entries"] += before - len(counter.entries)
            if not counter.entries:
                self.store.delete_window(user_id, kind)
                removed["windows"] += 1
            else:
                self.store.put_window(user_id, kind, counter)

        for user_id, bucket in self.store.iter_buckets():
            if now - bucket.last_refill > BUCKET_IDLE_SECONDS:
                self.store.delete_bucket(user_id)
                removed["buckets"] += 1

        for user_id, count in self.store.iter_concurrent():
            if count <= 0:
                self.store.delete_concurrent(user_id)
                removed["concurrent"] += 1

        return removed


async def run_periodic_cleanup(limiter: RateLimiter, interval_seconds: float) -> None:
    """Call ``limiter.cleanup()`` every ``interval_seconds`` until cancelled."""
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            removed = limiter.cleanup()
        except Exception:
            logger.exception("Rate limiter cleanup failed")
            continue
        if any(removed.values()):
            logger.info(
                "Rate limiter cleanup removed %d entries, %d windows, %d buckets, %d idle counters",
                removed["entries"],
                removed["windows"],
                removed["buckets"],
                removed["concurrent"],
            )
