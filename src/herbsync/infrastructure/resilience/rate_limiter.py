"""Rate limiter implementation using fixed, epoch-aligned windows.

Coordinates API calls to respect provider quotas:
- Trefle: 120 req/min
- Perenual: 60 req/min, plus 100 req/day on the free tier

A call is admitted only when every configured window still has room, and
then consumes one slot from each of them. Window usage can be exported and
restored so a quota keeps counting across processes.
"""

from __future__ import annotations

import math
import threading
from dataclasses import dataclass, field

import structlog

from herbsync.domain.value_objects import QuotaUsage
from herbsync.infrastructure.clock import Clock, utc_now

logger = structlog.get_logger(__name__)


@dataclass
class WindowQuota:
    """At most ``limit`` calls per fixed window of ``window_seconds``."""

    limit: int
    window_seconds: float
    window_index: int = field(default=-1, init=False)
    used: int = field(default=0, init=False)

    def __post_init__(self) -> None:
        if self.limit < 1:
            raise ValueError("limit must be at least 1")
        if self.window_seconds <= 0:
            raise ValueError("window_seconds must be positive")

    def _roll(self, now_ts: float) -> None:
        """Start a fresh window once the clock passes the current one."""
        index = math.floor(now_ts / self.window_seconds)
        if index != self.window_index:
            self.window_index = index
            self.used = 0

    def has_room(self, now_ts: float) -> bool:
        self._roll(now_ts)
        return self.used < self.limit

    def consume(self) -> None:
        self.used += 1

    def seconds_until_reset(self, now_ts: float) -> float:
        self._roll(now_ts)
        window_end = (self.window_index + 1) * self.window_seconds
        return max(0.0, window_end - now_ts)

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.used)


class RateLimiter:
    """Rate limiter for one provider.

    Usage:
        limiter = RateLimiter("trefle", [WindowQuota(120, 60)])

        if not limiter.allow():
            raise RateLimitedError("trefle", wait_time=limiter.time_until_available())
    """

    def __init__(
        self,
        service_name: str,
        quotas: list[WindowQuota],
        *,
        clock: Clock | None = None,
    ):
        """Initialize rate limiter.

        Args:
            service_name: Provider name for logging
            quotas: Windows that must all have room for a call to pass
            clock: Time source (defaults to UTC wall clock)
        """
        if not quotas:
            raise ValueError("at least one quota is required")
        self.service_name = service_name
        self.quotas = quotas
        self._clock = clock or utc_now
        # Sync lock: allow() never awaits, so it is atomic for threads and tasks alike
        self._lock = threading.Lock()
        self._allowed = 0
        self._denied = 0

        logger.debug(
            "rate_limiter_initialized",
            service=service_name,
            quotas=[(q.limit, q.window_seconds) for q in quotas],
        )

    def _now_ts(self) -> float:
        return self._clock().timestamp()

    def allow(self) -> bool:
        """Consume one slot from every window if all have room.

        Returns:
            True if the call may proceed, False if any window is exhausted
        """
        with self._lock:
            now_ts = self._now_ts()
            if all(quota.has_room(now_ts) for quota in self.quotas):
                for quota in self.quotas:
                    quota.consume()
                self._allowed += 1
                return True
            self._denied += 1

        logger.debug("rate_limit_denied", service=self.service_name)
        return False

    def time_until_available(self) -> float:
        """Seconds until every exhausted window has reset (0 if a call would pass now)."""
        with self._lock:
            now_ts = self._now_ts()
            waits = [
                quota.seconds_until_reset(now_ts)
                for quota in self.quotas
                if not quota.has_room(now_ts)
            ]
        return max(waits, default=0.0)

    def export_usage(self) -> list[QuotaUsage]:
        """Usage of every window as of now, after rolling expired windows."""
        with self._lock:
            now_ts = self._now_ts()
            for quota in self.quotas:
                quota.has_room(now_ts)
            return [
                QuotaUsage(
                    window_seconds=quota.window_seconds,
                    window_index=quota.window_index,
                    used=quota.used,
                )
                for quota in self.quotas
            ]

    def restore_usage(self, usage: list[QuotaUsage]) -> None:
        """Load window usage saved elsewhere.

        Entries are matched by window length. Entries for windows this limiter
        does not have are ignored; a stale window index simply rolls over on
        the next call.
        """
        by_length = {u.window_seconds: u for u in usage}
        with self._lock:
            for quota in self.quotas:
                saved = by_length.get(quota.window_seconds)
                if saved is not None:
                    quota.window_index = saved.window_index
                    quota.used = saved.used

    def get_stats(self) -> dict:
        """Get rate limiter statistics."""
        with self._lock:
            now_ts = self._now_ts()
            windows = []
            for quota in self.quotas:
                quota.has_room(now_ts)
                windows.append(
                    {
                        "limit": quota.limit,
                        "window_seconds": quota.window_seconds,
                        "used": quota.used,
                        "remaining": quota.remaining,
                        "resets_in": quota.seconds_until_reset(now_ts),
                    }
                )
            return {
                "service": self.service_name,
                "allowed": self._allowed,
                "denied": self._denied,
                "windows": windows,
            }


# Pre-configured rate limiters for known providers
def create_trefle_rate_limiter(
    *, requests_per_minute: int = 120, clock: Clock | None = None
) -> RateLimiter:
    """Create rate limiter for the Trefle API.

    Args:
        requests_per_minute: Documented per-token quota
        clock: Optional time source

    Returns:
        Configured RateLimiter
    """
    return RateLimiter("trefle", [WindowQuota(requests_per_minute, 60.0)], clock=clock)


def create_perenual_rate_limiter(
    *,
    premium: bool = False,
    requests_per_minute: int = 60,
    requests_per_day: int | None = 100,
    clock: Clock | None = None,
) -> RateLimiter:
    """Create rate limiter for the Perenual API.

    Args:
        premium: True for paid keys, which have no daily cap
        requests_per_minute: Per-minute quota
        requests_per_day: Daily quota on the free tier
        clock: Optional time source

    Returns:
        Configured RateLimiter
    """
    quotas = [WindowQuota(requests_per_minute, 60.0)]
    if not premium and requests_per_day:
        quotas.append(WindowQuota(requests_per_day, 86_400.0))
    return RateLimiter("perenual", quotas, clock=clock)


__all__ = [
    "RateLimiter",
    "WindowQuota",
    "create_perenual_rate_limiter",
    "create_trefle_rate_limiter",
]
