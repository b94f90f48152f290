"""Attempt throttling for registration, login and MFA confirmation."""

from __future__ import annotations

import logging
import time
from collections import deque
from threading import Lock
from typing import TYPE_CHECKING, Callable, Protocol

if TYPE_CHECKING:
    from ..config import Settings

logger = logging.getLogger(__name__)


class RateLimiter(Protocol):
    def hit(self, key: str) -> float: ...

    def reset(self, key: str) -> None: ...


class SlidingWindowRateLimiter:
    """Process-local limiter admitting ``max_requests`` attempts per key per window.

    ``hit`` records an attempt and returns ``0.0`` when it is admitted, or the
    number of seconds until the oldest attempt leaves the window otherwise.
    Refused attempts are not recorded.
    """

    def __init__(
        self,
        max_requests: int,
        window_seconds: int,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_requests = max_requests
        self.window = float(window_seconds)
        self._clock = clock
        self._attempts: dict[str, deque[float]] = {}
        self._lock = Lock()

    def hit(self, key: str) -> float:
        now = self._clock()
        horizon = now - self.window
        with self._lock:
            attempts = self._attempts.setdefault(key, deque())
            while attempts and attempts[0] <= horizon:
                attempts.popleft()
            if len(attempts) >= self.max_requests:
                return attempts[0] - horizon
            attempts.append(now)
            return 0.0

    def reset(self, key: str) -> None:
        """Forget recorded attempts for ``key``, e.g. after a successful confirmation."""
        with self._lock:
            self._attempts.pop(key, None)


def build_rate_limiter(settings: "Settings") -> RateLimiter:
    """Instantiate the configured backend, falling back to memory when Redis is unreachable."""
    if settings.rate_limit_backend == "redis" and settings.redis_url:
        try:
            import redis

            from .redis_rate_limiter import RedisSlidingWindowRateLimiter

            client = redis.from_url(settings.redis_url)
            # ensure connectivity early to fail fast and fall back
            client.ping()
            logger.info("rate limiter configured for redis backend at %s", settings.redis_url)
            return RedisSlidingWindowRateLimiter(
                client,
                max_requests=settings.rate_limit_requests,
                window_seconds=settings.rate_limit_window_seconds,
            )
        except Exception as exc:  # pragma: no cover - depends on redis availability
            logger.warning("redis rate limiter unavailable, falling back to in-memory: %s", exc)

    logger.info("rate limiter using in-memory backend")
    return SlidingWindowRateLimiter(
        max_requests=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )
