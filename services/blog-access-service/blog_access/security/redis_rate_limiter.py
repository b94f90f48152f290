"""Redis-backed attempt throttle shared by every service replica."""

from __future__ import annotations

import time
from typing import Callable, Final

from redis import Redis
from redis.exceptions import ResponseError


class RedisSlidingWindowRateLimiter:
    """Sliding window limiter keeping one sorted set of attempt timestamps per key.

    Same contract as the in-memory limiter: ``hit`` returns ``0.0`` when the
    attempt is admitted, otherwise the seconds to wait before retrying.
    """

    # returns 0 when admitted, else milliseconds until the oldest attempt expires
    _HIT_SCRIPT: Final[str] = """
    local attempts = KEYS[1]
    local sequence = attempts .. ':seq'
    local window_ms = tonumber(ARGV[1])
    local limit = tonumber(ARGV[2])
    local now_ms = tonumber(ARGV[3])

    redis.call('ZREMRANGEBYSCORE', attempts, '-inf', now_ms - window_ms)
    if redis.call('ZCARD', attempts) >= limit then
        local oldest = redis.call('ZRANGE', attempts, 0, 0, 'WITHSCORES')
        return tonumber(oldest[2]) + window_ms - now_ms
    end
    local seq = redis.call('INCR', sequence)
    redis.call('ZADD', attempts, now_ms, now_ms .. ':' .. seq)
    redis.call('PEXPIRE', attempts, window_ms)
    redis.call('PEXPIRE', sequence, window_ms)
    return 0
    """

    def __init__(
        self,
        client: Redis,
        *,
        max_requests: int,
        window_seconds: int,
        key_prefix: str = "blog-access:rate",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._client = client
        self.max_requests = max_requests
        self._window_ms = window_seconds * 1000
        self._key_prefix = key_prefix
        self._clock = clock
        self._script = client.register_script(self._HIT_SCRIPT)

    def hit(self, key: str) -> float:
        attempts = f"{self._key_prefix}:{key}"
        now_ms = int(self._clock() * 1000)
        try:
            wait_ms = self._script(keys=[attempts], args=[self._window_ms, self.max_requests, now_ms])
        except ResponseError as exc:
            message = str(exc).lower()
            if "unknown command `evalsha`" not in message and "unknown command `eval`" not in message:
                raise
            wait_ms = self._hit_without_scripting(attempts, now_ms)
        return int(wait_ms) / 1000

    def reset(self, key: str) -> None:
        attempts = f"{self._key_prefix}:{key}"
        self._client.delete(attempts, f"{attempts}:seq")

    def _hit_without_scripting(self, attempts: str, now_ms: int) -> int:
        """Non-atomic equivalent of ``_HIT_SCRIPT`` for servers with scripting disabled."""
        self._client.zremrangebyscore(attempts, "-inf", now_ms - self._window_ms)
        if self._client.zcard(attempts) >= self.max_requests:
            _, oldest_ms = self._client.zrange(attempts, 0, 0, withscores=True)[0]
            return int(oldest_ms) + self._window_ms - now_ms
        seq = self._client.incr(f"{attempts}:seq")
        self._client.zadd(attempts, {f"{now_ms}:{seq}": now_ms})
        self._client.pexpire(attempts, self._window_ms)
        self._client.pexpire(f"{attempts}:seq", self._window_ms)
        return 0
