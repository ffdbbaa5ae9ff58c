"""
Redis Sliding-Window Rate Limiter

Process-wide limit on external fetch operations. All scrape workers share one
Redis sorted set per limiter key, so the window holds across worker processes
and hosts.
"""
import logging
import math
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import redis

from mention_pipeline.core.exceptions import RateLimitExceeded

logger = logging.getLogger(__name__)


class RateLimitResult(Enum):
    """Rate limit check results"""
    ALLOWED = "allowed"
    RATE_LIMITED = "rate_limited"


@dataclass
class RateLimitInfo:
    """Rate limit status information"""
    result: RateLimitResult
    remaining: int
    reset_time: float
    retry_after: Optional[int] = None

    @property
    def allowed(self) -> bool:
        return self.result == RateLimitResult.ALLOWED


# Trims expired entries, counts the window and records the new call atomically.
SLIDING_WINDOW_LUA = """
    local key = KEYS[1]
    local window = tonumber(ARGV[1])
    local limit = tonumber(ARGV[2])
    local now = tonumber(ARGV[3])
    local member = ARGV[4]

    redis.call('ZREMRANGEBYSCORE', key, 0, now - window)

    local current = redis.call('ZCARD', key)

    if current < limit then
        redis.call('ZADD', key, now, member)
        redis.call('PEXPIRE', key, window)
        return {1, limit - current - 1, tostring(now + window)}
    end

    local oldest = redis.call('ZRANGE', key, 0, 0, 'WITHSCORES')
    local reset_time = now + window
    if oldest[2] then
        reset_time = tonumber(oldest[2]) + window
    end
    return {0, 0, tostring(reset_time)}
"""


class SlidingWindowRateLimiter:
    """
    Sliding window rate limiter backed by Redis

    Each granted call is stored as a sorted-set member scored by its timestamp
    in milliseconds; a call is granted only while fewer than `limit` members
    fall inside the trailing window.
    """

    def __init__(
        self,
        redis_client: Optional[redis.Redis] = None,
        redis_url: Optional[str] = None,
        key_prefix: str = "rate_limit"
    ):
        if redis_client is None and redis_url is None:
            raise ValueError("SlidingWindowRateLimiter needs a redis client or url")

        self.redis_url = redis_url
        self.redis_client = redis_client
        self.key_prefix = key_prefix
        self._script = None

    def _client(self) -> redis.Redis:
        if self.redis_client is None:
            self.redis_client = redis.Redis.from_url(
                self.redis_url,
                socket_connect_timeout=5,
                socket_timeout=10,
                health_check_interval=30,
            )
        return self.redis_client

    def _sliding_window(self):
        if self._script is None:
            self._script = self._client().register_script(SLIDING_WINDOW_LUA)
        return self._script

    def check(self, key: str, limit: int, window_seconds: int) -> RateLimitInfo:
        """
        Try to take one slot in the window for `key`

        Args:
            key: Limiter key (e.g. "scrape:fetch")
            limit: Maximum calls per window
            window_seconds: Rolling window length

        Returns:
            RateLimitInfo describing whether the call was granted
        """
        now_ms = int(time.time() * 1000)
        window_ms = window_seconds * 1000
        member = f"{now_ms}-{uuid.uuid4().hex}"

        allowed, remaining, reset_ms = self._sliding_window()(
            keys=[f"{self.key_prefix}:{key}"],
            args=[window_ms, limit, now_ms, member],
        )

        reset_ms = float(reset_ms)
        if int(allowed) == 1:
            return RateLimitInfo(
                result=RateLimitResult.ALLOWED,
                remaining=int(remaining),
                reset_time=reset_ms / 1000.0,
            )

        retry_after = max(1, math.ceil((reset_ms - now_ms) / 1000.0))
        return RateLimitInfo(
            result=RateLimitResult.RATE_LIMITED,
            remaining=0,
            reset_time=reset_ms / 1000.0,
            retry_after=retry_after,
        )

    def acquire(self, key: str, limit: int, window_seconds: int) -> RateLimitInfo:
        """Take one slot or raise RateLimitExceeded"""
        info = self.check(key, limit, window_seconds)
        if not info.allowed:
            logger.info(f"Rate limit window full for {key}, retry after {info.retry_after}s")
            raise RateLimitExceeded(info.retry_after)
        return info

    def close(self):
        if self.redis_client is not None:
            self.redis_client.close()
            self.redis_client = None
            self._script = None
