# apps/crawler/rate_limit.py

import random
import time
import logging
from urllib.parse import urlparse

import redis
from django.conf import settings

from .config import DelayRange

logger = logging.getLogger(__name__)


def get_redis_client() -> redis.Redis:
    """Get Redis client from Django settings."""
    redis_url = getattr(settings, "REDIS_URL", "redis://localhost:6379/0")
    return redis.from_url(redis_url)


class RateLimiter:
    """
    Request ceiling per platform host, shared by every worker process.
    Sliding window over the last minute, kept in a Redis sorted set.
    """

    def __init__(
        self,
        requests_per_minute: int = 20,
        redis_client: redis.Redis | None = None,
        sleep=time.sleep,
    ):
        self.requests_per_minute = requests_per_minute
        self.window_seconds = 60
        self.redis = redis_client or get_redis_client()
        self._sleep = sleep

    @staticmethod
    def _get_key(host: str) -> str:
        return f"talentscout:ratelimit:{host}"

    def check(self, host: str) -> tuple[bool, float]:
        """
        Check if a request to `host` is allowed now.
        Returns (allowed, wait_seconds).
        """
        key = self._get_key(host)
        now = time.time()

        try:
            self.redis.zremrangebyscore(key, 0, now - self.window_seconds)
            if self.redis.zcard(key) < self.requests_per_minute:
                return True, 0.0

            # Wait until the oldest request leaves the window
            oldest = self.redis.zrange(key, 0, 0, withscores=True)
            if oldest:
                wait_time = (oldest[0][1] + self.window_seconds) - now
                return False, max(0.0, wait_time)
            return True, 0.0

        except redis.RedisError as e:
            logger.error(f"Redis error in rate limiter: {e}")
            # Fail open, allow the request if Redis is down
            return True, 0.0

    def record(self, host: str) -> None:
        key = self._get_key(host)
        now = time.time()

        try:
            pipe = self.redis.pipeline()
            pipe.zadd(key, {f"{now}": now})
            pipe.zremrangebyscore(key, 0, now - self.window_seconds)
            pipe.expire(key, self.window_seconds * 2)
            pipe.execute()
        except redis.RedisError as e:
            logger.error(f"Redis error recording request: {e}")

    def wait_if_needed(self, host: str) -> float:
        """
        Wait if the ceiling is reached, then record the request.
        Returns actual wait time in seconds.
        """
        allowed, wait_time = self.check(host)

        if not allowed and wait_time > 0:
            logger.debug(f"Rate limited for {host}, waiting {wait_time:.2f}s")
            self._sleep(wait_time)

        self.record(host)
        return wait_time


class DomainRateLimiters:
    """
    One RateLimiter per platform host.
    Limits come from PLATFORM_REQUESTS_PER_MINUTE unless given per call.
    """

    def __init__(self, default_rpm: int | None = None, redis_client: redis.Redis | None = None):
        self.default_rpm = default_rpm or getattr(settings, "PLATFORM_REQUESTS_PER_MINUTE", 20)
        self.redis = redis_client or get_redis_client()
        self._limiters: dict[str, RateLimiter] = {}

    def get_limiter(self, host: str, requests_per_minute: int | None = None) -> RateLimiter:
        rpm = requests_per_minute or self.default_rpm
        cache_key = f"{host}:{rpm}"

        if cache_key not in self._limiters:
            self._limiters[cache_key] = RateLimiter(
                requests_per_minute=rpm,
                redis_client=self.redis,
            )
        return self._limiters[cache_key]

    def wait_if_needed(self, url: str, requests_per_minute: int | None = None) -> float:
        host = urlparse(url).netloc.lower()
        return self.get_limiter(host, requests_per_minute).wait_if_needed(host)


class Pacer:
    """
    Explicit pacing delays between fetches in one run loop.
    These are the only intentional blocking points of a run.
    """

    def __init__(self, sleep=time.sleep, rng: random.Random | None = None):
        self._sleep = sleep
        self._rng = rng or random.Random()
        self.total_slept = 0.0

    def pause(self, delay: DelayRange, reason: str = "") -> float:
        """Sleep for a value drawn from `delay`. Returns seconds slept."""
        if delay.is_zero:
            return 0.0
        seconds = self._rng.uniform(delay.min_seconds, delay.max_seconds)
        logger.debug(f"Pacing {seconds:.1f}s ({reason or 'next fetch'})")
        self._sleep(seconds)
        self.total_slept += seconds
        return seconds
