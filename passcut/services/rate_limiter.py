"""
Rate Limiter - Pass-Cut Platform
passcut/services/rate_limiter.py

Fixed-window request counters keyed by client identity and route group.
InMemoryRateLimiter serves a single process; RedisRateLimiter shares the
window across workers.
"""

import logging
import math
import threading
import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, Optional, Tuple

import redis

from passcut.config import Settings, get_settings
from passcut.core.exceptions import RateLimitExceeded

logger = logging.getLogger(__name__)

MAX_BUCKETS = 5000
KEY_PREFIX = "passcut:ratelimit"


class RateLimiter(ABC):
    """Fixed-window limiter: at most ``limit`` hits per ``window_seconds``."""

    def __init__(self, limit: int, window_seconds: int):
        self.limit = limit
        self.window_seconds = window_seconds

    @abstractmethod
    def hit(self, key: str) -> Optional[int]:
        """Count one request; returns seconds to wait when over the limit, else None."""

    def check(self, key: str) -> None:
        """
        Raises:
            RateLimitExceeded: the key has exhausted its window.
        """
        retry_after = self.hit(key)
        if retry_after is not None:
            logger.warning("rate_limited", extra={"key": key, "retry_after_sec": retry_after})
            raise RateLimitExceeded(retry_after)


class InMemoryRateLimiter(RateLimiter):

    def __init__(
        self,
        limit: int,
        window_seconds: int,
        clock: Callable[[], float] = time.monotonic,
        max_buckets: int = MAX_BUCKETS,
    ):
        super().__init__(limit, window_seconds)
        self.clock = clock
        self.max_buckets = max_buckets
        self._buckets: Dict[str, Tuple[float, int]] = {}  # key -> (window start, count)
        self._lock = threading.Lock()

    def _cleanup(self, now: float) -> None:
        expired = [k for k, (start, _) in self._buckets.items() if now - start >= self.window_seconds]
        for key in expired:
            del self._buckets[key]
        # Still full: drop the oldest windows
        overflow = len(self._buckets) - self.max_buckets + 1
        if overflow > 0:
            for key, _ in sorted(self._buckets.items(), key=lambda item: item[1][0])[:overflow]:
                del self._buckets[key]

    def hit(self, key: str) -> Optional[int]:
        with self._lock:
            now = self.clock()
            bucket = self._buckets.get(key)
            if bucket is None or now - bucket[0] >= self.window_seconds:
                if bucket is None and len(self._buckets) >= self.max_buckets:
                    self._cleanup(now)
                self._buckets[key] = (now, 1)
                return None

            start, count = bucket
            if count >= self.limit:
                return max(1, math.ceil(self.window_seconds - (now - start)))
            self._buckets[key] = (start, count + 1)
            return None

    def reset(self) -> None:
        with self._lock:
            self._buckets.clear()


class RedisRateLimiter(RateLimiter):

    def __init__(self, limit: int, window_seconds: int, redis_url: str):
        super().__init__(limit, window_seconds)
        self.client = redis.from_url(
            redis_url,
            decode_responses=True,
            socket_connect_timeout=5,
        )

    def hit(self, key: str) -> Optional[int]:
        redis_key = f"{KEY_PREFIX}:{key}"
        try:
            count = self.client.incr(redis_key)
            if count == 1:
                self.client.expire(redis_key, self.window_seconds)
            if count <= self.limit:
                return None
            ttl = self.client.ttl(redis_key)
            if ttl is None or ttl < 0:
                self.client.expire(redis_key, self.window_seconds)
                return self.window_seconds
        except redis.RedisError as e:
            # Limiter unavailable: let the request through
            logger.warning("rate_limiter_unavailable", extra={"key": key, "error": str(e)})
            return None
        return max(1, int(ttl))


def build_rate_limiter(settings: Optional[Settings] = None) -> RateLimiter:
    settings = settings or get_settings()
    if settings.RATE_LIMIT_BACKEND == "redis":
        return RedisRateLimiter(
            settings.RATE_LIMIT_PER_MINUTE,
            settings.RATE_LIMIT_WINDOW_SECONDS,
            settings.REDIS_URL,
        )
    return InMemoryRateLimiter(settings.RATE_LIMIT_PER_MINUTE, settings.RATE_LIMIT_WINDOW_SECONDS)
