# checkin_service/db/redis.py
"""
Redis client factory and the circuit breaker that guards every cache call.

The cache is an optimization, never a source of truth. After
CACHE_FAILURE_THRESHOLD consecutive errors the breaker opens and callers go
straight to the durable store until CACHE_RESET_TIMEOUT_SECONDS have passed.
"""

import logging
import threading
import time

import redis

from checkin_service.core.config import settings

logger = logging.getLogger(__name__)


def get_redis_client() -> redis.Redis:
    """
    Creates and returns a new Redis client instance.
    Short socket timeouts keep a slow cache from stalling check-in requests.
    """
    return redis.from_url(
        settings.REDIS_URL,
        decode_responses=True,
        socket_timeout=settings.CACHE_SOCKET_TIMEOUT_SECONDS,
        socket_connect_timeout=settings.CACHE_SOCKET_TIMEOUT_SECONDS,
    )


# Shared instance for request handlers; connections are opened lazily.
redis_client = get_redis_client()


class CacheCircuitBreaker:
    """Thread-safe consecutive-failure breaker shared by all cache users in a process."""

    def __init__(
        self,
        threshold: int = settings.CACHE_FAILURE_THRESHOLD,
        reset_timeout: float = settings.CACHE_RESET_TIMEOUT_SECONDS,
        enabled: bool = settings.CACHE_ENABLED,
    ):
        self.threshold = threshold
        self.reset_timeout = reset_timeout
        self.enabled = enabled
        self._failures = 0
        self._last_failure = None
        self._lock = threading.Lock()

    def allow(self) -> bool:
        """Return True when the cache may be called."""
        if not self.enabled:
            return False
        with self._lock:
            if self._failures < self.threshold or self._last_failure is None:
                return True
            if time.monotonic() - self._last_failure > self.reset_timeout:
                # Half-open: let the next call try the cache
                self._failures = 0
                self._last_failure = None
                logger.info("Cache circuit breaker reset after timeout")
                return True
            return False

    def record_failure(self, exc: Exception | None = None):
        with self._lock:
            self._failures += 1
            self._last_failure = time.monotonic()
            failures = self._failures
        logger.warning(
            "Cache failure recorded (%s/%s): %s", failures, self.threshold, exc
        )

    def record_success(self):
        if self._failures:
            with self._lock:
                self._failures = 0
                self._last_failure = None


cache_breaker = CacheCircuitBreaker()


def cache_key(*parts) -> str:
    """Namespaced key: {prefix}:{env}:part1:part2..."""
    return ":".join([settings.REDIS_KEY_PREFIX, settings.ENV, *map(str, parts)])
