"""
Cache stores for upstream responses with TTL support.
"""
import logging
import threading
import time
from typing import Any, Dict, Optional

import redis
from redis.backoff import ExponentialBackoff
from redis.retry import Retry

logger = logging.getLogger(__name__)


class CacheUnavailableError(Exception):
    """Raised when the cache backend cannot serve an operation."""


class RedisCacheStore:
    """Redis-backed cache store shared by all proxy workers."""

    def __init__(
        self,
        url: str,
        max_retries: int = 1,
        socket_timeout: float = 1.0,
        client: Optional[redis.Redis] = None,
    ):
        self.url = url
        if client is None:
            client = redis.Redis.from_url(
                url,
                decode_responses=True,
                socket_connect_timeout=socket_timeout,
                socket_timeout=socket_timeout,
                health_check_interval=30,
                retry=Retry(ExponentialBackoff(cap=1.0, base=0.1), max_retries),
                retry_on_error=[redis.ConnectionError, redis.TimeoutError],
            )
        self._client = client

    def get(self, key: str) -> Optional[str]:
        """Get the stored payload for key, or None when absent."""
        try:
            return self._client.get(key)
        except redis.RedisError as e:
            raise CacheUnavailableError(f"Redis GET failed: {e}") from e

    def set_with_expiry(self, key: str, value: str, ttl_seconds: int) -> None:
        """Store value under key, expiring after ttl_seconds."""
        try:
            self._client.setex(key, ttl_seconds, value)
        except redis.RedisError as e:
            raise CacheUnavailableError(f"Redis SETEX failed: {e}") from e

    def ping(self) -> bool:
        try:
            return bool(self._client.ping())
        except redis.RedisError as e:
            raise CacheUnavailableError(f"Redis PING failed: {e}") from e

    def close(self) -> None:
        self._client.close()
        logger.info(f"Redis connection to {self.url} closed")


class InMemoryCache:
    """Per-process cache store with the same interface as RedisCacheStore."""

    def __init__(self):
        self._cache: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        """Get cached payload if not expired."""
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                return None

            if time.time() >= entry["expires_at"]:
                del self._cache[key]
                return None

            return entry["value"]

    def set_with_expiry(self, key: str, value: str, ttl_seconds: int) -> None:
        """Cache payload until ttl_seconds from now."""
        with self._lock:
            self._cache[key] = {
                "value": value,
                "expires_at": time.time() + ttl_seconds,
            }

    def ping(self) -> bool:
        return True

    def close(self) -> None:
        self.clear()

    def clear(self) -> None:
        """Clear all cached data."""
        with self._lock:
            self._cache.clear()
