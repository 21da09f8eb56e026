"""
Redis read-through cache with circuit breaker.

List endpoints read through the cache; every service that mutates inventory
state calls ``invalidate`` after its commit. The cache is advisory: a Redis
outage degrades to uncached reads and never fails a request.

Usage:
    cache = get_cache_service()
    key = build_key("batches", page=1, item_id=4)
    data = await cache.get(key)
    ...
    await cache.invalidate("batches:*", "items:*")
"""

import json
import logging
import time
from typing import Any, Optional
from enum import IntEnum

import redis.asyncio as redis

from mdrrmo_api.config import settings

logger = logging.getLogger(__name__)


class TTL(IntEnum):
    """Cache TTL presets in seconds."""

    SHORT = 60
    MEDIUM = 300
    LONG = 3600


class CircuitState(IntEnum):
    CLOSED = 0  # Normal operation
    OPEN = 1  # Failing, reject requests
    HALF_OPEN = 2  # Testing recovery


# Key namespaces touched by stock-moving operations
INVENTORY_PATTERNS = ("items:*", "batches:*", "serialized:*", "deployments:*", "notifications:*")


def build_key(prefix: str, **params: Any) -> str:
    """Build a stable key from query parameters, skipping unset ones."""
    parts = [f"{k}={params[k]}" for k in sorted(params) if params[k] is not None]
    return ":".join([prefix, *parts]) if parts else f"{prefix}:all"


class CacheService:
    """
    Redis cache service with circuit breaker pattern.

    Without a ``redis_url`` every operation is a no-op miss.
    """

    def __init__(
        self,
        redis_url: Optional[str] = None,
        failure_threshold: int = 5,
        recovery_timeout: int = 30,
        default_ttl: int = TTL.SHORT,
    ):
        """
        Args:
            redis_url: Redis connection URL (e.g., redis://localhost:6379)
            failure_threshold: Number of failures before opening circuit
            recovery_timeout: Seconds to wait before testing recovery
            default_ttl: TTL used when ``set`` is called without one
        """
        self._redis_url = redis_url
        self._client = None
        self._failure_threshold = failure_threshold
        self._recovery_timeout = recovery_timeout
        self.default_ttl = int(default_ttl)

        self._circuit_state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time = 0.0

        self._hits = 0
        self._misses = 0

    def _get_client(self):
        """Get or create Redis client."""
        if not self._redis_url:
            return None

        if self._client is None:
            try:
                self._client = redis.from_url(
                    self._redis_url,
                    encoding="utf-8",
                    decode_responses=True,
                )
            except (ValueError, redis.RedisError) as e:
                logger.warning(f"Failed to create Redis client: {e}")
                return None

        return self._client

    def _check_circuit(self) -> bool:
        """Check if circuit allows requests."""
        if self._circuit_state == CircuitState.CLOSED:
            return True

        if self._circuit_state == CircuitState.OPEN:
            if time.time() - self._last_failure_time >= self._recovery_timeout:
                self._circuit_state = CircuitState.HALF_OPEN
                logger.info("Cache circuit breaker entering half-open state")
                return True
            return False

        # HALF_OPEN - allow single request to test
        return True

    def _record_success(self):
        if self._circuit_state == CircuitState.HALF_OPEN:
            self._circuit_state = CircuitState.CLOSED
            self._failure_count = 0
            logger.info("Cache circuit breaker closed (recovered)")

    def _record_failure(self):
        self._failure_count += 1
        self._last_failure_time = time.time()

        if self._circuit_state == CircuitState.HALF_OPEN:
            self._circuit_state = CircuitState.OPEN
            logger.warning("Cache circuit breaker opened (failed recovery)")
        elif self._failure_count >= self._failure_threshold:
            self._circuit_state = CircuitState.OPEN
            logger.warning(f"Cache circuit breaker opened after {self._failure_count} failures")

    async def get(self, key: str) -> Optional[Any]:
        """Get a JSON value from cache, or None on miss or error."""
        if not self._check_circuit():
            return None

        client = self._get_client()
        if not client:
            return None

        try:
            value = await client.get(key)
            self._record_success()
            if value is not None:
                self._hits += 1
                try:
                    return json.loads(value)
                except json.JSONDecodeError:
                    return value
            self._misses += 1
            return None
        except redis.RedisError as e:
            logger.debug(f"Cache get error for {key}: {e}")
            self._record_failure()
            return None

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """Store a JSON-serializable value with a TTL in seconds."""
        if not self._check_circuit():
            return False

        client = self._get_client()
        if not client:
            return False

        try:
            serialized = json.dumps(value, default=str)
            await client.setex(key, ttl or self.default_ttl, serialized)
            self._record_success()
            return True
        except redis.RedisError as e:
            logger.debug(f"Cache set error for {key}: {e}")
            self._record_failure()
            return False

    async def delete_pattern(self, pattern: str) -> int:
        """
        Delete all keys matching pattern.

        Args:
            pattern: Key pattern with wildcards (e.g., "batches:*")

        Returns:
            Number of keys deleted
        """
        if not self._check_circuit():
            return 0

        client = self._get_client()
        if not client:
            return 0

        try:
            keys = [key async for key in client.scan_iter(match=pattern)]
            if keys:
                await client.delete(*keys)
            self._record_success()
            return len(keys)
        except redis.RedisError as e:
            logger.warning(f"Cache invalidation failed for {pattern}: {e}")
            self._record_failure()
            return 0

    async def invalidate(self, *patterns: str) -> int:
        """Invalidate several key patterns after a commit. Never raises."""
        deleted = 0
        for pattern in patterns:
            deleted += await self.delete_pattern(pattern)
        if deleted:
            logger.debug(f"Invalidated {deleted} cache keys for {patterns}")
        return deleted

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def get_stats(self) -> dict:
        total = self._hits + self._misses
        hit_rate = (self._hits / total * 100) if total > 0 else 0.0

        return {
            "enabled": self._redis_url is not None,
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": round(hit_rate, 2),
            "circuit_state": self._circuit_state.name,
            "failure_count": self._failure_count,
        }

    @property
    def is_available(self) -> bool:
        return self._redis_url is not None and self._check_circuit()


_cache_service: Optional[CacheService] = None


def get_cache_service() -> CacheService:
    """Get or create the process-wide cache service (FastAPI dependency)."""
    global _cache_service
    if _cache_service is None:
        _cache_service = CacheService(
            redis_url=settings.REDIS_URL,
            default_ttl=settings.CACHE_TTL_SECONDS,
        )
    return _cache_service


async def close_cache_service() -> None:
    global _cache_service
    if _cache_service is not None:
        await _cache_service.close()
        _cache_service = None
