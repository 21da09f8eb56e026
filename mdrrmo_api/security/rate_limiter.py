"""
Login throttling.

Failed sign-ins are counted per client address in a fixed window; once the
limit is reached further attempts are refused with 429 until the window
expires. A successful sign-in clears the address.

Counters live in Redis when ``REDIS_URL`` is set, so every worker sees the
same failures. Without Redis they are kept in process memory.
"""

import hashlib
import time
from abc import ABC, abstractmethod
from typing import Dict, Optional, Tuple
from dataclasses import dataclass, field
import logging

import redis.asyncio as redis

from mdrrmo_api.config import settings
from mdrrmo_api.exceptions import RateLimitError

logger = logging.getLogger(__name__)


class LoginAttemptBackend(ABC):
    """Storage for failed-attempt counters."""

    @abstractmethod
    async def get(self, key: str, window_seconds: int) -> Tuple[int, int]:
        """
        Returns:
            Tuple of (failures in the current window, seconds until it expires)
        """

    @abstractmethod
    async def increment(self, key: str, window_seconds: int) -> int:
        """Count one failure and return the new total."""

    @abstractmethod
    async def clear(self, key: str) -> None:
        pass

    async def close(self) -> None:
        pass


@dataclass
class RateLimitWindow:
    """Track attempts within a time window."""
    count: int = 0
    window_start: float = field(default_factory=time.time)


class MemoryLoginBackend(LoginAttemptBackend):
    """Per-process counters; expired windows are pruned as new failures arrive."""

    def __init__(self):
        self._windows: Dict[str, RateLimitWindow] = {}

    def _live(self, key: str, window_seconds: int) -> Optional[RateLimitWindow]:
        window = self._windows.get(key)
        if window and time.time() - window.window_start > window_seconds:
            del self._windows[key]
            return None
        return window

    def prune(self, window_seconds: int) -> int:
        cutoff = time.time() - window_seconds
        expired = [key for key, window in self._windows.items() if window.window_start < cutoff]
        for key in expired:
            del self._windows[key]
        return len(expired)

    async def get(self, key: str, window_seconds: int) -> Tuple[int, int]:
        window = self._live(key, window_seconds)
        if window is None:
            return 0, window_seconds
        remaining = int(window_seconds - (time.time() - window.window_start))
        return window.count, remaining

    async def increment(self, key: str, window_seconds: int) -> int:
        self.prune(window_seconds)
        window = self._windows.setdefault(key, RateLimitWindow())
        window.count += 1
        return window.count

    async def clear(self, key: str) -> None:
        self._windows.pop(key, None)


class RedisLoginBackend(LoginAttemptBackend):
    """
    Shared counters using ``INCR`` with an ``EXPIRE`` set on the first failure.

    Redis outages fail open: the attempt is allowed and the error is logged.
    """

    def __init__(self, redis_client, prefix: str = "login_attempts"):
        self.redis = redis_client
        self.prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self.prefix}:{key}"

    async def get(self, key: str, window_seconds: int) -> Tuple[int, int]:
        try:
            pipe = self.redis.pipeline()
            pipe.get(self._key(key))
            pipe.ttl(self._key(key))
            count, ttl = await pipe.execute()
        except redis.RedisError as e:
            logger.error(f"Redis login limiter read failed: {e}")
            return 0, window_seconds
        return int(count or 0), ttl if ttl and ttl > 0 else window_seconds

    async def increment(self, key: str, window_seconds: int) -> int:
        try:
            count = await self.redis.incr(self._key(key))
            # Only the first failure sets the expiry; the window does not slide
            if count == 1:
                await self.redis.expire(self._key(key), window_seconds)
            return int(count)
        except redis.RedisError as e:
            logger.error(f"Redis login limiter write failed: {e}")
            return 0

    async def clear(self, key: str) -> None:
        try:
            await self.redis.delete(self._key(key))
        except redis.RedisError as e:
            logger.error(f"Redis login limiter reset failed: {e}")

    async def close(self) -> None:
        await self.redis.aclose()


def client_key(host: Optional[str]) -> str:
    """Hash the client address; raw addresses are not stored."""
    return hashlib.sha256((host or "unknown").encode()).hexdigest()[:16]


class LoginRateLimiter:
    def __init__(
        self,
        max_attempts: int = 5,
        window_seconds: int = 900,
        backend: Optional[LoginAttemptBackend] = None,
    ):
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds
        self.backend = backend or MemoryLoginBackend()

    async def check(self, key: str) -> None:
        """Refuse the attempt if the address has exhausted its window."""
        count, remaining = await self.backend.get(key, self.window_seconds)
        if count >= self.max_attempts:
            retry_after = max(1, remaining)
            logger.warning("Login rate limit exceeded", extra={"retry_after": retry_after})
            raise RateLimitError(retry_after=retry_after)

    async def record_failure(self, key: str) -> int:
        return await self.backend.increment(key, self.window_seconds)

    async def reset(self, key: str) -> None:
        await self.backend.clear(key)


_login_rate_limiter: Optional[LoginRateLimiter] = None


def get_login_rate_limiter() -> LoginRateLimiter:
    """Process-wide limiter, Redis-backed when ``REDIS_URL`` is configured."""
    global _login_rate_limiter
    if _login_rate_limiter is None:
        backend = None
        if settings.REDIS_URL:
            backend = RedisLoginBackend(redis.from_url(
                settings.REDIS_URL,
                decode_responses=True,
                socket_connect_timeout=2,
                socket_timeout=2,
            ))
            logger.info("Login rate limiting backed by Redis")
        _login_rate_limiter = LoginRateLimiter(
            max_attempts=settings.LOGIN_MAX_ATTEMPTS,
            window_seconds=settings.LOGIN_WINDOW_SECONDS,
            backend=backend,
        )
    return _login_rate_limiter


async def close_login_rate_limiter() -> None:
    global _login_rate_limiter
    if _login_rate_limiter is not None:
        await _login_rate_limiter.backend.close()
        _login_rate_limiter = None
