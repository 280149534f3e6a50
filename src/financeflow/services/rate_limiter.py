"""Fixed-window per-user request counter stored in Redis."""

import math
import time
from collections.abc import Callable

from redis.asyncio import Redis

from financeflow.services.redis_client import store_errors

KEY_PREFIX = "rate_limit"
DEFAULT_WINDOW_MS = 60_000


def _now_ms() -> int:
    return int(time.time() * 1000)


class RateLimiter:
    def __init__(self, redis: Redis, clock: Callable[[], int] = _now_ms) -> None:
        self._redis = redis
        self._clock = clock

    def _key(self, user_id: str, window_ms: int) -> str:
        window = self._clock() // window_ms
        return f"{KEY_PREFIX}:{user_id}:{window}"

    async def check_limit(
        self, user_id: str, limit: int, window_ms: int = DEFAULT_WINDOW_MS
    ) -> bool:
        """
        Count one request for the user's current window.

        Returns False once the count passes `limit`. Store errors propagate;
        callers decide whether that means reject or allow.
        """
        key = self._key(user_id, window_ms)
        with store_errors():
            current = await self._redis.incr(key)
            if current == 1:
                await self._redis.expire(key, math.ceil(window_ms / 1000))
        return current <= limit

    async def get_usage(self, user_id: str, window_ms: int = DEFAULT_WINDOW_MS) -> int:
        with store_errors():
            value = await self._redis.get(self._key(user_id, window_ms))
        return int(value or 0)
