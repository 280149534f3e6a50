from collections.abc import Iterator
from contextlib import contextmanager

from redis.asyncio import Redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from financeflow.config import Settings
from financeflow.errors import TransientInfraError


def create_redis(settings: Settings) -> Redis:
    if not settings.redis_url:
        raise RuntimeError("REDIS_URL is not configured.")
    return Redis.from_url(
        settings.redis_url,
        decode_responses=True,
        health_check_interval=30,
        retry_on_timeout=True,
    )


@contextmanager
def store_errors() -> Iterator[None]:
    """Re-raise Redis connectivity failures as TransientInfraError."""
    try:
        yield
    except (RedisConnectionError, RedisTimeoutError) as exc:
        raise TransientInfraError(f"Key-value store unavailable: {exc}") from exc
