"""Process-wide service objects, built once at startup and passed explicitly."""

import logging
from dataclasses import dataclass

from openai import AsyncOpenAI
from redis.asyncio import Redis
from supabase import Client

from financeflow.config import Settings
from financeflow.services.extractor import TransactionExtractor
from financeflow.services.ingress import WebhookIngress
from financeflow.services.job_queue import JobQueue
from financeflow.services.notifications import ChatNotifier, create_notifier
from financeflow.services.openai_client import create_openai_client, get_openai_api_key
from financeflow.services.persistence import PersistenceAdapter
from financeflow.services.rate_limiter import RateLimiter
from financeflow.services.redis_client import create_redis
from financeflow.services.supabase_client import create_supabase

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    redis: Redis
    supabase: Client
    rate_limiter: RateLimiter
    queue: JobQueue
    notifier: ChatNotifier
    persistence: PersistenceAdapter
    ingress: WebhookIngress
    openai: AsyncOpenAI | None = None
    extractor: TransactionExtractor | None = None

    async def aclose(self) -> None:
        await self.notifier.aclose()
        if self.openai is not None:
            await self.openai.close()
        await self.redis.aclose()


def build_queue(redis: Redis, settings: Settings) -> JobQueue:
    return JobQueue(
        redis,
        settings.queue_name,
        max_attempts=settings.queue_max_attempts,
        backoff_ms=int(settings.queue_backoff_seconds * 1000),
        keep_completed=settings.queue_keep_completed,
        keep_failed=settings.queue_keep_failed,
        lock_seconds=settings.queue_lock_seconds,
        dedupe_ttl_seconds=settings.queue_dedupe_ttl_seconds,
    )


def build_services(settings: Settings) -> Services:
    redis = create_redis(settings)
    supabase = create_supabase(settings)
    rate_limiter = RateLimiter(redis)
    queue = build_queue(redis, settings)
    notifier = create_notifier(settings)

    openai = None
    extractor = None
    api_key = get_openai_api_key(settings)
    if api_key:
        openai = create_openai_client(settings, api_key)
        extractor = TransactionExtractor(
            openai, settings.openai_model, settings.openai_temperature
        )

    ingress = WebhookIngress(
        supabase,
        rate_limiter,
        queue,
        notifier,
        app_url=settings.app_url,
        rate_limit_window_ms=settings.rate_limit_window_ms,
        usage_timezone=settings.usage_timezone,
    )
    logger.info("Services initialized (env=%s)", settings.financeflow_env)
    return Services(
        settings=settings,
        redis=redis,
        supabase=supabase,
        rate_limiter=rate_limiter,
        queue=queue,
        notifier=notifier,
        persistence=PersistenceAdapter(supabase, settings.currency),
        ingress=ingress,
        openai=openai,
        extractor=extractor,
    )
