"""Webhook fast path: admit an inbound chat message onto the job queue."""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

from supabase import Client

from financeflow.config import plan_limits_for
from financeflow.models import Job, JobSource
from financeflow.repositories.usage_logs import count_usage_since, insert_usage_log
from financeflow.repositories.user_profiles import fetch_user_by_telegram_id
from financeflow.services.job_queue import JobQueue
from financeflow.services.notifications import ChatNotifier
from financeflow.services.rate_limiter import RateLimiter
from financeflow.utils.time import start_of_month
from financeflow.workflows.replies import (
    PROCESSING_REPLY,
    RATE_LIMITED_REPLY,
    quota_reply,
    registration_reply,
)

logger = logging.getLogger(__name__)


class IngressOutcome(str, Enum):
    IGNORED = "ignored"
    UNREGISTERED = "unregistered"
    RATE_LIMITED = "rate_limited"
    QUOTA_EXCEEDED = "quota_exceeded"
    DUPLICATE = "duplicate"
    ENQUEUED = "enqueued"


@dataclass(frozen=True)
class InboundMessage:
    sender_id: str
    chat_id: str
    text: str | None
    sent_at: int
    message_id: str | None = None
    source: JobSource = JobSource.TELEGRAM


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class WebhookIngress:
    def __init__(
        self,
        supabase: Client,
        rate_limiter: RateLimiter,
        queue: JobQueue,
        notifier: ChatNotifier,
        *,
        app_url: str,
        rate_limit_window_ms: int = 60_000,
        usage_timezone: str = "UTC",
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._supabase = supabase
        self._rate_limiter = rate_limiter
        self._queue = queue
        self._notifier = notifier
        self._app_url = app_url
        self._window_ms = rate_limit_window_ms
        self._usage_timezone = usage_timezone
        self._clock = clock

    async def _reply(self, message: InboundMessage, text: str) -> None:
        await self._notifier.send(message.chat_id, message.source, text)

    async def monthly_usage(self, user_id: str) -> int:
        since = start_of_month(self._usage_timezone, self._clock())
        return await asyncio.to_thread(count_usage_since, self._supabase, user_id, since)

    async def handle(self, message: InboundMessage) -> IngressOutcome:
        """
        Admit one inbound message.

        Business rejections (unknown user, rate limit, monthly quota) are
        answered in the chat and reported as outcomes, never raised. Store
        failures up to and including the enqueue propagate to the caller. A
        usage-log failure after the enqueue is only logged.
        """
        if not message.text or not message.text.strip():
            return IngressOutcome.IGNORED

        user = await asyncio.to_thread(
            fetch_user_by_telegram_id, self._supabase, message.sender_id
        )
        if user is None:
            logger.info("Message from unregistered sender %s", message.sender_id)
            await self._reply(message, registration_reply(self._app_url))
            return IngressOutcome.UNREGISTERED

        limits = plan_limits_for(user.subscription_plan)

        within_limit = await self._rate_limiter.check_limit(
            user.id, limits.messages_per_minute, self._window_ms
        )
        if not within_limit:
            logger.info("Rate limit exceeded for user %s", user.id)
            await self._reply(message, RATE_LIMITED_REPLY)
            return IngressOutcome.RATE_LIMITED

        if not limits.monthly_unlimited:
            usage = await self.monthly_usage(user.id)
            if usage >= limits.messages_per_month:
                logger.info(
                    "Monthly quota reached for user %s (%s/%s)",
                    user.id,
                    usage,
                    limits.messages_per_month,
                )
                await self._reply(message, quota_reply(self._app_url))
                return IngressOutcome.QUOTA_EXCEEDED

        job = Job(
            user_id=user.id,
            message=message.text,
            timestamp=message.sent_at * 1000,
            source=message.source,
            chat_id=message.chat_id,
            message_id=message.message_id,
        )
        job_id = await self._queue.enqueue(job)
        if job_id is None:
            return IngressOutcome.DUPLICATE

        await self._reply(message, PROCESSING_REPLY)
        try:
            await asyncio.to_thread(
                insert_usage_log,
                self._supabase,
                user.id,
                message.source.value,
                len(message.text),
            )
        except Exception:
            logger.exception("Failed to record usage for user %s", user.id)
        return IngressOutcome.ENQUEUED
