"""
Durable Redis-backed queue for inbound-message jobs.

Delivery is at-least-once: a job reserved by a worker that dies before
acknowledging it is moved back to the wait list by `recover_stalled` once its
reservation lock expires. Failed jobs are retried with exponential backoff up
to `max_attempts`, then kept in a bounded failed list and never retried.
"""

import asyncio
import json
import logging
import time
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone

from pydantic import ValidationError
from redis.asyncio import Redis
from redis.exceptions import WatchError

from financeflow.errors import TransientInfraError
from financeflow.models import Job, QueuedJob
from financeflow.services.redis_client import store_errors

logger = logging.getLogger(__name__)

JobHandler = Callable[[QueuedJob], Awaitable[None]]


def _now_ms() -> int:
    return int(time.time() * 1000)


def backoff_delay_ms(attempts: int, base_ms: int) -> int:
    """Delay before the next try after `attempts` failed runs (1-based)."""
    return base_ms * 2 ** (attempts - 1)


class JobQueue:
    def __init__(
        self,
        redis: Redis,
        name: str = "message-processing",
        *,
        max_attempts: int = 3,
        backoff_ms: int = 2000,
        keep_completed: int = 10,
        keep_failed: int = 20,
        lock_seconds: int = 120,
        dedupe_ttl_seconds: int = 24 * 60 * 60,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self._redis = redis
        self.name = name
        self.max_attempts = max_attempts
        self.backoff_ms = backoff_ms
        self.keep_completed = keep_completed
        self.keep_failed = keep_failed
        self.lock_seconds = lock_seconds
        self.dedupe_ttl_seconds = dedupe_ttl_seconds
        self._clock = clock

    def _key(self, *parts: str) -> str:
        return ":".join(("queue", self.name, *parts))

    @property
    def wait_key(self) -> str:
        return self._key("wait")

    @property
    def active_key(self) -> str:
        return self._key("active")

    @property
    def delayed_key(self) -> str:
        return self._key("delayed")

    @property
    def completed_key(self) -> str:
        return self._key("completed")

    @property
    def failed_key(self) -> str:
        return self._key("failed")

    def _job_key(self, job_id: str) -> str:
        return self._key("job", job_id)

    def _lock_key(self, job_id: str) -> str:
        return self._key("lock", job_id)

    async def enqueue(self, job: Job, *, priority: bool = False) -> str | None:
        """
        Store a job and make it available to consumers.

        Returns the job id, or None when a job with the same source and
        message id was already enqueued within the dedupe window. The dedupe
        key, job record and wait-list entry are written in one MULTI/EXEC, so
        a failed enqueue leaves nothing behind and can be repeated.
        """
        dedupe_key = self._key("dedupe", job.dedupe_key) if job.dedupe_key else None
        with store_errors():
            job_id = str(await self._redis.incr(self._key("seq")))
            async with self._redis.pipeline(transaction=True) as pipe:
                while True:
                    try:
                        if dedupe_key:
                            await pipe.watch(dedupe_key)
                            if await pipe.exists(dedupe_key):
                                logger.info("Skipping duplicate message %s", job.dedupe_key)
                                return None
                        pipe.multi()
                        if dedupe_key:
                            pipe.set(dedupe_key, job_id, ex=self.dedupe_ttl_seconds)
                        pipe.hset(
                            self._job_key(job_id),
                            mapping={
                                "data": job.to_payload(),
                                "attempts": 0,
                                "created_at": self._clock(),
                            },
                        )
                        if priority:
                            pipe.rpush(self.wait_key, job_id)
                        else:
                            pipe.lpush(self.wait_key, job_id)
                        await pipe.execute()
                        break
                    except WatchError:
                        # another webhook claimed the key between WATCH and EXEC
                        await pipe.reset()
                        continue

        logger.info("Enqueued job %s for user %s", job_id, job.user_id)
        return job_id

    async def reserve(self, timeout: int = 0) -> QueuedJob | None:
        """Move the oldest waiting job to the active list and return it."""
        with store_errors():
            if timeout:
                job_id = await self._redis.blmove(
                    self.wait_key, self.active_key, timeout, src="RIGHT", dest="LEFT"
                )
            else:
                job_id = await self._redis.lmove(
                    self.wait_key, self.active_key, src="RIGHT", dest="LEFT"
                )
            if job_id is None:
                return None

            await self._redis.set(self._lock_key(job_id), "1", ex=self.lock_seconds)
            fields = await self._redis.hgetall(self._job_key(job_id))

        if not fields:
            logger.warning("Job %s has no stored payload; dropping", job_id)
            with store_errors():
                await self._redis.lrem(self.active_key, 1, job_id)
            return None

        try:
            job = Job.model_validate_json(fields["data"])
        except ValidationError as exc:
            logger.error("Job %s has an invalid payload: %s", job_id, exc)
            with store_errors():
                await self._dead_letter(job_id, fields, f"Invalid payload: {exc}")
            return None

        return QueuedJob(
            id=job_id,
            job=job,
            attempts=int(fields.get("attempts", 0)),
            max_attempts=self.max_attempts,
        )

    def _record(self, job_id: str, fields: dict, **extra: object) -> str:
        try:
            data = json.loads(fields.get("data") or "null")
        except json.JSONDecodeError:
            data = fields.get("data")
        return json.dumps(
            {
                "id": job_id,
                "data": data,
                "attempts": int(fields.get("attempts", 0)),
                "finished_at": datetime.now(timezone.utc).isoformat(),
                **extra,
            }
        )

    async def ack(self, queued: QueuedJob) -> None:
        with store_errors():
            fields = await self._redis.hgetall(self._job_key(queued.id))
            record = self._record(queued.id, fields, status="completed")
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.lrem(self.active_key, 1, queued.id)
                pipe.lpush(self.completed_key, record)
                pipe.ltrim(self.completed_key, 0, self.keep_completed - 1)
                pipe.delete(self._job_key(queued.id), self._lock_key(queued.id))
                await pipe.execute()

    async def fail(self, queued: QueuedJob, error: str) -> bool:
        """
        Record a failed run.

        Returns True when a retry was scheduled, False when the job was moved
        to the failed list.
        """
        with store_errors():
            attempts = await self._redis.hincrby(self._job_key(queued.id), "attempts", 1)
            await self._redis.hset(self._job_key(queued.id), "last_error", error)

            if attempts < self.max_attempts:
                ready_at = self._clock() + backoff_delay_ms(attempts, self.backoff_ms)
                async with self._redis.pipeline(transaction=True) as pipe:
                    pipe.lrem(self.active_key, 1, queued.id)
                    pipe.delete(self._lock_key(queued.id))
                    pipe.zadd(self.delayed_key, {queued.id: ready_at})
                    await pipe.execute()
                logger.warning(
                    "Job %s failed (attempt %s/%s); retrying at %s",
                    queued.id,
                    attempts,
                    self.max_attempts,
                    ready_at,
                )
                return True

            fields = await self._redis.hgetall(self._job_key(queued.id))
            await self._dead_letter(queued.id, fields, error)

        logger.error(
            "Job %s failed permanently after %s attempts: %s", queued.id, attempts, error
        )
        return False

    async def _dead_letter(self, job_id: str, fields: dict, error: str) -> None:
        record = self._record(job_id, fields, status="failed", error=error)
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.lrem(self.active_key, 1, job_id)
            pipe.lpush(self.failed_key, record)
            pipe.ltrim(self.failed_key, 0, self.keep_failed - 1)
            pipe.delete(self._job_key(job_id), self._lock_key(job_id))
            await pipe.execute()

    async def promote_due(self) -> int:
        """Move delayed jobs whose backoff has elapsed back to the wait list."""
        promoted = 0
        with store_errors():
            due = await self._redis.zrangebyscore(self.delayed_key, "-inf", self._clock())
            for job_id in due:
                # zrem returns 0 if another consumer already claimed the id
                if await self._redis.zrem(self.delayed_key, job_id):
                    await self._redis.lpush(self.wait_key, job_id)
                    promoted += 1
        return promoted

    async def recover_stalled(self) -> int:
        """Requeue active jobs whose reservation lock has expired."""
        recovered = 0
        with store_errors():
            for job_id in await self._redis.lrange(self.active_key, 0, -1):
                if await self._redis.exists(self._lock_key(job_id)):
                    continue
                if await self._redis.lrem(self.active_key, 1, job_id):
                    await self._redis.rpush(self.wait_key, job_id)
                    recovered += 1
        if recovered:
            logger.warning("Recovered %s stalled jobs", recovered)
        return recovered

    async def counts(self) -> dict[str, int]:
        with store_errors():
            async with self._redis.pipeline(transaction=False) as pipe:
                pipe.llen(self.wait_key)
                pipe.llen(self.active_key)
                pipe.zcard(self.delayed_key)
                pipe.llen(self.completed_key)
                pipe.llen(self.failed_key)
                wait, active, delayed, completed, failed = await pipe.execute()
        return {
            "wait": wait,
            "active": active,
            "delayed": delayed,
            "completed": completed,
            "failed": failed,
        }

    async def recent(self, status: str) -> list[dict]:
        """Return the retained completed or failed job records, newest first."""
        key = {"completed": self.completed_key, "failed": self.failed_key}[status]
        with store_errors():
            rows = await self._redis.lrange(key, 0, -1)
        return [json.loads(row) for row in rows]


class QueueConsumer:
    """Runs a handler over queued jobs with a bounded number of parallel slots."""

    def __init__(
        self,
        queue: JobQueue,
        *,
        concurrency: int = 5,
        poll_timeout: int = 5,
        retry_pause_seconds: float = 5.0,
    ) -> None:
        self.queue = queue
        self.concurrency = concurrency
        self.poll_timeout = poll_timeout
        self.retry_pause_seconds = retry_pause_seconds

    async def process_next(self, handler: JobHandler, timeout: int | None = None) -> bool:
        """Run one reserve/handle/ack cycle. Returns False when no job was waiting."""
        await self.queue.promote_due()
        queued = await self.queue.reserve(self.poll_timeout if timeout is None else timeout)
        if queued is None:
            return False

        try:
            await handler(queued)
        except Exception as exc:
            logger.exception("Job %s failed", queued.id)
            await self.queue.fail(queued, f"{type(exc).__name__}: {exc}")
        else:
            await self.queue.ack(queued)
            logger.info("Job %s completed", queued.id)
        return True

    async def _slot(self, slot: int, handler: JobHandler, stop_event: asyncio.Event) -> None:
        logger.info("Consumer slot %s started", slot)
        while not stop_event.is_set():
            try:
                await self.process_next(handler)
            except TransientInfraError:
                logger.exception("Queue store unavailable; pausing slot %s", slot)
                try:
                    await asyncio.wait_for(stop_event.wait(), self.retry_pause_seconds)
                except asyncio.TimeoutError:
                    pass
        logger.info("Consumer slot %s stopped", slot)

    async def run(self, handler: JobHandler, stop_event: asyncio.Event) -> None:
        await asyncio.gather(
            *(self._slot(slot, handler, stop_event) for slot in range(self.concurrency))
        )
