import asyncio
import logging
import signal
import sys
from datetime import datetime, timezone

from financeflow.config import Settings, settings
from financeflow.errors import TransientInfraError
from financeflow.services.container import Services, build_services
from financeflow.services.job_queue import QueueConsumer
from financeflow.workflows.message_pipeline import MessageWorker

logger = logging.getLogger(__name__)


def _missing_configuration(settings: Settings, services: Services) -> list[str]:
    missing = []
    if not settings.redis_url:
        missing.append("REDIS_URL")
    if services.extractor is None:
        missing.append("OPENAI_API_KEY")
    return missing


async def _heartbeat(services: Services, interval: int, stop_event: asyncio.Event) -> None:
    while not stop_event.is_set():
        try:
            await asyncio.wait_for(stop_event.wait(), interval)
        except asyncio.TimeoutError:
            try:
                counts = await services.queue.counts()
            except TransientInfraError:
                logger.warning("Worker heartbeat: queue store unavailable")
                continue
            logger.info(
                "Worker heartbeat %s %s",
                datetime.now(timezone.utc).isoformat(),
                counts,
            )


async def run_worker(settings: Settings) -> None:
    services = build_services(settings)
    try:
        missing = _missing_configuration(settings, services)
        if missing:
            raise RuntimeError(f"Missing required configuration: {', '.join(missing)}")

        await services.redis.ping()
        logger.info("Connected to Redis")
        await services.queue.recover_stalled()

        worker = MessageWorker(
            services.extractor,
            services.persistence,
            services.notifier,
            currency=settings.currency,
        )
        consumer = QueueConsumer(
            services.queue,
            concurrency=settings.worker_concurrency,
            poll_timeout=settings.worker_poll_timeout_seconds,
        )

        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop_event.set)

        logger.info(
            "Listening on queue %s with concurrency %s",
            services.queue.name,
            consumer.concurrency,
        )
        await asyncio.gather(
            consumer.run(worker.handle, stop_event),
            _heartbeat(services, settings.worker_heartbeat_seconds, stop_event),
        )
        logger.info("Shutting down worker")
    finally:
        await services.aclose()


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    try:
        asyncio.run(run_worker(settings))
    except Exception:
        logger.exception("Worker failed")
        sys.exit(1)


if __name__ == "__main__":
    main()
