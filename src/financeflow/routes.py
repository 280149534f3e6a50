import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from financeflow.config import Settings
from financeflow.services.container import Services
from financeflow.services.cron import (
    RECURRING_TRANSACTIONS_JOB,
    RESET_USAGE_JOB,
    run_rpc_job,
)
from financeflow.services.health import UNHEALTHY, run_health_checks
from financeflow.services.ingress import InboundMessage

logger = logging.getLogger(__name__)

router = APIRouter()


class TelegramChat(BaseModel):
    id: int | str
    type: str | None = None


class TelegramSender(BaseModel):
    id: int | str
    first_name: str | None = None
    username: str | None = None


class TelegramMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message_id: int | None = None
    chat: TelegramChat
    sender: TelegramSender | None = Field(default=None, alias="from")
    text: str | None = None
    date: int = 0


class TelegramUpdate(BaseModel):
    """Subset of a Telegram Bot API update that the webhook reads."""

    update_id: int | None = None
    message: TelegramMessage | None = None


def get_services(request: Request) -> Services:
    return request.app.state.services


def _require_webhook_secret(settings: Settings, provided: str | None) -> None:
    if not settings.telegram_webhook_secret:
        return
    if provided != settings.telegram_webhook_secret:
        raise HTTPException(status_code=401, detail="Invalid webhook secret")


def _require_cron_secret(settings: Settings, authorization: str | None) -> None:
    if not settings.cron_secret:
        raise HTTPException(status_code=401, detail="Unauthorized")
    if authorization != f"Bearer {settings.cron_secret}":
        raise HTTPException(status_code=401, detail="Unauthorized")


@router.get("/healthz")
def healthz() -> dict:
    return {"status": "ok"}


@router.get("/api/health")
async def health(services: Services = Depends(get_services)) -> JSONResponse:
    result = await run_health_checks(services)
    status_code = 503 if result["status"] == UNHEALTHY else 200
    return JSONResponse(result, status_code=status_code)


@router.post("/api/telegram/webhook")
async def telegram_webhook(
    request: Request,
    services: Services = Depends(get_services),
    x_telegram_bot_api_secret_token: str | None = Header(default=None),
) -> dict:
    """
    Accept a Telegram update and queue its text for processing.

    Every handled outcome, including rejections the user is told about in the
    chat, answers {"ok": true} so Telegram does not redeliver it.
    """
    _require_webhook_secret(services.settings, x_telegram_bot_api_secret_token)

    try:
        update = TelegramUpdate.model_validate(await request.json())
    except (ValueError, ValidationError) as exc:
        raise HTTPException(status_code=400, detail="Malformed update") from exc

    message = update.message
    if message is None or not message.text:
        return {"ok": True}
    if message.sender is None:
        raise HTTPException(status_code=400, detail="No user ID")

    inbound = InboundMessage(
        sender_id=str(message.sender.id),
        chat_id=str(message.chat.id),
        text=message.text,
        sent_at=message.date,
        message_id=str(message.message_id) if message.message_id is not None else None,
    )
    try:
        outcome = await services.ingress.handle(inbound)
    except Exception as exc:
        logger.exception("Telegram webhook error")
        raise HTTPException(status_code=500, detail="Internal error") from exc

    logger.info("Webhook message from %s: %s", inbound.sender_id, outcome.value)
    return {"ok": True}


def _run_cron(services: Services, job: tuple[str, str]) -> dict:
    job_name, rpc_name = job
    try:
        return run_rpc_job(services.supabase, job_name, rpc_name)
    except Exception as exc:
        raise HTTPException(
            status_code=500,
            detail={"error": f"Cron job {job_name} failed", "details": str(exc)},
        ) from exc


@router.get("/api/cron/recurring-transactions")
def cron_recurring_transactions(
    services: Services = Depends(get_services),
    authorization: str | None = Header(default=None),
) -> dict:
    _require_cron_secret(services.settings, authorization)
    return _run_cron(services, RECURRING_TRANSACTIONS_JOB)


@router.get("/api/cron/reset-usage")
def cron_reset_usage(
    services: Services = Depends(get_services),
    authorization: str | None = Header(default=None),
) -> dict:
    _require_cron_secret(services.settings, authorization)
    return _run_cron(services, RESET_USAGE_JOB)


@router.get("/api/queue/stats")
async def queue_stats(
    services: Services = Depends(get_services),
    authorization: str | None = Header(default=None),
) -> dict:
    _require_cron_secret(services.settings, authorization)
    counts = await services.queue.counts()
    failed = await services.queue.recent("failed")
    return {"queue": services.queue.name, "counts": counts, "failed": failed}
