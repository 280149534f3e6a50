import asyncio
import logging

import httpx
from twilio.rest import Client as TwilioClient

from financeflow.config import Settings
from financeflow.models import JobSource
from financeflow.services.secret_manager import resolve_secret

logger = logging.getLogger(__name__)

PARSE_MODE = "HTML"


def create_twilio_client(settings: Settings) -> TwilioClient | None:
    if not settings.twilio_account_sid or not settings.twilio_auth_token:
        logger.warning("Twilio credentials missing; SMS replies disabled.")
        return None
    return TwilioClient(settings.twilio_account_sid, settings.twilio_auth_token)


class ChatNotifier:
    """
    Sends replies back to the channel a message arrived on.

    Delivery is best-effort: transport failures are logged and never raised.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        bot_token: str | None,
        twilio_client: TwilioClient | None = None,
        twilio_from_number: str = "",
    ) -> None:
        self._http = http_client
        self._bot_token = bot_token
        self._twilio = twilio_client
        self._twilio_from_number = twilio_from_number

    async def send(self, chat_id: str | None, source: JobSource, text: str) -> bool:
        if not chat_id:
            logger.debug("No chat id for %s reply; skipping", source.value)
            return False
        if source == JobSource.TELEGRAM:
            return await self.send_telegram(chat_id, text)
        if source == JobSource.SMS:
            return await self.send_sms(chat_id, text)
        logger.info("No reply transport for source %s; skipping", source.value)
        return False

    async def send_telegram(self, chat_id: str, text: str) -> bool:
        if not self._bot_token:
            logger.warning("Telegram bot token not configured; reply dropped.")
            return False
        try:
            response = await self._http.post(
                f"/bot{self._bot_token}/sendMessage",
                json={"chat_id": chat_id, "text": text, "parse_mode": PARSE_MODE},
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.error("Failed to send Telegram message to %s: %s", chat_id, exc)
            return False
        return True

    async def send_sms(self, to_number: str, body: str) -> bool:
        if not self._twilio or not self._twilio_from_number:
            logger.warning("SMS transport not configured; reply dropped.")
            return False
        try:
            await asyncio.to_thread(
                self._twilio.messages.create,
                to=to_number,
                from_=self._twilio_from_number,
                body=body,
            )
        except Exception:
            logger.exception("Failed to send SMS to %s", to_number)
            return False
        return True

    async def aclose(self) -> None:
        await self._http.aclose()


def create_notifier(settings: Settings) -> ChatNotifier:
    bot_token = resolve_secret(
        settings.telegram_bot_token,
        settings.telegram_bot_token_secret_name,
        settings.gcp_project_id,
    )
    http_client = httpx.AsyncClient(
        base_url=settings.telegram_api_base_url,
        timeout=settings.telegram_timeout_seconds,
    )
    return ChatNotifier(
        http_client,
        bot_token,
        twilio_client=create_twilio_client(settings),
        twilio_from_number=settings.twilio_from_number,
    )
