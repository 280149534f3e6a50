import logging

from openai import AsyncOpenAI

from financeflow.config import Settings
from financeflow.services.secret_manager import resolve_secret

logger = logging.getLogger(__name__)


def get_openai_api_key(settings: Settings) -> str | None:
    api_key = resolve_secret(
        settings.openai_api_key,
        settings.openai_api_key_secret_name,
        settings.gcp_project_id,
    )
    if not api_key:
        logger.warning("OpenAI API key not configured.")
    return api_key


def create_openai_client(settings: Settings, api_key: str | None = None) -> AsyncOpenAI:
    api_key = api_key or get_openai_api_key(settings)
    if not api_key:
        raise RuntimeError("OpenAI API key not configured.")
    return AsyncOpenAI(
        api_key=api_key,
        timeout=settings.openai_timeout_seconds,
        max_retries=0,
    )
