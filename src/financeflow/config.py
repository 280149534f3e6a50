from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from financeflow.models import PlanLimits


class Settings(BaseSettings):
    financeflow_env: str = "development"
    app_url: str = "https://financeflow.app"

    supabase_url: str = ""
    supabase_service_role_key: str = ""

    redis_url: str = "redis://localhost:6379/0"

    telegram_bot_token: str = ""
    telegram_bot_token_secret_name: str = "TELEGRAM_BOT_TOKEN"
    telegram_api_base_url: str = "https://api.telegram.org"
    telegram_webhook_secret: str = ""
    telegram_timeout_seconds: float = 10.0

    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_from_number: str = ""

    cron_secret: str = ""

    gcp_project_id: str = ""
    openai_api_key: str = ""
    openai_api_key_secret_name: str = "OPENAI_API_KEY"
    openai_model: str = "gpt-4o-mini"
    openai_temperature: float = 0.1
    openai_timeout_seconds: float = 20.0

    queue_name: str = "message-processing"
    queue_max_attempts: int = 3
    queue_backoff_seconds: float = 2.0
    queue_keep_completed: int = 10
    queue_keep_failed: int = 20
    queue_lock_seconds: int = 120
    queue_dedupe_ttl_seconds: int = 24 * 60 * 60
    worker_concurrency: int = 5
    worker_poll_timeout_seconds: int = 5
    worker_heartbeat_seconds: int = 60

    rate_limit_window_ms: int = 60_000
    usage_timezone: str = "UTC"
    currency: str = "VND"

    health_check_timeout_seconds: float = 10.0

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @field_validator("queue_max_attempts", "worker_concurrency", mode="after")
    @classmethod
    def _at_least_one(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be at least 1")
        return value


PLAN_LIMITS: dict[str, PlanLimits] = {
    "free": PlanLimits(messages_per_month=50, messages_per_minute=5),
    "pro": PlanLimits(messages_per_month=1000, messages_per_minute=20),
    "business": PlanLimits(messages_per_month=-1, messages_per_minute=100),
}

DEFAULT_PLAN = "free"


def plan_limits_for(plan: str | None) -> PlanLimits:
    return PLAN_LIMITS.get((plan or DEFAULT_PLAN).lower(), PLAN_LIMITS[DEFAULT_PLAN])


settings = Settings()
