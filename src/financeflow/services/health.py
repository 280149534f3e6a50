import asyncio
import logging
import time
from datetime import datetime, timezone
from importlib.metadata import PackageNotFoundError, version

from financeflow.repositories.user_profiles import ping as ping_database
from financeflow.services.container import Services

logger = logging.getLogger(__name__)

_STARTED_AT = time.monotonic()

HEALTHY = "healthy"
DEGRADED = "degraded"
UNHEALTHY = "unhealthy"
_SEVERITY = {HEALTHY: 0, DEGRADED: 1, UNHEALTHY: 2}


def _package_version() -> str:
    try:
        return version("financeflow")
    except PackageNotFoundError:
        return "0.0.0"


def _worse(current: str, candidate: str) -> str:
    return candidate if _SEVERITY[candidate] > _SEVERITY[current] else current


async def run_health_checks(services: Services) -> dict:
    """
    Check the database, Redis and the model API.

    A database failure makes the service unhealthy; Redis or model failures
    only degrade it. Each check is bounded by the configured timeout.
    """
    started = time.monotonic()
    timeout = services.settings.health_check_timeout_seconds
    checks = {"database": False, "redis": False, "ai_service": False}
    errors: list[str] = []
    status = HEALTHY

    try:
        await asyncio.wait_for(asyncio.to_thread(ping_database, services.supabase), timeout)
        checks["database"] = True
    except Exception as exc:
        errors.append(f"Database: {exc!r}")
        status = _worse(status, UNHEALTHY)

    try:
        await asyncio.wait_for(services.redis.ping(), timeout)
        checks["redis"] = True
    except Exception as exc:
        errors.append(f"Redis: {exc!r}")
        status = _worse(status, DEGRADED)

    if services.openai is None:
        errors.append("AI Service: OpenAI API key not configured")
        status = _worse(status, DEGRADED)
    else:
        try:
            await asyncio.wait_for(
                services.openai.models.retrieve(services.settings.openai_model), timeout
            )
            checks["ai_service"] = True
        except Exception as exc:
            errors.append(f"AI Service: {exc!r}")
            status = _worse(status, DEGRADED)

    if errors:
        logger.warning("Health check %s: %s", status, "; ".join(errors))

    result = {
        "status": status,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": _package_version(),
        "environment": services.settings.financeflow_env,
        "uptime_seconds": round(time.monotonic() - _STARTED_AT, 3),
        "response_time_ms": round((time.monotonic() - started) * 1000),
        "checks": checks,
    }
    if errors:
        result["errors"] = errors
    return result
