import logging
from datetime import datetime, timezone, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)


def safe_zoneinfo(tz_name: str) -> tzinfo:
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone '%s'; using UTC.", tz_name)
        return timezone.utc


def start_of_month(tz_name: str, now_utc: datetime) -> datetime:
    """Midnight on the first day of the local calendar month containing `now_utc`."""
    local_now = now_utc.astimezone(safe_zoneinfo(tz_name))
    return local_now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
