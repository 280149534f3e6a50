from supabase import Client

from financeflow.config import DEFAULT_PLAN
from financeflow.models import UserProfile

PROFILES_TABLE = "user_profiles"


def _build_user_profile(row: dict) -> UserProfile:
    telegram_user_id = row.get("telegram_user_id")
    return UserProfile(
        id=str(row["id"]),
        subscription_plan=row.get("subscription_plan") or DEFAULT_PLAN,
        telegram_user_id=str(telegram_user_id) if telegram_user_id is not None else None,
    )


def fetch_user_by_telegram_id(supabase: Client, telegram_user_id: str) -> UserProfile | None:
    response = (
        supabase.table(PROFILES_TABLE)
        .select("id, subscription_plan, telegram_user_id")
        .eq("telegram_user_id", telegram_user_id)
        .limit(1)
        .execute()
    )
    rows = response.data or []
    if not rows:
        return None
    return _build_user_profile(rows[0])


def ping(supabase: Client) -> None:
    supabase.table(PROFILES_TABLE).select("id").limit(1).execute()
