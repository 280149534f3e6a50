from datetime import datetime, timezone

from supabase import Client

USAGE_TABLE = "usage_logs"


def count_usage_since(supabase: Client, user_id: str, since: datetime) -> int:
    response = (
        supabase.table(USAGE_TABLE)
        .select("id", count="exact")
        .eq("user_id", user_id)
        .gte("created_at", since.isoformat())
        .execute()
    )
    return response.count or 0


def insert_usage_log(supabase: Client, user_id: str, source: str, message_length: int) -> None:
    supabase.table(USAGE_TABLE).insert(
        {
            "user_id": user_id,
            "source": source,
            "message_length": message_length,
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
    ).execute()
