from datetime import datetime, timezone

from supabase import Client

CRON_LOGS_TABLE = "cron_logs"


def insert_cron_log(
    supabase: Client,
    job_name: str,
    status: str,
    processed_count: int | None = None,
    error_message: str | None = None,
) -> None:
    payload: dict = {
        "job_name": job_name,
        "status": status,
        "executed_at": datetime.now(timezone.utc).isoformat(),
    }
    if processed_count is not None:
        payload["processed_count"] = processed_count
    if error_message is not None:
        payload["error_message"] = error_message
    supabase.table(CRON_LOGS_TABLE).insert(payload).execute()
