"""Scheduled database jobs triggered over HTTP."""

import logging
from datetime import datetime, timezone

from supabase import Client

from financeflow.repositories.cron_logs import insert_cron_log

logger = logging.getLogger(__name__)

RECURRING_TRANSACTIONS_JOB = ("recurring_transactions", "create_due_recurring_transactions")
RESET_USAGE_JOB = ("reset_usage", "reset_monthly_message_counts")


def _log_run(supabase: Client, job_name: str, status: str, **fields) -> None:
    try:
        insert_cron_log(supabase, job_name, status, **fields)
    except Exception:
        logger.exception("Failed to record %s run for %s", status, job_name)


def run_rpc_job(supabase: Client, job_name: str, rpc_name: str) -> dict:
    """Call a database function and record the run in cron_logs."""
    logger.info("Running cron job %s", job_name)
    try:
        response = supabase.rpc(rpc_name, {}).execute()
    except Exception as exc:
        logger.exception("Cron job %s failed", job_name)
        _log_run(supabase, job_name, "failed", error_message=str(exc))
        raise

    processed = response.data if isinstance(response.data, int) else None
    _log_run(supabase, job_name, "success", processed_count=processed)
    logger.info("Cron job %s finished (processed=%s)", job_name, processed)
    return {
        "success": True,
        "processed": processed,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
