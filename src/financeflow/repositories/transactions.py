"""Repository for transaction records."""

from datetime import datetime, timezone

from supabase import Client

TRANSACTIONS_TABLE = "transactions"


def insert_transaction(supabase: Client, row: dict) -> dict | None:
    """Insert one transaction row and return the stored representation."""
    now = datetime.now(timezone.utc).isoformat()
    payload = {**row, "created_at": now, "updated_at": now}
    response = supabase.table(TRANSACTIONS_TABLE).insert(payload).execute()
    rows = response.data or []
    return rows[0] if rows else None
