from datetime import datetime, timezone
from decimal import Decimal

from supabase import Client

ACCOUNTS_TABLE = "accounts"
DEFAULT_ACCOUNT_TYPE = "checking"


def fetch_account(supabase: Client, user_id: str, name: str) -> dict | None:
    response = (
        supabase.table(ACCOUNTS_TABLE)
        .select("id, name, balance")
        .eq("user_id", user_id)
        .eq("name", name)
        .limit(1)
        .execute()
    )
    rows = response.data or []
    return rows[0] if rows else None


def create_account(supabase: Client, user_id: str, name: str, currency: str) -> dict:
    payload = {
        "user_id": user_id,
        "name": name,
        "type": DEFAULT_ACCOUNT_TYPE,
        "balance": 0,
        "currency": currency,
        "created_at": datetime.now(timezone.utc).isoformat(),
    }
    response = supabase.table(ACCOUNTS_TABLE).insert(payload).execute()
    rows = response.data or []
    if not rows:
        raise RuntimeError(f"Account {name!r} was not created")
    return rows[0]


def update_account_balance(supabase: Client, account_id: str, balance: Decimal) -> None:
    supabase.table(ACCOUNTS_TABLE).update(
        {
            "balance": str(balance),
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }
    ).eq("id", account_id).execute()
