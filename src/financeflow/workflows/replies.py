"""User-facing reply texts sent back to the chat."""

import html
from decimal import Decimal

from financeflow.models import TransactionType
from financeflow.services.persistence import balance_delta
from financeflow.utils.formatting import format_currency, transaction_emoji

NO_TRANSACTIONS_REPLY = (
    "🤔 I couldn't find any financial transactions in your message. Try something like:\n\n"
    '💡 "Paid $25 for lunch at McDonald\'s"\n'
    '💡 "Got $1000 salary today"\n'
    '💡 "Spent 500k for groceries"'
)
SAVE_FAILED_REPLY = "❌ Sorry, I had trouble saving your transactions. Please try again."
TRY_AGAIN_REPLY = "⚠️ Something went wrong processing your message. Please try again in a moment."
PROCESSING_FAILED_REPLY = "❌ Sorry, I couldn't finish processing your message."
PROCESSING_REPLY = "⚡ Processing your transaction..."
RATE_LIMITED_REPLY = "⚠️ Rate limit exceeded. Please wait a moment before sending another message."


def registration_reply(app_url: str) -> str:
    return (
        "👋 Welcome to FinanceFlow! Please register at "
        f"{app_url} to start tracking your expenses."
    )


def quota_reply(app_url: str) -> str:
    return (
        "📊 You've reached your monthly message limit. "
        f"Upgrade your plan to continue: {app_url}/upgrade"
    )


def net_total(saved: list[dict]) -> Decimal:
    total = Decimal(0)
    for row in saved:
        try:
            total += balance_delta(TransactionType(row["type"]), Decimal(str(row["amount"])))
        except (KeyError, ValueError):
            continue
    return total


def _text(row: dict, key: str) -> str:
    # replies are sent with parse_mode=HTML
    return html.escape(str(row.get(key)), quote=False)


def summary_reply(saved: list[dict], currency: str = "VND") -> str:
    if len(saved) == 1:
        row = saved[0]
        emoji = transaction_emoji(row.get("type", ""))
        amount = format_currency(Decimal(str(row.get("amount", 0))), currency)
        return (
            f"✅ {emoji} Saved: {amount} for {_text(row, 'description')}\n"
            f"📂 Category: {_text(row, 'category')}\n"
            f"💳 Account: {_text(row, 'account_name')}"
        )

    total = net_total(saved)
    signed = ("+" if total > 0 else "") + format_currency(total, currency)
    return (
        f"✅ Saved {len(saved)} transactions\n"
        f"💰 Net impact: {signed}\n"
        "📊 View details in your dashboard"
    )
