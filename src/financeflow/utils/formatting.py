from decimal import Decimal

from financeflow.models import TransactionType

TRANSACTION_EMOJI = {
    TransactionType.INCOME: "💰",
    TransactionType.EXPENSE: "💸",
    TransactionType.TRANSFER: "🔄",
    TransactionType.INVESTMENT: "📈",
    TransactionType.DEBT_PAYMENT: "💳",
    TransactionType.DEBT_CHARGE: "⚠️",
}


def format_currency(amount: Decimal | int | float, currency: str = "VND") -> str:
    """
    Compact amount, e.g. 1.5M VND, 45k VND, 500 VND.

    The unit is picked after rounding, so 999 999 is 1.0M rather than 1000k.
    """
    amount = Decimal(str(amount))
    sign = "-" if amount < 0 else ""
    value = abs(amount)
    units = f"{value:.0f}"
    if value < 1000 and units != "1000":
        return f"{sign}{units} {currency}"
    thousands = f"{value / 1000:.0f}"
    if value < 1_000_000 and thousands != "1000":
        return f"{sign}{thousands}k {currency}"
    return f"{sign}{value / 1_000_000:.1f}M {currency}"


def transaction_emoji(transaction_type: str) -> str:
    try:
        return TRANSACTION_EMOJI[TransactionType(transaction_type)]
    except ValueError:
        return "💰"
