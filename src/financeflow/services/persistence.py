"""Stores extracted transactions and keeps account balances roughly in sync."""

import asyncio
import logging
from decimal import Decimal

from supabase import Client

from financeflow.errors import PersistenceError
from financeflow.models import ExtractedTransaction, JobSource, TransactionType
from financeflow.repositories.accounts import (
    create_account,
    fetch_account,
    update_account_balance,
)
from financeflow.repositories.transactions import insert_transaction

logger = logging.getLogger(__name__)

_BALANCE_SIGN: dict[TransactionType, int] = {
    TransactionType.INCOME: 1,
    TransactionType.EXPENSE: -1,
    TransactionType.TRANSFER: 0,
    TransactionType.INVESTMENT: 1,
    TransactionType.DEBT_PAYMENT: -1,
    TransactionType.DEBT_CHARGE: -1,
}


def balance_delta(transaction_type: TransactionType, amount: Decimal) -> Decimal:
    """Signed change a transaction applies to its account balance."""
    return amount * _BALANCE_SIGN[TransactionType(transaction_type)]


def build_transaction_row(
    user_id: str, transaction: ExtractedTransaction, source: JobSource, raw_message: str
) -> dict:
    return {
        "user_id": user_id,
        "type": transaction.type.value,
        "amount": str(transaction.amount),
        "category": transaction.category,
        "description": transaction.purpose,
        "counterparty": transaction.counterparty,
        "account_name": transaction.account,
        "payment_method": transaction.payment_method.value,
        "transaction_date": transaction.date.isoformat(),
        "notes": transaction.summary,
        "source": source.value,
        "raw_message": raw_message,
    }


class PersistenceAdapter:
    def __init__(self, supabase: Client, currency: str = "VND") -> None:
        self._supabase = supabase
        self._currency = currency

    async def save_transaction(
        self,
        user_id: str,
        transaction: ExtractedTransaction,
        source: JobSource,
        raw_message: str,
    ) -> dict:
        """
        Insert one transaction, then apply its balance delta.

        Raises PersistenceError if the insert fails. The balance update is
        best-effort and never undoes or fails a committed insert.
        """
        row = build_transaction_row(user_id, transaction, source, raw_message)
        try:
            stored = await asyncio.to_thread(insert_transaction, self._supabase, row)
        except Exception as exc:
            logger.error("Transaction insert failed for user %s: %s", user_id, exc)
            raise PersistenceError(f"Transaction insert failed: {exc}") from exc
        if not stored:
            raise PersistenceError("Transaction insert returned no row")

        await self.apply_balance_delta(
            user_id, transaction.account, transaction.type, transaction.amount
        )
        return stored

    async def apply_balance_delta(
        self,
        user_id: str,
        account_name: str,
        transaction_type: TransactionType,
        amount: Decimal,
    ) -> Decimal | None:
        """Returns the new balance, or None when nothing was written."""
        delta = balance_delta(transaction_type, amount)
        if delta == 0:
            return None
        try:
            return await asyncio.to_thread(self._apply_delta, user_id, account_name, delta)
        except Exception:
            logger.exception(
                "Balance update failed for user %s account %r", user_id, account_name
            )
            return None

    def _apply_delta(self, user_id: str, account_name: str, delta: Decimal) -> Decimal:
        account = fetch_account(self._supabase, user_id, account_name)
        if account is None:
            logger.info("Creating account %r for user %s", account_name, user_id)
            account = create_account(self._supabase, user_id, account_name, self._currency)
        # read-modify-write; concurrent saves to one account may lose an update
        balance = Decimal(str(account.get("balance") or 0)) + delta
        update_account_balance(self._supabase, account["id"], balance)
        return balance
