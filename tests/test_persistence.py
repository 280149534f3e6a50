"""Unit tests for transaction persistence and balance updates."""

import asyncio
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest
from conftest import make_transaction

from financeflow.errors import PersistenceError
from financeflow.models import JobSource, TransactionType
from financeflow.services.persistence import (
    PersistenceAdapter,
    balance_delta,
    build_transaction_row,
)

STORED_ROW = {"id": "txn-1", "type": "expense", "amount": "45000"}


class TestBalanceDelta:
    @pytest.mark.parametrize(
        "transaction_type, expected",
        [
            (TransactionType.INCOME, Decimal("100")),
            (TransactionType.EXPENSE, Decimal("-100")),
            (TransactionType.TRANSFER, Decimal("0")),
            (TransactionType.INVESTMENT, Decimal("100")),
            (TransactionType.DEBT_PAYMENT, Decimal("-100")),
            (TransactionType.DEBT_CHARGE, Decimal("-100")),
        ],
    )
    def test_sign_per_type(self, transaction_type, expected):
        assert balance_delta(transaction_type, Decimal("100")) == expected


class TestBuildTransactionRow:
    def test_maps_fields_to_columns(self):
        row = build_transaction_row(
            "user-1",
            make_transaction(counterparty="Highlands"),
            JobSource.TELEGRAM,
            "coffee 45k",
        )

        assert row == {
            "user_id": "user-1",
            "type": "expense",
            "amount": "45000",
            "category": "drinks",
            "description": "coffee",
            "counterparty": "Highlands",
            "account_name": "unspecified",
            "payment_method": "cash",
            "transaction_date": "2024-05-17",
            "notes": "Coffee",
            "source": "telegram",
            "raw_message": "coffee 45k",
        }


class TestSaveTransaction:
    @patch("financeflow.services.persistence.update_account_balance")
    @patch("financeflow.services.persistence.create_account")
    @patch("financeflow.services.persistence.fetch_account")
    @patch("financeflow.services.persistence.insert_transaction")
    def test_expense_creates_missing_account_and_debits_it(
        self, mock_insert, mock_fetch, mock_create, mock_update
    ):
        supabase = MagicMock()
        mock_insert.return_value = STORED_ROW
        mock_fetch.return_value = None
        mock_create.return_value = {"id": "acc-1", "balance": 0}
        adapter = PersistenceAdapter(supabase, "VND")

        stored = asyncio.run(
            adapter.save_transaction(
                "user-1", make_transaction(), JobSource.TELEGRAM, "coffee 45k"
            )
        )

        assert stored == STORED_ROW
        mock_fetch.assert_called_once_with(supabase, "user-1", "unspecified")
        mock_create.assert_called_once_with(supabase, "user-1", "unspecified", "VND")
        mock_update.assert_called_once_with(supabase, "acc-1", Decimal("-45000"))

    @patch("financeflow.services.persistence.update_account_balance")
    @patch("financeflow.services.persistence.create_account")
    @patch("financeflow.services.persistence.fetch_account")
    @patch("financeflow.services.persistence.insert_transaction")
    def test_income_credits_existing_account(
        self, mock_insert, mock_fetch, mock_create, mock_update
    ):
        mock_insert.return_value = STORED_ROW
        mock_fetch.return_value = {"id": "acc-2", "balance": "100000"}
        adapter = PersistenceAdapter(MagicMock())
        transaction = make_transaction(
            type=TransactionType.INCOME, amount=Decimal("50000"), account="Vietcombank"
        )

        asyncio.run(
            adapter.save_transaction("user-1", transaction, JobSource.TELEGRAM, "salary")
        )

        mock_create.assert_not_called()
        assert mock_update.call_args.args[1:] == ("acc-2", Decimal("150000"))

    @patch("financeflow.services.persistence.fetch_account")
    @patch("financeflow.services.persistence.insert_transaction")
    def test_transfer_leaves_balances_alone(self, mock_insert, mock_fetch):
        mock_insert.return_value = STORED_ROW
        adapter = PersistenceAdapter(MagicMock())

        asyncio.run(
            adapter.save_transaction(
                "user-1",
                make_transaction(type=TransactionType.TRANSFER),
                JobSource.TELEGRAM,
                "move 1M to savings",
            )
        )

        mock_fetch.assert_not_called()

    @patch("financeflow.services.persistence.fetch_account")
    @patch("financeflow.services.persistence.insert_transaction")
    def test_insert_failure_raises_persistence_error(self, mock_insert, mock_fetch):
        mock_insert.side_effect = RuntimeError("connection reset")
        adapter = PersistenceAdapter(MagicMock())

        with pytest.raises(PersistenceError):
            asyncio.run(
                adapter.save_transaction(
                    "user-1", make_transaction(), JobSource.TELEGRAM, "coffee 45k"
                )
            )

        mock_fetch.assert_not_called()

    @patch("financeflow.services.persistence.insert_transaction")
    def test_insert_returning_nothing_raises(self, mock_insert):
        mock_insert.return_value = None
        adapter = PersistenceAdapter(MagicMock())

        with pytest.raises(PersistenceError):
            asyncio.run(
                adapter.save_transaction(
                    "user-1", make_transaction(), JobSource.TELEGRAM, "coffee 45k"
                )
            )

    @patch("financeflow.services.persistence.update_account_balance")
    @patch("financeflow.services.persistence.fetch_account")
    @patch("financeflow.services.persistence.insert_transaction")
    def test_balance_failure_does_not_fail_the_save(
        self, mock_insert, mock_fetch, mock_update
    ):
        mock_insert.return_value = STORED_ROW
        mock_fetch.return_value = {"id": "acc-1", "balance": 0}
        mock_update.side_effect = RuntimeError("row locked")
        adapter = PersistenceAdapter(MagicMock())

        stored = asyncio.run(
            adapter.save_transaction(
                "user-1", make_transaction(), JobSource.TELEGRAM, "coffee 45k"
            )
        )

        assert stored == STORED_ROW


class TestApplyBalanceDelta:
    @patch("financeflow.services.persistence.update_account_balance")
    @patch("financeflow.services.persistence.fetch_account")
    def test_returns_new_balance(self, mock_fetch, mock_update):
        mock_fetch.return_value = {"id": "acc-1", "balance": 10}
        adapter = PersistenceAdapter(MagicMock())

        balance = asyncio.run(
            adapter.apply_balance_delta(
                "user-1", "Cash", TransactionType.DEBT_PAYMENT, Decimal("4")
            )
        )

        assert balance == Decimal("6")

    @patch("financeflow.services.persistence.fetch_account")
    def test_lookup_failure_returns_none(self, mock_fetch):
        mock_fetch.side_effect = RuntimeError("timeout")
        adapter = PersistenceAdapter(MagicMock())

        balance = asyncio.run(
            adapter.apply_balance_delta("user-1", "Cash", TransactionType.EXPENSE, Decimal("4"))
        )

        assert balance is None
