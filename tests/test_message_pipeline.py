"""Tests for the per-job processing graph and its failure handling."""

import asyncio
from dataclasses import dataclass, field
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest
from conftest import RecordingNotifier, make_job, make_transaction

from financeflow.errors import ExtractionError, PersistenceError, TransientInfraError
from financeflow.models import QueuedJob, TransactionType
from financeflow.services.job_queue import JobQueue, QueueConsumer
from financeflow.services.persistence import PersistenceAdapter, build_transaction_row
from financeflow.workflows.message_pipeline import MessageWorker
from financeflow.workflows.replies import (
    NO_TRANSACTIONS_REPLY,
    PROCESSING_FAILED_REPLY,
    SAVE_FAILED_REPLY,
    TRY_AGAIN_REPLY,
)


@dataclass
class FakeExtractor:
    transactions: list = field(default_factory=list)
    error: Exception | None = None
    calls: int = 0

    async def process_message(self, message):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return list(self.transactions)


@dataclass
class FakeStore:
    fail_on: set = field(default_factory=set)
    saved: list = field(default_factory=list)
    calls: int = 0
    row_overrides: dict = field(default_factory=dict)

    async def save_transaction(self, user_id, transaction, source, raw_message):
        index = self.calls
        self.calls += 1
        if index in self.fail_on:
            raise PersistenceError("insert failed")
        row = build_transaction_row(user_id, transaction, source, raw_message)
        row.update(self.row_overrides)
        self.saved.append(row)
        return row


def _queued(job, attempts=0):
    return QueuedJob(id="1", job=job, attempts=attempts, max_attempts=3)


class TestMessageWorkerRun:
    def test_single_transaction_is_saved_and_confirmed(self):
        notifier = RecordingNotifier()
        store = FakeStore()
        worker = MessageWorker(FakeExtractor([make_transaction()]), store, notifier)

        state = asyncio.run(worker.run(make_job("coffee 45k")))

        assert state["stage"] == "notifying-success"
        assert len(store.saved) == 1
        assert store.saved[0]["amount"] == "45000"
        assert notifier.sent == [("chat-1", make_job().source, state["reply"])]
        assert "45k VND" in state["reply"]
        assert "coffee" in state["reply"]
        assert "Account: unspecified" in state["reply"]

    def test_multiple_transactions_report_net_impact(self):
        notifier = RecordingNotifier()
        transactions = [
            make_transaction(type=TransactionType.INCOME, amount=Decimal("1000000")),
            make_transaction(),
        ]
        worker = MessageWorker(FakeExtractor(transactions), FakeStore(), notifier)

        state = asyncio.run(worker.run(make_job("salary 1M, coffee 45k")))

        assert "Saved 2 transactions" in state["reply"]
        assert "+955k VND" in state["reply"]

    def test_message_without_transactions_gets_help_reply(self):
        notifier = RecordingNotifier()
        store = FakeStore()
        worker = MessageWorker(FakeExtractor([]), store, notifier)

        state = asyncio.run(worker.run(make_job("hello there")))

        assert state["stage"] == "no-transactions-found"
        assert store.calls == 0
        assert notifier.texts == [NO_TRANSACTIONS_REPLY]

    def test_partial_save_failure_confirms_the_rest(self):
        notifier = RecordingNotifier()
        store = FakeStore(fail_on={1})
        transactions = [make_transaction(), make_transaction(amount=Decimal("60000"))]
        worker = MessageWorker(FakeExtractor(transactions), store, notifier)

        state = asyncio.run(worker.run(make_job()))

        assert state["stage"] == "notifying-success"
        assert len(state["saved"]) == 1
        assert "45k VND" in notifier.texts[0]


class TestMessageWorkerHandle:
    def test_extraction_error_replies_and_reraises(self):
        notifier = RecordingNotifier()
        worker = MessageWorker(
            FakeExtractor(error=ExtractionError("model timeout")), FakeStore(), notifier
        )

        with pytest.raises(ExtractionError):
            asyncio.run(worker.handle(_queued(make_job())))

        assert notifier.texts == [TRY_AGAIN_REPLY]

    def test_store_outage_is_retried(self):
        notifier = RecordingNotifier()
        worker = MessageWorker(
            FakeExtractor(error=TransientInfraError("redis down")), FakeStore(), notifier
        )

        with pytest.raises(TransientInfraError):
            asyncio.run(worker.handle(_queued(make_job())))

        assert notifier.texts == [TRY_AGAIN_REPLY]

    def test_every_save_failing_is_terminal(self):
        notifier = RecordingNotifier()
        store = FakeStore(fail_on={0, 1})
        transactions = [make_transaction(), make_transaction()]
        worker = MessageWorker(FakeExtractor(transactions), store, notifier)

        asyncio.run(worker.handle(_queued(make_job())))

        assert store.calls == 2
        assert notifier.texts == [SAVE_FAILED_REPLY]

    def test_success_does_not_raise(self):
        notifier = RecordingNotifier()
        worker = MessageWorker(FakeExtractor([make_transaction()]), FakeStore(), notifier)

        asyncio.run(worker.handle(_queued(make_job())))

        assert len(notifier.sent) == 1


class TestQueuedProcessing:
    def test_persistent_model_failure_ends_in_failed_list(self, redis, clock):
        queue = JobQueue(redis, "pipeline", clock=clock)
        consumer = QueueConsumer(queue)
        notifier = RecordingNotifier()
        extractor = FakeExtractor(error=ExtractionError("model timeout"))
        worker = MessageWorker(extractor, FakeStore(), notifier)

        async def scenario():
            await queue.enqueue(make_job("coffee 45k"))
            for _ in range(3):
                await consumer.process_next(worker.handle, timeout=0)
                clock.advance(10_000)
            leftover = await consumer.process_next(worker.handle, timeout=0)
            return leftover, await queue.counts(), await queue.recent("failed")

        leftover, counts, failed = asyncio.run(scenario())

        assert leftover is False
        assert extractor.calls == 3
        assert notifier.texts == [TRY_AGAIN_REPLY] * 3
        assert counts["failed"] == 1
        assert counts["completed"] == 0
        assert failed[0]["attempts"] == 3
        assert "ExtractionError" in failed[0]["error"]

    def test_successful_job_is_completed(self, redis, clock):
        queue = JobQueue(redis, "pipeline", clock=clock)
        consumer = QueueConsumer(queue)
        notifier = RecordingNotifier()
        worker = MessageWorker(FakeExtractor([make_transaction()]), FakeStore(), notifier)

        async def scenario():
            await queue.enqueue(make_job("coffee 45k"))
            await consumer.process_next(worker.handle, timeout=0)
            return await queue.counts()

        counts = asyncio.run(scenario())

        assert counts["completed"] == 1
        assert counts["failed"] == 0
        assert "45k VND" in notifier.texts[0]

    def test_error_after_saving_does_not_save_again(self, redis, clock):
        queue = JobQueue(redis, "pipeline", clock=clock)
        consumer = QueueConsumer(queue)
        notifier = RecordingNotifier()
        store = FakeStore(row_overrides={"amount": None})
        worker = MessageWorker(FakeExtractor([make_transaction()]), store, notifier)

        async def scenario():
            await queue.enqueue(make_job("coffee 45k"))
            for _ in range(3):
                await consumer.process_next(worker.handle, timeout=0)
                clock.advance(10_000)
            return await queue.counts()

        counts = asyncio.run(scenario())

        assert store.calls == 1
        assert counts["completed"] == 1
        assert counts["failed"] == 0
        assert counts["delayed"] == 0
        assert notifier.texts == [PROCESSING_FAILED_REPLY]


class TestCoffeeScenario:
    @patch("financeflow.services.persistence.update_account_balance")
    @patch("financeflow.services.persistence.create_account")
    @patch("financeflow.services.persistence.fetch_account", return_value=None)
    @patch("financeflow.services.persistence.insert_transaction")
    def test_expense_is_saved_debited_and_confirmed(
        self, mock_insert, mock_fetch, mock_create, mock_update
    ):
        mock_insert.side_effect = lambda supabase, row: {"id": "txn-1", **row}
        mock_create.return_value = {"id": "acc-1", "balance": 0}
        supabase = MagicMock()
        notifier = RecordingNotifier()
        transaction = make_transaction(purpose="coffee at Highlands", counterparty="Highlands")
        worker = MessageWorker(
            FakeExtractor([transaction]), PersistenceAdapter(supabase), notifier
        )

        asyncio.run(worker.handle(_queued(make_job("Paid 45000 for coffee at Highlands"))))

        mock_create.assert_called_once_with(supabase, "user-1", "unspecified", "VND")
        mock_update.assert_called_once_with(supabase, "acc-1", Decimal("-45000"))
        reply = notifier.texts[0]
        assert "45k VND" in reply
        assert "Category: drinks" in reply
        assert "coffee at Highlands" in reply
