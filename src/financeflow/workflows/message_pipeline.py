"""
Per-job processing graph.

received -> extract -> no_transactions
                    -> save -> notify_success
                            -> save_failed
Errors raised by any node leave the graph and are resolved by the failure
policy in `MessageWorker.handle`.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol, TypedDict

from langgraph.graph import END, StateGraph

from financeflow.errors import PersistenceError
from financeflow.models import ExtractedTransaction, Job, JobSource, QueuedJob
from financeflow.workflows.failure_policy import (
    FailureKind,
    classify_exception,
    resolve_failure,
)
from financeflow.workflows.replies import NO_TRANSACTIONS_REPLY, summary_reply

logger = logging.getLogger(__name__)


class Extractor(Protocol):
    async def process_message(self, message: str) -> list[ExtractedTransaction]: ...


class TransactionStore(Protocol):
    async def save_transaction(
        self,
        user_id: str,
        transaction: ExtractedTransaction,
        source: JobSource,
        raw_message: str,
    ) -> dict: ...


class Notifier(Protocol):
    async def send(self, chat_id: str | None, source: JobSource, text: str) -> bool: ...


class PipelineState(TypedDict):
    job: Job
    stage: str
    transactions: list[ExtractedTransaction]
    saved: list[dict]
    reply: str | None


def _build_graph(
    extractor: Extractor,
    store: TransactionStore,
    notifier: Notifier,
    currency: str,
) -> Any:
    async def extract(state: PipelineState) -> dict[str, Any]:
        transactions = await extractor.process_message(state["job"].message)
        return {"stage": "extracting", "transactions": transactions}

    def route_after_extract(state: PipelineState) -> str:
        return "save" if state["transactions"] else "no_transactions"

    async def no_transactions(state: PipelineState) -> dict[str, Any]:
        job = state["job"]
        await notifier.send(job.chat_id, job.source, NO_TRANSACTIONS_REPLY)
        return {"stage": "no-transactions-found", "reply": NO_TRANSACTIONS_REPLY}

    async def save(state: PipelineState) -> dict[str, Any]:
        job = state["job"]
        saved: list[dict] = []
        for transaction in state["transactions"]:
            try:
                stored = await store.save_transaction(
                    job.user_id, transaction, job.source, job.message
                )
            except PersistenceError as exc:
                logger.error("Skipping transaction for user %s: %s", job.user_id, exc)
                continue
            saved.append(stored)
        return {"stage": "saving", "saved": saved}

    def route_after_save(state: PipelineState) -> str:
        return "notify_success" if state["saved"] else "save_failed"

    async def notify_success(state: PipelineState) -> dict[str, Any]:
        job = state["job"]
        reply = summary_reply(state["saved"], currency)
        await notifier.send(job.chat_id, job.source, reply)
        logger.info(
            "User %s saved %s transactions", job.user_id, len(state["saved"])
        )
        return {"stage": "notifying-success", "reply": reply}

    async def save_failed(state: PipelineState) -> dict[str, Any]:
        outcome = resolve_failure(FailureKind.PERSISTENCE_BATCH)
        if outcome.should_retry:
            raise PersistenceError("No extracted transaction could be saved")
        job = state["job"]
        await notifier.send(job.chat_id, job.source, outcome.reply)
        return {"stage": "failed", "reply": outcome.reply}

    graph = StateGraph(PipelineState)
    graph.add_node("extract", extract)
    graph.add_node("no_transactions", no_transactions)
    graph.add_node("save", save)
    graph.add_node("notify_success", notify_success)
    graph.add_node("save_failed", save_failed)
    graph.set_entry_point("extract")
    graph.add_conditional_edges(
        "extract",
        route_after_extract,
        {"save": "save", "no_transactions": "no_transactions"},
    )
    graph.add_conditional_edges(
        "save",
        route_after_save,
        {"notify_success": "notify_success", "save_failed": "save_failed"},
    )
    graph.add_edge("no_transactions", END)
    graph.add_edge("notify_success", END)
    graph.add_edge("save_failed", END)
    return graph.compile()


class MessageWorker:
    """Queue handler that turns one chat message into saved transactions."""

    def __init__(
        self,
        extractor: Extractor,
        store: TransactionStore,
        notifier: Notifier,
        currency: str = "VND",
    ) -> None:
        self._notifier = notifier
        self._graph = _build_graph(extractor, store, notifier, currency)

    async def run(self, job: Job) -> PipelineState:
        return await self._graph.ainvoke(
            {
                "job": job,
                "stage": "received",
                "transactions": [],
                "saved": [],
                "reply": None,
            }
        )

    async def handle(self, queued: QueuedJob) -> None:
        job = queued.job
        if not job.message.strip():
            logger.warning("Job %s has an empty message; nothing to process", queued.id)
            return

        logger.info(
            "Processing job %s for user %s (attempt %s/%s)",
            queued.id,
            job.user_id,
            queued.attempts + 1,
            queued.max_attempts,
        )
        try:
            state = await self.run(job)
        except Exception as exc:
            kind = classify_exception(exc)
            outcome = resolve_failure(kind)
            logger.error("Job %s failed (%s): %s", queued.id, kind.value, exc)
            await self._notifier.send(job.chat_id, job.source, outcome.reply)
            if outcome.should_retry:
                raise
            return

        logger.info("Job %s finished at stage %s", queued.id, state["stage"])
