"""
Maps pipeline failures to what the worker does about them.

`retry` replies to the user and re-raises so the queue schedules another
attempt; `terminal` replies and lets the job complete.
"""

from dataclasses import dataclass
from enum import Enum

from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from financeflow.errors import ExtractionError, PersistenceError, TransientInfraError
from financeflow.workflows.replies import (
    PROCESSING_FAILED_REPLY,
    SAVE_FAILED_REPLY,
    TRY_AGAIN_REPLY,
)


class FailureKind(str, Enum):
    EXTRACTION = "extraction"
    TRANSIENT_INFRA = "transient_infra"
    PERSISTENCE_BATCH = "persistence_batch"
    UNEXPECTED = "unexpected"


class FailureAction(str, Enum):
    RETRY = "retry"
    TERMINAL = "terminal"


@dataclass(frozen=True)
class FailureOutcome:
    action: FailureAction
    reply: str

    @property
    def should_retry(self) -> bool:
        return self.action == FailureAction.RETRY


FAILURE_POLICY: dict[FailureKind, FailureOutcome] = {
    FailureKind.EXTRACTION: FailureOutcome(FailureAction.RETRY, TRY_AGAIN_REPLY),
    FailureKind.TRANSIENT_INFRA: FailureOutcome(FailureAction.RETRY, TRY_AGAIN_REPLY),
    # rows may already be inserted
    FailureKind.UNEXPECTED: FailureOutcome(FailureAction.TERMINAL, PROCESSING_FAILED_REPLY),
    # every record in the batch failed to insert
    FailureKind.PERSISTENCE_BATCH: FailureOutcome(FailureAction.TERMINAL, SAVE_FAILED_REPLY),
}


def resolve_failure(kind: FailureKind) -> FailureOutcome:
    return FAILURE_POLICY[kind]


def classify_exception(exc: BaseException) -> FailureKind:
    if isinstance(exc, ExtractionError):
        return FailureKind.EXTRACTION
    if isinstance(exc, (TransientInfraError, RedisConnectionError, RedisTimeoutError)):
        return FailureKind.TRANSIENT_INFRA
    if isinstance(exc, PersistenceError):
        return FailureKind.PERSISTENCE_BATCH
    return FailureKind.UNEXPECTED
