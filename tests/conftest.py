from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

import pytest
from fakeredis import FakeAsyncRedis, FakeServer

from financeflow.models import (
    ExtractedTransaction,
    Job,
    JobSource,
    PaymentMethod,
    TransactionType,
)


class FakeClock:
    """Millisecond clock that only moves when a test advances it."""

    def __init__(self, now: int = 1_700_000_000_000) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@dataclass
class RecordingNotifier:
    sent: list[tuple[str | None, JobSource, str]] = field(default_factory=list)

    async def send(self, chat_id, source, text) -> bool:
        self.sent.append((chat_id, source, text))
        return True

    @property
    def texts(self) -> list[str]:
        return [text for _, _, text in self.sent]


@pytest.fixture
def redis():
    return FakeAsyncRedis(server=FakeServer(), decode_responses=True)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


def make_job(message: str = "coffee 45k", **overrides) -> Job:
    fields = {
        "user_id": "user-1",
        "message": message,
        "timestamp": 1_700_000_000_000,
        "source": JobSource.TELEGRAM,
        "chat_id": "chat-1",
        "message_id": None,
    }
    fields.update(overrides)
    return Job(**fields)


def make_transaction(**overrides) -> ExtractedTransaction:
    fields = {
        "type": TransactionType.EXPENSE,
        "amount": Decimal("45000"),
        "category": "drinks",
        "purpose": "coffee",
        "account": "unspecified",
        "payment_method": PaymentMethod.CASH,
        "date": date(2024, 5, 17),
        "summary": "Coffee",
        "counterparty": None,
    }
    fields.update(overrides)
    return ExtractedTransaction(**fields)
