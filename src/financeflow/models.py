from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


class JobSource(str, Enum):
    TELEGRAM = "telegram"
    WHATSAPP = "whatsapp"
    SMS = "sms"
    WEB = "web"


class TransactionType(str, Enum):
    INCOME = "income"
    EXPENSE = "expense"
    TRANSFER = "transfer"
    INVESTMENT = "investment"
    DEBT_PAYMENT = "debt_payment"
    DEBT_CHARGE = "debt_charge"


class PaymentMethod(str, Enum):
    CASH = "cash"
    CREDIT_CARD = "credit_card"
    BANK_TRANSFER = "bank_transfer"
    E_WALLET = "e_wallet"
    OTHER = "other"


class Job(BaseModel):
    """
    One inbound chat message waiting to be turned into transactions.

    Serialized with the camelCase wire names (userId, chatId, messageId).
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    user_id: str = Field(..., alias="userId", min_length=1)
    message: str
    timestamp: int = Field(..., description="Arrival time, epoch milliseconds")
    source: JobSource
    chat_id: str | None = Field(default=None, alias="chatId")
    message_id: str | None = Field(default=None, alias="messageId")

    @field_validator("message")
    @classmethod
    def _message_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("message must not be empty")
        return value

    def to_payload(self) -> str:
        return self.model_dump_json(by_alias=True)

    @property
    def dedupe_key(self) -> str | None:
        if not self.message_id:
            return None
        return f"{self.source.value}:{self.message_id}"


@dataclass(frozen=True)
class QueuedJob:
    id: str
    job: Job
    attempts: int
    max_attempts: int


@dataclass(frozen=True)
class ExtractedTransaction:
    """A normalized transaction candidate produced from model output."""

    type: TransactionType
    amount: Decimal
    category: str
    purpose: str
    account: str
    payment_method: PaymentMethod
    date: date
    summary: str
    counterparty: str | None = None


@dataclass(frozen=True)
class PlanLimits:
    messages_per_month: int
    messages_per_minute: int

    @property
    def monthly_unlimited(self) -> bool:
        return self.messages_per_month == -1


@dataclass(frozen=True)
class UserProfile:
    id: str
    subscription_plan: str
    telegram_user_id: str | None
