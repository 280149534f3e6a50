from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable, Mapping
from dataclasses import asdict
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

from openai import AsyncOpenAI, OpenAIError

from financeflow.errors import ExtractionError
from financeflow.models import ExtractedTransaction, PaymentMethod, TransactionType

logger = logging.getLogger(__name__)

CATEGORIES = [
    "rent",
    "food",
    "drinks",
    "fuel",
    "entertainment",
    "utilities",
    "shopping",
    "healthcare",
    "housing",
    "education",
    "transportation",
    "investment",
    "savings",
    "debt_payment",
    "credit_card",
    "banking",
    "insurance",
    "beauty",
    "other",
]

DEFAULT_TYPE = TransactionType.EXPENSE
DEFAULT_PAYMENT_METHOD = PaymentMethod.CASH
DEFAULT_CATEGORY = "other"
DEFAULT_ACCOUNT = "unspecified"
DEFAULT_PURPOSE = "financial transaction"

DATE_FORMATS = ["%Y-%m-%d", "%Y/%m/%d", "%d/%m/%Y", "%m/%d/%Y"]

_JSON_ARRAY = re.compile(r"\[.*\]", re.DOTALL)

SYSTEM_PROMPT = "You extract personal-finance transactions from chat messages and reply with JSON only."

PROMPT_TEMPLATE = """Analyze the message below and extract every financial transaction in it. For each transaction return:

- type: one of [{types}]
- amount: the amount involved (number only, no currency symbol)
- category: one of [{categories}]
- purpose: a short description of what the money was for (e.g. "monthly rent", "lunch", "move money to savings")
- counterparty: the person or business involved, if any
- account: the account or card used (e.g. "Vietcombank", "BIDV Credit Card", "Cash")
- payment_method: one of [{payment_methods}]
- date: the transaction date as YYYY-MM-DD; use today's date if none is given
- summary: a one-line summary of the transaction

Rules:
- Only extract real financial transactions; ignore unrelated chatter.
- amount must always be a positive number.
- If the category is unclear, use "other".
- If the account is unclear, use "unspecified".
- Messages may be in Vietnamese or English.
- Recognize amounts in many formats (42$, $42, 42 USD, 42k, 1.5M).

Return a JSON array of objects, one object per transaction.
If there are no transactions, return an empty array [].

Message to analyze: "{message}"
"""


def build_prompt(message: str) -> str:
    return PROMPT_TEMPLATE.format(
        types=", ".join(t.value for t in TransactionType),
        categories=", ".join(CATEGORIES),
        payment_methods=", ".join(m.value for m in PaymentMethod),
        message=message,
    )


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


def extract_json_array(text: str) -> str | None:
    """Return the span from the first '[' to the last ']', if any."""
    match = _JSON_ARRAY.search(text or "")
    return match.group(0) if match else None


def _parse_amount(value: Any) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, (int, float)):
        amount = Decimal(str(value))
    elif isinstance(value, str):
        cleaned = value.strip().replace(",", "")
        try:
            amount = Decimal(cleaned)
        except InvalidOperation:
            return None
    else:
        return None
    if not amount.is_finite() or amount == 0:
        return None
    return abs(amount)


def _parse_date(value: Any, today: date) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not value.strip():
        return today
    value = value.strip()
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
    except ValueError:
        pass
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    return today


def _coerce_enum(enum_cls, value: Any, default):
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, str):
        try:
            return enum_cls(value.strip().lower())
        except ValueError:
            pass
    return default


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def validate_transaction(
    raw: Mapping[str, Any] | ExtractedTransaction, today: date | None = None
) -> ExtractedTransaction | None:
    """
    Normalize one model-produced transaction.

    Returns None when the amount is missing or not numeric. Unknown types fall
    back to expense, unknown payment methods to cash, and an unparsable date to
    `today`. Validating an already-normalized transaction returns an equal one.
    """
    if isinstance(raw, ExtractedTransaction):
        raw = asdict(raw)
    if not isinstance(raw, Mapping):
        return None

    amount = _parse_amount(raw.get("amount"))
    if amount is None:
        return None

    summary = _text(raw.get("summary"))
    counterparty = _text(raw.get("counterparty")) or None

    return ExtractedTransaction(
        type=_coerce_enum(TransactionType, raw.get("type"), DEFAULT_TYPE),
        amount=amount,
        category=_text(raw.get("category")) or DEFAULT_CATEGORY,
        purpose=_text(raw.get("purpose")) or summary or DEFAULT_PURPOSE,
        account=_text(raw.get("account")) or DEFAULT_ACCOUNT,
        payment_method=_coerce_enum(
            PaymentMethod, raw.get("payment_method"), DEFAULT_PAYMENT_METHOD
        ),
        date=_parse_date(raw.get("date"), today or utc_today()),
        summary=summary,
        counterparty=counterparty,
    )


def parse_transactions(text: str, today: date | None = None) -> list[ExtractedTransaction]:
    """
    Turn raw model output into validated transactions.

    Prose around the JSON array is ignored. No array at all yields an empty
    list; an array that is not valid JSON raises ExtractionError.
    """
    array_text = extract_json_array(text)
    if array_text is None:
        logger.warning("No JSON array found in model response: %s", text)
        return []

    try:
        payload = json.loads(array_text)
    except json.JSONDecodeError as exc:
        logger.error("Failed to parse model response as JSON: %s", text)
        raise ExtractionError("Model response is not valid JSON", raw_output=text) from exc

    if not isinstance(payload, list):
        logger.error("Model response JSON is not an array: %s", text)
        raise ExtractionError("Model response is not a JSON array", raw_output=text)

    today = today or utc_today()
    transactions = []
    for index, item in enumerate(payload):
        transaction = validate_transaction(item, today)
        if transaction is None:
            logger.info("Dropping invalid transaction #%s: %s", index, item)
            continue
        transactions.append(transaction)
    return transactions


class TransactionExtractor:
    def __init__(
        self,
        client: AsyncOpenAI,
        model: str,
        temperature: float = 0.1,
        today: Callable[[], date] = utc_today,
    ) -> None:
        self._client = client
        self._model = model
        self._temperature = temperature
        self._today = today

    async def complete(self, prompt: str) -> str:
        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                temperature=self._temperature,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
            )
        except OpenAIError as exc:
            logger.error("Model call failed: %s", exc)
            raise ExtractionError(f"Model call failed: {exc}") from exc

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise ExtractionError("Model returned an empty response")
        return content

    async def process_message(self, message: str) -> list[ExtractedTransaction]:
        raw_output = await self.complete(build_prompt(message))
        transactions = parse_transactions(raw_output, self._today())
        logger.info("Extracted %s transactions from message", len(transactions))
        return transactions
