from __future__ import annotations

import math
import re
from dataclasses import dataclass
from datetime import date, datetime, timezone, tzinfo
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Any, Iterable, Mapping, Optional

from jobledger.logging_setup import get_logger

logger = get_logger("jobledger.job_records")

ZERO = Decimal("0")
CENTS = Decimal("0.01")
# Matches the Numeric(18, 2) amount column: at most 16 integer digits.
MAX_INTEGER_DIGITS = 16
INCOME_TAG = "income"

DATE_FORMATS = ("%m/%d/%Y", "%m/%d/%y", "%Y-%m-%d", "%m-%d-%Y", "%d %b %Y", "%d %B %Y")


class TransactionType(str, Enum):
    INCOME = "income"
    EXPENSE = "expense"

    @classmethod
    def from_raw(cls, value: Any) -> "TransactionType":
        # Only the exact tag counts as income; every other value is an expense.
        if value == INCOME_TAG or value is cls.INCOME:
            return cls.INCOME
        return cls.EXPENSE


@dataclass(frozen=True)
class Transaction:
    date: Optional[datetime]
    type: TransactionType
    amount: Decimal = ZERO
    id: Optional[str] = None
    note: Optional[str] = None


@dataclass(frozen=True)
class Job:
    name: str = ""
    client: Optional[str] = None
    transactions: tuple[Transaction, ...] = ()
    id: Optional[str] = None


def parse_job_records(
    records: Iterable[Any] | None, tz: tzinfo | None = None
) -> list[Job]:
    """Normalize raw feed records into ``Job`` values.

    Malformed fields degrade (amount to zero, date to ``None``) and entries
    that are not mappings are skipped; nothing here raises on bad data.
    """
    jobs: list[Job] = []
    for record in records or []:
        if not isinstance(record, Mapping):
            logger.debug("Skipping non-mapping job record: %r", record)
            continue
        jobs.append(parse_job(record, tz=tz))
    return jobs


def parse_job(record: Mapping[str, Any], tz: tzinfo | None = None) -> Job:
    raw_transactions = record.get("transactions")
    if not isinstance(raw_transactions, (list, tuple)):
        raw_transactions = []
    transactions = tuple(
        parse_transaction(item, tz=tz)
        for item in raw_transactions
        if isinstance(item, Mapping)
    )
    client = record.get("client")
    return Job(
        id=_coerce_id(record),
        name=clean_text(record.get("name")),
        client=client if client is None or isinstance(client, str) else str(client),
        transactions=transactions,
    )


def parse_transaction(record: Mapping[str, Any], tz: tzinfo | None = None) -> Transaction:
    raw_date = record.get("date")
    parsed_date = coerce_timestamp(raw_date, tz=tz)
    if parsed_date is None:
        logger.debug("Unparseable transaction date %r; excluded from year filters", raw_date)
    note = record.get("note")
    return Transaction(
        id=_coerce_id(record),
        date=parsed_date,
        type=TransactionType.from_raw(record.get("type")),
        amount=coerce_amount(record.get("amount")),
        note=note if isinstance(note, str) and note else None,
    )


def coerce_amount(value: Any) -> Decimal:
    """Return ``value`` as a Decimal rounded to cents, or zero when it is not
    a usable amount (non-numeric, non-finite or wider than 16 integer digits).
    """
    if isinstance(value, bool) or value is None:
        return ZERO
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, int):
        amount = Decimal(value)
    elif isinstance(value, float):
        if not math.isfinite(value):
            return ZERO
        amount = Decimal(str(value))
    elif isinstance(value, str):
        amount = parse_decimal(value)
        if amount is None:
            logger.debug("Non-numeric amount %r coerced to zero", value)
            return ZERO
    else:
        logger.debug("Unsupported amount %r coerced to zero", value)
        return ZERO
    if not amount.is_finite():
        return ZERO
    if amount.is_zero():
        return ZERO
    if amount.adjusted() >= MAX_INTEGER_DIGITS:
        logger.debug("Out-of-range amount %r coerced to zero", value)
        return ZERO
    rounded = amount.quantize(CENTS, rounding=ROUND_HALF_UP)
    if rounded.adjusted() >= MAX_INTEGER_DIGITS:
        return ZERO
    return rounded


def parse_decimal(value: str | None) -> Decimal | None:
    cleaned = clean_text(value)
    if not cleaned:
        return None

    negative = False
    if cleaned.startswith("(") and cleaned.endswith(")"):
        negative = True
        cleaned = cleaned[1:-1]

    cleaned = cleaned.replace("$", "").replace(",", "")
    cleaned = re.sub(r"\s+", "", cleaned)

    if cleaned.startswith("-"):
        negative = not negative
        cleaned = cleaned[1:]
    elif cleaned.startswith("+"):
        cleaned = cleaned[1:]

    try:
        amount = Decimal(cleaned)
    except InvalidOperation:
        return None
    if not amount.is_finite():
        return None

    return amount.copy_negate() if negative else amount


def coerce_timestamp(value: Any, tz: tzinfo | None = None) -> datetime | None:
    """Return a naive wall-clock datetime in ``tz`` (UTC by default).

    Aware values are converted into ``tz``; naive values and bare dates are
    already wall-clock values and are kept as they are. Numbers are epoch
    milliseconds.
    """
    target = tz or timezone.utc
    if isinstance(value, datetime):
        return _to_wall_clock(value, target)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000, tz=target).replace(tzinfo=None)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        return parse_timestamp(value, target)
    return None


def parse_timestamp(value: str, tz: tzinfo) -> datetime | None:
    cleaned = clean_text(value)
    if not cleaned:
        return None
    iso_value = cleaned[:-1] + "+00:00" if cleaned[-1] in "zZ" else cleaned
    try:
        parsed = datetime.fromisoformat(iso_value)
    except ValueError:
        parsed = None
    if parsed is not None:
        return _to_wall_clock(parsed, tz)
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(cleaned, fmt)
        except ValueError:
            continue
    return None


def clean_text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _to_wall_clock(value: datetime, tz: tzinfo) -> datetime | None:
    if value.tzinfo is None or value.utcoffset() is None:
        return value
    try:
        return value.astimezone(tz).replace(tzinfo=None)
    except OverflowError:
        return None


def _coerce_id(record: Mapping[str, Any]) -> Optional[str]:
    raw = record.get("_id", record.get("id"))
    if raw is None or raw == "":
        return None
    return str(raw)
