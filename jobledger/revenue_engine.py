from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Optional, Sequence, Union

from jobledger.job_records import ZERO, Job, Transaction, TransactionType, coerce_amount

ALL_TIME = "All Time"
UNKNOWN_CLIENT = "Unknown Client"

Period = Union[str, int]


@dataclass(frozen=True)
class Classification:
    is_income: bool
    amount: Decimal


@dataclass(frozen=True)
class Aggregate:
    income: Decimal = ZERO
    expenses: Decimal = ZERO

    @property
    def revenue(self) -> Decimal:
        return self.income - self.expenses

    @property
    def is_loss(self) -> bool:
        return self.revenue < ZERO

    def __add__(self, other: "Aggregate") -> "Aggregate":
        return Aggregate(
            income=self.income + other.income,
            expenses=self.expenses + other.expenses,
        )


@dataclass(frozen=True)
class Client:
    name: str
    jobs: tuple[Job, ...]
    total_income: Decimal = ZERO
    total_expenses: Decimal = ZERO

    @property
    def net_revenue(self) -> Decimal:
        return self.total_income - self.total_expenses


@dataclass(frozen=True)
class JobHistory:
    job: Job
    income: tuple[Transaction, ...]
    expenses: tuple[Transaction, ...]
    totals: Aggregate


def classify(txn: Transaction) -> Classification:
    return Classification(
        is_income=txn.type is TransactionType.INCOME,
        amount=abs(coerce_amount(txn.amount)),
    )


def year_bounds(year: int) -> Optional[tuple[datetime, datetime]]:
    """Return the inclusive ``(start, end)`` wall-clock bounds of ``year``.

    ``end`` is 23:59:59 on Dec 31, so later sub-second instants fall outside.
    Years that cannot be represented yield ``None``.
    """
    try:
        return datetime(year, 1, 1), datetime(year, 12, 31, 23, 59, 59)
    except (TypeError, ValueError, OverflowError):
        return None


def in_period(txn: Transaction, period: Period) -> bool:
    if period == ALL_TIME:
        return True
    if txn.date is None or isinstance(period, bool) or not isinstance(period, int):
        return False
    bounds = year_bounds(period)
    if bounds is None:
        return False
    start, end = bounds
    return start <= txn.date <= end


def aggregate_job(job: Job, period: Period = ALL_TIME) -> Aggregate:
    income = ZERO
    expenses = ZERO
    for txn in job.transactions or ():
        if not in_period(txn, period):
            continue
        classified = classify(txn)
        if classified.is_income:
            income += classified.amount
        else:
            expenses += classified.amount
    return Aggregate(income=income, expenses=expenses)


def aggregate_jobs(jobs: Iterable[Job], period: Period = ALL_TIME) -> Aggregate:
    totals = Aggregate()
    for job in jobs:
        totals = totals + aggregate_job(job, period)
    return totals


def resolve_client_name(job: Job) -> str:
    if not job.client:
        return UNKNOWN_CLIENT
    return job.client if isinstance(job.client, str) else str(job.client)


def group_clients(jobs: Iterable[Job]) -> List[Client]:
    """Partition jobs into clients in first-seen order with all-time totals."""
    buckets: dict[str, list[Job]] = {}
    for job in jobs or ():
        buckets.setdefault(resolve_client_name(job), []).append(job)

    clients: List[Client] = []
    for name, client_jobs in buckets.items():
        totals = aggregate_jobs(client_jobs, ALL_TIME)
        clients.append(
            Client(
                name=name,
                jobs=tuple(client_jobs),
                total_income=totals.income,
                total_expenses=totals.expenses,
            )
        )
    return clients


def rank_clients(clients: Sequence[Client]) -> List[Client]:
    # sorted() is stable, so equal revenues keep grouping order.
    return sorted(clients, key=lambda client: client.net_revenue)


def ranked_clients(jobs: Iterable[Job]) -> List[Client]:
    return rank_clients(group_clients(jobs))


def client_totals(client: Client, period: Period = ALL_TIME) -> Aggregate:
    return aggregate_jobs(client.jobs, period)


def job_history(job: Job, period: Period = ALL_TIME) -> JobHistory:
    """Split a job's transactions for ``period`` into income and expenses.

    Each side is ordered newest first; undated transactions (only reachable
    for ``ALL_TIME``) sort last in feed order.
    """
    income: list[Transaction] = []
    expenses: list[Transaction] = []
    for txn in job.transactions or ():
        if not in_period(txn, period):
            continue
        if classify(txn).is_income:
            income.append(txn)
        else:
            expenses.append(txn)
    return JobHistory(
        job=job,
        income=_newest_first(income),
        expenses=_newest_first(expenses),
        totals=aggregate_job(job, period),
    )


def _newest_first(transactions: list[Transaction]) -> tuple[Transaction, ...]:
    dated = [txn for txn in transactions if txn.date is not None]
    undated = [txn for txn in transactions if txn.date is None]
    dated.sort(key=lambda txn: txn.date, reverse=True)
    return tuple(dated + undated)
