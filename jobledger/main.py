import os
from datetime import date, datetime, timezone, tzinfo
from decimal import Decimal
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import bcrypt
from fastapi import FastAPI, Header, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    create_engine,
    delete,
    func,
    insert,
    select,
)
from sqlalchemy.exc import IntegrityError

from jobledger.job_records import (
    Job,
    Transaction,
    TransactionType,
    coerce_amount,
    coerce_timestamp,
    parse_job_records,
)
from jobledger.logging_setup import configure_logging, get_logger
from jobledger.period_catalog import PeriodSelection, parse_period
from jobledger.revenue_engine import Aggregate, Period, job_history
from jobledger.summary_cache import SummaryCache

logger = get_logger("jobledger.main")

app = FastAPI()

frontend_origin = os.getenv("FRONTEND_ORIGIN", "http://localhost:3000")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[frontend_origin],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

database_url = os.getenv("DATABASE_URL", "sqlite:///./jobledger.db")
connect_args = {}
if database_url.startswith("sqlite"):
    connect_args = {"check_same_thread": False}

engine = create_engine(database_url, connect_args=connect_args)
metadata = MetaData()


def get_reporting_timezone() -> tzinfo:
    raw = os.getenv("REPORTING_TIMEZONE", "UTC").strip()
    if not raw or raw.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(raw)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown REPORTING_TIMEZONE %r; falling back to UTC", raw)
        return timezone.utc


REPORTING_TZ = get_reporting_timezone()
SUMMARY_CACHE = SummaryCache()

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), unique=True, nullable=False),
    Column("hashed_password", String(255), nullable=False),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

jobs = Table(
    "jobs",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("name", String(255), nullable=False),
    Column("client", String(255)),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

job_transactions = Table(
    "job_transactions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("job_id", Integer, ForeignKey("jobs.id"), nullable=False),
    Column("type", String(20), nullable=False),
    Column("amount", Numeric(18, 2), nullable=False),
    Column("date", DateTime),
    Column("note", String(500)),
)


@app.on_event("startup")
def init_db() -> None:
    configure_logging()
    metadata.create_all(engine)


class CredentialsPayload(BaseModel):
    email: str
    password: str


class UserResponse(BaseModel):
    id: int
    email: str
    created_at: datetime | None = None


class TransactionKind:
    values = {"income", "expense"}

    @classmethod
    def validate(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in cls.values:
            raise ValueError("Invalid transaction type.")
        return normalized


class TransactionPayload(BaseModel):
    type: str
    amount: Decimal
    date: datetime
    note: str | None = None

    @classmethod
    def validate_payload(cls, payload: "TransactionPayload") -> "TransactionPayload":
        payload.type = TransactionKind.validate(payload.type)
        payload.note = payload.note.strip() if payload.note else None
        payload.amount = coerce_amount(payload.amount)
        if payload.amount <= 0:
            raise ValueError("Amount must be greater than zero.")
        return payload


class JobPayload(BaseModel):
    name: str
    client: str | None = None
    transactions: list[TransactionPayload] = []

    @classmethod
    def validate_payload(cls, payload: "JobPayload") -> "JobPayload":
        payload.name = payload.name.strip()
        payload.client = payload.client.strip() if payload.client else None
        if not payload.name:
            raise ValueError("Job name required.")
        payload.transactions = [
            TransactionPayload.validate_payload(item) for item in payload.transactions
        ]
        return payload


class TransactionResponse(BaseModel):
    id: str | None = None
    type: str
    amount: Decimal
    date: datetime | None = None
    note: str | None = None


class JobResponse(BaseModel):
    id: str | None = None
    name: str
    client: str | None = None
    transactions: list[TransactionResponse]


class JobImportResponse(BaseModel):
    imported_jobs: int
    imported_transactions: int


class AggregateResponse(BaseModel):
    income: Decimal
    expenses: Decimal
    revenue: Decimal


class ClientSummaryResponse(BaseModel):
    name: str
    job_count: int
    period: str | int
    totals: AggregateResponse
    all_time: AggregateResponse


class JobHistoryResponse(BaseModel):
    id: str | None = None
    name: str
    totals: AggregateResponse
    income: list[TransactionResponse]
    expenses: list[TransactionResponse]


class ClientDetailResponse(BaseModel):
    name: str
    period: str | int
    totals: AggregateResponse
    jobs: list[JobHistoryResponse]


class PeriodsResponse(BaseModel):
    periods: list[str | int]


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, hashed_password: str) -> bool:
    return bcrypt.checkpw(password.encode("utf-8"), hashed_password.encode("utf-8"))


def get_user_id(x_user_id: str | None = Header(None)) -> int:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing user identity.")
    try:
        user_id = int(x_user_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid user identity.") from exc
    with engine.begin() as conn:
        result = conn.execute(select(users.c.id).where(users.c.id == user_id))
        if not result.first():
            raise HTTPException(status_code=404, detail="User not found.")
    return user_id


def reporting_today() -> date:
    return datetime.now(REPORTING_TZ).date()


def load_jobs(conn, user_id: int) -> list[Job]:
    job_rows = conn.execute(
        select(jobs).where(jobs.c.user_id == user_id).order_by(jobs.c.id.asc())
    ).mappings().all()
    txn_rows = conn.execute(
        select(job_transactions)
        .where(job_transactions.c.user_id == user_id)
        .order_by(job_transactions.c.id.asc())
    ).mappings().all()

    by_job: dict[int, list[Transaction]] = {}
    for row in txn_rows:
        by_job.setdefault(row["job_id"], []).append(
            Transaction(
                id=str(row["id"]),
                date=row["date"],
                type=TransactionType.from_raw(row["type"]),
                amount=coerce_amount(row["amount"]),
                note=row["note"],
            )
        )
    return [
        Job(
            id=str(row["id"]),
            name=row["name"],
            client=row["client"],
            transactions=tuple(by_job.get(row["id"], [])),
        )
        for row in job_rows
    ]


def fetch_user_jobs(user_id: int) -> list[Job]:
    with engine.begin() as conn:
        return load_jobs(conn, user_id)


def insert_job(conn, user_id: int, job: Job) -> int:
    job_id = conn.execute(
        insert(jobs)
        .values(user_id=user_id, name=job.name, client=job.client)
        .returning(jobs.c.id)
    ).scalar_one()
    rows = [
        {
            "user_id": user_id,
            "job_id": job_id,
            "type": txn.type.value,
            "amount": txn.amount,
            "date": txn.date,
            "note": txn.note,
        }
        for txn in job.transactions
    ]
    if rows:
        conn.execute(insert(job_transactions), rows)
    return job_id


def resolve_period(value: str | None, user_jobs: list[Job]) -> Period:
    try:
        period = parse_period(value)
        return PeriodSelection().select(
            period, SUMMARY_CACHE.periods(user_jobs, today=reporting_today())
        ).period
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def to_aggregate_response(totals: Aggregate) -> AggregateResponse:
    return AggregateResponse(
        income=totals.income,
        expenses=totals.expenses,
        revenue=totals.revenue,
    )


def to_transaction_response(txn: Transaction) -> TransactionResponse:
    return TransactionResponse(
        id=txn.id,
        type=txn.type.value,
        amount=abs(txn.amount),
        date=txn.date,
        note=txn.note,
    )


def to_job_response(job: Job) -> JobResponse:
    return JobResponse(
        id=job.id,
        name=job.name,
        client=job.client,
        transactions=[to_transaction_response(txn) for txn in job.transactions],
    )


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.post("/auth/signup", response_model=UserResponse)
def signup(payload: CredentialsPayload) -> UserResponse:
    email = payload.email.strip().lower()
    if not email or not payload.password:
        raise HTTPException(status_code=400, detail="Email and password required.")
    hashed_password = hash_password(payload.password)

    stmt = (
        insert(users)
        .values(email=email, hashed_password=hashed_password)
        .returning(users.c.id, users.c.email, users.c.created_at)
    )
    try:
        with engine.begin() as conn:
            row = conn.execute(stmt).mappings().first()
    except IntegrityError as exc:
        raise HTTPException(status_code=409, detail="Email already exists.") from exc

    if not row:
        raise HTTPException(status_code=500, detail="Failed to create user.")
    return UserResponse(id=row["id"], email=row["email"], created_at=row["created_at"])


@app.post("/auth/login", response_model=UserResponse)
def login(payload: CredentialsPayload) -> UserResponse:
    email = payload.email.strip().lower()
    with engine.begin() as conn:
        row = conn.execute(select(users).where(users.c.email == email)).mappings().first()

    if not row or not verify_password(payload.password, row["hashed_password"]):
        raise HTTPException(status_code=401, detail="Invalid credentials.")

    return UserResponse(id=row["id"], email=row["email"], created_at=row["created_at"])


@app.get("/jobs", response_model=list[JobResponse])
def list_jobs(x_user_id: str | None = Header(None, alias="x-user-id")) -> list[JobResponse]:
    user_id = get_user_id(x_user_id)
    return [to_job_response(job) for job in fetch_user_jobs(user_id)]


@app.post("/jobs", response_model=JobResponse)
def create_job(
    payload: JobPayload, x_user_id: str | None = Header(None, alias="x-user-id")
) -> JobResponse:
    user_id = get_user_id(x_user_id)
    try:
        payload = JobPayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    job = Job(
        name=payload.name,
        client=payload.client,
        transactions=tuple(
            Transaction(
                date=coerce_timestamp(item.date, tz=REPORTING_TZ),
                type=TransactionType.from_raw(item.type),
                amount=item.amount,
                note=item.note,
            )
            for item in payload.transactions
        ),
    )
    with engine.begin() as conn:
        job_id = insert_job(conn, user_id, job)
        created = next(
            (item for item in load_jobs(conn, user_id) if item.id == str(job_id)), None
        )
    if created is None:
        raise HTTPException(status_code=500, detail="Failed to create job.")
    return to_job_response(created)


@app.post("/jobs/import", response_model=JobImportResponse)
def import_jobs(
    records: list[dict[str, Any]], x_user_id: str | None = Header(None, alias="x-user-id")
) -> JobImportResponse:
    user_id = get_user_id(x_user_id)
    parsed = parse_job_records(records, tz=REPORTING_TZ)
    with engine.begin() as conn:
        for job in parsed:
            insert_job(conn, user_id, job)
    transaction_count = sum(len(job.transactions) for job in parsed)
    logger.info(
        "Imported %d jobs (%d transactions) for user %d",
        len(parsed),
        transaction_count,
        user_id,
    )
    return JobImportResponse(
        imported_jobs=len(parsed),
        imported_transactions=transaction_count,
    )


@app.post("/jobs/{job_id}/transactions", response_model=JobResponse)
def add_job_transaction(
    job_id: int,
    payload: TransactionPayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> JobResponse:
    user_id = get_user_id(x_user_id)
    try:
        payload = TransactionPayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    txn_date = coerce_timestamp(payload.date, tz=REPORTING_TZ)
    with engine.begin() as conn:
        job_exists = conn.execute(
            select(jobs.c.id).where(jobs.c.id == job_id, jobs.c.user_id == user_id)
        ).first()
        if not job_exists:
            raise HTTPException(status_code=404, detail="Job not found.")
        conn.execute(
            insert(job_transactions).values(
                user_id=user_id,
                job_id=job_id,
                type=payload.type,
                amount=payload.amount,
                date=txn_date,
                note=payload.note,
            )
        )
        updated = next(
            (item for item in load_jobs(conn, user_id) if item.id == str(job_id)), None
        )
    if updated is None:
        raise HTTPException(status_code=404, detail="Job not found.")
    return to_job_response(updated)


@app.delete("/jobs/{job_id}")
def delete_job(job_id: int, x_user_id: str | None = Header(None, alias="x-user-id")) -> dict:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        job_exists = conn.execute(
            select(jobs.c.id).where(jobs.c.id == job_id, jobs.c.user_id == user_id)
        ).first()
        if not job_exists:
            raise HTTPException(status_code=404, detail="Job not found.")
        conn.execute(
            delete(job_transactions).where(
                job_transactions.c.job_id == job_id,
                job_transactions.c.user_id == user_id,
            )
        )
        conn.execute(delete(jobs).where(jobs.c.id == job_id, jobs.c.user_id == user_id))
    return {"status": "deleted"}


@app.get("/periods", response_model=PeriodsResponse)
def list_periods(x_user_id: str | None = Header(None, alias="x-user-id")) -> PeriodsResponse:
    user_id = get_user_id(x_user_id)
    user_jobs = fetch_user_jobs(user_id)
    return PeriodsResponse(periods=SUMMARY_CACHE.periods(user_jobs, today=reporting_today()))


@app.get("/clients", response_model=list[ClientSummaryResponse])
def list_clients(
    period: str | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[ClientSummaryResponse]:
    user_id = get_user_id(x_user_id)
    user_jobs = fetch_user_jobs(user_id)
    selected = resolve_period(period, user_jobs)
    summaries: list[ClientSummaryResponse] = []
    for client in SUMMARY_CACHE.ranked_clients(user_jobs):
        summaries.append(
            ClientSummaryResponse(
                name=client.name,
                job_count=len(client.jobs),
                period=selected,
                totals=to_aggregate_response(SUMMARY_CACHE.client_totals(client, selected)),
                all_time=to_aggregate_response(
                    Aggregate(income=client.total_income, expenses=client.total_expenses)
                ),
            )
        )
    return summaries


@app.get("/clients/{client_name}", response_model=ClientDetailResponse)
def get_client(
    client_name: str,
    period: str | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> ClientDetailResponse:
    user_id = get_user_id(x_user_id)
    user_jobs = fetch_user_jobs(user_id)
    selected = resolve_period(period, user_jobs)
    client = next(
        (item for item in SUMMARY_CACHE.ranked_clients(user_jobs) if item.name == client_name),
        None,
    )
    if client is None:
        raise HTTPException(status_code=404, detail="Client not found.")

    histories = [job_history(job, selected) for job in client.jobs]
    return ClientDetailResponse(
        name=client.name,
        period=selected,
        totals=to_aggregate_response(SUMMARY_CACHE.client_totals(client, selected)),
        jobs=[
            JobHistoryResponse(
                id=history.job.id,
                name=history.job.name,
                totals=to_aggregate_response(history.totals),
                income=[to_transaction_response(txn) for txn in history.income],
                expenses=[to_transaction_response(txn) for txn in history.expenses],
            )
            for history in histories
        ],
    )
