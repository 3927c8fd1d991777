import logging
import os
from datetime import date, datetime, timedelta
from decimal import Decimal

from fastapi import FastAPI, HTTPException, Header, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    create_engine,
    func,
    insert,
    select,
)

from backend.recurrence_codec import (
    get_recurrence_description,
    parse_recurrence_pattern,
    stringify_recurrence_pattern,
)
from backend.recurrence_engine import (
    DEFAULT_MAX_DATES,
    MAX_OCCURRENCES,
    RecurrencePattern,
    RecurrenceRule,
    format_recurrence_description,
    generate_scheduled_dates,
    validate_recurrence_config,
)
from backend.recurring_instances import (
    RecurringTransactionInstance,
    TransactionTemplate,
    project_instances_in_window,
)

DEFAULT_PREVIEW_LIMIT = 6


def get_preview_limit() -> int:
    raw = os.getenv("RECURRENCE_PREVIEW_LIMIT", str(DEFAULT_PREVIEW_LIMIT))
    try:
        value = int(raw)
    except ValueError:
        return DEFAULT_PREVIEW_LIMIT
    return value if value > 0 else DEFAULT_PREVIEW_LIMIT


logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper())
logger = logging.getLogger(__name__)

PREVIEW_LIMIT = get_preview_limit()

app = FastAPI()

frontend_origin = os.getenv("FRONTEND_ORIGIN", "http://localhost:3000")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[frontend_origin],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

database_url = os.getenv("DATABASE_URL", "sqlite:///./recurrence.db")
connect_args = {}
if database_url.startswith("sqlite"):
    connect_args = {"check_same_thread": False}

engine = create_engine(database_url, connect_args=connect_args)
metadata = MetaData()

transactions = Table(
    "transactions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False, index=True),
    Column("space_id", Integer),
    Column("account_id", Integer),
    Column("category_id", Integer),
    Column("amount", Numeric(12, 2), nullable=False),
    Column("type", String(20), nullable=False),
    Column("description", String(255), nullable=False),
    Column("date", Date, nullable=False),
    Column("is_recurrent", Boolean, nullable=False, default=False),
    Column("recurrence_pattern", String(255)),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)


@app.on_event("startup")
def init_db() -> None:
    metadata.create_all(engine)


class RecurrencePayload(BaseModel):
    # Range checks happen in validate_recurrence_config.
    pattern: RecurrencePattern
    interval: int = 1
    end_date: date | None = None
    max_occurrences: int | None = None

    def to_rule(self) -> RecurrenceRule:
        return RecurrenceRule(
            pattern=self.pattern,
            interval=self.interval,
            end_date=self.end_date,
            max_occurrences=self.max_occurrences,
        )


class ValidationResponse(BaseModel):
    is_valid: bool
    errors: list[str]


class PreviewPayload(BaseModel):
    start_date: date
    recurrence: RecurrencePayload
    max_dates: int = Field(DEFAULT_MAX_DATES, ge=1, le=MAX_OCCURRENCES)


class PreviewResponse(BaseModel):
    dates: list[date]
    description: str


class TransactionType:
    values = {"INCOME", "EXPENSE"}

    @classmethod
    def validate(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in cls.values:
            raise ValueError("Invalid transaction type.")
        return normalized


class TransactionPayload(BaseModel):
    amount: Decimal
    type: str
    description: str
    date: date
    space_id: int | None = None
    account_id: int | None = None
    category_id: int | None = None
    is_recurrent: bool = False
    recurrence: RecurrencePayload | None = None

    @classmethod
    def validate_payload(cls, payload: "TransactionPayload") -> "TransactionPayload":
        if payload.amount <= 0:
            raise ValueError("Amount must be greater than zero.")
        payload.type = TransactionType.validate(payload.type)
        payload.description = payload.description.strip()
        if not payload.description:
            raise ValueError("Description required.")
        if payload.is_recurrent and payload.recurrence is None:
            raise ValueError("Recurring transactions require a recurrence.")
        if not payload.is_recurrent:
            payload.recurrence = None
        return payload


class TransactionResponse(BaseModel):
    id: int
    user_id: int
    space_id: int | None = None
    account_id: int | None = None
    category_id: int | None = None
    amount: Decimal
    type: str
    description: str
    date: date
    is_recurrent: bool
    recurrence_pattern: str | None = None
    recurrence_description: str
    next_occurrences: list[date]
    created_at: datetime | None = None


class RecurringInstanceResponse(BaseModel):
    id: str
    original_transaction_id: str
    scheduled_date: date
    amount: Decimal
    description: str
    type: str
    category_id: int | None = None
    space_id: int | None = None
    account_id: int | None = None
    is_generated: bool
    recurrence_id: str


class RecurringInstancesResponse(BaseModel):
    instances: list[RecurringInstanceResponse]
    total: int
    has_more: bool


def get_user_id(x_user_id: str | None = Header(None)) -> int:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing user identity.")
    try:
        return int(x_user_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid user identity.") from exc


def transaction_template_from_row(row) -> TransactionTemplate:
    return TransactionTemplate(
        amount=row["amount"],
        description=row["description"],
        type=row["type"],
        date=row["date"],
        category_id=row["category_id"],
        space_id=row["space_id"],
        account_id=row["account_id"],
    )


def next_occurrences_for_row(row) -> list[date]:
    if not row["is_recurrent"]:
        return []
    rule = parse_recurrence_pattern(row["recurrence_pattern"])
    if rule is None:
        return []
    return generate_scheduled_dates(row["date"], rule, PREVIEW_LIMIT)


def build_transaction_response(row) -> TransactionResponse:
    return TransactionResponse(
        id=row["id"],
        user_id=row["user_id"],
        space_id=row["space_id"],
        account_id=row["account_id"],
        category_id=row["category_id"],
        amount=row["amount"],
        type=row["type"],
        description=row["description"],
        date=row["date"],
        is_recurrent=row["is_recurrent"],
        recurrence_pattern=row["recurrence_pattern"],
        recurrence_description=get_recurrence_description(row["recurrence_pattern"]),
        next_occurrences=next_occurrences_for_row(row),
        created_at=row["created_at"],
    )


def build_instance_response(
    instance: RecurringTransactionInstance,
) -> RecurringInstanceResponse:
    return RecurringInstanceResponse(
        id=instance.id,
        original_transaction_id=instance.original_transaction_id,
        scheduled_date=instance.scheduled_date,
        amount=instance.amount,
        description=instance.description,
        type=instance.type,
        category_id=instance.category_id,
        space_id=instance.space_id,
        account_id=instance.account_id,
        is_generated=instance.is_generated,
        recurrence_id=instance.recurrence_id,
    )


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.post("/recurrence/validate", response_model=ValidationResponse)
def validate_recurrence(payload: RecurrencePayload) -> ValidationResponse:
    result = validate_recurrence_config(payload.to_rule())
    return ValidationResponse(is_valid=result.is_valid, errors=result.errors)


@app.post("/recurrence/preview", response_model=PreviewResponse)
def preview_recurrence(payload: PreviewPayload) -> PreviewResponse:
    rule = payload.recurrence.to_rule()
    result = validate_recurrence_config(rule)
    if not result.is_valid:
        raise HTTPException(status_code=400, detail=result.errors)
    return PreviewResponse(
        dates=generate_scheduled_dates(payload.start_date, rule, payload.max_dates),
        description=format_recurrence_description(rule),
    )


@app.get("/transactions", response_model=list[TransactionResponse])
def list_transactions(
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[TransactionResponse]:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        result = conn.execute(
            select(transactions)
            .where(transactions.c.user_id == user_id)
            .order_by(transactions.c.date.desc(), transactions.c.id.desc())
        )
        rows = result.mappings().all()
    return [build_transaction_response(row) for row in rows]


@app.post("/transactions", response_model=TransactionResponse)
def create_transaction(
    payload: TransactionPayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> TransactionResponse:
    user_id = get_user_id(x_user_id)
    try:
        payload = TransactionPayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    recurrence_pattern = None
    if payload.recurrence is not None:
        rule = payload.recurrence.to_rule()
        result = validate_recurrence_config(rule)
        if not result.is_valid:
            raise HTTPException(status_code=400, detail=result.errors)
        recurrence_pattern = stringify_recurrence_pattern(rule)

    with engine.begin() as conn:
        stmt = (
            insert(transactions)
            .values(
                user_id=user_id,
                space_id=payload.space_id,
                account_id=payload.account_id,
                category_id=payload.category_id,
                amount=payload.amount,
                type=payload.type,
                description=payload.description,
                date=payload.date,
                is_recurrent=recurrence_pattern is not None,
                recurrence_pattern=recurrence_pattern,
            )
            .returning(*transactions.c)
        )
        row = conn.execute(stmt).mappings().first()

    if not row:
        raise HTTPException(status_code=500, detail="Failed to create transaction.")
    if recurrence_pattern is not None:
        logger.info(
            "Created recurring transaction %s for user %s: %s",
            row["id"],
            user_id,
            recurrence_pattern,
        )
    return build_transaction_response(row)


@app.get("/transactions/recurring", response_model=RecurringInstancesResponse)
def list_recurring_instances(
    days: int = Query(30, ge=1, le=3660),
    limit: int = Query(100, ge=1, le=MAX_OCCURRENCES),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> RecurringInstancesResponse:
    user_id = get_user_id(x_user_id)
    window_start = date.today()
    window_end = window_start + timedelta(days=days)
    with engine.begin() as conn:
        result = conn.execute(
            select(transactions).where(
                transactions.c.user_id == user_id,
                transactions.c.is_recurrent.is_(True),
            )
        )
        rows = result.mappings().all()

    instances: list[RecurringTransactionInstance] = []
    for row in rows:
        rule = parse_recurrence_pattern(row["recurrence_pattern"])
        if rule is None:
            continue
        try:
            instances.extend(
                project_instances_in_window(
                    transaction_template_from_row(row),
                    rule,
                    str(row["id"]),
                    window_start,
                    window_end,
                )
            )
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

    instances.sort(key=lambda instance: (instance.scheduled_date, instance.id))
    return RecurringInstancesResponse(
        instances=[build_instance_response(instance) for instance in instances[:limit]],
        total=len(instances),
        has_more=len(instances) > limit,
    )
