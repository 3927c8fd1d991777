from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import List, Optional

from backend.recurrence_engine import (
    RecurrenceRule,
    calculate_next_date,
    generate_scheduled_dates,
    iter_scheduled_dates,
)

DEFAULT_MAX_INSTANCES = 6
GENERATED_SUFFIX = " (Recurring)"
SUPPORTED_TYPES = {"INCOME", "EXPENSE"}


@dataclass(frozen=True)
class TransactionTemplate:
    amount: Decimal | str
    description: str
    type: str
    date: date
    category_id: int | None = None
    space_id: int | None = None
    account_id: int | None = None


@dataclass(frozen=True)
class RecurringTransactionInstance:
    id: str
    original_transaction_id: str
    scheduled_date: date
    amount: Decimal
    description: str
    type: str
    category_id: int | None
    space_id: int | None
    account_id: int | None
    recurrence_id: str
    is_generated: bool = True


@dataclass(frozen=True)
class RecurrenceSchedule:
    id: str
    template: TransactionTemplate
    rule: RecurrenceRule
    start_date: date
    next_scheduled_date: date
    is_active: bool
    created_at: datetime
    last_generated_date: Optional[date] = None


def generate_recurring_transaction_instances(
    template: TransactionTemplate,
    rule: RecurrenceRule,
    recurrence_id: str,
    max_instances: int = DEFAULT_MAX_INSTANCES,
) -> List[RecurringTransactionInstance]:
    amount = _coerce_amount(template.amount)
    transaction_type = _validate_type(template.type)
    scheduled_dates = generate_scheduled_dates(template.date, rule, max_instances)
    return [
        _build_instance(template, amount, transaction_type, recurrence_id, position, scheduled_date)
        for position, scheduled_date in enumerate(scheduled_dates, start=1)
    ]


def project_instances_in_window(
    template: TransactionTemplate,
    rule: RecurrenceRule,
    recurrence_id: str,
    window_start: date,
    window_end: date,
) -> List[RecurringTransactionInstance]:
    """Instances scheduled within ``[window_start, window_end]``.

    Instance numbers count from the start of the series, so an instance keeps
    its id regardless of the window it is projected into.
    """
    if window_start > window_end:
        raise ValueError("window_start must be on or before window_end.")
    amount = _coerce_amount(template.amount)
    transaction_type = _validate_type(template.type)

    instances: List[RecurringTransactionInstance] = []
    for position, scheduled_date in enumerate(
        iter_scheduled_dates(template.date, rule), start=1
    ):
        if scheduled_date > window_end:
            break
        if scheduled_date < window_start:
            continue
        instances.append(
            _build_instance(
                template, amount, transaction_type, recurrence_id, position, scheduled_date
            )
        )
    return instances


def get_next_execution_date(schedule: RecurrenceSchedule) -> Optional[date]:
    last_date = schedule.last_generated_date or schedule.start_date
    return calculate_next_date(last_date, schedule.rule, anchor_date=schedule.start_date)


def should_execute_today(
    schedule: RecurrenceSchedule, today: Optional[date] = None
) -> bool:
    if not schedule.is_active:
        return False
    next_date = get_next_execution_date(schedule)
    if next_date is None:
        return False
    return next_date == (today or date.today())


def _build_instance(
    template: TransactionTemplate,
    amount: Decimal,
    transaction_type: str,
    recurrence_id: str,
    position: int,
    scheduled_date: date,
) -> RecurringTransactionInstance:
    return RecurringTransactionInstance(
        id=f"{recurrence_id}-{position}",
        original_transaction_id=recurrence_id,
        scheduled_date=scheduled_date,
        amount=amount,
        description=f"{template.description}{GENERATED_SUFFIX}",
        type=transaction_type,
        category_id=template.category_id,
        space_id=template.space_id,
        account_id=template.account_id,
        recurrence_id=recurrence_id,
    )


def _validate_type(value: str) -> str:
    normalized = value.strip().upper()
    if normalized not in SUPPORTED_TYPES:
        raise ValueError("Only INCOME or EXPENSE transactions can recur.")
    return normalized


def _coerce_amount(amount: Decimal | str) -> Decimal:
    if isinstance(amount, Decimal):
        return amount
    try:
        return Decimal(str(amount).strip().replace(",", "."))
    except InvalidOperation as exc:
        raise ValueError(f"Invalid amount: {amount!r}") from exc
