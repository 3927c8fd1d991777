from __future__ import annotations

import logging
from calendar import isleap, monthrange
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Iterator, List, Optional

logger = logging.getLogger(__name__)

WEEK_DAYS = 7
DEFAULT_MAX_DATES = 12
MIN_INTERVAL = 1
MAX_INTERVAL = 365
MIN_OCCURRENCES = 1
MAX_OCCURRENCES = 1000


class RecurrencePattern(str, Enum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    YEARLY = "YEARLY"


PATTERN_UNITS = {
    RecurrencePattern.DAILY: "day(s)",
    RecurrencePattern.WEEKLY: "week(s)",
    RecurrencePattern.MONTHLY: "month(s)",
    RecurrencePattern.YEARLY: "year(s)",
}

PATTERN_LABELS = {
    RecurrencePattern.DAILY: "Daily",
    RecurrencePattern.WEEKLY: "Weekly",
    RecurrencePattern.MONTHLY: "Monthly",
    RecurrencePattern.YEARLY: "Yearly",
}


@dataclass(frozen=True)
class RecurrenceRule:
    pattern: RecurrencePattern
    interval: int = 1
    end_date: Optional[date] = None
    max_occurrences: Optional[int] = None


@dataclass(frozen=True)
class ValidationResult:
    is_valid: bool
    errors: List[str] = field(default_factory=list)


def is_leap_year(year: int) -> bool:
    return isleap(year)


def calculate_next_date(
    current_date: date,
    rule: RecurrenceRule,
    anchor_date: Optional[date] = None,
) -> Optional[date]:
    """Return the occurrence following ``current_date``, or None when the series ends.

    ``anchor_date`` supplies the day-of-month used for month-end clamping and
    defaults to ``current_date``. Faults are logged and reported as None.
    """
    try:
        current_date = _as_date(current_date)
        anchor = _as_date(anchor_date) if anchor_date is not None else current_date
        next_date = _advance(current_date, rule, anchor)
        if rule.end_date is not None and next_date > _as_date(rule.end_date):
            return None
    except (ArithmeticError, ValueError, TypeError, AttributeError) as exc:
        logger.error(
            "Failed to calculate next %s date after %s: %s",
            getattr(rule, "pattern", None),
            current_date,
            exc,
        )
        return None
    return next_date


def iter_scheduled_dates(start_date: date, rule: RecurrenceRule) -> Iterator[date]:
    """Yield occurrences strictly after ``start_date`` in ascending order."""
    start_date = _as_date(start_date)
    current_date = start_date
    occurrence_count = 0
    while True:
        if rule.max_occurrences and occurrence_count >= rule.max_occurrences:
            return
        next_date = calculate_next_date(current_date, rule, anchor_date=start_date)
        if next_date is None or next_date <= current_date:
            return
        yield next_date
        current_date = next_date
        occurrence_count += 1


def generate_scheduled_dates(
    start_date: date,
    rule: RecurrenceRule,
    max_dates: int = DEFAULT_MAX_DATES,
) -> List[date]:
    dates: List[date] = []
    if max_dates <= 0:
        return dates
    for scheduled_date in iter_scheduled_dates(start_date, rule):
        dates.append(scheduled_date)
        if len(dates) >= max_dates:
            break
    return dates


def validate_recurrence_config(
    rule: RecurrenceRule, today: Optional[date] = None
) -> ValidationResult:
    reference_date = _as_date(today or date.today())
    errors: List[str] = []

    if rule.interval < MIN_INTERVAL:
        errors.append("Interval must be greater than 0")
    if rule.interval > MAX_INTERVAL:
        errors.append(f"Interval cannot exceed {MAX_INTERVAL}")

    if rule.end_date is not None and _as_date(rule.end_date) <= reference_date:
        errors.append("End date must be in the future")

    if rule.max_occurrences is not None:
        if rule.max_occurrences < MIN_OCCURRENCES:
            errors.append("Max occurrences must be greater than 0")
        if rule.max_occurrences > MAX_OCCURRENCES:
            errors.append(f"Max occurrences cannot exceed {MAX_OCCURRENCES}")

    if rule.end_date is not None and rule.max_occurrences:
        errors.append("Cannot set both end date and max occurrences")

    return ValidationResult(is_valid=not errors, errors=errors)


def format_recurrence_description(rule: RecurrenceRule) -> str:
    unit = PATTERN_UNITS.get(_coerce_pattern(rule.pattern), "")
    description = f"Every {rule.interval} {unit}".rstrip()
    if rule.end_date is not None:
        description += f", until {_as_date(rule.end_date).isoformat()}"
    elif rule.max_occurrences:
        description += f", for {rule.max_occurrences} occurrences"
    return description


def _advance(current_date: date, rule: RecurrenceRule, anchor: date) -> date:
    pattern = _coerce_pattern(rule.pattern)
    if pattern is RecurrencePattern.DAILY:
        return current_date + timedelta(days=rule.interval)
    if pattern is RecurrencePattern.WEEKLY:
        return current_date + timedelta(days=WEEK_DAYS * rule.interval)
    if pattern is RecurrencePattern.MONTHLY:
        return _add_months(current_date, rule.interval, anchor.day)
    if pattern is RecurrencePattern.YEARLY:
        return _add_years(current_date, rule.interval, anchor)
    raise ValueError(f"Unsupported recurrence pattern: {rule.pattern!r}")


def _as_date(value):
    if isinstance(value, datetime):
        return value.date()
    return value


def _coerce_pattern(value) -> Optional[RecurrencePattern]:
    try:
        return RecurrencePattern(value)
    except ValueError:
        return None


def _add_months(current_date: date, months: int, anchor_day: int) -> date:
    total_month = current_date.month - 1 + months
    year = current_date.year + total_month // 12
    month = total_month % 12 + 1
    last_day = monthrange(year, month)[1]
    return date(year, month, min(anchor_day, last_day))


def _add_years(current_date: date, years: int, anchor: date) -> date:
    year = current_date.year + years
    if anchor.month == 2 and anchor.day == 29:
        return date(year, 2, 29 if is_leap_year(year) else 28)
    last_day = monthrange(year, current_date.month)[1]
    return date(year, current_date.month, min(current_date.day, last_day))
