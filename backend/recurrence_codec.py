from __future__ import annotations

import json
import logging
from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from backend.recurrence_engine import (
    MAX_INTERVAL,
    MAX_OCCURRENCES,
    MIN_INTERVAL,
    MIN_OCCURRENCES,
    PATTERN_LABELS,
    RecurrencePattern,
    RecurrenceRule,
)

logger = logging.getLogger(__name__)

LEGACY_SEPARATOR = "|"
NOT_RECURRING = "Not recurring"


class StoredRecurrence(BaseModel):
    """Schema of the recurrence JSON stored next to a transaction."""

    model_config = ConfigDict(populate_by_name=True)

    pattern: RecurrencePattern
    interval: int = Field(1, strict=True, ge=MIN_INTERVAL, le=MAX_INTERVAL)
    end_date: Optional[date] = Field(None, alias="endDate")
    max_occurrences: Optional[int] = Field(
        None,
        alias="maxOccurrences",
        strict=True,
        ge=MIN_OCCURRENCES,
        le=MAX_OCCURRENCES,
    )

    @field_validator("pattern", mode="before")
    @classmethod
    def normalize_pattern(cls, value):
        if isinstance(value, str):
            return value.strip().upper()
        return value

    @field_validator("end_date", mode="before")
    @classmethod
    def truncate_end_date(cls, value):
        # Older records stored full ISO timestamps.
        if isinstance(value, str) and "T" in value:
            return value.split("T", 1)[0]
        return value

    def to_rule(self) -> RecurrenceRule:
        return RecurrenceRule(
            pattern=self.pattern,
            interval=self.interval,
            end_date=self.end_date,
            max_occurrences=self.max_occurrences,
        )


def stringify_recurrence_pattern(rule: RecurrenceRule) -> str:
    # Encoding never validates; out-of-range rules are stored as given.
    payload = {
        "pattern": getattr(rule.pattern, "value", rule.pattern),
        "interval": rule.interval,
    }
    if rule.end_date is not None:
        end_date = rule.end_date
        if isinstance(end_date, datetime):
            end_date = end_date.date()
        payload["endDate"] = end_date.isoformat()
    if rule.max_occurrences is not None:
        payload["maxOccurrences"] = rule.max_occurrences
    return json.dumps(payload, separators=(",", ":"))


def parse_recurrence_pattern(value: Optional[str]) -> Optional[RecurrenceRule]:
    if not isinstance(value, str):
        return None
    stripped = value.strip()
    if not stripped:
        return None
    try:
        if stripped.startswith("{"):
            stored = StoredRecurrence.model_validate_json(stripped)
        else:
            stored = _parse_legacy(stripped)
    except (ValidationError, ValueError) as exc:
        logger.debug("Ignoring unparseable recurrence pattern %r: %s", value, exc)
        return None
    return stored.to_rule()


def get_recurrence_description(value: Optional[str]) -> str:
    rule = parse_recurrence_pattern(value)
    if rule is None:
        return NOT_RECURRING

    description = PATTERN_LABELS[rule.pattern]
    if rule.interval > 1:
        description += f" every {rule.interval}"
    if rule.end_date is not None:
        description += f" until {rule.end_date.isoformat()}"
    elif rule.max_occurrences:
        description += f" for {rule.max_occurrences} occurrences"
    return description


def _parse_legacy(value: str) -> StoredRecurrence:
    """Parse the ``PATTERN|interval`` form written by early versions."""
    parts = [part.strip() for part in value.split(LEGACY_SEPARATOR)]
    if len(parts) > 2:
        raise ValueError("Too many segments in recurrence pattern.")
    payload = {"pattern": parts[0]}
    if len(parts) == 2 and parts[1]:
        payload["interval"] = int(parts[1])
    return StoredRecurrence.model_validate(payload)
