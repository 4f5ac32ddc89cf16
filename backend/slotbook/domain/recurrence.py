"""
Recurrence rule expansion.

Weekday numbers follow the 0 = Sunday .. 6 = Saturday convention used by the
API; 7 is accepted as an alias for Sunday.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, time, timedelta
from typing import Iterable, List, Sequence

from ..models import Frequency
from .errors import InvalidInputError, RecurrenceRuleError

MAX_OCCURRENCES = 2000


@dataclass(frozen=True)
class RecurrenceRule:
    frequency: Frequency
    start_date: date
    until_date: date
    interval_count: int = 1
    weekdays: Sequence[int] = field(default_factory=tuple)


def sunday_based_weekday(day: date) -> int:
    return day.isoweekday() % 7


def normalize_weekdays(weekdays: Iterable[int] | None) -> List[int]:
    if not weekdays:
        return []
    out = set()
    for value in weekdays:
        if isinstance(value, bool) or not isinstance(value, int):
            continue
        value = 0 if value == 7 else value
        if 0 <= value <= 6:
            out.add(value)
    return sorted(out)


def resolve_weekdays(frequency: Frequency, weekdays: Iterable[int] | None, start_date: date) -> List[int]:
    """Weekday set as stored on a series; weekly rules default to the start date's weekday."""
    normalized = normalize_weekdays(weekdays)
    if frequency == Frequency.WEEKLY and not normalized:
        return [sunday_based_weekday(start_date)]
    return normalized


def month_diff(start: date, current: date) -> int:
    return (current.year - start.year) * 12 + (current.month - start.month)


def expand(rule: RecurrenceRule, *, max_occurrences: int = MAX_OCCURRENCES) -> List[date]:
    """Expand ``rule`` into its ordered occurrence dates, both ends inclusive."""
    if rule.start_date > rule.until_date:
        raise RecurrenceRuleError("Start date must be before or equal to until date.")
    interval = max(1, int(rule.interval_count or 1))
    active_days = normalize_weekdays(rule.weekdays) or [sunday_based_weekday(rule.start_date)]

    out: List[date] = []
    cursor = rule.start_date
    while cursor <= rule.until_date:
        days_from_start = (cursor - rule.start_date).days
        if rule.frequency == Frequency.DAILY:
            include = days_from_start % interval == 0
        elif rule.frequency == Frequency.WEEKLY:
            include = sunday_based_weekday(cursor) in active_days and (days_from_start // 7) % interval == 0
        elif rule.frequency == Frequency.MONTHLY:
            include = cursor.day == rule.start_date.day and month_diff(rule.start_date, cursor) % interval == 0
        else:
            raise RecurrenceRuleError(f"Unsupported frequency: {rule.frequency}")

        if include:
            out.append(cursor)
            if len(out) > max_occurrences:
                raise RecurrenceRuleError(
                    f"Too many occurrences generated (more than {max_occurrences}). "
                    "Please reduce date range or increase interval."
                )
        cursor += timedelta(days=1)
    return out


def ensure_time_of_day_window(start_time: time, end_time: time) -> None:
    if start_time >= end_time:
        raise InvalidInputError("Start time must be earlier than end time.")
