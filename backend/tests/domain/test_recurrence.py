from datetime import date, time

import pytest
from slotbook.domain.errors import InvalidInputError, RecurrenceRuleError
from slotbook.domain.recurrence import (
    RecurrenceRule,
    ensure_time_of_day_window,
    expand,
    normalize_weekdays,
    resolve_weekdays,
)
from slotbook.models import Frequency


def test_weekly_monday_wednesday() -> None:
    rule = RecurrenceRule(
        frequency=Frequency.WEEKLY,
        start_date=date(2024, 1, 1),
        until_date=date(2024, 1, 15),
        weekdays=(1, 3),
    )
    assert expand(rule) == [
        date(2024, 1, 1),
        date(2024, 1, 3),
        date(2024, 1, 8),
        date(2024, 1, 10),
        date(2024, 1, 15),
    ]


def test_weekly_every_other_week() -> None:
    rule = RecurrenceRule(
        frequency=Frequency.WEEKLY,
        start_date=date(2024, 1, 1),
        until_date=date(2024, 1, 31),
        interval_count=2,
        weekdays=(1,),
    )
    assert expand(rule) == [date(2024, 1, 1), date(2024, 1, 15), date(2024, 1, 29)]


def test_weekly_without_weekdays_uses_start_weekday() -> None:
    rule = RecurrenceRule(frequency=Frequency.WEEKLY, start_date=date(2024, 1, 3), until_date=date(2024, 1, 20))
    assert expand(rule) == [date(2024, 1, 3), date(2024, 1, 10), date(2024, 1, 17)]


def test_daily_with_interval() -> None:
    rule = RecurrenceRule(
        frequency=Frequency.DAILY,
        start_date=date(2024, 1, 1),
        until_date=date(2024, 1, 7),
        interval_count=3,
    )
    assert expand(rule) == [date(2024, 1, 1), date(2024, 1, 4), date(2024, 1, 7)]


def test_monthly_skips_months_without_the_day() -> None:
    rule = RecurrenceRule(frequency=Frequency.MONTHLY, start_date=date(2024, 1, 31), until_date=date(2024, 5, 31))
    assert expand(rule) == [date(2024, 1, 31), date(2024, 3, 31), date(2024, 5, 31)]


def test_single_day_range() -> None:
    rule = RecurrenceRule(frequency=Frequency.DAILY, start_date=date(2024, 1, 1), until_date=date(2024, 1, 1))
    assert expand(rule) == [date(2024, 1, 1)]


def test_start_after_until_is_rejected() -> None:
    rule = RecurrenceRule(frequency=Frequency.DAILY, start_date=date(2024, 2, 1), until_date=date(2024, 1, 1))
    with pytest.raises(RecurrenceRuleError):
        expand(rule)


def test_too_many_occurrences() -> None:
    rule = RecurrenceRule(frequency=Frequency.DAILY, start_date=date(2020, 1, 1), until_date=date(2026, 1, 1))
    with pytest.raises(RecurrenceRuleError):
        expand(rule)


def test_exactly_the_limit_is_allowed() -> None:
    rule = RecurrenceRule(frequency=Frequency.DAILY, start_date=date(2024, 1, 1), until_date=date(2024, 1, 10))
    assert len(expand(rule, max_occurrences=10)) == 10
    with pytest.raises(RecurrenceRuleError):
        expand(rule, max_occurrences=9)


def test_weekday_normalisation() -> None:
    assert normalize_weekdays([7, 0, 3, 3, 9, -1]) == [0, 3]
    assert resolve_weekdays(Frequency.WEEKLY, [], date(2024, 1, 7)) == [0]
    assert resolve_weekdays(Frequency.DAILY, None, date(2024, 1, 7)) == []


def test_time_window_must_be_ordered() -> None:
    ensure_time_of_day_window(time(9, 0), time(10, 0))
    with pytest.raises(InvalidInputError):
        ensure_time_of_day_window(time(10, 0), time(10, 0))
