"""
Recurring series: creation, single-occurrence edits, forward edits and deletion.

Occurrence times are wall-clock times in the series timezone; they are
converted to UTC per occurrence date so DST changes keep the local start time.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, time
from enum import StrEnum
from typing import Any, List, Mapping, Optional, Sequence

from ..domain.errors import (
    BookingStateError,
    EventNotFoundError,
    InvalidInputError,
    RecurrenceRuleError,
    SeriesNotFoundError,
    SlotNotFoundError,
)
from ..domain.recurrence import (
    RecurrenceRule,
    ensure_time_of_day_window,
    expand,
    normalize_weekdays,
    resolve_weekdays,
)
from ..domain.repositories import (
    BookingRepository,
    EventRepository,
    NotificationSink,
    SeriesRepository,
    SlotRepository,
)
from ..models import Event, Frequency, OccurrenceStatus, RecurrenceSeries, Slot
from ..utils.time import combine_local, get_zone, local_time_of, parse_time_of_day, utc_now_naive
from .access import Actor, ensure_admin, ensure_creator
from .slots import apply_slot_changes, primary_slot


class OccurrenceAction(StrEnum):
    CANCEL = "cancel"
    UPDATE = "update"


@dataclass(frozen=True)
class SeriesCreated:
    series: RecurrenceSeries
    occurrence_count: int
    first_date: date
    last_date: date


CLEARABLE_FIELDS = frozenset({"description", "location", "category"})


class _FieldChanges:
    """``None`` keeps the current value; fields named in ``cleared`` are set back to null."""

    cleared: frozenset[str]

    @classmethod
    def from_fields(cls, fields: Mapping[str, Any]):
        values = {name: value for name, value in fields.items() if value is not None}
        cleared = frozenset(name for name, value in fields.items() if value is None and name in CLEARABLE_FIELDS)
        return cls(**values, cleared=cleared)

    def value_or(self, name: str, current: Any) -> Any:
        if name in self.cleared:
            return None
        value = getattr(self, name)
        return current if value is None else value


@dataclass(frozen=True)
class OccurrenceChanges(_FieldChanges):
    title: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    category: Optional[str] = None
    occurrence_date: Optional[date] = None
    start_time: Optional[str | time] = None
    end_time: Optional[str | time] = None
    capacity: Optional[int] = None
    cleared: frozenset[str] = field(default_factory=frozenset)


@dataclass(frozen=True)
class SeriesChanges(_FieldChanges):
    title: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    category: Optional[str] = None
    frequency: Optional[Frequency] = None
    interval_count: Optional[int] = None
    weekdays: Optional[Sequence[int]] = None
    until_date: Optional[date] = None
    start_time: Optional[str | time] = None
    end_time: Optional[str | time] = None
    capacity: Optional[int] = None
    timezone: Optional[str] = None
    cleared: frozenset[str] = field(default_factory=frozenset)


@dataclass(frozen=True)
class ForwardEditResult:
    series: RecurrenceSeries
    applied_changes: int
    preserved_with_bookings: int


@dataclass
class _SeriesState:
    title: str
    description: Optional[str]
    location: Optional[str]
    category: Optional[str]
    frequency: Frequency
    interval_count: int
    weekdays: List[int]
    until_date: date
    start_time: time
    end_time: time
    capacity: int
    timezone: str


async def create_series(
    series_repo: SeriesRepository,
    event_repo: EventRepository,
    slot_repo: SlotRepository,
    *,
    actor: Actor,
    title: str,
    frequency: Frequency,
    start_date: date,
    until_date: date,
    start_time: str | time,
    end_time: str | time,
    capacity: int,
    interval_count: int = 1,
    weekdays: Sequence[int] | None = None,
    description: str | None = None,
    location: str | None = None,
    category: str | None = None,
    timezone: str = "UTC",
) -> SeriesCreated:
    ensure_admin(actor, what="create recurring events")
    if not title or not title.strip():
        raise InvalidInputError("Title is required.")
    state = _SeriesState(
        title=title.strip(),
        description=description,
        location=location,
        category=category,
        frequency=Frequency(frequency),
        interval_count=interval_count,
        weekdays=resolve_weekdays(Frequency(frequency), weekdays, start_date),
        until_date=until_date,
        start_time=_parse_time(start_time),
        end_time=_parse_time(end_time),
        capacity=capacity,
        timezone=timezone or "UTC",
    )
    _validate_state(state)

    dates = expand(_rule(state, start_date))
    if not dates:
        raise RecurrenceRuleError("No occurrences generated for the provided recurrence settings.")

    series = await series_repo.create(
        title=state.title,
        description=state.description,
        location=state.location,
        category=state.category,
        created_by=actor.user_id,
        frequency=state.frequency,
        interval_count=state.interval_count,
        weekdays=state.weekdays,
        start_date=start_date,
        until_date=state.until_date,
        start_time=state.start_time,
        end_time=state.end_time,
        capacity=state.capacity,
        timezone=state.timezone,
    )
    for day in dates:
        await _create_occurrence(event_repo, slot_repo, series=series, state=state, day=day)

    return SeriesCreated(series=series, occurrence_count=len(dates), first_date=dates[0], last_date=dates[-1])


async def edit_occurrence(
    series_repo: SeriesRepository,
    event_repo: EventRepository,
    slot_repo: SlotRepository,
    booking_repo: BookingRepository,
    notifier: NotificationSink,
    *,
    actor: Actor,
    series_id: int,
    event_id: int,
    action: OccurrenceAction = OccurrenceAction.UPDATE,
    changes: OccurrenceChanges | None = None,
    now: datetime | None = None,
) -> str:
    event = await event_repo.get_for_update(event_id)
    if event is None:
        raise EventNotFoundError("Occurrence not found.")
    if event.recurrence_series_id != series_id:
        raise EventNotFoundError("Occurrence does not belong to the requested series.")
    ensure_creator(actor, event.created_by, what="modify this occurrence")

    if action == OccurrenceAction.CANCEL:
        await cancel_occurrence(event_repo, slot_repo, booking_repo, event=event, now=now)
        return "Occurrence cancelled successfully."

    if event.occurrence_status == OccurrenceStatus.CANCELLED:
        raise BookingStateError("Cancelled occurrences cannot be edited.")
    series = await series_repo.get(series_id)
    if series is None:
        raise SeriesNotFoundError("Recurring series not found.")
    changes = changes or OccurrenceChanges()

    slot = primary_slot(await slot_repo.list_for_event_for_update(event.id))
    if slot is None:
        raise SlotNotFoundError("Slot not found for this occurrence.")

    target_date = changes.occurrence_date or event.occurrence_date or event.date
    next_start = _parse_time(changes.start_time) if changes.start_time is not None else local_time_of(
        slot.starts_at, series.timezone
    )
    next_end = _parse_time(changes.end_time) if changes.end_time is not None else local_time_of(
        slot.ends_at, series.timezone
    )
    ensure_time_of_day_window(next_start, next_end)

    for name in ("title", "description", "location", "category"):
        setattr(event, name, changes.value_or(name, getattr(event, name)))
    if changes.occurrence_date is not None:
        event.date = changes.occurrence_date
        event.occurrence_date = changes.occurrence_date
    event.modified_from_series = True
    await event_repo.save(event)

    await apply_slot_changes(
        slot_repo,
        booking_repo,
        notifier,
        slot=slot,
        starts_at=combine_local(target_date, next_start, series.timezone),
        ends_at=combine_local(target_date, next_end, series.timezone),
        capacity=changes.capacity,
    )
    return "Occurrence updated successfully."


async def delete_occurrence(
    series_repo: SeriesRepository,
    event_repo: EventRepository,
    slot_repo: SlotRepository,
    booking_repo: BookingRepository,
    notifier: NotificationSink,
    *,
    actor: Actor,
    series_id: int,
    event_id: int,
) -> str:
    return await edit_occurrence(
        series_repo,
        event_repo,
        slot_repo,
        booking_repo,
        notifier,
        actor=actor,
        series_id=series_id,
        event_id=event_id,
        action=OccurrenceAction.CANCEL,
    )


async def edit_series_forward(
    series_repo: SeriesRepository,
    event_repo: EventRepository,
    slot_repo: SlotRepository,
    booking_repo: BookingRepository,
    *,
    actor: Actor,
    series_id: int,
    effective_date: date,
    changes: SeriesChanges,
    now: datetime | None = None,
) -> ForwardEditResult:
    """
    Re-derive occurrences on or after ``effective_date`` from the edited rule.

    Occurrences carrying live bookings are preserved untouched. The rest are
    remapped in date order onto the new dates; surplus dates become new
    occurrences and surplus occurrences are cancelled.
    """
    series = await series_repo.get_for_update(series_id)
    if series is None:
        raise SeriesNotFoundError("Recurring series not found.")
    ensure_creator(actor, series.created_by, what="edit this series")

    frequency = Frequency(changes.frequency or series.frequency)
    weekdays = changes.weekdays if changes.weekdays is not None else series.weekdays
    state = _SeriesState(
        title=(changes.title if changes.title is not None else series.title).strip(),
        description=changes.value_or("description", series.description),
        location=changes.value_or("location", series.location),
        category=changes.value_or("category", series.category),
        frequency=frequency,
        interval_count=changes.interval_count if changes.interval_count is not None else series.interval_count,
        weekdays=resolve_weekdays(frequency, weekdays, effective_date),
        until_date=changes.until_date or series.until_date,
        start_time=_parse_time(changes.start_time if changes.start_time is not None else series.start_time),
        end_time=_parse_time(changes.end_time if changes.end_time is not None else series.end_time),
        capacity=changes.capacity if changes.capacity is not None else series.capacity,
        timezone=changes.timezone or series.timezone,
    )
    if not state.title:
        raise InvalidInputError("Title is required.")
    _validate_state(state)
    generated = expand(_rule(state, effective_date))

    mutable: List[tuple[Event, List[Slot]]] = []
    preserved = 0
    for event in await event_repo.list_active_occurrences_for_update(series.id, effective_date):
        slots = await slot_repo.list_for_event_for_update(event.id)
        if await booking_repo.count_live([s.id for s in slots]) > 0:
            preserved += 1
        else:
            mutable.append((event, slots))

    applied = 0
    for index, (event, slots) in enumerate(mutable):
        if index >= len(generated):
            await cancel_occurrence(event_repo, slot_repo, booking_repo, event=event, now=now)
            applied += 1
            continue
        await _remap_occurrence(event_repo, slot_repo, event=event, slots=slots, state=state, day=generated[index])
        applied += 1

    for day in generated[len(mutable):]:
        await _create_occurrence(event_repo, slot_repo, series=series, state=state, day=day)
        applied += 1

    series.title = state.title
    series.description = state.description
    series.location = state.location
    series.category = state.category
    series.frequency = state.frequency
    series.interval_count = state.interval_count
    series.weekdays = state.weekdays
    series.until_date = state.until_date
    series.start_time = state.start_time
    series.end_time = state.end_time
    series.capacity = state.capacity
    series.timezone = state.timezone
    series.series_version += 1
    series.updated_at = now or utc_now_naive()
    await series_repo.save(series)

    return ForwardEditResult(series=series, applied_changes=applied, preserved_with_bookings=preserved)


async def delete_series(
    series_repo: SeriesRepository,
    event_repo: EventRepository,
    slot_repo: SlotRepository,
    booking_repo: BookingRepository,
    *,
    actor: Actor,
    series_id: int,
    from_date: date | None = None,
    now: datetime | None = None,
) -> int:
    series = await series_repo.get_for_update(series_id)
    if series is None:
        raise SeriesNotFoundError("Recurring series not found.")
    ensure_creator(actor, series.created_by, what="delete this series")

    now = now or utc_now_naive()
    events = await event_repo.list_active_occurrences_for_update(series.id, from_date or now.date())
    for event in events:
        await cancel_occurrence(event_repo, slot_repo, booking_repo, event=event, now=now)
    return len(events)


async def cancel_occurrence(
    event_repo: EventRepository,
    slot_repo: SlotRepository,
    booking_repo: BookingRepository,
    *,
    event: Event,
    now: datetime | None = None,
) -> int:
    """
    Cancel one occurrence and every live booking on it. No undo window is
    opened for these bookings, so ``cancelled_at`` stays empty.
    """
    slots = await slot_repo.list_for_event_for_update(event.id)
    cancelled = await booking_repo.cancel_live_for_slots([s.id for s in slots], now=now or utc_now_naive())
    event.occurrence_status = OccurrenceStatus.CANCELLED
    event.modified_from_series = True
    await event_repo.save(event)
    return cancelled


async def _create_occurrence(
    event_repo: EventRepository,
    slot_repo: SlotRepository,
    *,
    series: RecurrenceSeries,
    state: _SeriesState,
    day: date,
) -> Event:
    event = await event_repo.create(
        title=state.title,
        description=state.description,
        location=state.location,
        category=state.category,
        date=day,
        occurrence_date=day,
        created_by=series.created_by,
        recurrence_series_id=series.id,
        occurrence_status=OccurrenceStatus.ACTIVE,
        modified_from_series=False,
    )
    await slot_repo.create(
        event_id=event.id,
        starts_at=combine_local(day, state.start_time, state.timezone),
        ends_at=combine_local(day, state.end_time, state.timezone),
        capacity=state.capacity,
    )
    return event


async def _remap_occurrence(
    event_repo: EventRepository,
    slot_repo: SlotRepository,
    *,
    event: Event,
    slots: List[Slot],
    state: _SeriesState,
    day: date,
) -> None:
    event.title = state.title
    event.description = state.description
    event.location = state.location
    event.category = state.category
    event.date = day
    event.occurrence_date = day
    event.modified_from_series = False
    await event_repo.save(event)

    starts_at = combine_local(day, state.start_time, state.timezone)
    ends_at = combine_local(day, state.end_time, state.timezone)
    slot = primary_slot(slots)
    if slot is None:
        await slot_repo.create(event_id=event.id, starts_at=starts_at, ends_at=ends_at, capacity=state.capacity)
        return
    slot.starts_at = starts_at
    slot.ends_at = ends_at
    slot.capacity = state.capacity
    await slot_repo.save(slot)


def _rule(state: _SeriesState, start_date: date) -> RecurrenceRule:
    return RecurrenceRule(
        frequency=state.frequency,
        start_date=start_date,
        until_date=state.until_date,
        interval_count=state.interval_count,
        weekdays=tuple(normalize_weekdays(state.weekdays)),
    )


def _validate_state(state: _SeriesState) -> None:
    if state.capacity < 1:
        raise InvalidInputError("Capacity must be at least 1.")
    if state.interval_count < 1:
        raise InvalidInputError("Interval count must be at least 1.")
    ensure_time_of_day_window(state.start_time, state.end_time)
    try:
        get_zone(state.timezone)
    except ValueError as exc:
        raise InvalidInputError(str(exc)) from exc


def _parse_time(value: str | time) -> time:
    try:
        return parse_time_of_day(value)
    except ValueError as exc:
        raise InvalidInputError(str(exc)) from exc
