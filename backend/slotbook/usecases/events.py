from dataclasses import dataclass, field
from datetime import date, datetime
from enum import StrEnum
from typing import Any, Dict, List, Optional

from ..domain.errors import ConflictError, EventNotFoundError, InvalidInputError, LiveBookingsError
from ..domain.repositories import (
    BookingRepository,
    EventRepository,
    NotificationSink,
    SlotRepository,
    UserRepository,
)
from ..domain.services import ensure_capacity_change_allowed, ensure_time_window
from ..models import Booking, Event, OccurrenceStatus, Slot
from ..utils.time import utc_now_naive
from .access import Actor, ensure_admin, ensure_creator_or_admin
from .slots import apply_slot_changes, list_availability, primary_slot

EVENT_FIELDS = ("title", "description", "date", "location", "category")
EVENT_PAGE_SIZE = 10
MAX_EVENT_PAGE_SIZE = 50


class EventSort(StrEnum):
    DATE = "date"
    SMART = "smart"


@dataclass
class EventUpdate:
    event: Event
    slot: Optional[Slot] = None
    promoted: list[Booking] = field(default_factory=list)


@dataclass(frozen=True)
class EventPage:
    rows: List[tuple[Event, int]]
    page: int
    page_size: int
    total: int


async def create_event(
    event_repo: EventRepository,
    slot_repo: SlotRepository,
    *,
    actor: Actor,
    title: str,
    event_date: date,
    starts_at: datetime,
    ends_at: datetime,
    capacity: int,
    description: str | None = None,
    location: str | None = None,
    category: str | None = None,
) -> tuple[Event, Slot]:
    ensure_admin(actor, what="create events")
    if not title or not title.strip():
        raise InvalidInputError("Title is required.")
    ensure_time_window(starts_at, ends_at)
    ensure_capacity_change_allowed(capacity, 0)

    event = await event_repo.create(
        title=title.strip(),
        description=description,
        date=event_date,
        location=location,
        category=category,
        created_by=actor.user_id,
        occurrence_status=OccurrenceStatus.ACTIVE,
        modified_from_series=False,
    )
    slot = await slot_repo.create(event_id=event.id, starts_at=starts_at, ends_at=ends_at, capacity=capacity)
    return event, slot


async def get_event_detail(
    event_repo: EventRepository,
    slot_repo: SlotRepository,
    *,
    event_id: int,
) -> tuple[Event, List[Dict[str, Any]]]:
    event = await event_repo.get(event_id)
    if event is None:
        raise EventNotFoundError("Event not found")
    return event, await list_availability(slot_repo, event_id=event_id)


async def update_event(
    event_repo: EventRepository,
    slot_repo: SlotRepository,
    booking_repo: BookingRepository,
    notifier: NotificationSink,
    *,
    actor: Actor,
    event_id: int,
    changes: Dict[str, Any],
    starts_at: datetime | None = None,
    ends_at: datetime | None = None,
    capacity: int | None = None,
) -> EventUpdate:
    """
    Update descriptive fields and the primary slot in one unit of work.
    Any validation failure aborts both.
    """
    unknown = set(changes) - set(EVENT_FIELDS)
    if unknown:
        raise InvalidInputError(f"Unknown event fields: {', '.join(sorted(unknown))}")
    has_slot_payload = starts_at is not None or ends_at is not None or capacity is not None
    if not changes and not has_slot_payload:
        raise InvalidInputError("At least one field must be provided")

    event = await event_repo.get_for_update(event_id)
    if event is None:
        raise EventNotFoundError("Event not found")
    ensure_creator_or_admin(actor, event.created_by, what="edit this event")

    for name, value in changes.items():
        setattr(event, name, value)
    if "date" in changes and event.recurrence_series_id is not None:
        event.occurrence_date = changes["date"]
    if event.recurrence_series_id is not None:
        event.modified_from_series = True
    await event_repo.save(event)

    result = EventUpdate(event=event)
    if not has_slot_payload:
        return result

    slot = primary_slot(await slot_repo.list_for_event_for_update(event.id))
    if slot is None:
        if starts_at is None or ends_at is None or capacity is None:
            raise InvalidInputError("To add a slot, provide start time, end time and capacity")
        ensure_time_window(starts_at, ends_at)
        ensure_capacity_change_allowed(capacity, 0)
        result.slot = await slot_repo.create(event_id=event.id, starts_at=starts_at, ends_at=ends_at, capacity=capacity)
        return result

    update = await apply_slot_changes(
        slot_repo,
        booking_repo,
        notifier,
        slot=slot,
        starts_at=starts_at,
        ends_at=ends_at,
        capacity=capacity,
    )
    result.slot = update.slot
    result.promoted = update.promoted
    return result


async def delete_event(
    event_repo: EventRepository,
    slot_repo: SlotRepository,
    booking_repo: BookingRepository,
    *,
    actor: Actor,
    event_id: int,
) -> Event:
    event = await event_repo.get_for_update(event_id)
    if event is None:
        raise EventNotFoundError("Event not found")
    ensure_creator_or_admin(actor, event.created_by, what="delete this event")
    if event.recurrence_series_id is not None:
        raise ConflictError("Recurring occurrences are cancelled through their series, not deleted.")

    slots = await slot_repo.list_for_event_for_update(event.id)
    if await booking_repo.count_live([s.id for s in slots]) > 0:
        raise LiveBookingsError("Cannot delete event with active bookings. Cancel all bookings first.")

    await slot_repo.delete_for_event(event.id)
    await event_repo.delete(event)
    return event


async def list_events(
    event_repo: EventRepository,
    user_repo: UserRepository,
    *,
    search: str | None = None,
    page: int = 1,
    page_size: int = EVENT_PAGE_SIZE,
    sort: EventSort = EventSort.DATE,
    user_id: int | None = None,
    today: date | None = None,
) -> EventPage:
    """
    Upcoming active events, one page at a time.

    ``date`` orders by event date. ``smart`` puts events whose category is one
    of the user's preferences first, then orders by date and by free spots,
    most first. Anonymous callers get the smart order without the preference
    boost. ``page_size`` is capped at ``MAX_EVENT_PAGE_SIZE``.
    """
    if page < 1:
        raise InvalidInputError("page must be at least 1")
    if page_size < 1:
        raise InvalidInputError("page_size must be at least 1")
    page_size = min(page_size, MAX_EVENT_PAGE_SIZE)

    preferred: List[str] = []
    if sort == EventSort.SMART and user_id is not None:
        preferred = await user_repo.get_preferences(user_id)

    rows, total = await event_repo.list_upcoming(
        from_date=today or utc_now_naive().date(),
        search=(search or "").strip() or None,
        preferred_categories=preferred,
        smart=sort == EventSort.SMART,
        limit=page_size,
        offset=(page - 1) * page_size,
    )
    return EventPage(rows=rows, page=page, page_size=page_size, total=total)
