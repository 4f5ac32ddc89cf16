from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List

from ..domain.errors import EventNotFoundError, SlotNotFoundError
from ..domain.repositories import BookingRepository, EventRepository, NotificationSink, SlotRepository
from ..domain.services import ensure_capacity_change_allowed, ensure_time_window
from ..models import Booking, Slot
from .access import Actor, ensure_creator_or_admin
from .waitlist import promote_waitlist, read_ledger


@dataclass
class SlotUpdate:
    slot: Slot
    previous_capacity: int
    promoted: list[Booking] = field(default_factory=list)


async def list_availability(
    slot_repo: SlotRepository,
    *,
    event_id: int,
) -> List[Dict[str, Any]]:
    rows = await slot_repo.list_with_booked(event_id)
    items: List[Dict[str, Any]] = []
    for slot, booked in rows:
        remaining = max(slot.capacity - int(booked), 0)
        items.append({"slot": slot, "booked": int(booked), "remaining": remaining})
    return items


async def add_slot(
    slot_repo: SlotRepository,
    event_repo: EventRepository,
    *,
    actor: Actor,
    event_id: int,
    starts_at: datetime,
    ends_at: datetime,
    capacity: int,
) -> Slot:
    event = await event_repo.get_for_update(event_id)
    if event is None:
        raise EventNotFoundError("Event not found")
    ensure_creator_or_admin(actor, event.created_by, what="add slots to this event")
    ensure_time_window(starts_at, ends_at)
    ensure_capacity_change_allowed(capacity, 0)
    return await slot_repo.create(
        event_id=event.id,
        starts_at=starts_at,
        ends_at=ends_at,
        capacity=capacity,
    )


async def update_slot(
    slot_repo: SlotRepository,
    booking_repo: BookingRepository,
    event_repo: EventRepository,
    notifier: NotificationSink,
    *,
    actor: Actor,
    slot_id: int,
    starts_at: datetime | None = None,
    ends_at: datetime | None = None,
    capacity: int | None = None,
) -> SlotUpdate:
    slot = await slot_repo.get_for_update(slot_id)
    if slot is None:
        raise SlotNotFoundError("Slot not found")
    event = await event_repo.get(slot.event_id)
    if event is None:
        raise EventNotFoundError("Event not found")
    ensure_creator_or_admin(actor, event.created_by, what="edit this slot")
    return await apply_slot_changes(
        slot_repo,
        booking_repo,
        notifier,
        slot=slot,
        starts_at=starts_at,
        ends_at=ends_at,
        capacity=capacity,
    )


async def apply_slot_changes(
    slot_repo: SlotRepository,
    booking_repo: BookingRepository,
    notifier: NotificationSink,
    *,
    slot: Slot,
    starts_at: datetime | None = None,
    ends_at: datetime | None = None,
    capacity: int | None = None,
) -> SlotUpdate:
    """Change a locked slot's window and capacity; extra capacity is offered to the waitlist."""
    next_start = starts_at if starts_at is not None else slot.starts_at
    next_end = ends_at if ends_at is not None else slot.ends_at
    ensure_time_window(next_start, next_end)

    previous_capacity = slot.capacity
    if capacity is not None:
        snapshot = await read_ledger(booking_repo, slot)
        ensure_capacity_change_allowed(capacity, snapshot.booked)
        slot.capacity = capacity

    slot.starts_at = next_start
    slot.ends_at = next_end
    await slot_repo.save(slot)

    promoted: list[Booking] = []
    if slot.capacity > previous_capacity:
        promoted = await promote_waitlist(
            slot_repo,
            booking_repo,
            notifier,
            slot_id=slot.id,
            spots_freed=slot.capacity - previous_capacity,
        )
    return SlotUpdate(slot=slot, previous_capacity=previous_capacity, promoted=promoted)


def primary_slot(slots: List[Slot]) -> Slot | None:
    return min(slots, key=lambda s: (s.starts_at, s.id)) if slots else None
