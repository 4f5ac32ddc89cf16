from dataclasses import dataclass, field
from datetime import datetime

from ..domain.errors import (
    BookingNotFoundError,
    BookingStateError,
    SlotNotFoundError,
    UndoCapacityError,
    UnauthorizedError,
)
from ..domain.repositories import BookingRepository, EventRepository, NotificationSink, SlotRepository
from ..domain.services import (
    UserConflicts,
    decide_allocation,
    ensure_no_user_conflicts,
    ensure_undo_allowed,
    validate_partial_cancel,
    validate_spots,
)
from ..models import Booking, BookingStatus, OccurrenceStatus, Slot
from ..utils.time import utc_now_naive
from .waitlist import promote_waitlist, read_ledger


@dataclass
class CancelOutcome:
    booking: Booking
    slot: Slot
    status_from: BookingStatus
    spots_freed: int
    changed: bool = True
    promoted: list[Booking] = field(default_factory=list)


async def allocate(
    slot_repo: SlotRepository,
    booking_repo: BookingRepository,
    event_repo: EventRepository,
    *,
    slot_id: int,
    user_id: int,
    spots: int,
) -> tuple[Booking, Slot]:
    validate_spots(spots)

    slot = await slot_repo.get_for_update(slot_id)
    if slot is None:
        raise SlotNotFoundError("Slot not found")
    event = await event_repo.get(slot.event_id)
    if event is None or event.occurrence_status == OccurrenceStatus.CANCELLED:
        raise SlotNotFoundError("This time slot is no longer available")

    conflicts = await _user_conflicts(booking_repo, user_id=user_id, slot=slot)
    ensure_no_user_conflicts(conflicts)

    snapshot = await read_ledger(booking_repo, slot)
    status = decide_allocation(snapshot, spots=spots)

    booking = await booking_repo.create(
        slot_id=slot.id,
        user_id=user_id,
        spots=spots,
        status=status,
    )
    return booking, slot


async def cancel(
    slot_repo: SlotRepository,
    booking_repo: BookingRepository,
    notifier: NotificationSink,
    *,
    booking_id: int,
    user_id: int,
    spots_to_cancel: int | None = None,
    now: datetime | None = None,
) -> CancelOutcome:
    booking, slot = await _get_owned_for_update(booking_repo, booking_id=booking_id, user_id=user_id)
    status_from = booking.status
    now = now or utc_now_naive()

    if spots_to_cancel is None:
        # Idempotent: already cancelled returns as-is
        if booking.status == BookingStatus.CANCELLED:
            return CancelOutcome(booking=booking, slot=slot, status_from=status_from, spots_freed=0, changed=False)
        freed = booking.spots
        booking.status = BookingStatus.CANCELLED
        booking.cancelled_at = now
    else:
        if booking.status == BookingStatus.CANCELLED:
            raise BookingStateError("Booking is already cancelled")
        booking.spots = validate_partial_cancel(booking.spots, spots_to_cancel)
        freed = spots_to_cancel

    booking.updated_at = now
    await booking_repo.save(booking)

    promoted = await promote_waitlist(
        slot_repo,
        booking_repo,
        notifier,
        slot_id=slot.id,
        spots_freed=freed,
        now=now,
    )
    return CancelOutcome(booking=booking, slot=slot, status_from=status_from, spots_freed=freed, promoted=promoted)


async def undo(
    slot_repo: SlotRepository,
    booking_repo: BookingRepository,
    event_repo: EventRepository,
    *,
    booking_id: int,
    user_id: int,
    now: datetime | None = None,
) -> tuple[Booking, Slot]:
    booking, slot = await _get_owned_for_update(booking_repo, booking_id=booking_id, user_id=user_id)
    now = now or utc_now_naive()
    ensure_undo_allowed(status=booking.status, cancelled_at=booking.cancelled_at, now=now)

    locked = await slot_repo.get_for_update(slot.id)
    if locked is None:
        raise SlotNotFoundError("Slot not found")
    event = await event_repo.get(locked.event_id)
    if event is None or event.occurrence_status == OccurrenceStatus.CANCELLED:
        raise SlotNotFoundError("This time slot is no longer available")

    conflicts = await _user_conflicts(booking_repo, user_id=user_id, slot=locked, exclude_booking_id=booking.id)
    ensure_no_user_conflicts(conflicts)

    remaining = (await read_ledger(booking_repo, locked)).remaining
    if remaining < booking.spots:
        raise UndoCapacityError(
            f"Not enough spots available. Required: {booking.spots}, Available: {max(remaining, 0)}. "
            "Your booking is still pending recovery."
        )

    booking.status = BookingStatus.BOOKED
    booking.cancelled_at = None
    booking.updated_at = now
    await booking_repo.save(booking)
    return booking, locked


async def list_user_bookings(
    booking_repo: BookingRepository,
    *,
    user_id: int,
) -> list[tuple[Booking, Slot]]:
    return await booking_repo.list_by_user(user_id)


async def _get_owned_for_update(
    booking_repo: BookingRepository,
    *,
    booking_id: int,
    user_id: int,
) -> tuple[Booking, Slot]:
    row = await booking_repo.get_for_update(booking_id)
    if row is None:
        raise BookingNotFoundError("Booking not found")
    booking, slot = row
    if booking.user_id != user_id:
        raise UnauthorizedError("You can only manage your own bookings.")
    return booking, slot


async def _user_conflicts(
    booking_repo: BookingRepository,
    *,
    user_id: int,
    slot: Slot,
    exclude_booking_id: int | None = None,
) -> UserConflicts:
    # one user's conflict checks run one at a time across slots
    await booking_repo.lock_user(user_id)
    return UserConflicts(
        has_live_booking_on_event=await booking_repo.user_has_live_on_event(
            user_id, slot.event_id, exclude_booking_id=exclude_booking_id
        ),
        has_overlapping_booking=await booking_repo.user_has_overlapping(
            user_id, slot.starts_at, slot.ends_at, exclude_booking_id=exclude_booking_id
        ),
    )
