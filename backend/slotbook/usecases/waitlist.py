import logging
from datetime import datetime

from ..domain.repositories import BookingRepository, NotificationSink, SlotRepository
from ..domain.services import SlotSnapshot
from ..models import Booking, BookingStatus, Slot
from ..utils.time import utc_now_naive

logger = logging.getLogger(__name__)

WAITLIST_PROMOTED = "waitlist_promoted"


async def read_ledger(booking_repo: BookingRepository, slot: Slot) -> SlotSnapshot:
    """Capacity ledger for a slot the caller has already locked."""
    booked = await booking_repo.sum_booked(slot.id)
    return SlotSnapshot(capacity=slot.capacity, booked=booked)


async def promote_waitlist(
    slot_repo: SlotRepository,
    booking_repo: BookingRepository,
    notifier: NotificationSink,
    *,
    slot_id: int,
    spots_freed: int,
    now: datetime | None = None,
) -> list[Booking]:
    """
    Fill freed capacity from the slot's waitlist, first fit in arrival order.

    Must run inside the caller's transaction. ``spots_freed`` is informational:
    remaining capacity is always recomputed from the ledger.
    """
    slot = await slot_repo.get_for_update(slot_id)
    if slot is None:
        return []

    available = (await read_ledger(booking_repo, slot)).remaining
    logger.debug("promoting waitlist for slot %s: freed=%s available=%s", slot_id, spots_freed, available)
    if available <= 0:
        return []

    now = now or utc_now_naive()
    promoted: list[Booking] = []
    for booking in await booking_repo.list_waitlist(slot_id):
        if available <= 0:
            break
        if booking.spots > available:
            continue
        booking.status = BookingStatus.BOOKED
        booking.updated_at = now
        await booking_repo.save(booking)
        available -= booking.spots
        promoted.append(booking)
        try:
            await notifier.notify(
                user_id=booking.user_id,
                type=WAITLIST_PROMOTED,
                payload={"slot_id": slot_id, "booking_id": booking.id, "spots": booking.spots},
            )
        except Exception:
            # best effort: the promotion stands without its notification
            logger.warning("promotion notification failed for booking %s", booking.id, exc_info=True)
    return promoted
