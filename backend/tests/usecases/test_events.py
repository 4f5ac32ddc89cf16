from datetime import date, datetime, timedelta

import pytest
from slotbook.domain.errors import (
    CapacityBelowBookedError,
    ConflictError,
    EventNotFoundError,
    InvalidInputError,
    LiveBookingsError,
    UnauthorizedError,
)
from slotbook.models import BookingStatus, OccurrenceStatus, UserRole
from slotbook.usecases import events as uc
from slotbook.usecases.access import Actor
from slotbook_fakes import FakeBookingRepo, FakeEventRepo, FakeNotifier, FakeSlotRepo, FakeStore, FakeUserRepo

ADMIN = Actor(user_id=1, role=UserRole.ADMIN)
MEMBER = Actor(user_id=2)


async def _update(store: FakeStore, *, actor: Actor = ADMIN, event_id: int, changes=None, **slot_fields):
    async with store.transaction():
        return await uc.update_event(
            FakeEventRepo(store),
            FakeSlotRepo(store),
            FakeBookingRepo(store),
            FakeNotifier(store),
            actor=actor,
            event_id=event_id,
            changes=changes or {},
            **slot_fields,
        )


async def _delete(store: FakeStore, *, actor: Actor = ADMIN, event_id: int):
    return await uc.delete_event(
        FakeEventRepo(store),
        FakeSlotRepo(store),
        FakeBookingRepo(store),
        actor=actor,
        event_id=event_id,
    )


@pytest.mark.asyncio
async def test_create_event_with_first_slot() -> None:
    store = FakeStore()
    start = datetime(2024, 3, 1, 18)
    event, slot = await uc.create_event(
        FakeEventRepo(store),
        FakeSlotRepo(store),
        actor=ADMIN,
        title="  Board games ",
        event_date=date(2024, 3, 1),
        starts_at=start,
        ends_at=start + timedelta(hours=2),
        capacity=12,
    )
    assert event.title == "Board games"
    assert event.created_by == ADMIN.user_id
    assert slot.event_id == event.id
    assert slot.capacity == 12


@pytest.mark.asyncio
async def test_create_event_requires_admin() -> None:
    store = FakeStore()
    start = datetime(2024, 3, 1, 18)
    with pytest.raises(UnauthorizedError):
        await uc.create_event(
            FakeEventRepo(store),
            FakeSlotRepo(store),
            actor=MEMBER,
            title="Board games",
            event_date=date(2024, 3, 1),
            starts_at=start,
            ends_at=start + timedelta(hours=2),
            capacity=12,
        )
    assert store.events == {}


@pytest.mark.asyncio
async def test_event_detail() -> None:
    store = FakeStore()
    event = store.add_event()
    store.add_slot(event, capacity=3)
    found, rows = await uc.get_event_detail(FakeEventRepo(store), FakeSlotRepo(store), event_id=event.id)
    assert found is event
    assert rows[0]["remaining"] == 3
    with pytest.raises(EventNotFoundError):
        await uc.get_event_detail(FakeEventRepo(store), FakeSlotRepo(store), event_id=404)


@pytest.mark.asyncio
async def test_update_event_fields_and_primary_slot() -> None:
    store = FakeStore()
    event = store.add_event(created_by=ADMIN.user_id)
    slot = store.add_slot(event, capacity=5)
    store.add_booking(slot, user_id=3, spots=2)

    result = await _update(store, event_id=event.id, changes={"title": "Evening yoga"}, capacity=2)

    assert event.title == "Evening yoga"
    assert result.slot is slot
    assert slot.capacity == 2


@pytest.mark.asyncio
async def test_update_event_capacity_guard() -> None:
    store = FakeStore()
    event = store.add_event(created_by=ADMIN.user_id)
    slot = store.add_slot(event, capacity=5)
    store.add_booking(slot, user_id=3, spots=4)
    with pytest.raises(CapacityBelowBookedError):
        await _update(store, event_id=event.id, capacity=3)


@pytest.mark.asyncio
async def test_update_event_rejects_unknown_or_empty_payload() -> None:
    store = FakeStore()
    event = store.add_event(created_by=ADMIN.user_id)
    with pytest.raises(InvalidInputError):
        await _update(store, event_id=event.id, changes={"created_by": 5})
    with pytest.raises(InvalidInputError):
        await _update(store, event_id=event.id)


@pytest.mark.asyncio
async def test_update_event_creates_missing_slot() -> None:
    store = FakeStore()
    event = store.add_event(created_by=ADMIN.user_id)
    start = datetime(2024, 1, 1, 9)
    with pytest.raises(InvalidInputError):
        await _update(store, event_id=event.id, capacity=5)
    result = await _update(store, event_id=event.id, starts_at=start, ends_at=start + timedelta(hours=1), capacity=5)
    assert result.slot is not None
    assert result.slot.event_id == event.id


@pytest.mark.asyncio
async def test_update_series_member_marks_it_modified() -> None:
    store = FakeStore()
    event = store.add_event(
        created_by=ADMIN.user_id,
        recurrence_series_id=1,
        occurrence_date=date(2024, 1, 1),
    )
    await _update(store, event_id=event.id, changes={"date": date(2024, 1, 2)})
    assert event.modified_from_series is True
    assert event.occurrence_date == date(2024, 1, 2)


@pytest.mark.asyncio
async def test_member_cannot_edit_someone_elses_event() -> None:
    store = FakeStore()
    event = store.add_event(created_by=ADMIN.user_id)
    with pytest.raises(UnauthorizedError):
        await _update(store, actor=MEMBER, event_id=event.id, changes={"title": "Mine now"})


@pytest.mark.asyncio
async def test_delete_event_refused_with_live_bookings() -> None:
    store = FakeStore()
    event = store.add_event(created_by=ADMIN.user_id)
    slot = store.add_slot(event)
    store.add_booking(slot, user_id=3, status=BookingStatus.WAITLIST)
    with pytest.raises(LiveBookingsError):
        await _delete(store, event_id=event.id)
    assert event.id in store.events


@pytest.mark.asyncio
async def test_delete_event_removes_slots_and_old_bookings() -> None:
    store = FakeStore()
    event = store.add_event(created_by=ADMIN.user_id)
    slot = store.add_slot(event)
    store.add_booking(slot, user_id=3, status=BookingStatus.CANCELLED, cancelled_at=datetime(2024, 1, 1))

    await _delete(store, event_id=event.id)

    assert store.events == {}
    assert store.slots == {}
    assert store.bookings == {}


@pytest.mark.asyncio
async def test_delete_series_member_is_refused() -> None:
    store = FakeStore()
    event = store.add_event(created_by=ADMIN.user_id, recurrence_series_id=1, occurrence_date=date(2024, 1, 1))
    with pytest.raises(ConflictError):
        await _delete(store, event_id=event.id)


TODAY = date(2024, 3, 1)


async def _list(store: FakeStore, **kwargs):
    return await uc.list_events(FakeEventRepo(store), FakeUserRepo(store), today=TODAY, **kwargs)


def _listing_store() -> FakeStore:
    store = FakeStore()
    past = store.add_event(title="Old quiz", event_date=date(2024, 2, 1))
    store.add_slot(past)
    cancelled = store.add_event(
        title="Cancelled yoga", event_date=date(2024, 3, 5), occurrence_status=OccurrenceStatus.CANCELLED
    )
    store.add_slot(cancelled)
    yoga = store.add_event(title="Morning yoga", event_date=date(2024, 3, 3), category="Wellness")
    store.add_slot(yoga, capacity=10)
    run = store.add_event(title="Park run", event_date=date(2024, 3, 2), category="sport", description="Bring water")
    store.add_booking(store.add_slot(run, capacity=10), user_id=9, spots=4)
    chess = store.add_event(title="Chess club", event_date=date(2024, 3, 2), category="games")
    store.add_slot(chess, capacity=8)
    return store


@pytest.mark.asyncio
async def test_list_events_by_date_skips_past_and_cancelled() -> None:
    store = _listing_store()
    page = await _list(store)

    assert [event.title for event, _ in page.rows] == ["Park run", "Chess club", "Morning yoga"]
    assert [available for _, available in page.rows] == [6, 8, 10]
    assert page.total == 3
    assert page.page == 1


@pytest.mark.asyncio
async def test_list_events_search_and_pagination() -> None:
    store = _listing_store()

    found = await _list(store, search="  water ")
    assert [event.title for event, _ in found.rows] == ["Park run"]
    assert found.total == 1

    second = await _list(store, page=2, page_size=2)
    assert [event.title for event, _ in second.rows] == ["Morning yoga"]
    assert second.total == 3

    capped = await _list(store, page_size=500)
    assert capped.page_size == uc.MAX_EVENT_PAGE_SIZE

    with pytest.raises(InvalidInputError):
        await _list(store, page=0)


@pytest.mark.asyncio
async def test_smart_listing_ranks_preferred_categories_first() -> None:
    store = _listing_store()
    store.preferences[MEMBER.user_id] = ["wellness"]

    page = await _list(store, sort=uc.EventSort.SMART, user_id=MEMBER.user_id)

    # preference first, then date, then most free spots
    assert [event.title for event, _ in page.rows] == ["Morning yoga", "Chess club", "Park run"]


@pytest.mark.asyncio
async def test_smart_listing_without_user_orders_by_date_then_free_spots() -> None:
    store = _listing_store()
    store.preferences[MEMBER.user_id] = ["wellness"]

    page = await _list(store, sort=uc.EventSort.SMART)

    assert [event.title for event, _ in page.rows] == ["Chess club", "Park run", "Morning yoga"]
