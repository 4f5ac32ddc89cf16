"""
In-memory repositories for use-case tests.

Row locks are emulated with one ``asyncio.Lock`` per slot or user, held until the
surrounding ``FakeStore.transaction()`` block exits. Writes are applied
immediately and are not undone when a transaction raises.
"""

import asyncio
from contextlib import asynccontextmanager
from contextvars import ContextVar
from datetime import date, datetime, time, timedelta
from typing import Any, AsyncIterator, Dict, Hashable, List, Optional, Sequence, Tuple

from slotbook.models import (
    LIVE_BOOKING_STATUSES,
    Booking,
    BookingStatus,
    Event,
    Notification,
    OccurrenceStatus,
    RecurrenceSeries,
    Slot,
)

BASE_TIME = datetime(2024, 1, 1, 9, 0, 0)

_held_locks: ContextVar[Optional[List[Hashable]]] = ContextVar("held_locks", default=None)


class FakeStore:
    def __init__(self) -> None:
        self.events: Dict[int, Event] = {}
        self.slots: Dict[int, Slot] = {}
        self.bookings: Dict[int, Booking] = {}
        self.series: Dict[int, RecurrenceSeries] = {}
        self.notifications: List[Notification] = []
        self.preferences: Dict[int, List[str]] = {}
        self._locks: Dict[Hashable, asyncio.Lock] = {}
        self._ids: Dict[str, int] = {}
        self._ticks = 0

    def next_id(self, kind: str) -> int:
        self._ids[kind] = self._ids.get(kind, 0) + 1
        return self._ids[kind]

    def tick(self) -> datetime:
        self._ticks += 1
        return BASE_TIME + timedelta(seconds=self._ticks)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        held: List[Hashable] = []
        token = _held_locks.set(held)
        try:
            yield
        finally:
            for key in reversed(held):
                self._locks[key].release()
            _held_locks.reset(token)

    async def lock_slot(self, slot_id: int) -> None:
        await self._lock(("slot", slot_id))

    async def lock_user(self, user_id: int) -> None:
        await self._lock(("user", user_id))

    async def _lock(self, key: Hashable) -> None:
        held = _held_locks.get()
        if held is None or key in held:
            return
        lock = self._locks.setdefault(key, asyncio.Lock())
        await lock.acquire()
        held.append(key)

    def booked_sum(self, slot_id: int) -> int:
        return sum(
            b.spots for b in self.bookings.values() if b.slot_id == slot_id and b.status == BookingStatus.BOOKED
        )

    # seeding helpers

    def add_event(self, *, created_by: int = 1, event_date: date = date(2024, 1, 1), **fields: Any) -> Event:
        event = Event(
            id=self.next_id("event"),
            title=fields.pop("title", "Yoga"),
            description=fields.pop("description", None),
            date=event_date,
            location=fields.pop("location", None),
            category=fields.pop("category", None),
            created_by=created_by,
            recurrence_series_id=fields.pop("recurrence_series_id", None),
            occurrence_date=fields.pop("occurrence_date", None),
            occurrence_status=fields.pop("occurrence_status", OccurrenceStatus.ACTIVE),
            modified_from_series=fields.pop("modified_from_series", False),
        )
        self.events[event.id] = event
        return event

    def add_slot(
        self,
        event: Event,
        *,
        capacity: int = 10,
        starts_at: Optional[datetime] = None,
        duration: timedelta = timedelta(hours=1),
    ) -> Slot:
        starts_at = starts_at or datetime.combine(event.date, time(9, 0))
        slot = Slot(
            id=self.next_id("slot"),
            event_id=event.id,
            starts_at=starts_at,
            ends_at=starts_at + duration,
            capacity=capacity,
        )
        self.slots[slot.id] = slot
        return slot

    def add_booking(
        self,
        slot: Slot,
        *,
        user_id: int,
        spots: int = 1,
        status: BookingStatus = BookingStatus.BOOKED,
        cancelled_at: Optional[datetime] = None,
    ) -> Booking:
        now = self.tick()
        booking = Booking(
            id=self.next_id("booking"),
            slot_id=slot.id,
            user_id=user_id,
            spots=spots,
            status=status,
            cancelled_at=cancelled_at,
            created_at=now,
            updated_at=now,
        )
        self.bookings[booking.id] = booking
        return booking


class FakeSlotRepo:
    def __init__(self, store: FakeStore) -> None:
        self.store = store

    async def get(self, slot_id: int) -> Optional[Slot]:
        return self.store.slots.get(slot_id)

    async def get_for_update(self, slot_id: int) -> Optional[Slot]:
        if slot_id not in self.store.slots:
            return None
        await self.store.lock_slot(slot_id)
        return self.store.slots[slot_id]

    async def list_for_event_for_update(self, event_id: int) -> List[Slot]:
        slots = sorted(
            (s for s in self.store.slots.values() if s.event_id == event_id),
            key=lambda s: (s.starts_at, s.id),
        )
        for slot in slots:
            await self.store.lock_slot(slot.id)
        return slots

    async def create(self, *, event_id: int, starts_at: datetime, ends_at: datetime, capacity: int) -> Slot:
        slot = Slot(
            id=self.store.next_id("slot"),
            event_id=event_id,
            starts_at=starts_at,
            ends_at=ends_at,
            capacity=capacity,
        )
        self.store.slots[slot.id] = slot
        return slot

    async def save(self, slot: Slot) -> Slot:
        self.store.slots[slot.id] = slot
        return slot

    async def list_with_booked(self, event_id: int) -> List[Tuple[Slot, int]]:
        slots = sorted((s for s in self.store.slots.values() if s.event_id == event_id), key=lambda s: s.starts_at)
        return [(slot, self.store.booked_sum(slot.id)) for slot in slots]

    async def delete_for_event(self, event_id: int) -> None:
        slot_ids = {s.id for s in self.store.slots.values() if s.event_id == event_id}
        for booking_id in [b.id for b in self.store.bookings.values() if b.slot_id in slot_ids]:
            del self.store.bookings[booking_id]
        for slot_id in slot_ids:
            del self.store.slots[slot_id]


class FakeBookingRepo:
    def __init__(self, store: FakeStore) -> None:
        self.store = store

    async def sum_booked(self, slot_id: int) -> int:
        # give concurrent tasks a chance to interleave between read and write
        await asyncio.sleep(0)
        return self.store.booked_sum(slot_id)

    async def lock_user(self, user_id: int) -> None:
        await self.store.lock_user(user_id)

    def _live_for_user(self, user_id: int, exclude_booking_id: Optional[int]) -> List[Tuple[Booking, Slot]]:
        return [
            (b, self.store.slots[b.slot_id])
            for b in self.store.bookings.values()
            if b.user_id == user_id and b.status in LIVE_BOOKING_STATUSES and b.id != exclude_booking_id
        ]

    async def user_has_live_on_event(
        self, user_id: int, event_id: int, *, exclude_booking_id: Optional[int] = None
    ) -> bool:
        return any(slot.event_id == event_id for _, slot in self._live_for_user(user_id, exclude_booking_id))

    async def user_has_overlapping(
        self,
        user_id: int,
        starts_at: datetime,
        ends_at: datetime,
        *,
        exclude_booking_id: Optional[int] = None,
    ) -> bool:
        return any(
            slot.starts_at < ends_at and slot.ends_at > starts_at
            for _, slot in self._live_for_user(user_id, exclude_booking_id)
        )

    async def create(self, *, slot_id: int, user_id: int, spots: int, status: BookingStatus) -> Booking:
        now = self.store.tick()
        booking = Booking(
            id=self.store.next_id("booking"),
            slot_id=slot_id,
            user_id=user_id,
            spots=spots,
            status=status,
            cancelled_at=None,
            created_at=now,
            updated_at=now,
        )
        self.store.bookings[booking.id] = booking
        return booking

    async def get_for_update(self, booking_id: int) -> Optional[Tuple[Booking, Slot]]:
        booking = self.store.bookings.get(booking_id)
        if booking is None:
            return None
        await self.store.lock_slot(booking.slot_id)
        return booking, self.store.slots[booking.slot_id]

    async def list_waitlist(self, slot_id: int) -> List[Booking]:
        waiting = [
            b for b in self.store.bookings.values() if b.slot_id == slot_id and b.status == BookingStatus.WAITLIST
        ]
        return sorted(waiting, key=lambda b: (b.created_at, b.id))

    async def count_live(self, slot_ids: Sequence[int]) -> int:
        return sum(1 for b in self.store.bookings.values() if b.slot_id in slot_ids and b.status in LIVE_BOOKING_STATUSES)

    async def cancel_live_for_slots(self, slot_ids: Sequence[int], *, now: datetime) -> int:
        count = 0
        for booking in self.store.bookings.values():
            if booking.slot_id in slot_ids and booking.status in LIVE_BOOKING_STATUSES:
                booking.status = BookingStatus.CANCELLED
                booking.cancelled_at = None
                booking.updated_at = now
                count += 1
        return count

    async def list_by_user(self, user_id: int) -> List[Tuple[Booking, Slot]]:
        rows = [(b, self.store.slots[b.slot_id]) for b in self.store.bookings.values() if b.user_id == user_id]
        return sorted(rows, key=lambda row: row[0].created_at, reverse=True)

    async def save(self, booking: Booking) -> Booking:
        self.store.bookings[booking.id] = booking
        return booking


class FakeEventRepo:
    def __init__(self, store: FakeStore) -> None:
        self.store = store

    async def get(self, event_id: int) -> Optional[Event]:
        return self.store.events.get(event_id)

    async def get_for_update(self, event_id: int) -> Optional[Event]:
        return self.store.events.get(event_id)

    async def create(self, **fields: Any) -> Event:
        event = Event(id=self.store.next_id("event"), **fields)
        self.store.events[event.id] = event
        return event

    async def save(self, event: Event) -> Event:
        self.store.events[event.id] = event
        return event

    async def delete(self, event: Event) -> None:
        del self.store.events[event.id]

    async def list_active_occurrences_for_update(self, series_id: int, from_date: date) -> List[Event]:
        events = [
            e
            for e in self.store.events.values()
            if e.recurrence_series_id == series_id
            and e.occurrence_status == OccurrenceStatus.ACTIVE
            and e.occurrence_date is not None
            and e.occurrence_date >= from_date
        ]
        return sorted(events, key=lambda e: (e.occurrence_date, e.id))

    async def list_upcoming(
        self,
        *,
        from_date: date,
        search: Optional[str],
        preferred_categories: Sequence[str],
        smart: bool,
        limit: int,
        offset: int,
    ) -> Tuple[List[Tuple[Event, int]], int]:
        needle = (search or "").lower()
        preferred = {c.lower() for c in preferred_categories}
        rows = []
        for event in self.store.events.values():
            if event.date < from_date or event.occurrence_status != OccurrenceStatus.ACTIVE:
                continue
            if needle and needle not in event.title.lower() and needle not in (event.description or "").lower():
                continue
            slots = [s for s in self.store.slots.values() if s.event_id == event.id]
            available = sum(s.capacity for s in slots) - sum(self.store.booked_sum(s.id) for s in slots)
            rows.append((event, available))
        if smart:
            rows.sort(key=lambda r: (-int((r[0].category or "").lower() in preferred), r[0].date, -r[1], r[0].id))
        else:
            rows.sort(key=lambda r: (r[0].date, r[0].id))
        return rows[offset : offset + limit], len(rows)


class FakeUserRepo:
    def __init__(self, store: FakeStore) -> None:
        self.store = store

    async def get_preferences(self, user_id: int) -> List[str]:
        return list(self.store.preferences.get(user_id, []))


class FakeSeriesRepo:
    def __init__(self, store: FakeStore) -> None:
        self.store = store

    async def get(self, series_id: int) -> Optional[RecurrenceSeries]:
        return self.store.series.get(series_id)

    async def get_for_update(self, series_id: int) -> Optional[RecurrenceSeries]:
        return self.store.series.get(series_id)

    async def create(self, **fields: Any) -> RecurrenceSeries:
        now = self.store.tick()
        series = RecurrenceSeries(
            id=self.store.next_id("series"), series_version=1, created_at=now, updated_at=now, **fields
        )
        self.store.series[series.id] = series
        return series

    async def save(self, series: RecurrenceSeries) -> RecurrenceSeries:
        self.store.series[series.id] = series
        return series


class FakeNotifier:
    def __init__(self, store: FakeStore, *, fail: bool = False) -> None:
        self.store = store
        self.fail = fail

    async def notify(self, *, user_id: int, type: str, payload: Dict[str, Any]) -> None:
        if self.fail:
            raise RuntimeError("notification store unavailable")
        self.store.notifications.append(
            Notification(
                id=len(self.store.notifications) + 1,
                user_id=user_id,
                type=type,
                payload=payload,
                read=False,
                created_at=self.store.tick(),
            )
        )

    async def list_for_user(self, user_id: int, *, limit: int = 50) -> List[Notification]:
        rows = [n for n in self.store.notifications if n.user_id == user_id]
        return sorted(rows, key=lambda n: n.created_at, reverse=True)[:limit]
