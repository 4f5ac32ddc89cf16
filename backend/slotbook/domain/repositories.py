from __future__ import annotations

from datetime import date, datetime
from typing import Any, Iterable, Protocol, Sequence

from ..models import Booking, BookingStatus, Event, Notification, RecurrenceSeries, Slot


class SlotRepository(Protocol):
    async def get(self, slot_id: int) -> Slot | None: ...

    async def get_for_update(self, slot_id: int) -> Slot | None: ...

    async def list_for_event_for_update(self, event_id: int) -> list[Slot]: ...

    async def create(
        self,
        *,
        event_id: int,
        starts_at: datetime,
        ends_at: datetime,
        capacity: int,
    ) -> Slot: ...

    async def save(self, slot: Slot) -> Slot: ...

    async def list_with_booked(self, event_id: int) -> Iterable[tuple[Slot, int]]: ...

    async def delete_for_event(self, event_id: int) -> None: ...


class BookingRepository(Protocol):
    async def sum_booked(self, slot_id: int) -> int: ...

    async def lock_user(self, user_id: int) -> None: ...

    async def user_has_live_on_event(
        self,
        user_id: int,
        event_id: int,
        *,
        exclude_booking_id: int | None = None,
    ) -> bool: ...

    async def user_has_overlapping(
        self,
        user_id: int,
        starts_at: datetime,
        ends_at: datetime,
        *,
        exclude_booking_id: int | None = None,
    ) -> bool: ...

    async def create(
        self,
        *,
        slot_id: int,
        user_id: int,
        spots: int,
        status: BookingStatus,
    ) -> Booking: ...

    async def get_for_update(self, booking_id: int) -> tuple[Booking, Slot] | None: ...

    async def list_waitlist(self, slot_id: int) -> list[Booking]: ...

    async def count_live(self, slot_ids: Sequence[int]) -> int: ...

    async def cancel_live_for_slots(self, slot_ids: Sequence[int], *, now: datetime) -> int: ...

    async def list_by_user(self, user_id: int) -> list[tuple[Booking, Slot]]: ...

    async def save(self, booking: Booking) -> Booking: ...


class EventRepository(Protocol):
    async def get(self, event_id: int) -> Event | None: ...

    async def get_for_update(self, event_id: int) -> Event | None: ...

    async def create(self, **fields: Any) -> Event: ...

    async def save(self, event: Event) -> Event: ...

    async def delete(self, event: Event) -> None: ...

    async def list_active_occurrences_for_update(self, series_id: int, from_date: date) -> list[Event]: ...

    async def list_upcoming(
        self,
        *,
        from_date: date,
        search: str | None,
        preferred_categories: Sequence[str],
        smart: bool,
        limit: int,
        offset: int,
    ) -> tuple[list[tuple[Event, int]], int]:
        """Active events on or after ``from_date`` with their free spots, plus the total match count."""
        ...


class UserRepository(Protocol):
    async def get_preferences(self, user_id: int) -> list[str]: ...


class SeriesRepository(Protocol):
    async def get(self, series_id: int) -> RecurrenceSeries | None: ...

    async def get_for_update(self, series_id: int) -> RecurrenceSeries | None: ...

    async def create(self, **fields: Any) -> RecurrenceSeries: ...

    async def save(self, series: RecurrenceSeries) -> RecurrenceSeries: ...


class NotificationSink(Protocol):
    """Fire-and-forget notification records. Must not break the caller's transaction."""

    async def notify(self, *, user_id: int, type: str, payload: dict[str, Any]) -> None: ...

    async def list_for_user(self, user_id: int, *, limit: int = 50) -> list[Notification]: ...
