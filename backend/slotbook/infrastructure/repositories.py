from __future__ import annotations

from datetime import date, datetime
from typing import Any, List, Optional, Sequence, Tuple, cast

from sqlalchemy import Select, case, delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.repositories import (
    BookingRepository,
    EventRepository,
    SeriesRepository,
    SlotRepository,
    UserRepository,
)
from ..models import (
    LIVE_BOOKING_STATUSES,
    Booking,
    BookingStatus,
    Event,
    OccurrenceStatus,
    RecurrenceSeries,
    Slot,
    User,
)
from ..utils.time import utc_now_naive


class SqlAlchemySlotRepository(SlotRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, slot_id: int) -> Slot | None:
        return await self.session.get(Slot, slot_id)

    async def get_for_update(self, slot_id: int) -> Slot | None:
        result = await self.session.scalar(select(Slot).where(Slot.id == slot_id).with_for_update())
        return result if isinstance(result, Slot) else None

    async def list_for_event_for_update(self, event_id: int) -> List[Slot]:
        stmt = select(Slot).where(Slot.event_id == event_id).order_by(Slot.starts_at, Slot.id).with_for_update()
        return list((await self.session.scalars(stmt)).all())

    async def create(
        self,
        *,
        event_id: int,
        starts_at: datetime,
        ends_at: datetime,
        capacity: int,
    ) -> Slot:
        slot = Slot(event_id=event_id, starts_at=starts_at, ends_at=ends_at, capacity=capacity)
        self.session.add(slot)
        await self.session.flush()
        return slot

    async def save(self, slot: Slot) -> Slot:
        self.session.add(slot)
        await self.session.flush()
        return slot

    async def list_with_booked(self, event_id: int) -> List[Tuple[Slot, int]]:
        stmt: Select[Tuple[Slot, Any]] = (
            select(
                Slot,
                func.coalesce(func.sum(Booking.spots), 0).label("booked"),
            )
            .outerjoin(
                Booking,
                (Booking.slot_id == Slot.id) & (Booking.status == BookingStatus.BOOKED),
            )
            .where(Slot.event_id == event_id)
            .group_by(Slot.id)
            .order_by(Slot.starts_at)
        )
        rows = await self.session.execute(stmt)
        return [(slot, int(booked)) for slot, booked in rows.all()]

    async def delete_for_event(self, event_id: int) -> None:
        # cancelled bookings still reference the slots
        slot_ids = select(Slot.id).where(Slot.event_id == event_id)
        await self.session.execute(delete(Booking).where(Booking.slot_id.in_(slot_ids)))
        await self.session.execute(delete(Slot).where(Slot.event_id == event_id))


class SqlAlchemyBookingRepository(BookingRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def sum_booked(self, slot_id: int) -> int:
        stmt = select(func.coalesce(func.sum(Booking.spots), 0)).where(
            Booking.slot_id == slot_id,
            Booking.status == BookingStatus.BOOKED,
        )
        return int(await self.session.scalar(stmt) or 0)

    async def lock_user(self, user_id: int) -> None:
        """Serialise one user's conflict checks across slots."""
        await self.session.execute(select(User.id).where(User.id == user_id).with_for_update())

    async def user_has_live_on_event(
        self,
        user_id: int,
        event_id: int,
        *,
        exclude_booking_id: int | None = None,
    ) -> bool:
        stmt = (
            select(Booking.id)
            .join(Slot, Booking.slot_id == Slot.id)
            .where(
                Booking.user_id == user_id,
                Booking.status.in_(LIVE_BOOKING_STATUSES),
                Slot.event_id == event_id,
            )
            .limit(1)
        )
        if exclude_booking_id is not None:
            stmt = stmt.where(Booking.id != exclude_booking_id)
        return await self.session.scalar(stmt) is not None

    async def user_has_overlapping(
        self,
        user_id: int,
        starts_at: datetime,
        ends_at: datetime,
        *,
        exclude_booking_id: int | None = None,
    ) -> bool:
        stmt = (
            select(Booking.id)
            .join(Slot, Booking.slot_id == Slot.id)
            .where(
                Booking.user_id == user_id,
                Booking.status.in_(LIVE_BOOKING_STATUSES),
                Slot.starts_at < ends_at,
                Slot.ends_at > starts_at,
            )
            .limit(1)
        )
        if exclude_booking_id is not None:
            stmt = stmt.where(Booking.id != exclude_booking_id)
        return await self.session.scalar(stmt) is not None

    async def create(
        self,
        *,
        slot_id: int,
        user_id: int,
        spots: int,
        status: BookingStatus,
    ) -> Booking:
        now = utc_now_naive()
        booking = Booking(
            slot_id=slot_id,
            user_id=user_id,
            spots=spots,
            status=status,
            cancelled_at=None,
            created_at=now,
            updated_at=now,
        )
        self.session.add(booking)
        await self.session.flush()
        return booking

    async def get_for_update(self, booking_id: int) -> Optional[Tuple[Booking, Slot]]:
        stmt: Select[Tuple[Booking, Slot]] = (
            select(Booking, Slot)
            .join(Slot, Booking.slot_id == Slot.id)
            .where(Booking.id == booking_id)
            .with_for_update()
        )
        row = (await self.session.execute(stmt)).first()
        return cast(Optional[Tuple[Booking, Slot]], row)

    async def list_waitlist(self, slot_id: int) -> List[Booking]:
        stmt = (
            select(Booking)
            .where(Booking.slot_id == slot_id, Booking.status == BookingStatus.WAITLIST)
            .order_by(Booking.created_at.asc(), Booking.id.asc())
            .with_for_update()
        )
        return list((await self.session.scalars(stmt)).all())

    async def count_live(self, slot_ids: Sequence[int]) -> int:
        if not slot_ids:
            return 0
        stmt = select(func.count(Booking.id)).where(
            Booking.slot_id.in_(list(slot_ids)),
            Booking.status.in_(LIVE_BOOKING_STATUSES),
        )
        return int(await self.session.scalar(stmt) or 0)

    async def cancel_live_for_slots(self, slot_ids: Sequence[int], *, now: datetime) -> int:
        if not slot_ids:
            return 0
        stmt = (
            update(Booking)
            .where(
                Booking.slot_id.in_(list(slot_ids)),
                Booking.status.in_(LIVE_BOOKING_STATUSES),
            )
            .values(status=BookingStatus.CANCELLED, cancelled_at=None, updated_at=now)
            .execution_options(synchronize_session="fetch")
        )
        result = await self.session.execute(stmt)
        return int(result.rowcount or 0)

    async def list_by_user(self, user_id: int) -> List[Tuple[Booking, Slot]]:
        stmt: Select[Tuple[Booking, Slot]] = (
            select(Booking, Slot)
            .join(Slot, Booking.slot_id == Slot.id)
            .where(Booking.user_id == user_id)
            .order_by(Booking.created_at.desc())
        )
        rows = await self.session.execute(stmt)
        return cast(List[Tuple[Booking, Slot]], list(rows.all()))

    async def save(self, booking: Booking) -> Booking:
        self.session.add(booking)
        await self.session.flush()
        return booking


class SqlAlchemyEventRepository(EventRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, event_id: int) -> Event | None:
        return await self.session.get(Event, event_id)

    async def get_for_update(self, event_id: int) -> Event | None:
        result = await self.session.scalar(select(Event).where(Event.id == event_id).with_for_update())
        return result if isinstance(result, Event) else None

    async def create(self, **fields: Any) -> Event:
        event = Event(**fields)
        self.session.add(event)
        await self.session.flush()
        return event

    async def save(self, event: Event) -> Event:
        self.session.add(event)
        await self.session.flush()
        return event

    async def delete(self, event: Event) -> None:
        await self.session.delete(event)
        await self.session.flush()

    async def list_active_occurrences_for_update(self, series_id: int, from_date: date) -> List[Event]:
        stmt = (
            select(Event)
            .where(
                Event.recurrence_series_id == series_id,
                Event.occurrence_status == OccurrenceStatus.ACTIVE,
                Event.occurrence_date >= from_date,
            )
            .order_by(Event.occurrence_date.asc(), Event.id.asc())
            .with_for_update()
        )
        return list((await self.session.scalars(stmt)).all())

    async def list_upcoming(
        self,
        *,
        from_date: date,
        search: str | None,
        preferred_categories: Sequence[str],
        smart: bool,
        limit: int,
        offset: int,
    ) -> Tuple[List[Tuple[Event, int]], int]:
        taken = (
            select(Booking.slot_id.label("slot_id"), func.sum(Booking.spots).label("spots"))
            .where(Booking.status == BookingStatus.BOOKED)
            .group_by(Booking.slot_id)
            .subquery()
        )
        available = (
            func.coalesce(func.sum(Slot.capacity), 0) - func.coalesce(func.sum(taken.c.spots), 0)
        ).label("available")

        filters = [Event.date >= from_date, Event.occurrence_status == OccurrenceStatus.ACTIVE]
        if search:
            pattern = f"%{search}%"
            filters.append(or_(Event.title.ilike(pattern), Event.description.ilike(pattern)))

        stmt: Select[Tuple[Event, Any]] = (
            select(Event, available)
            .outerjoin(Slot, Slot.event_id == Event.id)
            .outerjoin(taken, taken.c.slot_id == Slot.id)
            .where(*filters)
            .group_by(Event.id)
        )
        if smart:
            ordering = [Event.date.asc(), available.desc(), Event.id.asc()]
            preferred = [category.lower() for category in preferred_categories]
            if preferred:
                score = case((func.lower(Event.category).in_(preferred), 1), else_=0)
                ordering.insert(0, score.desc())
            stmt = stmt.order_by(*ordering)
        else:
            stmt = stmt.order_by(Event.date.asc(), Event.id.asc())

        rows = await self.session.execute(stmt.limit(limit).offset(offset))
        total = await self.session.scalar(select(func.count(Event.id)).where(*filters))
        return [(event, int(free or 0)) for event, free in rows.all()], int(total or 0)


class SqlAlchemyUserRepository(UserRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_preferences(self, user_id: int) -> List[str]:
        preferences = await self.session.scalar(select(User.preferences).where(User.id == user_id))
        return [str(p) for p in preferences or []]


class SqlAlchemySeriesRepository(SeriesRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, series_id: int) -> RecurrenceSeries | None:
        return await self.session.get(RecurrenceSeries, series_id)

    async def get_for_update(self, series_id: int) -> RecurrenceSeries | None:
        stmt = select(RecurrenceSeries).where(RecurrenceSeries.id == series_id).with_for_update()
        result = await self.session.scalar(stmt)
        return result if isinstance(result, RecurrenceSeries) else None

    async def create(self, **fields: Any) -> RecurrenceSeries:
        now = utc_now_naive()
        series = RecurrenceSeries(series_version=1, created_at=now, updated_at=now, **fields)
        self.session.add(series)
        await self.session.flush()
        return series

    async def save(self, series: RecurrenceSeries) -> RecurrenceSeries:
        self.session.add(series)
        await self.session.flush()
        return series
