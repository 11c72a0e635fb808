"""
Availability Calculator

Segments a park day into fixed windows and reports remaining capacity.
Reads only; capacity_reserved is changed exclusively by the booking service
through the conditional updates in this module.
"""

from datetime import date, datetime, time, timedelta
from typing import Dict, List, Optional
from uuid import UUID
import logging

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from skypark.config import settings
from skypark.core.database import dialect_insert
from skypark.core.exceptions import (
    CapacityError,
    NotFoundError,
    SlotTooSoonError,
    ValidationError,
)
from skypark.core.timeutils import park_local_to_utc, utcnow
from skypark.models.park import Park, SlotCapacity
from skypark.schemas.park import TimeSlot

logger = logging.getLogger(__name__)


def slot_windows(park: Park) -> List[tuple]:
    """(start, end) pairs from opening time; a trailing partial window is dropped"""
    windows = []
    step = timedelta(minutes=park.slot_duration_minutes)
    anchor = date(2000, 1, 1)
    cursor = datetime.combine(anchor, park.opening_time)
    closing = datetime.combine(anchor, park.closing_time)

    while cursor + step <= closing:
        windows.append((cursor.time(), (cursor + step).time()))
        cursor += step
    return windows


class AvailabilityService:
    """Availability queries and the slot capacity counter"""

    def __init__(self, lead_time_minutes: Optional[int] = None):
        self.lead_time_minutes = (
            settings.BOOKING_LEAD_TIME_MINUTES if lead_time_minutes is None else lead_time_minutes
        )

    async def get_park(self, db: AsyncSession, park_id: UUID) -> Park:
        park = await db.get(Park, park_id)
        if not park or not park.is_active:
            raise NotFoundError("Park", park_id)
        return park

    def slot_start_utc(self, park: Park, visit_date: date, start: time) -> datetime:
        return park_local_to_utc(visit_date, start, park.utc_offset_minutes)

    def is_bookable_time(self, park: Park, visit_date: date, start: time, now: Optional[datetime] = None) -> bool:
        starts_at = self.slot_start_utc(park, visit_date, start)
        return starts_at - (now or utcnow()) >= timedelta(minutes=self.lead_time_minutes)

    async def get_availability(
        self,
        db: AsyncSession,
        park_id: UUID,
        visit_date: date,
        now: Optional[datetime] = None
    ) -> List[TimeSlot]:
        """Ordered slots for the day, each flagged available or not"""
        park = await self.get_park(db, park_id)
        now = now or utcnow()

        result = await db.execute(
            select(SlotCapacity)
            .where(
                SlotCapacity.park_id == park.id,
                SlotCapacity.visit_date == visit_date,
            )
            .execution_options(populate_existing=True)
        )
        counters: Dict[time, SlotCapacity] = {row.start_time: row for row in result.scalars()}

        slots = []
        for start, end in slot_windows(park):
            counter = counters.get(start)
            total = counter.capacity_total if counter else park.slot_capacity
            reserved = counter.capacity_reserved if counter else 0
            slots.append(TimeSlot(
                park_id=park.id,
                visit_date=visit_date,
                start_time=start,
                end_time=end,
                capacity_total=total,
                capacity_reserved=reserved,
                available=reserved < total and self.is_bookable_time(park, visit_date, start, now),
            ))
        return slots

    def check_slot(
        self,
        park: Park,
        visit_date: date,
        start: time,
        now: Optional[datetime] = None
    ) -> tuple:
        """Resolve a requested start time to its window and enforce the lead time"""
        for window_start, window_end in slot_windows(park):
            if window_start == start:
                break
        else:
            raise ValidationError(
                f"{start.strftime('%H:%M')} is not a time slot of {park.name}",
                field="time_slot"
            )

        if not self.is_bookable_time(park, visit_date, start, now):
            raise SlotTooSoonError(start.strftime("%H:%M"), self.lead_time_minutes)

        return window_start, window_end

    async def reserve(
        self,
        db: AsyncSession,
        park: Park,
        visit_date: date,
        start: time,
        guests: int
    ) -> None:
        """
        Atomically add `guests` to the slot counter if they fit.

        Raises CapacityError without touching the counter when they don't.
        Must run inside the caller's transaction.
        """
        label = start.strftime("%H:%M")
        if guests > park.slot_capacity:
            raise CapacityError(label, guests, park.slot_capacity)

        await db.execute(
            dialect_insert(db, SlotCapacity)
            .values(
                park_id=park.id,
                visit_date=visit_date,
                start_time=start,
                capacity_total=park.slot_capacity,
                capacity_reserved=0,
            )
            .on_conflict_do_nothing(index_elements=["park_id", "visit_date", "start_time"])
        )

        for attempt in range(2):
            result = await db.execute(
                update(SlotCapacity)
                .where(
                    SlotCapacity.park_id == park.id,
                    SlotCapacity.visit_date == visit_date,
                    SlotCapacity.start_time == start,
                    SlotCapacity.capacity_reserved + guests <= SlotCapacity.capacity_total,
                )
                .values(capacity_reserved=SlotCapacity.capacity_reserved + guests)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                logger.debug(f"Reserved {guests} guests in {park.id} {visit_date} {label}")
                return

            remaining = await self._remaining(db, park.id, visit_date, start)
            if remaining < guests:
                raise CapacityError(label, guests, remaining)
            logger.info(f"Slot counter conflict on {visit_date} {label}, retrying (attempt {attempt + 1})")

        raise CapacityError(label, guests)

    async def release(
        self,
        db: AsyncSession,
        park_id: UUID,
        visit_date: date,
        start: time,
        guests: int
    ) -> bool:
        """Give `guests` back to the slot; never drives the counter negative"""
        result = await db.execute(
            update(SlotCapacity)
            .where(
                SlotCapacity.park_id == park_id,
                SlotCapacity.visit_date == visit_date,
                SlotCapacity.start_time == start,
                SlotCapacity.capacity_reserved >= guests,
            )
            .values(capacity_reserved=SlotCapacity.capacity_reserved - guests)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.error(
                f"Capacity release of {guests} guests did not apply for park {park_id} "
                f"{visit_date} {start}"
            )
            return False
        return True

    async def _remaining(self, db: AsyncSession, park_id: UUID, visit_date: date, start: time) -> int:
        result = await db.execute(
            select(SlotCapacity.capacity_total - SlotCapacity.capacity_reserved).where(
                SlotCapacity.park_id == park_id,
                SlotCapacity.visit_date == visit_date,
                SlotCapacity.start_time == start,
            )
        )
        return result.scalar_one_or_none() or 0


availability_service = AvailabilityService()
