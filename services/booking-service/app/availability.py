"""
Schedule-derived availability.

Weekly slots and blackout dates are wall-clock data: a slot "Monday 09:00-17:00"
is compared against the booking's own clock window on each of its dates, both
read in the requester's time zone. Only slots flagged available count; an
unavailable slot is informational and never subtracts from the others.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, time

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from .conflicts import has_conflict
from .errors import NotFound, PermissionDenied, ValidationError
from .models import (
    BlackoutDate,
    Spot,
    WeeklyScheduleSlot,
    SPOT_OCCUPIED,
    SPOT_RESERVED,
)
from .timeutils import BookingWindow, resolve_timezone

logger = logging.getLogger(__name__)

REASON_NOT_AVAILABLE = "not_available"
REASON_BLACKOUT = "blackout"
REASON_OUTSIDE_SCHEDULE = "outside_schedule"
REASON_ALREADY_BOOKED = "already_booked"

DAY_SECONDS = 24 * 3600


@dataclass(frozen=True)
class Bookability:
    bookable: bool
    reason: str | None = None


def _seconds(t: time) -> int:
    return t.hour * 3600 + t.minute * 60 + t.second


def slot_bounds(slot) -> tuple[int, int]:
    start = _seconds(slot.start_time)
    end = _seconds(slot.end_time)
    if end == 0:
        end = DAY_SECONDS  # 00:00 as an end time closes the day
    return start, end


def window_covered(slots, start: time, end: time) -> bool:
    """True when [start, end) lies inside the union of the available slots given."""
    cursor = _seconds(start)
    target = _seconds(end)
    for slot_start, slot_end in sorted(slot_bounds(s) for s in slots if s.is_available):
        if slot_start > cursor:
            break
        if slot_end > cursor:
            cursor = slot_end
        if cursor >= target:
            return True
    return cursor >= target


def check_schedule(slots, blackouts, window: BookingWindow) -> str | None:
    """Reason the window falls outside the schedule, or None when it fits."""
    blocked = {b.blocked_date for b in blackouts}
    by_day: dict[int, list] = {}
    for slot in slots:
        by_day.setdefault(slot.day_of_week, []).append(slot)

    for day in window.dates():
        if day in blocked:
            return REASON_BLACKOUT
        if not window_covered(by_day.get(day.weekday(), []), window.start_time, window.end_time):
            return REASON_OUTSIDE_SCHEDULE
    return None


async def load_schedule(db: AsyncSession, spot_id: int):
    slots = await db.execute(
        select(WeeklyScheduleSlot)
        .where(WeeklyScheduleSlot.spot_id == spot_id)
        .order_by(WeeklyScheduleSlot.day_of_week, WeeklyScheduleSlot.start_time)
    )
    blackouts = await db.execute(
        select(BlackoutDate)
        .where(BlackoutDate.spot_id == spot_id)
        .order_by(BlackoutDate.blocked_date)
    )
    return list(slots.scalars().all()), list(blackouts.scalars().all())


async def is_bookable(
    db: AsyncSession,
    spot: Spot,
    window: BookingWindow,
    exclude_booking_id: str | None = None,
) -> Bookability:
    if not spot.has_schedule:
        if spot.default_available:
            return Bookability(True)
        return Bookability(False, REASON_NOT_AVAILABLE)

    slots, blackouts = await load_schedule(db, spot.id)
    reason = check_schedule(slots, blackouts, window)
    if reason:
        return Bookability(False, reason)

    if await has_conflict(db, spot.id, window, exclude_booking_id):
        return Bookability(False, REASON_ALREADY_BOOKED)

    return Bookability(True)


def is_currently_available(spot: Spot, slots, now: datetime, tz_name: str | None = None) -> bool:
    if not spot.has_schedule:
        return bool(spot.default_available)

    local = now.astimezone(resolve_timezone(tz_name))
    current = _seconds(local.time())
    for slot in slots:
        if not slot.is_available or slot.day_of_week != local.weekday():
            continue
        start, end = slot_bounds(slot)
        if start <= current < end:
            return True
    return False


def effective_status(spot: Spot, slots, now: datetime, tz_name: str | None = None) -> str:
    """Status a viewer should see right now; the stored status is left alone."""
    if spot.status in (SPOT_OCCUPIED, SPOT_RESERVED):
        return spot.status
    if not is_currently_available(spot, slots, now, tz_name):
        return SPOT_OCCUPIED
    return spot.status


def validate_schedule(slots) -> None:
    by_day: dict[int, list[tuple[int, int]]] = {}
    for slot in slots:
        if not 0 <= slot.day_of_week <= 6:
            raise ValidationError(f"day_of_week must be within 0..6, got {slot.day_of_week}")
        start, end = slot_bounds(slot)
        if end <= start:
            raise ValidationError(
                f"Slot {slot.start_time}-{slot.end_time} must end after it starts"
            )
        if slot.is_available:
            by_day.setdefault(slot.day_of_week, []).append((start, end))

    for day, bounds in by_day.items():
        bounds.sort()
        for (_, prev_end), (next_start, _) in zip(bounds, bounds[1:]):
            if next_start < prev_end:
                raise ValidationError(f"Available slots overlap on day {day}")


async def replace_schedule(db: AsyncSession, spot_id: int, actor_id: str, slots, blackouts) -> Spot:
    """Swap a spot's weekly slots and blackout dates for the given ones."""
    spot = await db.get(Spot, spot_id)
    if not spot:
        raise NotFound("Spot not found")
    if spot.owner_id != actor_id:
        raise PermissionDenied("Only the owner can change the schedule")

    validate_schedule(slots)
    seen = set()
    for b in blackouts:
        if b.blocked_date in seen:
            raise ValidationError(f"Date {b.blocked_date} is blocked twice")
        seen.add(b.blocked_date)

    await db.execute(delete(WeeklyScheduleSlot).where(WeeklyScheduleSlot.spot_id == spot_id))
    await db.execute(delete(BlackoutDate).where(BlackoutDate.spot_id == spot_id))

    for slot in slots:
        db.add(
            WeeklyScheduleSlot(
                spot_id=spot_id,
                day_of_week=slot.day_of_week,
                start_time=slot.start_time,
                end_time=slot.end_time,
                is_available=slot.is_available,
            )
        )
    for b in blackouts:
        db.add(BlackoutDate(spot_id=spot_id, blocked_date=b.blocked_date, reason=b.reason))

    spot.has_schedule = bool(slots)
    await db.commit()

    logger.info("Schedule replaced for spot %s: %d slots, %d blackout dates", spot_id, len(slots), len(blackouts))
    return spot
