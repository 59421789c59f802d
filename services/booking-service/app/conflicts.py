from datetime import timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .models import BookingRequest, BOOKING_ACCEPTED
from .timeutils import BookingWindow, overlaps

# requester time zones can shift a window across a calendar date
DATE_SKEW = timedelta(days=1)


def windows_overlap(a: BookingWindow, b: BookingWindow) -> bool:
    if a.end_date + DATE_SKEW < b.start_date or b.end_date + DATE_SKEW < a.start_date:
        return False
    b_intervals = b.daily_intervals()
    for a_start, a_end in a.daily_intervals():
        for b_start, b_end in b_intervals:
            if overlaps(a_start, a_end, b_start, b_end):
                return True
    return False


async def conflicting_bookings(
    db: AsyncSession,
    spot_id: int,
    window: BookingWindow,
    exclude_booking_id: str | None = None,
) -> list[BookingRequest]:
    """
    Accepted bookings on the spot whose intervals intersect `window`.

    Pending, rejected and completed requests never block: a pending request
    does not reserve anything, the decisive check happens again at accept time.
    """
    stmt = select(BookingRequest).where(
        BookingRequest.spot_id == spot_id,
        BookingRequest.status == BOOKING_ACCEPTED,
        BookingRequest.end_date >= window.start_date - DATE_SKEW,
        BookingRequest.start_date <= window.end_date + DATE_SKEW,
    )
    if exclude_booking_id:
        stmt = stmt.where(BookingRequest.booking_id != exclude_booking_id)

    res = await db.execute(stmt)
    return [
        booking
        for booking in res.scalars().all()
        if windows_overlap(window, BookingWindow.for_booking(booking))
    ]


async def has_conflict(
    db: AsyncSession,
    spot_id: int,
    window: BookingWindow,
    exclude_booking_id: str | None = None,
) -> bool:
    return bool(await conflicting_bookings(db, spot_id, window, exclude_booking_id))
