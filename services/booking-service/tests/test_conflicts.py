from datetime import date, time

from app.conflicts import conflicting_bookings, has_conflict, windows_overlap
from app.models import BOOKING_COMPLETED, BOOKING_REJECTED
from app.timeutils import BookingWindow
from conftest import TUESDAY, add_booking, window


def test_same_clock_window_on_shared_date_overlaps():
    a = BookingWindow(date(2030, 1, 7), date(2030, 1, 9), time(9), time(11))
    b = BookingWindow(date(2030, 1, 9), date(2030, 1, 9), time(10), time(12))
    assert windows_overlap(a, b)


def test_multi_day_window_leaves_nights_free():
    a = BookingWindow(date(2030, 1, 7), date(2030, 1, 9), time(9), time(11))
    b = BookingWindow(date(2030, 1, 8), date(2030, 1, 8), time(20), time(22))
    assert not windows_overlap(a, b)


def test_timezones_are_compared_as_instants():
    # 10:00-12:00 in Bucharest is 08:00-10:00 UTC
    a = BookingWindow(TUESDAY, TUESDAY, time(10), time(12), "Europe/Bucharest")
    b = BookingWindow(TUESDAY, TUESDAY, time(9), time(11), "UTC")
    c = BookingWindow(TUESDAY, TUESDAY, time(10), time(11), "UTC")
    assert windows_overlap(a, b)
    assert not windows_overlap(a, c)


async def test_only_accepted_bookings_conflict(db, make_spot):
    spot = await make_spot()
    await add_booking(db, spot, window(), status=BOOKING_REJECTED, booking_id="rejected")
    await add_booking(db, spot, window(), status=BOOKING_COMPLETED, booking_id="completed")
    assert not await has_conflict(db, spot.id, window())

    await add_booking(db, spot, window(), booking_id="accepted")
    found = await conflicting_bookings(db, spot.id, window(TUESDAY, time(11), time(13)))
    assert [b.booking_id for b in found] == ["accepted"]


async def test_excluded_booking_does_not_conflict_with_itself(db, make_spot):
    spot = await make_spot()
    await add_booking(db, spot, window(), booking_id="self")
    assert not await has_conflict(db, spot.id, window(), exclude_booking_id="self")


async def test_other_spots_never_conflict(db, make_spot):
    spot = await make_spot()
    other = await make_spot()
    await add_booking(db, other, window())
    assert not await has_conflict(db, spot.id, window())
