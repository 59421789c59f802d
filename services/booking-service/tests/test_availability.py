from datetime import datetime, time, timezone
from types import SimpleNamespace

import pytest

from app.availability import (
    REASON_ALREADY_BOOKED,
    REASON_BLACKOUT,
    REASON_NOT_AVAILABLE,
    REASON_OUTSIDE_SCHEDULE,
    effective_status,
    is_bookable,
    replace_schedule,
    validate_schedule,
    window_covered,
)
from app.errors import PermissionDenied, ValidationError
from app.models import BOOKING_PENDING
from conftest import MONDAY, OWNER, RENTER, TUESDAY, add_booking, window


def slot(day, start, end, available=True):
    return SimpleNamespace(day_of_week=day, start_time=start, end_time=end, is_available=available)


def blackout(day, reason=None):
    return SimpleNamespace(blocked_date=day, reason=reason)


@pytest.mark.parametrize("default_available", [True, False])
async def test_unscheduled_spot_follows_default_available(db, make_spot, default_available):
    spot = await make_spot(default_available=default_available)
    verdict = await is_bookable(db, spot, window())
    assert verdict.bookable is default_available
    assert verdict.reason == (None if default_available else REASON_NOT_AVAILABLE)


async def test_unscheduled_spot_ignores_accepted_bookings(db, make_spot):
    spot = await make_spot()
    await add_booking(db, spot, window())
    assert (await is_bookable(db, spot, window())).bookable


async def test_tuesday_request_against_monday_slot(db, make_spot):
    spot = await make_spot()
    await replace_schedule(db, spot.id, OWNER, [slot(0, time(9), time(17))], [])

    tuesday = await is_bookable(db, spot, window(TUESDAY))
    assert not tuesday.bookable
    assert tuesday.reason == REASON_OUTSIDE_SCHEDULE

    monday = await is_bookable(db, spot, window(MONDAY))
    assert monday.bookable


async def test_blackout_date_blocks_a_covered_window(db, make_spot):
    spot = await make_spot()
    await replace_schedule(db, spot.id, OWNER, [slot(1, time(0), time(0))], [blackout(TUESDAY, "maintenance")])
    verdict = await is_bookable(db, spot, window(TUESDAY))
    assert verdict.reason == REASON_BLACKOUT


async def test_accepted_booking_makes_scheduled_spot_already_booked(db, make_spot):
    spot = await make_spot()
    await replace_schedule(db, spot.id, OWNER, [slot(1, time(8), time(20))], [])
    await add_booking(db, spot, window(TUESDAY, time(11), time(13)))

    verdict = await is_bookable(db, spot, window(TUESDAY, time(10), time(12)))
    assert verdict.reason == REASON_ALREADY_BOOKED
    assert (await is_bookable(db, spot, window(TUESDAY, time(13), time(15)))).bookable


async def test_pending_booking_does_not_block(db, make_spot):
    spot = await make_spot()
    await replace_schedule(db, spot.id, OWNER, [slot(1, time(8), time(20))], [])
    await add_booking(db, spot, window(TUESDAY), status=BOOKING_PENDING)
    assert (await is_bookable(db, spot, window(TUESDAY))).bookable


def test_adjacent_slots_cover_a_window_together():
    slots = [slot(0, time(9), time(12)), slot(0, time(12), time(15))]
    assert window_covered(slots, time(10), time(14))
    assert not window_covered(slots, time(8), time(10))


def test_unavailable_slot_does_not_cover():
    assert not window_covered([slot(0, time(9), time(17), available=False)], time(10), time(11))


def test_midnight_end_closes_the_day():
    assert window_covered([slot(0, time(18), time(0))], time(20), time(23, 59))


def test_overlapping_available_slots_are_rejected():
    with pytest.raises(ValidationError):
        validate_schedule([slot(2, time(9), time(12)), slot(2, time(11), time(14))])


def test_slot_ending_before_start_is_rejected():
    with pytest.raises(ValidationError):
        validate_schedule([slot(2, time(14), time(9))])


async def test_only_owner_replaces_schedule(db, make_spot):
    spot = await make_spot()
    with pytest.raises(PermissionDenied):
        await replace_schedule(db, spot.id, RENTER, [slot(0, time(9), time(17))], [])


async def test_clearing_slots_drops_has_schedule(db, make_spot):
    spot = await make_spot()
    await replace_schedule(db, spot.id, OWNER, [slot(0, time(9), time(17))], [])
    assert spot.has_schedule
    await replace_schedule(db, spot.id, OWNER, [], [])
    assert not spot.has_schedule


def test_effective_status_outside_schedule_reads_occupied():
    spot = SimpleNamespace(status="available", has_schedule=True, default_available=True)
    slots = [slot(0, time(9), time(17))]
    monday_noon = datetime(2030, 1, 7, 12, tzinfo=timezone.utc)
    monday_night = datetime(2030, 1, 7, 20, tzinfo=timezone.utc)
    assert effective_status(spot, slots, monday_noon) == "available"
    assert effective_status(spot, slots, monday_night) == "occupied"
    # 08:00 UTC is 10:00 in Bucharest
    assert effective_status(spot, slots, datetime(2030, 1, 7, 8, tzinfo=timezone.utc), "Europe/Bucharest") == "available"


def test_effective_status_keeps_stored_reservation():
    spot = SimpleNamespace(status="reserved", has_schedule=False, default_available=True)
    assert effective_status(spot, [], datetime(2030, 1, 7, 12, tzinfo=timezone.utc)) == "reserved"


def test_effective_status_unscheduled_unavailable_reads_occupied():
    spot = SimpleNamespace(status="available", has_schedule=False, default_available=False)
    assert effective_status(spot, [], datetime(2030, 1, 7, 12, tzinfo=timezone.utc)) == "occupied"
