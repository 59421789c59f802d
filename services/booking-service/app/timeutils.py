"""
Wall-clock to instant conversion for booking windows.

A booking is stored the way requesters enter it: a date range plus one clock
window (start/end time) read in the requester's time zone. The same clock
window applies to every date in the range, so a three-day booking from 09:00
to 17:00 occupies three separate 09:00-17:00 intervals, not the nights in
between. The scheduler only looks at the outer instants (first date + start
time, last date + end time).
"""
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal

from dateutil import tz
from dateutil.rrule import DAILY, rrule

from .errors import ValidationError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def resolve_timezone(name: str | None):
    zone = tz.gettz(name or "UTC")
    if zone is None:
        raise ValidationError(f"Unknown time zone: {name}")
    return zone


def localize(day: date, clock: time, zone) -> datetime:
    """Aware instant for a wall-clock date+time; times inside a DST gap move forward."""
    return tz.resolve_imaginary(datetime.combine(day, clock, tzinfo=zone))


def days_between(start: date, end: date) -> list[date]:
    return [dt.date() for dt in rrule(DAILY, dtstart=start, until=end)]


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    return not (a_end <= b_start or a_start >= b_end)


@dataclass(frozen=True)
class BookingWindow:
    start_date: date
    end_date: date
    start_time: time
    end_time: time
    timezone: str = "UTC"

    def __post_init__(self):
        if self.end_date < self.start_date:
            raise ValidationError("end_date must not be before start_date")
        if self.end_time <= self.start_time:
            raise ValidationError("end_time must be after start_time")
        resolve_timezone(self.timezone)

    @classmethod
    def for_booking(cls, booking) -> "BookingWindow":
        return cls(
            start_date=booking.start_date,
            end_date=booking.end_date,
            start_time=booking.start_time,
            end_time=booking.end_time,
            timezone=booking.requester_timezone or "UTC",
        )

    @property
    def zone(self):
        return resolve_timezone(self.timezone)

    def dates(self) -> list[date]:
        return days_between(self.start_date, self.end_date)

    def interval_on(self, day: date) -> tuple[datetime, datetime]:
        zone = self.zone
        return localize(day, self.start_time, zone), localize(day, self.end_time, zone)

    def daily_intervals(self) -> list[tuple[datetime, datetime]]:
        return [self.interval_on(d) for d in self.dates()]

    @property
    def start_instant(self) -> datetime:
        return localize(self.start_date, self.start_time, self.zone)

    @property
    def end_instant(self) -> datetime:
        return localize(self.end_date, self.end_time, self.zone)

    @property
    def daily_hours(self) -> Decimal:
        """Nominal length of one day's window as read on the wall clock."""
        start = datetime.combine(date.min, self.start_time)
        end = datetime.combine(date.min, self.end_time)
        return Decimal((end - start) // timedelta(seconds=1)) / Decimal(3600)

    @property
    def total_hours(self) -> Decimal:
        """
        Hours actually elapsed across every day's window, the billed duration.

        Differs from `daily_hours` x days only on a day the zone changes its
        UTC offset inside the window.
        """
        seconds = 0
        for start, end in self.daily_intervals():
            seconds += (end.astimezone(timezone.utc) - start.astimezone(timezone.utc)) // timedelta(seconds=1)
        return Decimal(seconds) / Decimal(3600)
