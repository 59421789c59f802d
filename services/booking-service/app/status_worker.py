"""
Time-driven spot status transitions.

Each pass looks at accepted bookings only:

* spot `available` and the booking's start instant reached -> spot `reserved`
* spot `reserved`/`occupied` and the end instant passed -> spot `available`,
  booking `completed`; the freed spot goes straight to the next booking
  already in progress

Instants come from the booking's dates and clock times read in the
requester's recorded time zone. Planning is a pure function of (now, rows);
applying uses conditional updates, so re-running a pass or racing an owner's
manual status change never flips anything twice.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from shared.redis import RedisLock

from .config import STATUS_PASS_INTERVAL_SECONDS, STATUS_PASS_LOCK_TTL_SECONDS
from .db import SessionLocal
from .errors import ValidationError
from .models import (
    BookingRequest,
    Spot,
    BOOKING_ACCEPTED,
    BOOKING_COMPLETED,
    SPOT_AVAILABLE,
    SPOT_OCCUPIED,
    SPOT_RESERVED,
)
from .publisher import emit
from .redis_client import redis_client
from .timeutils import BookingWindow, utcnow

logger = logging.getLogger(__name__)

LOCK_NAME = "spot-status-pass"

RESERVE = "reserve"
COMPLETE = "complete"


@dataclass(frozen=True)
class BookingSnapshot:
    booking_id: str
    spot_id: int
    start_instant: datetime
    end_instant: datetime


@dataclass(frozen=True)
class Transition:
    action: str
    booking_id: str
    spot_id: int


def snapshot(booking: BookingRequest) -> BookingSnapshot | None:
    try:
        window = BookingWindow.for_booking(booking)
        return BookingSnapshot(booking.booking_id, booking.spot_id, window.start_instant, window.end_instant)
    except ValidationError as e:
        logger.warning("Skipping booking %s: %s", booking.booking_id, e)
        return None


def plan_transitions(now: datetime, rows: Iterable[tuple[BookingSnapshot, str]]) -> list[Transition]:
    """
    Transitions due at `now` for (booking, current spot status) rows.

    Rows are walked in start order with a running status per spot, so a
    completion that frees a spot hands it straight to the next booking already
    in progress, and a booking that started and ended since the last pass is
    reserved and completed in the same run. The walk repeats until nothing
    changes, which makes a second pass at the same `now` plan nothing.
    """
    rows = list(rows)
    statuses: dict[int, str] = {}
    for snap, spot_status in rows:
        statuses.setdefault(snap.spot_id, spot_status)

    plan = []
    reserved: set[str] = set()
    completed: set[str] = set()
    changed = True
    while changed:
        changed = False
        for snap, _ in rows:
            if snap.booking_id in completed:
                continue
            status = statuses[snap.spot_id]
            if status == SPOT_AVAILABLE and now >= snap.start_instant and snap.booking_id not in reserved:
                plan.append(Transition(RESERVE, snap.booking_id, snap.spot_id))
                reserved.add(snap.booking_id)
                status = statuses[snap.spot_id] = SPOT_RESERVED
                changed = True
            if status in (SPOT_RESERVED, SPOT_OCCUPIED) and now > snap.end_instant:
                plan.append(Transition(COMPLETE, snap.booking_id, snap.spot_id))
                completed.add(snap.booking_id)
                statuses[snap.spot_id] = SPOT_AVAILABLE
                changed = True

    return plan


async def _load_rows(db: AsyncSession, now: datetime) -> list[tuple[BookingSnapshot, str]]:
    # nothing starting after tomorrow (in any time zone) can be due yet
    horizon = (now + timedelta(days=1)).date()
    res = await db.execute(
        select(BookingRequest, Spot.status)
        .join(Spot, Spot.id == BookingRequest.spot_id)
        .where(BookingRequest.status == BOOKING_ACCEPTED, BookingRequest.start_date <= horizon)
        .order_by(BookingRequest.start_date, BookingRequest.start_time, BookingRequest.id)
    )
    rows = []
    for booking, spot_status in res.all():
        snap = snapshot(booking)
        if snap is not None:
            rows.append((snap, spot_status))
    return rows


async def run_status_pass(db: AsyncSession, now: datetime | None = None) -> int:
    """Apply every due transition; returns the number of rows changed."""
    now = now or utcnow()
    plan = plan_transitions(now, await _load_rows(db, now))

    updates = 0
    events = []
    for t in plan:
        if t.action == RESERVE:
            res = await db.execute(
                update(Spot)
                .where(Spot.id == t.spot_id, Spot.status == SPOT_AVAILABLE)
                .values(status=SPOT_RESERVED, updated_at=now)
            )
            if res.rowcount:
                updates += 1
                events.append(("spot.status_changed", {
                    "spot_id": t.spot_id, "status": SPOT_RESERVED, "booking_id": t.booking_id, "source": "scheduler",
                }))
            continue

        res = await db.execute(
            update(BookingRequest)
            .where(BookingRequest.booking_id == t.booking_id, BookingRequest.status == BOOKING_ACCEPTED)
            .values(status=BOOKING_COMPLETED, completed_at=now, updated_at=now)
        )
        if not res.rowcount:
            continue
        updates += 1
        events.append(("booking.completed", {"booking_id": t.booking_id, "spot_id": t.spot_id}))

        res = await db.execute(
            update(Spot)
            .where(Spot.id == t.spot_id, Spot.status.in_((SPOT_RESERVED, SPOT_OCCUPIED)))
            .values(status=SPOT_AVAILABLE, updated_at=now)
        )
        if res.rowcount:
            events.append(("spot.status_changed", {
                "spot_id": t.spot_id, "status": SPOT_AVAILABLE, "booking_id": t.booking_id, "source": "scheduler",
            }))

    await db.commit()

    for event_type, data in events:
        await emit(event_type, data)

    if plan:
        logger.info("Status pass at %s: %d transitions planned, %d updates", now.isoformat(), len(plan), updates)
    return updates


async def run_locked_pass(session_factory=SessionLocal, now: datetime | None = None) -> int | None:
    """One pass guarded by the cross-instance lock. Errors are logged, never raised."""
    lock = RedisLock(redis_client, LOCK_NAME, STATUS_PASS_LOCK_TTL_SECONDS)
    try:
        if not await lock.acquire():
            logger.info("Status pass already running elsewhere, skipping")
            return None
    except Exception as e:
        logger.warning("Status pass lock unavailable, skipping: %s", e)
        return None

    try:
        async with session_factory() as db:
            return await run_status_pass(db, now)
    except Exception:
        logger.exception("Status pass failed")
        return None
    finally:
        try:
            await lock.release()
        except Exception as e:
            logger.warning("Status pass lock release failed: %s", e)


async def status_loop(stop_event: asyncio.Event, interval: float = STATUS_PASS_INTERVAL_SECONDS):
    while not stop_event.is_set():
        await run_locked_pass()
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval)
        except asyncio.TimeoutError:
            continue


def main():
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    updates = asyncio.run(run_locked_pass())
    logger.info("Status pass finished: %s", "skipped or failed" if updates is None else f"{updates} updates")


if __name__ == "__main__":
    main()
