"""
Booking request lifecycle.

    pending --owner accept / paid checkout--> accepted --scheduler--> completed
    pending --owner reject--------------------> rejected

Accepting moves money, so it runs as one transaction: the spot row is locked
(serialising accepts on one spot), the conflict check is repeated against the
bookings accepted since the request was made, the ledger settles, and only
then does the status flip from pending to accepted. Any failure rolls all of
it back and leaves the request pending.
"""
import logging
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .availability import is_bookable, REASON_ALREADY_BOOKED
from .conflicts import has_conflict
from .errors import (
    AvailabilityError,
    Conflict,
    InsufficientFunds,
    InvalidState,
    NotFound,
    PermissionDenied,
    SettlementConflict,
    ValidationError,
)
from .ledger import (
    Charges,
    SettleOutcome,
    booking_settlement_key,
    compute_charges,
    get_balance,
    quantize,
    settle,
)
from .models import (
    BookingRequest,
    Spot,
    BOOKING_ACCEPTED,
    BOOKING_PENDING,
    BOOKING_REJECTED,
)
from .publisher import booking_payload, emit
from .timeutils import BookingWindow, utcnow

logger = logging.getLogger(__name__)

ROLE_INCOMING = "incoming"
ROLE_OUTGOING = "outgoing"


async def get_booking(db: AsyncSession, booking_id: str, for_update: bool = False) -> BookingRequest:
    stmt = select(BookingRequest).where(BookingRequest.booking_id == booking_id)
    if for_update:
        stmt = stmt.with_for_update()
    res = await db.execute(stmt)
    booking = res.scalar_one_or_none()
    if not booking:
        raise NotFound("Booking not found")
    return booking


async def _get_spot(db: AsyncSession, spot_id: int, for_update: bool = False) -> Spot:
    stmt = select(Spot).where(Spot.id == spot_id)
    if for_update:
        stmt = stmt.with_for_update()
    res = await db.execute(stmt)
    spot = res.scalar_one_or_none()
    if not spot:
        raise NotFound("Spot not found")
    return spot


def booking_charges(booking: BookingRequest, spot: Spot) -> Charges | None:
    """Amounts for an accept, or None when the booking carries no price."""
    amount = booking.total_price
    if amount is None and spot.price is not None:
        amount = Decimal(spot.price) * Decimal(booking.total_hours)
    if amount is None or quantize(amount) <= 0:
        return None
    return compute_charges(amount)


async def create_booking(
    db: AsyncSession,
    *,
    requester_id: str,
    spot_id: int,
    window: BookingWindow,
    message: str | None = None,
    now: datetime | None = None,
) -> BookingRequest:
    now = now or utcnow()
    spot = await _get_spot(db, spot_id)

    if spot.owner_id == requester_id:
        raise ValidationError("You cannot book your own spot")
    if window.start_instant <= now:
        raise ValidationError("Cannot book for past times")

    res = await db.execute(
        select(BookingRequest.id).where(
            BookingRequest.spot_id == spot_id,
            BookingRequest.requester_id == requester_id,
            BookingRequest.status == BOOKING_PENDING,
        )
    )
    if res.first() is not None:
        raise ValidationError("You already have a pending request for this spot")

    verdict = await is_bookable(db, spot, window)
    if not verdict.bookable:
        raise AvailabilityError(verdict.reason)
    # unscheduled spots skip straight past the schedule checks, bookings still block them
    if not spot.has_schedule and await has_conflict(db, spot.id, window):
        raise AvailabilityError(REASON_ALREADY_BOOKED)

    total_hours = window.total_hours
    total_price = None
    if spot.price is not None:
        total_price = quantize(Decimal(spot.price) * total_hours)

    booking = BookingRequest(
        booking_id=str(uuid.uuid4()),
        requester_id=requester_id,
        owner_id=spot.owner_id,
        spot_id=spot.id,
        status=BOOKING_PENDING,
        start_date=window.start_date,
        end_date=window.end_date,
        start_time=window.start_time,
        end_time=window.end_time,
        requester_timezone=window.timezone,
        message=(message or "").strip() or None,
        total_hours=quantize(total_hours),
        total_price=total_price,
        payment_processed=False,
    )
    db.add(booking)
    await db.commit()

    logger.info("Booking %s requested by %s for spot %s", booking.booking_id, requester_id, spot.id)
    await emit("booking.requested", booking_payload(booking))
    return booking


async def reject_booking(
    db: AsyncSession,
    booking_id: str,
    actor_id: str,
    now: datetime | None = None,
) -> BookingRequest:
    now = now or utcnow()
    try:
        booking = await get_booking(db, booking_id, for_update=True)
        if booking.owner_id != actor_id:
            raise PermissionDenied("Only the spot owner can reject this request")
        if booking.status != BOOKING_PENDING:
            raise InvalidState(f"Booking is already {booking.status}")

        res = await db.execute(
            update(BookingRequest)
            .where(BookingRequest.id == booking.id, BookingRequest.status == BOOKING_PENDING)
            .values(status=BOOKING_REJECTED, updated_at=now)
        )
        if res.rowcount != 1:
            raise InvalidState("Booking is no longer pending")
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    await db.refresh(booking)
    logger.info("Booking %s rejected by %s", booking_id, actor_id)
    await emit("booking.rejected", booking_payload(booking))
    return booking


async def accept_booking(
    db: AsyncSession,
    booking_id: str,
    actor_id: str | None,
    now: datetime | None = None,
    via_gateway: bool = False,
) -> BookingRequest:
    """
    Accept a pending request and settle its payment.

    `via_gateway` marks the system trigger from a paid checkout; it skips the
    owner check but otherwise takes the exact same path, so the owner's click
    and the gateway callback can only ever settle once between them.
    """
    now = now or utcnow()
    try:
        booking = await get_booking(db, booking_id)
        spot = await _get_spot(db, booking.spot_id, for_update=True)
        await db.refresh(booking, with_for_update=True)

        if not via_gateway and booking.owner_id != actor_id:
            raise PermissionDenied("Only the spot owner can accept this request")
        if booking.status != BOOKING_PENDING:
            raise InvalidState(f"Booking is already {booking.status}")

        window = BookingWindow.for_booking(booking)
        if await has_conflict(db, spot.id, window, exclude_booking_id=booking.booking_id):
            raise Conflict("Another accepted booking overlaps this window")

        charges = booking_charges(booking, spot)
        if charges is not None:
            outcome = await settle(
                db,
                idempotency_key=booking_settlement_key(booking),
                from_actor=booking.requester_id,
                to_actor=booking.owner_id,
                amount=charges.total_charged,
                credit_amount=charges.booking_amount,
                platform_fee=charges.platform_fee,
                booking_id=booking.booking_id,
            )
            if outcome is SettleOutcome.INSUFFICIENT_FUNDS:
                available = await get_balance(db, booking.requester_id)
                raise InsufficientFunds(charges.total_charged, available)
            if outcome is SettleOutcome.ALREADY_SETTLED:
                raise SettlementConflict(f"Booking {booking_id} was already settled")

        res = await db.execute(
            update(BookingRequest)
            .where(BookingRequest.id == booking.id, BookingRequest.status == BOOKING_PENDING)
            .values(
                status=BOOKING_ACCEPTED,
                accepted_at=now,
                payment_amount=charges.total_charged if charges else None,
                payment_processed=charges is not None,
                updated_at=now,
            )
        )
        if res.rowcount != 1:
            raise InvalidState("Booking is no longer pending")
        await db.commit()
    except SettlementConflict:
        await db.rollback()
        # lost the race to a concurrent accept; report it the way a late accept sees it
        current = await get_booking(db, booking_id)
        if current.status != BOOKING_PENDING:
            raise InvalidState(f"Booking is already {current.status}")
        raise
    except Exception:
        await db.rollback()
        raise

    await db.refresh(booking)
    logger.info(
        "Booking %s accepted (%s), charged %s",
        booking_id, "gateway" if via_gateway else actor_id,
        charges.total_charged if charges else "nothing",
    )
    await emit("booking.accepted", booking_payload(booking))
    return booking


async def list_bookings(db: AsyncSession, actor_id: str, role: str = ROLE_INCOMING) -> list[BookingRequest]:
    if role == ROLE_INCOMING:
        cond = BookingRequest.owner_id == actor_id
    elif role == ROLE_OUTGOING:
        cond = BookingRequest.requester_id == actor_id
    else:
        raise ValidationError(f"Unknown role: {role}")

    res = await db.execute(
        select(BookingRequest).where(cond).order_by(BookingRequest.created_at.desc(), BookingRequest.id.desc())
    )
    return list(res.scalars().all())
