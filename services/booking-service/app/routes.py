import logging
from datetime import date, time

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from shared.idempotency import is_processed, mark_processed

from . import availability, bookings, spots
from .db import SessionLocal
from .errors import BookingError, NotFound
from .ledger import get_balance
from .models import BookingRequest, Spot
from .payments import (
    CHECKOUT_COMPLETED,
    StripeGateway,
    apply_paid_session,
    as_dict,
    open_booking_checkout,
    start_topup,
)
from .redis_client import redis_client
from .schemas import (
    AvailabilityResponse,
    Blackout,
    BookingResponse,
    CheckoutResponse,
    CreateBookingRequest,
    CreateSpot,
    CreateTopup,
    PaymentResult,
    ScheduleSlot,
    SetSchedule,
    SpotResponse,
    StatusPassResponse,
    UpdateSpotStatus,
    VerifyPayment,
    WalletResponse,
)
from .status_worker import run_locked_pass
from .timeutils import BookingWindow, utcnow

logger = logging.getLogger(__name__)

router = APIRouter()

_gateway = StripeGateway()


def get_session_factory():
    return SessionLocal


async def get_db(session_factory=Depends(get_session_factory)):
    async with session_factory() as session:
        yield session


def get_gateway() -> StripeGateway:
    return _gateway


def get_actor(x_user_id: str | None = Header(default=None)) -> str:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return x_user_id


def get_viewer(x_user_id: str | None = Header(default=None)) -> str | None:
    return x_user_id


def to_http(e: BookingError) -> HTTPException:
    detail = {"error": str(e)}
    reason = getattr(e, "reason", None)
    if reason:
        detail["reason"] = reason
    if hasattr(e, "required"):
        detail["required"] = str(e.required)
        detail["available"] = str(e.available)
    return HTTPException(status_code=e.status_code, detail=detail)


def _window(start_date, end_date, start_time, end_time, timezone) -> BookingWindow:
    try:
        return BookingWindow(start_date, end_date, start_time, end_time, timezone)
    except BookingError as e:
        raise to_http(e)


def _spot_response(spot: Spot, slots, blackouts, viewer: str | None, tz_name: str | None) -> SpotResponse:
    return SpotResponse(
        id=spot.id,
        name=spot.name,
        owner_id=spot.owner_id,
        status=spot.status,
        effective_status=availability.effective_status(spot, slots, utcnow(), tz_name),
        is_owner=viewer is not None and viewer == spot.owner_id,
        has_schedule=spot.has_schedule,
        default_available=spot.default_available,
        price=spot.price,
        latitude=spot.latitude,
        longitude=spot.longitude,
        slots=[ScheduleSlot.model_validate(s) for s in slots],
        blackout_dates=[Blackout.model_validate(b) for b in blackouts],
    )


def _booking_response(booking: BookingRequest, actor: str) -> BookingResponse:
    return BookingResponse(
        booking_id=booking.booking_id,
        spot_id=booking.spot_id,
        status=booking.status,
        requester_id=booking.requester_id,
        owner_id=booking.owner_id,
        is_mine=booking.requester_id == actor,
        start_date=booking.start_date,
        end_date=booking.end_date,
        start_time=booking.start_time,
        end_time=booking.end_time,
        requester_timezone=booking.requester_timezone,
        message=booking.message,
        total_hours=booking.total_hours,
        total_price=booking.total_price,
        accepted_at=booking.accepted_at,
        completed_at=booking.completed_at,
        payment_amount=booking.payment_amount,
        payment_processed=booking.payment_processed,
        payment_session_id=booking.payment_session_id,
    )


# ---- spots ----

@router.post("/spots", response_model=SpotResponse)
async def create_spot(data: CreateSpot, actor: str = Depends(get_actor), db: AsyncSession = Depends(get_db)):
    try:
        spot = await spots.create_spot(
            db,
            owner_id=actor,
            name=data.name,
            price=data.price,
            default_available=data.default_available,
            latitude=data.latitude,
            longitude=data.longitude,
        )
    except BookingError as e:
        raise to_http(e)
    return _spot_response(spot, [], [], actor, None)


@router.get("/spots/{spot_id}", response_model=SpotResponse)
async def get_spot(
    spot_id: int,
    tz: str | None = Query(default=None),
    viewer: str | None = Depends(get_viewer),
    db: AsyncSession = Depends(get_db),
):
    try:
        spot = await spots.get_spot(db, spot_id)
        slots, blackouts = await availability.load_schedule(db, spot_id)
        return _spot_response(spot, slots, blackouts, viewer, tz)
    except BookingError as e:
        raise to_http(e)


@router.put("/spots/{spot_id}/status", response_model=SpotResponse)
async def update_spot_status(
    spot_id: int,
    data: UpdateSpotStatus,
    actor: str = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    try:
        spot = await spots.set_spot_status(db, spot_id, actor, data.status)
        slots, blackouts = await availability.load_schedule(db, spot_id)
    except BookingError as e:
        raise to_http(e)
    return _spot_response(spot, slots, blackouts, actor, None)


@router.put("/spots/{spot_id}/schedule", response_model=SpotResponse)
async def set_schedule(
    spot_id: int,
    data: SetSchedule,
    actor: str = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    try:
        spot = await availability.replace_schedule(db, spot_id, actor, data.slots, data.blackout_dates)
        slots, blackouts = await availability.load_schedule(db, spot_id)
    except BookingError as e:
        raise to_http(e)
    return _spot_response(spot, slots, blackouts, actor, None)


@router.get("/spots/{spot_id}/availability", response_model=AvailabilityResponse)
async def check_availability(
    spot_id: int,
    start_date: date,
    end_date: date,
    start_time: time,
    end_time: time,
    timezone: str = "UTC",
    db: AsyncSession = Depends(get_db),
):
    window = _window(start_date, end_date, start_time, end_time, timezone)
    try:
        spot = await spots.get_spot(db, spot_id)
        verdict = await availability.is_bookable(db, spot, window)
    except BookingError as e:
        raise to_http(e)
    return AvailabilityResponse(spot_id=spot_id, bookable=verdict.bookable, reason=verdict.reason)


# ---- bookings ----

@router.post("/bookings", response_model=BookingResponse)
async def create_booking(
    data: CreateBookingRequest,
    actor: str = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    window = _window(data.start_date, data.end_date, data.start_time, data.end_time, data.timezone)
    try:
        booking = await bookings.create_booking(
            db, requester_id=actor, spot_id=data.spot_id, window=window, message=data.message
        )
    except BookingError as e:
        raise to_http(e)
    return _booking_response(booking, actor)


@router.get("/bookings", response_model=list[BookingResponse])
async def list_bookings(
    role: str = Query(default=bookings.ROLE_INCOMING),
    actor: str = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    try:
        rows = await bookings.list_bookings(db, actor, role)
    except BookingError as e:
        raise to_http(e)
    return [_booking_response(b, actor) for b in rows]


@router.get("/bookings/{booking_id}", response_model=BookingResponse)
async def get_booking(booking_id: str, actor: str = Depends(get_actor), db: AsyncSession = Depends(get_db)):
    try:
        booking = await bookings.get_booking(db, booking_id)
    except BookingError as e:
        raise to_http(e)
    if actor not in (booking.requester_id, booking.owner_id):
        raise to_http(NotFound("Booking not found"))
    return _booking_response(booking, actor)


@router.post("/bookings/{booking_id}/accept", response_model=BookingResponse)
async def accept_booking(booking_id: str, actor: str = Depends(get_actor), db: AsyncSession = Depends(get_db)):
    try:
        booking = await bookings.accept_booking(db, booking_id, actor)
    except BookingError as e:
        raise to_http(e)
    return _booking_response(booking, actor)


@router.post("/bookings/{booking_id}/reject", response_model=BookingResponse)
async def reject_booking(booking_id: str, actor: str = Depends(get_actor), db: AsyncSession = Depends(get_db)):
    try:
        booking = await bookings.reject_booking(db, booking_id, actor)
    except BookingError as e:
        raise to_http(e)
    return _booking_response(booking, actor)


@router.post("/bookings/{booking_id}/checkout", response_model=CheckoutResponse)
async def checkout_booking(
    booking_id: str,
    actor: str = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
    gateway: StripeGateway = Depends(get_gateway),
):
    try:
        session_id, url, charges = await open_booking_checkout(db, booking_id, actor, gateway)
    except BookingError as e:
        raise to_http(e)
    return CheckoutResponse(session_id=session_id, url=url, amount=charges.total_charged)


# ---- wallet & payments ----

@router.get("/wallet", response_model=WalletResponse)
async def get_wallet(actor: str = Depends(get_actor), db: AsyncSession = Depends(get_db)):
    return WalletResponse(actor_id=actor, balance=await get_balance(db, actor))


@router.post("/wallet/topups", response_model=CheckoutResponse)
async def create_topup(
    data: CreateTopup,
    actor: str = Depends(get_actor),
    gateway: StripeGateway = Depends(get_gateway),
):
    try:
        session_id, url = await start_topup(gateway, actor, data.amount)
    except BookingError as e:
        raise to_http(e)
    return CheckoutResponse(session_id=session_id, url=url, amount=data.amount)


@router.post("/wallet/topups/verify", response_model=PaymentResult)
async def verify_payment(
    data: VerifyPayment,
    actor: str = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
    gateway: StripeGateway = Depends(get_gateway),
):
    session = as_dict(await gateway.retrieve_session(data.session_id))
    payer = as_dict(session.get("metadata")).get("user_id")
    if payer != actor:
        raise HTTPException(status_code=403, detail={"error": "Session belongs to another user"})
    try:
        result = await apply_paid_session(db, session)
    except BookingError as e:
        raise to_http(e)
    return PaymentResult(**result)


@router.post("/webhooks/stripe")
async def stripe_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    gateway: StripeGateway = Depends(get_gateway),
):
    payload = await request.body()
    try:
        event = as_dict(gateway.construct_event(payload, request.headers.get("stripe-signature")))
    except BookingError as e:
        logger.warning("Rejected webhook: %s", e)
        raise to_http(e)

    event_id = event.get("id")
    try:
        if event_id and await is_processed(redis_client, event_id):
            return {"received": True, "duplicate": True}
    except Exception as e:
        logger.warning("Webhook marker lookup failed for %s: %s", event_id, e)

    if event.get("type") == CHECKOUT_COMPLETED:
        session = as_dict(as_dict(event.get("data")).get("object"))
        try:
            result = await apply_paid_session(db, session)
            logger.info("Checkout %s processed: %s", session.get("id"), result)
        except BookingError as e:
            # acknowledged anyway; the ledger keeps retries from double-counting
            logger.error("Checkout %s could not be applied: %s", session.get("id"), e)

    try:
        if event_id:
            await mark_processed(redis_client, event_id)
    except Exception as e:
        logger.warning("Webhook marker write failed for %s: %s", event_id, e)

    return {"received": True}


# ---- system ----

@router.post("/system/status-pass", response_model=StatusPassResponse)
async def trigger_status_pass(session_factory=Depends(get_session_factory)):
    return StatusPassResponse(updates=await run_locked_pass(session_factory))
