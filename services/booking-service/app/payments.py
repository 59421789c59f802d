"""
Checkout sessions and their confirmation.

A paid checkout always lands in the payer's wallet first (keyed by the session
id, so the webhook, its retries and the polling fallback credit it once).
A checkout opened for a booking then drives the ordinary accept path as the
system actor; that settlement shares its key with the owner's accept.
"""
import asyncio
import logging
from decimal import Decimal, InvalidOperation

import stripe
from sqlalchemy.ext.asyncio import AsyncSession

from .bookings import accept_booking, booking_charges, get_booking
from .config import CURRENCY, PUBLIC_BASE_URL, STRIPE_SECRET_KEY, STRIPE_WEBHOOK_SECRET
from .errors import (
    Conflict,
    InsufficientFunds,
    InvalidState,
    PermissionDenied,
    SettlementConflict,
    ValidationError,
    WebhookSignatureError,
)
from .ledger import SettleOutcome, booking_settlement_key, credit_topup, is_settled, quantize
from .models import BOOKING_PENDING
from .publisher import emit
from .spots import get_spot
from .timeutils import utcnow

logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"


class StripeGateway:
    def __init__(self, api_key: str | None = STRIPE_SECRET_KEY, webhook_secret: str | None = STRIPE_WEBHOOK_SECRET):
        self.api_key = api_key
        self.webhook_secret = webhook_secret

    async def create_checkout(self, payer_id: str, amount: Decimal, booking_id: str | None = None) -> tuple[str, str]:
        amount = quantize(amount)
        metadata = {"user_id": payer_id, "amount": str(amount)}
        if booking_id:
            metadata["booking_id"] = booking_id
            description = f"Parking booking {booking_id}"
        else:
            description = f"Add {amount} {CURRENCY.upper()} to your wallet"

        session = await asyncio.to_thread(
            stripe.checkout.Session.create,
            api_key=self.api_key,
            mode="payment",
            payment_method_types=["card"],
            line_items=[
                {
                    "price_data": {
                        "currency": CURRENCY,
                        "product_data": {"name": "Wallet Balance Top-up", "description": description},
                        "unit_amount": int(amount * 100),
                    },
                    "quantity": 1,
                }
            ],
            success_url=f"{PUBLIC_BASE_URL}/?payment_success=true&session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{PUBLIC_BASE_URL}/?payment_canceled=true",
            metadata=metadata,
        )
        return session.id, session.url

    async def retrieve_session(self, session_id: str):
        return await asyncio.to_thread(stripe.checkout.Session.retrieve, session_id, api_key=self.api_key)

    def construct_event(self, payload: bytes, signature: str | None):
        if not signature:
            raise WebhookSignatureError("No signature provided")
        if not self.webhook_secret:
            raise WebhookSignatureError("Webhook secret is not configured")
        try:
            return stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except (ValueError, stripe.SignatureVerificationError) as e:
            raise WebhookSignatureError(f"Webhook signature verification failed: {e}") from e


def as_dict(obj) -> dict:
    """Plain dict view of a Stripe object (or of a dict already)."""
    if obj is None:
        return {}
    if isinstance(obj, dict):
        return obj
    for attr in ("to_dict", "to_dict_recursive"):
        fn = getattr(obj, attr, None)
        if callable(fn):
            return fn()
    return dict(obj)


def _metadata(session) -> dict:
    return dict(as_dict(session.get("metadata")))


def session_amount(session) -> Decimal | None:
    raw = _metadata(session).get("amount")
    if raw is None:
        total = session.get("amount_total")
        return quantize(Decimal(total) / 100) if total is not None else None
    try:
        return quantize(Decimal(str(raw)))
    except InvalidOperation:
        return None


async def start_topup(gateway: StripeGateway, actor_id: str, amount) -> tuple[str, str]:
    amount = quantize(amount)
    if amount <= 0:
        raise ValidationError("Invalid amount")
    return await gateway.create_checkout(actor_id, amount)


async def open_booking_checkout(db: AsyncSession, booking_id: str, actor_id: str, gateway: StripeGateway):
    """Card payment for a pending booking; the session id becomes its settlement key."""
    booking = await get_booking(db, booking_id)
    if booking.requester_id != actor_id:
        raise PermissionDenied("Only the requester can pay for this booking")
    if booking.status != BOOKING_PENDING:
        raise InvalidState(f"Booking is already {booking.status}")
    if booking.payment_session_id:
        raise InvalidState("A checkout is already open for this booking")

    spot = await get_spot(db, booking.spot_id)
    charges = booking_charges(booking, spot)
    if charges is None:
        raise ValidationError("Booking has no price to pay")

    session_id, url = await gateway.create_checkout(actor_id, charges.total_charged, booking_id=booking.booking_id)
    booking.payment_session_id = session_id
    await db.commit()
    logger.info("Checkout %s opened for booking %s", session_id, booking_id)
    return session_id, url, charges


async def apply_paid_session(db: AsyncSession, session, now=None) -> dict:
    """
    Book a completed checkout session into the ledger.

    Safe to call any number of times for one session, from the webhook or the
    polling endpoint.
    """
    now = now or utcnow()
    session = as_dict(session)
    session_id = session.get("id")
    metadata = _metadata(session)
    payer_id = metadata.get("user_id")
    amount = session_amount(session)

    if session.get("payment_status") != "paid":
        return {"success": False, "payment_status": session.get("payment_status")}
    if not session_id or not payer_id or amount is None or amount <= 0:
        logger.warning("Paid session %s carries no usable payer/amount metadata", session_id)
        return {"success": False, "payment_status": "paid"}

    try:
        outcome = await credit_topup(db, session_id=session_id, actor_id=payer_id, amount=amount)
        await db.commit()
    except SettlementConflict:
        await db.rollback()
        outcome = SettleOutcome.ALREADY_SETTLED
    except Exception:
        await db.rollback()
        raise

    result = {
        "success": True,
        "payment_status": "paid",
        "amount": str(amount),
        "already_processed": outcome is SettleOutcome.ALREADY_SETTLED,
    }
    if outcome is SettleOutcome.OK:
        await emit("wallet.topped_up", {"actor_id": payer_id, "amount": str(amount), "session_id": session_id})

    booking_id = metadata.get("booking_id")
    if booking_id:
        result["booking_id"] = booking_id
        try:
            booking = await accept_booking(db, booking_id, None, now=now, via_gateway=True)
            result["booking_status"] = booking.status
            result["settlement"] = SettleOutcome.OK.value
        except (InvalidState, SettlementConflict) as e:
            # the owner's accept or an earlier delivery got there first
            logger.info("Booking %s not accepted from session %s: %s", booking_id, session_id, e)
            booking = await get_booking(db, booking_id)
            result["booking_status"] = booking.status
            if await is_settled(db, booking_settlement_key(booking)):
                result["settlement"] = SettleOutcome.ALREADY_SETTLED.value
        except (Conflict, InsufficientFunds) as e:
            # payment stays in the wallet; the owner decides on the request
            logger.warning("Booking %s could not be accepted from session %s: %s", booking_id, session_id, e)
            result["booking_status"] = BOOKING_PENDING
            result["settlement"] = (
                SettleOutcome.INSUFFICIENT_FUNDS.value if isinstance(e, InsufficientFunds) else "conflict"
            )

    return result
