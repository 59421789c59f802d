"""
Wallet settlement with exactly-once semantics.

Every money movement is keyed: a SettlementRecord row exists for a key if and
only if the transfer for that key happened. The record, the debit and the
credit are written in one transaction, so a key can never be half-settled.
Functions here never commit; the caller owns the transaction and rolls it
back on any failure.
"""
import enum
import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from .config import PLATFORM_FEE_RATE
from .errors import SettlementConflict, ValidationError
from .models import SettlementRecord, WalletAccount, SETTLEMENT_BOOKING, SETTLEMENT_TOPUP

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


class SettleOutcome(str, enum.Enum):
    OK = "ok"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    ALREADY_SETTLED = "already_settled"


@dataclass(frozen=True)
class Charges:
    booking_amount: Decimal
    platform_fee: Decimal
    total_charged: Decimal


def quantize(amount) -> Decimal:
    return Decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)


def compute_charges(booking_amount, fee_rate: Decimal = PLATFORM_FEE_RATE) -> Charges:
    booking_amount = quantize(booking_amount)
    platform_fee = quantize(booking_amount * fee_rate)
    return Charges(booking_amount, platform_fee, booking_amount + platform_fee)


def booking_settlement_key(booking) -> str:
    """Same key for the owner's accept and the gateway callback of one booking."""
    if booking.payment_session_id:
        return booking.payment_session_id
    return f"booking:{booking.booking_id}"


def topup_key(session_id: str) -> str:
    return f"topup:{session_id}"


async def is_settled(db: AsyncSession, idempotency_key: str) -> bool:
    res = await db.execute(
        select(SettlementRecord.id).where(SettlementRecord.idempotency_key == idempotency_key)
    )
    return res.scalar_one_or_none() is not None


async def _wallet_for_update(db: AsyncSession, actor_id: str) -> WalletAccount:
    res = await db.execute(
        select(WalletAccount).where(WalletAccount.actor_id == actor_id).with_for_update()
    )
    wallet = res.scalar_one_or_none()
    if wallet is None:
        wallet = WalletAccount(actor_id=actor_id, balance=ZERO)
        db.add(wallet)
        await db.flush()
    return wallet


async def get_balance(db: AsyncSession, actor_id: str) -> Decimal:
    res = await db.execute(select(WalletAccount.balance).where(WalletAccount.actor_id == actor_id))
    balance = res.scalar_one_or_none()
    return quantize(balance) if balance is not None else ZERO


async def _insert_record(db: AsyncSession, record: SettlementRecord):
    db.add(record)
    try:
        await db.flush()
    except IntegrityError as e:
        # a concurrent settle for the same key, or a debit that drained the wallet, committed first
        raise SettlementConflict(f"Settlement {record.idempotency_key} collided with a concurrent write") from e


async def settle(
    db: AsyncSession,
    *,
    idempotency_key: str,
    from_actor: str,
    to_actor: str,
    amount,
    credit_amount=None,
    platform_fee=ZERO,
    booking_id: str | None = None,
) -> SettleOutcome:
    """
    Move `amount` out of `from_actor`'s wallet and `credit_amount` (defaults to
    `amount`) into `to_actor`'s, once per idempotency key.

    The difference between the two is the platform fee; it stays on the
    settlement record and is not credited anywhere.
    """
    amount = quantize(amount)
    credit = quantize(amount if credit_amount is None else credit_amount)
    if amount <= ZERO or credit < ZERO or credit > amount:
        raise ValidationError(f"Invalid settlement amounts: charge {amount}, credit {credit}")
    if from_actor == to_actor:
        raise ValidationError("Cannot settle a wallet against itself")

    if await is_settled(db, idempotency_key):
        logger.info("Settlement %s already recorded, skipping", idempotency_key)
        return SettleOutcome.ALREADY_SETTLED

    # lock in a fixed order so two transfers between the same pair cannot deadlock
    wallets = {}
    for actor_id in sorted((from_actor, to_actor)):
        wallets[actor_id] = await _wallet_for_update(db, actor_id)
    payer, payee = wallets[from_actor], wallets[to_actor]

    if payer.balance < amount:
        logger.info(
            "Settlement %s refused: %s has %s, needs %s",
            idempotency_key, from_actor, payer.balance, amount,
        )
        return SettleOutcome.INSUFFICIENT_FUNDS

    # written as balance -/+ x in SQL; the check constraint still refuses an overdraft
    payer.balance = WalletAccount.balance - amount
    payee.balance = WalletAccount.balance + credit

    await _insert_record(
        db,
        SettlementRecord(
            idempotency_key=idempotency_key,
            kind=SETTLEMENT_BOOKING,
            booking_id=booking_id,
            from_actor=from_actor,
            to_actor=to_actor,
            booking_amount=credit,
            platform_fee=quantize(platform_fee),
            total_charged=amount,
        ),
    )
    logger.info(
        "Settled %s: %s -> %s, charged %s, credited %s",
        idempotency_key, from_actor, to_actor, amount, credit,
    )
    return SettleOutcome.OK


async def credit_topup(db: AsyncSession, *, session_id: str, actor_id: str, amount) -> SettleOutcome:
    """Add gateway-paid money to a wallet, once per checkout session."""
    amount = quantize(amount)
    if amount <= ZERO:
        raise ValidationError("Top-up amount must be positive")

    key = topup_key(session_id)
    if await is_settled(db, key):
        logger.info("Top-up %s already processed, skipping", session_id)
        return SettleOutcome.ALREADY_SETTLED

    wallet = await _wallet_for_update(db, actor_id)
    wallet.balance = WalletAccount.balance + amount

    await _insert_record(
        db,
        SettlementRecord(
            idempotency_key=key,
            kind=SETTLEMENT_TOPUP,
            from_actor=None,
            to_actor=actor_id,
            booking_amount=amount,
            platform_fee=ZERO,
            total_charged=amount,
        ),
    )
    logger.info("Added %s to wallet of %s (session %s)", amount, actor_id, session_id)
    return SettleOutcome.OK
