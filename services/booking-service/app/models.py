from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Time,
    UniqueConstraint,
)

from .db import Base

SPOT_AVAILABLE = "available"
SPOT_RESERVED = "reserved"
SPOT_OCCUPIED = "occupied"
SPOT_STATUSES = (SPOT_AVAILABLE, SPOT_RESERVED, SPOT_OCCUPIED)

BOOKING_PENDING = "pending"
BOOKING_ACCEPTED = "accepted"
BOOKING_REJECTED = "rejected"
BOOKING_COMPLETED = "completed"

SETTLEMENT_BOOKING = "booking"
SETTLEMENT_TOPUP = "topup"

MONEY = Numeric(12, 2)


def _now():
    return datetime.now(timezone.utc)


class Spot(Base):
    __tablename__ = "spots"

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    owner_id = Column(String, nullable=False, index=True)

    status = Column(String, nullable=False, default=SPOT_AVAILABLE, index=True)
    has_schedule = Column(Boolean, nullable=False, default=False)
    default_available = Column(Boolean, nullable=False, default=True)
    price = Column(MONEY, nullable=True)  # hourly; NULL = unlisted

    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_now, onupdate=_now)


class WeeklyScheduleSlot(Base):
    __tablename__ = "weekly_schedule_slots"

    id = Column(Integer, primary_key=True)
    spot_id = Column(Integer, ForeignKey("spots.id", ondelete="CASCADE"), nullable=False, index=True)
    day_of_week = Column(Integer, nullable=False)  # date.weekday(): 0 = Monday
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    is_available = Column(Boolean, nullable=False, default=True)

    __table_args__ = (
        CheckConstraint("day_of_week >= 0 AND day_of_week <= 6", name="ck_slot_day_of_week"),
    )


class BlackoutDate(Base):
    __tablename__ = "blackout_dates"

    id = Column(Integer, primary_key=True)
    spot_id = Column(Integer, ForeignKey("spots.id", ondelete="CASCADE"), nullable=False, index=True)
    blocked_date = Column(Date, nullable=False)
    reason = Column(String, nullable=True)

    __table_args__ = (
        UniqueConstraint("spot_id", "blocked_date", name="uq_blackout_spot_date"),
    )


class BookingRequest(Base):
    __tablename__ = "booking_requests"

    id = Column(Integer, primary_key=True)
    booking_id = Column(String, unique=True, nullable=False, index=True)

    requester_id = Column(String, nullable=False, index=True)
    owner_id = Column(String, nullable=False, index=True)
    spot_id = Column(Integer, ForeignKey("spots.id"), nullable=False, index=True)

    status = Column(String, nullable=False, index=True)  # pending/accepted/rejected/completed

    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    requester_timezone = Column(String, nullable=False, default="UTC")
    message = Column(String, nullable=True)

    total_hours = Column(Numeric(8, 2), nullable=False)
    total_price = Column(MONEY, nullable=True)

    payment_session_id = Column(String, unique=True, nullable=True)
    accepted_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    payment_amount = Column(MONEY, nullable=True)
    payment_processed = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_now, onupdate=_now)


class WalletAccount(Base):
    __tablename__ = "wallet_accounts"

    id = Column(Integer, primary_key=True)
    actor_id = Column(String, unique=True, nullable=False)
    balance = Column(MONEY, nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_now, onupdate=_now)

    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_wallet_balance_non_negative"),
    )


class SettlementRecord(Base):
    __tablename__ = "settlement_records"

    id = Column(Integer, primary_key=True)
    idempotency_key = Column(String, unique=True, nullable=False, index=True)
    kind = Column(String, nullable=False)  # booking/topup

    booking_id = Column(String, nullable=True, index=True)
    from_actor = Column(String, nullable=True)
    to_actor = Column(String, nullable=False)

    booking_amount = Column(MONEY, nullable=False)
    platform_fee = Column(MONEY, nullable=False, default=0)
    total_charged = Column(MONEY, nullable=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_now)
