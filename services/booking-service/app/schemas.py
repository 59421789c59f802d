from datetime import date, datetime, time
from decimal import Decimal
from typing import List

from pydantic import BaseModel, ConfigDict, Field


class CreateSpot(BaseModel):
    name: str
    price: Decimal | None = None
    default_available: bool = True
    latitude: float | None = None
    longitude: float | None = None


class UpdateSpotStatus(BaseModel):
    status: str


class ScheduleSlot(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    day_of_week: int = Field(ge=0, le=6)
    start_time: time
    end_time: time
    is_available: bool = True


class Blackout(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    blocked_date: date
    reason: str | None = None


class SetSchedule(BaseModel):
    slots: List[ScheduleSlot] = Field(default_factory=list)
    blackout_dates: List[Blackout] = Field(default_factory=list)


class SpotResponse(BaseModel):
    id: int
    name: str
    owner_id: str
    status: str
    effective_status: str
    is_owner: bool
    has_schedule: bool
    default_available: bool
    price: Decimal | None = None
    latitude: float | None = None
    longitude: float | None = None
    slots: List[ScheduleSlot] = Field(default_factory=list)
    blackout_dates: List[Blackout] = Field(default_factory=list)


class AvailabilityResponse(BaseModel):
    spot_id: int
    bookable: bool
    reason: str | None = None


class CreateBookingRequest(BaseModel):
    spot_id: int
    start_date: date
    end_date: date
    start_time: time
    end_time: time
    timezone: str = "UTC"
    message: str | None = None


class BookingResponse(BaseModel):
    booking_id: str
    spot_id: int
    status: str
    requester_id: str
    owner_id: str
    is_mine: bool
    start_date: date
    end_date: date
    start_time: time
    end_time: time
    requester_timezone: str
    message: str | None = None
    total_hours: Decimal
    total_price: Decimal | None = None
    accepted_at: datetime | None = None
    completed_at: datetime | None = None
    payment_amount: Decimal | None = None
    payment_processed: bool = False
    payment_session_id: str | None = None


class WalletResponse(BaseModel):
    actor_id: str
    balance: Decimal


class CreateTopup(BaseModel):
    amount: Decimal = Field(gt=0)


class CheckoutResponse(BaseModel):
    session_id: str
    url: str
    amount: Decimal


class VerifyPayment(BaseModel):
    session_id: str


class PaymentResult(BaseModel):
    success: bool
    payment_status: str | None = None
    amount: Decimal | None = None
    already_processed: bool = False
    booking_id: str | None = None
    booking_status: str | None = None
    settlement: str | None = None


class StatusPassResponse(BaseModel):
    updates: int | None
