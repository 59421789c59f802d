import json
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal

import pytest
from httpx import ASGITransport, AsyncClient

from shared.database import get_engine, get_session

from app.bookings import create_booking
from app.db import Base
from app.errors import WebhookSignatureError
from app.ledger import credit_topup
from app.main import app
from app.models import BookingRequest, Spot, WalletAccount, BOOKING_ACCEPTED
from app.routes import get_gateway, get_session_factory
from app.timeutils import BookingWindow

OWNER = "owner-1"
RENTER = "renter-1"
OTHER = "renter-2"

# Monday 2030-01-07 09:00 UTC
NOW = datetime(2030, 1, 7, 9, 0, tzinfo=timezone.utc)
MONDAY = date(2030, 1, 7)
TUESDAY = date(2030, 1, 8)


@pytest.fixture
async def session_factory():
    engine = get_engine("sqlite+aiosqlite://")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield get_session(engine)
    finally:
        await engine.dispose()


@pytest.fixture
async def file_session_factory(tmp_path):
    # one connection per session, so concurrent transactions really interleave
    engine = get_engine(f"sqlite+aiosqlite:///{tmp_path / 'parking.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield get_session(engine)
    finally:
        await engine.dispose()


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_spot(db):
    async def _make(owner_id=OWNER, price=Decimal("10.00"), default_available=True, status="available"):
        spot = Spot(
            name="Lot A",
            owner_id=owner_id,
            status=status,
            has_schedule=False,
            default_available=default_available,
            price=price,
        )
        db.add(spot)
        await db.commit()
        return spot

    return _make


@pytest.fixture
def fund(db):
    counter = {"n": 0}

    async def _fund(actor_id, amount):
        counter["n"] += 1
        await credit_topup(db, session_id=f"seed-{actor_id}-{counter['n']}", actor_id=actor_id, amount=Decimal(amount))
        await db.commit()

    return _fund


def window(day=TUESDAY, start=time(10, 0), end=time(12, 0), end_day=None, tz="UTC"):
    return BookingWindow(day, end_day or day, start, end, tz)


async def add_booking(db, spot, w, status=BOOKING_ACCEPTED, requester=RENTER, booking_id="b-1"):
    booking = BookingRequest(
        booking_id=booking_id,
        requester_id=requester,
        owner_id=spot.owner_id,
        spot_id=spot.id,
        status=status,
        start_date=w.start_date,
        end_date=w.end_date,
        start_time=w.start_time,
        end_time=w.end_time,
        requester_timezone=w.timezone,
        total_hours=w.total_hours,
    )
    db.add(booking)
    await db.commit()
    return booking


class FakeGateway:
    """In-memory stand-in for Stripe checkout; the signature "valid" verifies."""

    def __init__(self):
        self.sessions = {}
        self._n = 0

    async def create_checkout(self, payer_id, amount, booking_id=None):
        self._n += 1
        session_id = f"cs_test_{self._n}"
        metadata = {"user_id": payer_id, "amount": str(amount)}
        if booking_id:
            metadata["booking_id"] = booking_id
        self.sessions[session_id] = {
            "id": session_id,
            "payment_status": "unpaid",
            "metadata": metadata,
        }
        return session_id, f"https://checkout.test/{session_id}"

    def pay(self, session_id):
        self.sessions[session_id]["payment_status"] = "paid"
        return self.sessions[session_id]

    async def retrieve_session(self, session_id):
        return self.sessions[session_id]

    def construct_event(self, payload, signature):
        if signature != "valid":
            raise WebhookSignatureError("Webhook signature verification failed")
        return json.loads(payload)


class FakeRedis:
    def __init__(self):
        self.data = {}

    async def exists(self, key):
        return int(key in self.data)

    async def set(self, key, value, nx=False, ex=None):
        if nx and key in self.data:
            return None
        self.data[key] = value
        return True

    async def get(self, key):
        return self.data.get(key)

    async def delete(self, key):
        return int(self.data.pop(key, None) is not None)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
async def client(session_factory, gateway):
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_gateway] = lambda: gateway
    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
            yield c
    finally:
        app.dependency_overrides.clear()


def future_day(days=2) -> date:
    return (datetime.now(timezone.utc) + timedelta(days=days)).date()


async def seed_priced_request(session_factory, renter_balance="100"):
    """A pending 2h request at 10.00/h with both wallets in place; returns its booking id."""
    async with session_factory() as db:
        spot = Spot(
            name="Lot A",
            owner_id=OWNER,
            status="available",
            has_schedule=False,
            default_available=True,
            price=Decimal("10.00"),
        )
        db.add_all([spot, WalletAccount(actor_id=OWNER, balance=Decimal("0"))])
        await db.commit()
        await credit_topup(db, session_id="seed-renter", actor_id=RENTER, amount=Decimal(renter_balance))
        await db.commit()
        booking = await create_booking(db, requester_id=RENTER, spot_id=spot.id, window=window(), now=NOW)
        return booking.booking_id
