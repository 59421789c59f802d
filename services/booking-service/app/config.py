import os
from decimal import Decimal

DATABASE_URL = os.getenv("BOOKING_DB") or "sqlite+aiosqlite://"
DB_ECHO = (os.getenv("BOOKING_DB_ECHO") or "").lower() in ("1", "true", "yes")

RABBIT_URL = os.getenv("RABBIT_URL")  # optional in dev, required if you want events
REDIS_URL = os.getenv("REDIS_URL")  # optional; scheduler lock + webhook markers

STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")
PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL") or "http://localhost:3000"
CURRENCY = os.getenv("CURRENCY") or "ron"

PLATFORM_FEE_RATE = Decimal(os.getenv("PLATFORM_FEE_RATE") or "0.10")

STATUS_PASS_INTERVAL_SECONDS = float(os.getenv("STATUS_PASS_INTERVAL_SECONDS") or "300")
STATUS_PASS_LOCK_TTL_SECONDS = int(os.getenv("STATUS_PASS_LOCK_TTL_SECONDS") or "240")

DEFAULT_TIMEZONE = os.getenv("DEFAULT_TIMEZONE") or "UTC"

SERVICE_NAME = "booking-service"
