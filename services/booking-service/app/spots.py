import logging
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from .errors import NotFound, PermissionDenied, ValidationError
from .ledger import quantize
from .models import Spot, SPOT_AVAILABLE, SPOT_STATUSES
from .publisher import emit

logger = logging.getLogger(__name__)


async def get_spot(db: AsyncSession, spot_id: int) -> Spot:
    spot = await db.get(Spot, spot_id)
    if not spot:
        raise NotFound("Spot not found")
    return spot


async def create_spot(
    db: AsyncSession,
    *,
    owner_id: str,
    name: str,
    price=None,
    default_available: bool = True,
    latitude: float | None = None,
    longitude: float | None = None,
) -> Spot:
    if price is not None and quantize(price) < 0:
        raise ValidationError("price must not be negative")

    spot = Spot(
        owner_id=owner_id,
        name=name,
        status=SPOT_AVAILABLE,
        has_schedule=False,
        default_available=default_available,
        price=quantize(price) if price is not None else None,
        latitude=latitude,
        longitude=longitude,
    )
    db.add(spot)
    await db.commit()
    await emit("spot.created", {"spot_id": spot.id, "owner_id": owner_id, "status": spot.status})
    return spot


async def set_spot_status(
    db: AsyncSession,
    spot_id: int,
    actor_id: str,
    status: str,
    now: datetime | None = None,
) -> Spot:
    """Manual owner override. Only a booking ending releases an owner-set occupied spot."""
    if status not in SPOT_STATUSES:
        raise ValidationError(f"Unknown spot status: {status}")

    spot = await get_spot(db, spot_id)
    if spot.owner_id != actor_id:
        raise PermissionDenied("Only the owner can change the spot status")

    previous = spot.status
    spot.status = status
    if now is not None:
        spot.updated_at = now
    await db.commit()

    logger.info("Spot %s status %s -> %s by owner", spot_id, previous, status)
    await emit(
        "spot.status_changed",
        {"spot_id": spot.id, "status": status, "previous": previous, "source": "owner"},
    )
    return spot
