import asyncio
import logging

from fastapi import FastAPI

from .config import DATABASE_URL, SERVICE_NAME
from .db import Base, engine
from .publisher import publisher
from .redis_client import redis_client
from .routes import router
from .status_worker import status_loop

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title="Parking Booking Service")
app.include_router(router)

_stop_event = asyncio.Event()
_status_task = None


@app.get("/health")
async def health():
    return {
        "status": "ok",
        "service": SERVICE_NAME,
        "events_enabled": publisher.enabled,
        "redis_enabled": redis_client is not None,
    }


@app.on_event("startup")
async def startup():
    global _status_task
    if DATABASE_URL.startswith("sqlite"):
        # dev database; real deployments run the alembic migrations
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    try:
        await publisher.connect()
    except Exception as e:
        logger.warning("RabbitMQ connect failed at startup; continuing: %s", e)

    _stop_event.clear()
    _status_task = asyncio.create_task(status_loop(_stop_event))


@app.on_event("shutdown")
async def shutdown():
    global _status_task
    _stop_event.set()
    if _status_task:
        try:
            await _status_task
        except Exception as e:
            logger.warning("Status loop ended with an error: %s", e)
        _status_task = None
    try:
        await publisher.close()
    except Exception as e:
        logger.warning("RabbitMQ close failed: %s", e)
    if redis_client is not None:
        await redis_client.aclose()
