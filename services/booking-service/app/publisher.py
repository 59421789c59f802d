from shared.events import build_event, to_json
from shared.rabbitmq import RabbitPublisher

from .config import RABBIT_URL

publisher = RabbitPublisher(RABBIT_URL)


async def emit(event_type: str, data: dict):
    """Publish a change notification; the routing key is the event type."""
    await publisher.publish(event_type, to_json(build_event(event_type, data)))


def booking_payload(booking) -> dict:
    return {
        "booking_id": booking.booking_id,
        "spot_id": booking.spot_id,
        "requester_id": booking.requester_id,
        "owner_id": booking.owner_id,
        "status": booking.status,
        "start_date": booking.start_date.isoformat(),
        "end_date": booking.end_date.isoformat(),
        "start_time": booking.start_time.isoformat(),
        "end_time": booking.end_time.isoformat(),
        "requester_timezone": booking.requester_timezone,
    }
