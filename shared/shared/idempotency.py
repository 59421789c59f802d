PROCESSED_TTL_SECONDS = 86400


def processed_key(event_id: str) -> str:
    return f"processed_event:{event_id}"


async def is_processed(client, event_id: str) -> bool:
    if client is None or not event_id:
        return False
    return bool(await client.exists(processed_key(event_id)))


async def mark_processed(client, event_id: str):
    if client is None or not event_id:
        return
    await client.set(processed_key(event_id), "1", ex=PROCESSED_TTL_SECONDS)
