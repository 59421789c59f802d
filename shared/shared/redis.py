import uuid

import redis.asyncio as redis


def get_redis(url: str | None):
    if not url:
        return None
    return redis.from_url(url, decode_responses=True)


class RedisLock:
    """
    Single-holder lock over SET NX EX.

    Without a client every acquire succeeds, which is what a single-instance
    deployment wants.
    """

    def __init__(self, client, name: str, ttl_seconds: int = 60):
        self.client = client
        self.key = f"lock:{name}"
        self.ttl_seconds = ttl_seconds
        self._token: str | None = None

    async def acquire(self) -> bool:
        if self.client is None:
            return True
        token = str(uuid.uuid4())
        ok = await self.client.set(self.key, token, nx=True, ex=self.ttl_seconds)
        if ok:
            self._token = token
            return True
        return False

    async def release(self) -> None:
        if self.client is None or self._token is None:
            return
        # only drop the key if we still own it
        current = await self.client.get(self.key)
        if current == self._token:
            await self.client.delete(self.key)
        self._token = None
