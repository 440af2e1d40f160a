from __future__ import annotations

from typing import Optional

import redis.asyncio as redis


class RedisRepo:
    """Persistent store for the session keys, one Redis string per key."""

    def __init__(self, host: str, port: int, db: int = 0, prefix: str = "", ttl_sec: int = 0, client=None):
        self.r = client if client is not None else redis.Redis(host=host, port=port, db=db, decode_responses=True)
        self.prefix = prefix
        self.ttl = ttl_sec

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    async def get(self, key: str) -> Optional[str]:
        raw = await self.r.get(self._key(key))
        return raw or None

    async def set(self, key: str, value: str) -> None:
        await self.r.set(self._key(key), value, ex=self.ttl or None)

    async def remove(self, key: str) -> None:
        await self.r.delete(self._key(key))

    async def close(self) -> None:
        await self.r.aclose()
