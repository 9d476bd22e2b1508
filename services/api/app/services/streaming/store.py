from __future__ import annotations

import logging
import time
from typing import Callable, Protocol

from redis.asyncio import Redis

from app.core.config import settings
from app.core.redis import get_redis_async

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    name: str

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str, *, ttl_secs: int) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def scan(self, prefix: str) -> list[str]: ...

    async def incr(self, key: str, *, ttl_secs: int) -> int: ...

    async def close(self) -> None: ...


class RedisStore:
    name = "redis"

    def __init__(self, client: Redis):
        self._r = client

    async def get(self, key: str) -> str | None:
        return await self._r.get(key)

    async def set(self, key: str, value: str, *, ttl_secs: int) -> None:
        await self._r.setex(key, ttl_secs, value)

    async def delete(self, key: str) -> None:
        await self._r.delete(key)

    async def scan(self, prefix: str) -> list[str]:
        return [k async for k in self._r.scan_iter(match=f"{prefix}*", count=500)]

    async def incr(self, key: str, *, ttl_secs: int) -> int:
        count = int(await self._r.incr(key))
        if count == 1:
            await self._r.expire(key, ttl_secs)
        return count

    async def close(self) -> None:
        await self._r.aclose()


class MemoryStore:
    """In-process store with the same expiry semantics as Redis SETEX."""

    name = "memory"

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._data: dict[str, tuple[str, float]] = {}

    def _live(self, key: str) -> tuple[str, float] | None:
        item = self._data.get(key)
        if item is None:
            return None
        if item[1] <= self._clock():
            self._data.pop(key, None)
            return None
        return item

    async def get(self, key: str) -> str | None:
        item = self._live(key)
        return item[0] if item else None

    async def set(self, key: str, value: str, *, ttl_secs: int) -> None:
        self._data[key] = (value, self._clock() + ttl_secs)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def scan(self, prefix: str) -> list[str]:
        return [k for k in list(self._data) if k.startswith(prefix) and self._live(k)]

    async def incr(self, key: str, *, ttl_secs: int) -> int:
        item = self._live(key)
        if item is None:
            self._data[key] = ("1", self._clock() + ttl_secs)
            return 1
        count = int(item[0]) + 1
        self._data[key] = (str(count), item[1])
        return count

    async def close(self) -> None:
        self._data.clear()


async def get_store() -> KeyValueStore:
    """Return a Redis-backed store, or an in-memory one if Redis is unusable."""
    if not settings.redis_url:
        return MemoryStore()
    client = get_redis_async(settings.redis_url)
    try:
        await client.ping()
    except Exception as exc:
        logger.warning("Redis unavailable; streaming cache kept in memory: %s", exc)
        await client.aclose()
        return MemoryStore()
    return RedisStore(client)
