from __future__ import annotations

import redis.asyncio as redis_async


def get_redis_async(url: str) -> redis_async.Redis:
    return redis_async.Redis.from_url(url, decode_responses=True)
