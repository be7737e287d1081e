from __future__ import annotations

import json
from typing import Any

import redis
from ..core.config import get_settings

KEY_PREFIX = "materials:"


def cache_key(namespace: str, *parts: str) -> str:
    return KEY_PREFIX + ":".join([namespace, *[p.strip().lower() for p in parts]])


def _get_sync_redis() -> redis.Redis:
    """
    Fresh sync client per call so Celery workers don't hold onto closed
    event loops.
    """
    return redis.from_url(
        str(get_settings().REDIS_URL),
        decode_responses=True,
        socket_timeout=5,
        socket_connect_timeout=5,
    )


async def cached_get(
    key: str,
    set_value: Any | None = None,
    ttl: int | None = None,
) -> Any:
    """
    Redis-backed JSON cache for upstream lookups.

        value = await cached_get(key)                    # read
        await cached_get(key, set_value=value, ttl=60)   # write with TTL

    The cache is an optimisation only: Redis being unavailable reads as a
    miss and writes are dropped.
    """
    client = _get_sync_redis()
    try:
        if set_value is None:
            val = client.get(key)
            return json.loads(val) if val is not None else None

        serialized = json.dumps(set_value, default=str)
        client.set(key, serialized, ex=ttl)
        return set_value
    except redis.RedisError:
        return None
    finally:
        try:
            client.close()
        except redis.RedisError:
            pass
