"""Redis client factory."""

import redis.asyncio as aioredis
from redis.asyncio import Redis

KEY_PREFIX = "checkout_integrity"


def create_redis_client(url: str = "redis://localhost:6379/0") -> Redis:
    """Create and configure a Redis client. Connections are opened lazily."""
    return aioredis.from_url(
        url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=50,
        socket_timeout=5,
        socket_connect_timeout=5,
    )
