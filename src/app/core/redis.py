"""
Redis Connection

Optional shared client. The API runs without Redis; rate limiting then
falls back to process memory.
"""

import logging

from redis.asyncio import Redis, from_url
from redis.exceptions import RedisError

from app.core.config import settings

logger = logging.getLogger(__name__)

# Set by init_redis() once the server answered a PING
redis_client: Redis | None = None

CONNECT_TIMEOUT_SECONDS = 2.0


async def init_redis() -> Redis:
    """
    Connect to the configured Redis server. Call on application startup.

    Raises:
        RedisError: If the server does not answer
    """
    global redis_client
    client = from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        socket_connect_timeout=CONNECT_TIMEOUT_SECONDS,
    )
    try:
        await client.ping()
    except RedisError:
        await client.aclose()
        raise
    redis_client = client
    return redis_client


async def get_redis() -> Redis | None:
    """The shared client, or None when Redis is not connected."""
    return redis_client


async def redis_status() -> str:
    """'ok', 'unavailable' (never connected) or 'error' (PING failed)."""
    if redis_client is None:
        return "unavailable"
    try:
        await redis_client.ping()
    except RedisError as e:
        logger.warning(f"Redis ping failed: {e}")
        return "error"
    return "ok"


async def close_redis() -> None:
    """Close the shared client. Call on application shutdown."""
    global redis_client
    if redis_client is not None:
        await redis_client.aclose()
        redis_client = None
