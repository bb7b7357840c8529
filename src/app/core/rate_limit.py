"""
Rate Limiting Module

Per-actor limits on workflow actions (submissions, decisions, payments).
Counts live in Redis sorted sets so every API instance shares them; when
Redis is not connected, each process counts in its own memory.
"""

import logging
import time
from dataclasses import dataclass

from fastapi import HTTPException, status

from app.core.auth import Actor
from app.core.config import settings
from app.core.redis import get_redis

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitRule:
    """At most `limit` calls of `action` per actor within `window_seconds`."""

    action: str
    limit: int
    window_seconds: int

    def key_for(self, actor: Actor) -> str:
        return f"rate_limit:{actor.role.value}:{self.action}:{actor.id}"


class RateLimitExceeded(HTTPException):
    """429 response for an actor over its limit."""

    def __init__(self, rule: RateLimitRule):
        super().__init__(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={
                "error": "RATE_LIMIT_EXCEEDED",
                "message": (
                    f"Too many '{rule.action}' requests. "
                    f"Maximum {rule.limit} per {rule.window_seconds} seconds."
                ),
                "retry_after_seconds": rule.window_seconds,
            },
            headers={"Retry-After": str(rule.window_seconds)},
        )


# Fallback hit log: {key: [timestamp, ...]}
_memory_hits: dict[str, list[float]] = {}


async def _hits_in_window_redis(client, key: str, window_seconds: int, now: float) -> int:
    """Record a hit and return how many hits preceded it within the window."""
    pipe = client.pipeline()
    pipe.zremrangebyscore(key, 0, now - window_seconds)
    pipe.zcard(key)
    pipe.zadd(key, {str(now): now})
    pipe.expire(key, window_seconds)
    _, previous_hits, _, _ = await pipe.execute()
    return previous_hits


def _hits_in_window_memory(key: str, window_seconds: int, limit: int, now: float) -> int:
    """Same as the Redis variant, but refused hits are not recorded."""
    hits = [ts for ts in _memory_hits.get(key, []) if ts > now - window_seconds]
    previous_hits = len(hits)
    if previous_hits < limit:
        hits.append(now)
    _memory_hits[key] = hits
    return previous_hits


async def is_within_limit(key: str, limit: int, window_seconds: int) -> bool:
    """
    Count one hit against `key` and tell whether it is allowed.

    Uses Redis when connected and falls back to process memory when it is
    not, or when the Redis call fails.
    """
    now = time.time()
    client = await get_redis()

    if client is not None:
        try:
            return await _hits_in_window_redis(client, key, window_seconds, now) < limit
        except Exception as e:
            logger.warning(f"Redis rate limit check failed, counting in memory: {e}")

    return _hits_in_window_memory(key, window_seconds, limit, now) < limit


async def check_actor_rate_limit(actor: Actor, rule: RateLimitRule) -> None:
    """
    Enforce `rule` for `actor`. No-op when rate limiting is disabled.

    Raises:
        RateLimitExceeded: If the actor is over the limit
    """
    if not settings.rate_limit_enabled:
        return

    if not await is_within_limit(rule.key_for(actor), rule.limit, rule.window_seconds):
        logger.warning(
            f"Rate limit exceeded for {actor} on '{rule.action}': "
            f"{rule.limit}/{rule.window_seconds}s"
        )
        raise RateLimitExceeded(rule)


__all__ = [
    "RateLimitExceeded",
    "RateLimitRule",
    "check_actor_rate_limit",
    "is_within_limit",
]
