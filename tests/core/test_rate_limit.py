"""
Unit tests for per-actor rate limiting.
"""

from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest

from app.core import rate_limit
from app.core.auth import Actor, ActorRole
from app.core.rate_limit import (
    RateLimitExceeded,
    RateLimitRule,
    check_actor_rate_limit,
    is_within_limit,
)

DECISIONS = RateLimitRule("transition", limit=1, window_seconds=60)


@pytest.fixture(autouse=True)
def clear_memory_hits():
    rate_limit._memory_hits.clear()
    yield
    rate_limit._memory_hits.clear()


@pytest.fixture
def actor():
    return Actor(id=uuid4(), role=ActorRole.DEPOT, scope_id=uuid4())


class TestRateLimitRule:
    def test_key_is_per_actor_and_action(self, actor):
        assert DECISIONS.key_for(actor) == f"rate_limit:depot:transition:{actor.id}"


class TestMemoryFallback:
    @pytest.mark.asyncio
    async def test_limit_applies_without_redis(self):
        with patch("app.core.rate_limit.get_redis", new=AsyncMock(return_value=None)):
            results = [await is_within_limit("k", limit=2, window_seconds=60) for _ in range(3)]
        assert results == [True, True, False]

    @pytest.mark.asyncio
    async def test_redis_error_falls_back_to_memory(self):
        client = MagicMock()
        client.pipeline.side_effect = ConnectionError("redis down")
        with patch("app.core.rate_limit.get_redis", new=AsyncMock(return_value=client)):
            assert await is_within_limit("k", limit=1, window_seconds=60) is True
            assert await is_within_limit("k", limit=1, window_seconds=60) is False


class TestRedis:
    @pytest.mark.asyncio
    async def test_count_from_pipeline(self):
        pipe = MagicMock()
        pipe.execute = AsyncMock(return_value=[0, 5, 1, True])
        client = MagicMock()
        client.pipeline.return_value = pipe

        with patch("app.core.rate_limit.get_redis", new=AsyncMock(return_value=client)):
            assert await is_within_limit("k", limit=5, window_seconds=60) is False
            pipe.execute.return_value = [0, 4, 1, True]
            assert await is_within_limit("k", limit=5, window_seconds=60) is True


class TestActorRateLimit:
    @pytest.mark.asyncio
    async def test_exceeded(self, actor):
        with (
            patch("app.core.rate_limit.get_redis", new=AsyncMock(return_value=None)),
            patch("app.core.rate_limit.settings") as mock_settings,
        ):
            mock_settings.rate_limit_enabled = True
            await check_actor_rate_limit(actor, DECISIONS)
            with pytest.raises(RateLimitExceeded) as exc_info:
                await check_actor_rate_limit(actor, DECISIONS)

        assert exc_info.value.status_code == 429
        assert exc_info.value.headers["Retry-After"] == "60"
        assert exc_info.value.detail["error"] == "RATE_LIMIT_EXCEEDED"

    @pytest.mark.asyncio
    async def test_actors_are_counted_separately(self, actor):
        other = Actor(id=uuid4(), role=ActorRole.DEPOT, scope_id=actor.scope_id)
        with (
            patch("app.core.rate_limit.get_redis", new=AsyncMock(return_value=None)),
            patch("app.core.rate_limit.settings") as mock_settings,
        ):
            mock_settings.rate_limit_enabled = True
            await check_actor_rate_limit(actor, DECISIONS)
            await check_actor_rate_limit(other, DECISIONS)

    @pytest.mark.asyncio
    async def test_disabled(self, actor):
        with (
            patch("app.core.rate_limit.get_redis", new=AsyncMock(return_value=None)) as mock_get,
            patch("app.core.rate_limit.settings") as mock_settings,
        ):
            mock_settings.rate_limit_enabled = False
            for _ in range(5):
                await check_actor_rate_limit(actor, DECISIONS)
        mock_get.assert_not_awaited()
