import time
from unittest.mock import AsyncMock, MagicMock

import pytest

from courier_aggregator.core import database, redis_client
from courier_aggregator.core.config import settings


def fake_connection(ping_error=None):
    client = MagicMock()
    client.ping = AsyncMock(side_effect=ping_error)
    client.aclose = AsyncMock()
    return client


@pytest.fixture
def redis_configured(monkeypatch):
    """Point settings at a Redis URL and start from a clean module state."""
    monkeypatch.setattr(settings, "REDIS_URL", "redis://localhost:6379/0")
    monkeypatch.setattr(redis_client, "_redis_client", None)
    monkeypatch.setattr(redis_client, "_last_failure", None)
    from_url = MagicMock()
    monkeypatch.setattr(redis_client.redis, "from_url", from_url)
    return from_url


class TestGetRedis:

    @pytest.mark.asyncio
    async def test_unconfigured_returns_none(self, monkeypatch):
        monkeypatch.setattr(settings, "REDIS_URL", "")
        assert await redis_client.get_redis() is None

    @pytest.mark.asyncio
    async def test_connects_once_and_reuses(self, redis_configured):
        connection = fake_connection()
        redis_configured.return_value = connection

        assert await redis_client.get_redis() is connection
        assert await redis_client.get_redis() is connection
        assert redis_configured.call_count == 1

    @pytest.mark.asyncio
    async def test_failed_connection_is_closed_and_backs_off(self, redis_configured):
        broken = fake_connection(ping_error=ConnectionError("refused"))
        redis_configured.return_value = broken

        assert await redis_client.get_redis() is None
        assert await redis_client.get_redis() is None

        broken.aclose.assert_awaited_once()
        assert redis_configured.call_count == 1

    @pytest.mark.asyncio
    async def test_reconnects_after_cooldown(self, redis_configured, monkeypatch):
        connection = fake_connection()
        redis_configured.return_value = connection
        monkeypatch.setattr(
            redis_client, "_last_failure", time.monotonic() - settings.REDIS_RECONNECT_SECONDS - 1
        )

        assert await redis_client.get_redis() is connection
        assert redis_client._last_failure is None


class TestShutdown:

    @pytest.mark.asyncio
    async def test_close_redis_releases_connection(self, redis_configured):
        connection = fake_connection()
        redis_configured.return_value = connection
        await redis_client.get_redis()

        await redis_client.close_redis()

        connection.aclose.assert_awaited_once()
        assert redis_client._redis_client is None

    @pytest.mark.asyncio
    async def test_close_redis_without_connection_is_noop(self, monkeypatch):
        monkeypatch.setattr(redis_client, "_redis_client", None)
        await redis_client.close_redis()

    @pytest.mark.asyncio
    async def test_dispose_engine_releases_pool(self, monkeypatch):
        engine = MagicMock()
        engine.dispose = AsyncMock()
        monkeypatch.setattr(database, "_engine", engine)
        monkeypatch.setattr(database, "_session_factory", MagicMock())

        await database.dispose_engine()

        engine.dispose.assert_awaited_once()
        assert database._engine is None
        assert database._session_factory is None
