import importlib

import pytest


def _reload_redis_client(monkeypatch, *, redis_url=None, max_connections=None):
    if redis_url is None:
        monkeypatch.delenv("REDIS_URL", raising=False)
    else:
        monkeypatch.setenv("REDIS_URL", redis_url)

    if max_connections is None:
        monkeypatch.delenv("REDIS_MAX_CONNECTIONS", raising=False)
    else:
        monkeypatch.setenv("REDIS_MAX_CONNECTIONS", str(max_connections))

    import sla_cascade.core.redis_client as redis_client

    return importlib.reload(redis_client)


def test_get_redis_url_disabled(monkeypatch):
    redis_client = _reload_redis_client(monkeypatch, redis_url=None)
    assert redis_client.get_redis_url() is None

    redis_client = _reload_redis_client(monkeypatch, redis_url="memory://")
    assert redis_client.get_redis_url() is None


def test_get_async_client_uses_pool_limit(monkeypatch):
    redis_client = _reload_redis_client(
        monkeypatch,
        redis_url="redis://localhost:6379/0",
        max_connections=7,
    )
    client = redis_client.get_async_redis_client()
    assert client is not None
    assert client.connection_pool.max_connections == 7
    assert redis_client.get_async_redis_client() is client


def test_invalid_pool_limit_falls_back_to_default(monkeypatch):
    redis_client = _reload_redis_client(
        monkeypatch,
        redis_url="redis://localhost:6379/0",
        max_connections="lots",
    )
    assert redis_client._redis_max_connections() == redis_client.DEFAULT_REDIS_MAX_CONNECTIONS


def test_get_async_client_none_when_unset(monkeypatch):
    redis_client = _reload_redis_client(monkeypatch, redis_url=None)
    assert redis_client.get_async_redis_client() is None


@pytest.mark.asyncio
async def test_close_resets_shared_client(monkeypatch):
    redis_client = _reload_redis_client(monkeypatch, redis_url="redis://localhost:6379/0")
    first = redis_client.get_async_redis_client()

    await redis_client.close_async_redis_client()

    assert redis_client.get_async_redis_client() is not first
    await redis_client.close_async_redis_client()
