"""
Unit tests for health monitor state stores.
"""

import asyncio
import json
from contextlib import asynccontextmanager
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from frontsync.config import Settings
from frontsync.monitoring.state_store import (
    InMemoryStateStore,
    RedisStateStore,
    build_state_store,
)

pytestmark = pytest.mark.unit


@pytest.mark.asyncio
async def test_in_memory_get_set_delete(state_store):
    assert await state_store.get("missing") is None

    await state_store.set("key", {"count": 1})
    assert await state_store.get("key") == {"count": 1}

    await state_store.delete("key")
    assert await state_store.get("key") is None


@pytest.mark.asyncio
async def test_in_memory_ttl_expires(state_store, fake_clock):
    await state_store.set("key", {"count": 1}, ttl_seconds=60)

    fake_clock.advance(timedelta(seconds=59))
    assert await state_store.get("key") == {"count": 1}

    fake_clock.advance(timedelta(seconds=1))
    assert await state_store.get("key") is None


@pytest.mark.asyncio
async def test_in_memory_returns_copies(state_store):
    await state_store.set("key", {"items": [1]})
    value = await state_store.get("key")
    value["items"].append(2)

    assert await state_store.get("key") == {"items": [1]}


@pytest.mark.asyncio
async def test_in_memory_update_is_serialized():
    store = InMemoryStateStore()

    def increment(current):
        current = current or {"count": 0}
        current["count"] += 1
        return current

    await asyncio.gather(*(store.update("counter", increment) for _ in range(50)))

    assert await store.get("counter") == {"count": 50}


def _redis_client():
    client = MagicMock()
    client.get = AsyncMock(return_value=None)
    client.set = AsyncMock()
    client.setex = AsyncMock()
    client.delete = AsyncMock()

    @asynccontextmanager
    async def lock(*_args, **_kwargs):
        yield

    client.lock = MagicMock(side_effect=lock)
    return client


@pytest.mark.asyncio
async def test_redis_set_uses_setex_with_ttl():
    client = _redis_client()
    store = RedisStateStore(client=client)

    await store.set("key", {"a": 1}, ttl_seconds=30)
    await store.set("other", {"b": 2})

    client.setex.assert_awaited_once_with("key", 30, json.dumps({"a": 1}))
    client.set.assert_awaited_once_with("other", json.dumps({"b": 2}))


@pytest.mark.asyncio
async def test_redis_update_reads_and_writes_under_lock():
    client = _redis_client()
    client.get.return_value = json.dumps({"count": 2})
    store = RedisStateStore(client=client)

    updated = await store.update("counter", lambda current: {"count": current["count"] + 1})

    assert updated == {"count": 3}
    client.lock.assert_called_once()
    assert client.lock.call_args.args[0] == "counter:lock"
    client.set.assert_awaited_once_with("counter", json.dumps({"count": 3}))


def test_build_state_store_picks_backend():
    assert isinstance(build_state_store(Settings(redis_url=None)), InMemoryStateStore)
    assert isinstance(build_state_store(Settings(redis_url="redis://localhost:6379/0")), RedisStateStore)
