"""
Key-value state for the health monitor.

Holds the circuit breaker record and rolling call metrics. Redis is used when
configured so several sync processes share one breaker; otherwise state stays
in-process.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Protocol

import structlog

from frontsync.config import Settings
from frontsync.kernel.time import Clock, utc_now

logger = structlog.get_logger()

Updater = Callable[[dict[str, Any] | None], dict[str, Any]]


class StateStore(Protocol):
    """Minimal JSON document store with an atomic read-modify-write."""

    async def get(self, key: str) -> dict[str, Any] | None:
        ...

    async def set(self, key: str, value: dict[str, Any], ttl_seconds: int | None = None) -> None:
        ...

    async def delete(self, key: str) -> None:
        ...

    async def update(self, key: str, fn: Updater, ttl_seconds: int | None = None) -> dict[str, Any]:
        ...


@dataclass
class _Entry:
    payload: dict[str, Any]
    expires_at: datetime | None


class InMemoryStateStore:
    """Single-process store; `update` is serialized by an asyncio lock."""

    def __init__(self, clock: Clock = utc_now) -> None:
        self._clock = clock
        self._entries: dict[str, _Entry] = {}
        self._lock = asyncio.Lock()

    def _read(self, key: str) -> dict[str, Any] | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at is not None and entry.expires_at <= self._clock():
            del self._entries[key]
            return None
        # Hand out copies so callers cannot mutate stored state.
        return json.loads(json.dumps(entry.payload))

    def _write(self, key: str, value: dict[str, Any], ttl_seconds: int | None) -> None:
        expires_at = self._clock() + timedelta(seconds=ttl_seconds) if ttl_seconds else None
        self._entries[key] = _Entry(payload=json.loads(json.dumps(value)), expires_at=expires_at)

    async def get(self, key: str) -> dict[str, Any] | None:
        return self._read(key)

    async def set(self, key: str, value: dict[str, Any], ttl_seconds: int | None = None) -> None:
        async with self._lock:
            self._write(key, value, ttl_seconds)

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._entries.pop(key, None)

    async def update(self, key: str, fn: Updater, ttl_seconds: int | None = None) -> dict[str, Any]:
        async with self._lock:
            updated = fn(self._read(key))
            self._write(key, updated, ttl_seconds)
            return updated


class RedisStateStore:
    """Redis-backed store shared across sync processes."""

    def __init__(self, redis_url: str | None = None, client: Any = None, lock_timeout: float = 5.0) -> None:
        self._redis_url = redis_url
        self._redis = client
        self._lock_timeout = lock_timeout

    async def _get_redis(self):
        if self._redis is None:
            import redis.asyncio as redis

            self._redis = redis.from_url(str(self._redis_url))
        return self._redis

    async def get(self, key: str) -> dict[str, Any] | None:
        client = await self._get_redis()
        raw = await client.get(key)
        if not raw:
            return None
        return json.loads(raw)

    async def set(self, key: str, value: dict[str, Any], ttl_seconds: int | None = None) -> None:
        client = await self._get_redis()
        if ttl_seconds:
            await client.setex(key, ttl_seconds, json.dumps(value))
        else:
            await client.set(key, json.dumps(value))

    async def delete(self, key: str) -> None:
        client = await self._get_redis()
        await client.delete(key)

    async def update(self, key: str, fn: Updater, ttl_seconds: int | None = None) -> dict[str, Any]:
        client = await self._get_redis()
        async with client.lock(
            f"{key}:lock",
            timeout=self._lock_timeout,
            blocking_timeout=self._lock_timeout,
        ):
            updated = fn(await self.get(key))
            await self.set(key, updated, ttl_seconds)
            return updated


def build_state_store(settings: Settings) -> StateStore:
    if settings.redis_url:
        logger.info("Using Redis state store for health monitor")
        return RedisStateStore(redis_url=settings.redis_url)
    return InMemoryStateStore()
