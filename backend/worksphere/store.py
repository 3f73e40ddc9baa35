"""Key-value stores handed to the rate limiter and the crowdsourced rating store.

State that used to live in module-level dicts is owned by a store instance
that the app factory creates and tests replace per case.
"""

from __future__ import annotations

import asyncio
import json
import time
from collections import OrderedDict
from typing import Any, Protocol

from redis.asyncio import Redis


class KeyValueStore(Protocol):
    async def get(self, key: str) -> Any | None: ...

    async def set(self, key: str, value: Any, ttl_seconds: float | None = None) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def clear(self) -> None: ...


class InMemoryStore:
    """Process-local store with optional per-key TTL and an LRU size cap."""

    def __init__(self, max_entries: int = 10_000) -> None:
        self._max = max_entries
        self._data: OrderedDict[str, tuple[float | None, Any]] = OrderedDict()
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Any | None:
        async with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if expires_at is not None and expires_at < time.monotonic():
                self._data.pop(key, None)
                return None
            self._data.move_to_end(key)
            return value

    async def set(self, key: str, value: Any, ttl_seconds: float | None = None) -> None:
        expires_at = time.monotonic() + ttl_seconds if ttl_seconds else None
        async with self._lock:
            self._data[key] = (expires_at, value)
            self._data.move_to_end(key)
            while len(self._data) > self._max:
                self._data.popitem(last=False)

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._data.pop(key, None)

    async def clear(self) -> None:
        async with self._lock:
            self._data.clear()

    def __len__(self) -> int:
        return len(self._data)


class RedisStore:
    """Shared store for multi-worker deployments; values are stored as JSON."""

    def __init__(self, client: Redis, namespace: str = "worksphere") -> None:
        self._client = client
        self._namespace = namespace

    @classmethod
    def from_url(cls, url: str, namespace: str = "worksphere") -> RedisStore:
        client = Redis.from_url(url, encoding="utf-8", decode_responses=True)
        return cls(client, namespace=namespace)

    def _key(self, key: str) -> str:
        return f"{self._namespace}:{key}"

    async def get(self, key: str) -> Any | None:
        raw = await self._client.get(self._key(key))
        if raw is None:
            return None
        return json.loads(raw)

    async def set(self, key: str, value: Any, ttl_seconds: float | None = None) -> None:
        payload = json.dumps(value)
        if ttl_seconds:
            await self._client.set(self._key(key), payload, px=int(ttl_seconds * 1000))
        else:
            await self._client.set(self._key(key), payload)

    async def delete(self, key: str) -> None:
        await self._client.delete(self._key(key))

    async def ping(self) -> None:
        await self._client.ping()

    async def clear(self) -> None:
        async for key in self._client.scan_iter(match=f"{self._namespace}:*"):
            await self._client.delete(key)


def build_store(redis_url: str | None, namespace: str = "worksphere") -> KeyValueStore:
    if redis_url:
        return RedisStore.from_url(redis_url, namespace=namespace)
    return InMemoryStore()


__all__ = ["KeyValueStore", "InMemoryStore", "RedisStore", "build_store"]
