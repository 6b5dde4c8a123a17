"""Key-value persistence for mappings, options, credentials and caches.

Two backends share one interface: an in-process dict backend used in
tests and single-process deployments, and a Redis backend. Keys follow
the pattern ``formbridge:{scope}:{owner}:{integration}[:{object_type}]``
where ``owner`` is a form id or ``global``.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Protocol

import redis.asyncio as aioredis

logger = logging.getLogger(__name__)

KEY_PREFIX = "formbridge"
GLOBAL_OWNER = "global"


def make_key(scope: str, owner: str, integration_id: str, object_type: str | None = None) -> str:
    """Build a storage key.

    Args:
        scope: Kind of data, e.g. ``mapping`` or ``options``.
        owner: Form id, or ``global`` for account-level data.
        integration_id: Integration the data belongs to.
        object_type: Optional remote object type suffix.
    """
    parts = [KEY_PREFIX, scope, owner, integration_id]
    if object_type:
        parts.append(object_type)
    return ":".join(parts)


class KeyValueBackend(Protocol):
    """Async JSON document store used by the engine."""

    async def get(self, key: str) -> Any | None: ...

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def delete_prefix(self, prefix: str) -> int: ...

    async def push(self, key: str, value: Any, max_len: int) -> None: ...

    async def range(self, key: str, limit: int) -> list[Any]: ...


class InMemoryBackend:
    """Dict backed store with the same key pattern and TTL semantics as Redis."""

    def __init__(self) -> None:
        self._data: dict[str, tuple[str, float | None]] = {}
        self._lists: dict[str, list[str]] = {}

    def _alive(self, key: str) -> str | None:
        item = self._data.get(key)
        if item is None:
            return None
        payload, expires_at = item
        if expires_at is not None and time.monotonic() >= expires_at:
            del self._data[key]
            return None
        return payload

    async def get(self, key: str) -> Any | None:
        payload = self._alive(key)
        return None if payload is None else json.loads(payload)

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        expires_at = time.monotonic() + ttl_seconds if ttl_seconds else None
        self._data[key] = (json.dumps(value), expires_at)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)
        self._lists.pop(key, None)

    async def delete_prefix(self, prefix: str) -> int:
        doomed = [k for k in self._data if k.startswith(prefix)]
        for key in doomed:
            del self._data[key]
        return len(doomed)

    async def push(self, key: str, value: Any, max_len: int) -> None:
        items = self._lists.setdefault(key, [])
        items.insert(0, json.dumps(value))
        del items[max_len:]

    async def range(self, key: str, limit: int) -> list[Any]:
        return [json.loads(item) for item in self._lists.get(key, [])[:limit]]

    def keys(self) -> list[str]:
        return [k for k in list(self._data) if self._alive(k) is not None] + list(self._lists)


class RedisBackend:
    """Redis implementation of ``KeyValueBackend``."""

    def __init__(self, client: aioredis.Redis) -> None:
        self._client = client

    async def get(self, key: str) -> Any | None:
        raw = await self._client.get(key)
        return None if raw is None else json.loads(raw)

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        payload = json.dumps(value)
        if ttl_seconds:
            await self._client.setex(key, ttl_seconds, payload)
        else:
            await self._client.set(key, payload)

    async def delete(self, key: str) -> None:
        await self._client.delete(key)

    async def delete_prefix(self, prefix: str) -> int:
        removed = 0
        async for key in self._client.scan_iter(match=f"{prefix}*"):
            removed += await self._client.delete(key)
        return removed

    async def push(self, key: str, value: Any, max_len: int) -> None:
        await self._client.lpush(key, json.dumps(value))
        await self._client.ltrim(key, 0, max_len - 1)

    async def range(self, key: str, limit: int) -> list[Any]:
        raw_items = await self._client.lrange(key, 0, limit - 1)
        return [json.loads(item) for item in raw_items]
