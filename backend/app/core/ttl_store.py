"""Key-value storage with per-key expiry, used for idempotency and throttling."""

from __future__ import annotations

import asyncio
import functools
import logging
import time
from collections.abc import Callable
from typing import Protocol

import redis.asyncio as redis
from redis.exceptions import RedisError

from backend.app.core import redis_client as redis_module

logger = logging.getLogger(__name__)

# Expired entries in the in-process store are purged at most this often.
SWEEP_INTERVAL_SECONDS = 1.0


class TtlStoreUnavailable(Exception):
    """The backing store could not be reached."""


class TtlStore(Protocol):
    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str, ttl_ms: int) -> None: ...

    async def set_if_absent(self, key: str, value: str, ttl_ms: int) -> bool: ...

    async def delete(self, key: str) -> None: ...


def _translate_redis_errors(method):
    @functools.wraps(method)
    async def wrapper(self, *args, **kwargs):
        try:
            return await method(self, *args, **kwargs)
        except (RedisError, OSError) as exc:
            logger.warning("Redis %s failed: %s", method.__name__, exc)
            raise TtlStoreUnavailable(str(exc)) from exc

    return wrapper


class RedisTtlStore:
    """Shared across every instance pointing at the same Redis."""

    def __init__(self, client: redis.Redis) -> None:
        self._client = client

    @_translate_redis_errors
    async def get(self, key: str) -> str | None:
        return await self._client.get(key)

    @_translate_redis_errors
    async def set(self, key: str, value: str, ttl_ms: int) -> None:
        await self._client.set(key, value, px=ttl_ms)

    @_translate_redis_errors
    async def set_if_absent(self, key: str, value: str, ttl_ms: int) -> bool:
        return bool(await self._client.set(key, value, nx=True, px=ttl_ms))

    @_translate_redis_errors
    async def delete(self, key: str) -> None:
        await self._client.delete(key)


class MemoryTtlStore:
    """Process-local store for single-instance deployments and tests."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._items: dict[str, tuple[str, float]] = {}
        self._lock = asyncio.Lock()
        self._next_sweep = 0.0

    def __len__(self) -> int:
        return len(self._items)

    def _live(self, key: str) -> str | None:
        item = self._items.get(key)
        if item is None:
            return None
        value, expires_at = item
        if expires_at <= self._clock():
            del self._items[key]
            return None
        return value

    def _sweep(self) -> None:
        now = self._clock()
        if now < self._next_sweep:
            return
        self._next_sweep = now + SWEEP_INTERVAL_SECONDS
        expired = [key for key, (_, expires_at) in self._items.items() if expires_at <= now]
        for key in expired:
            del self._items[key]

    def _put(self, key: str, value: str, ttl_ms: int) -> None:
        self._sweep()
        self._items[key] = (value, self._clock() + ttl_ms / 1000)

    async def get(self, key: str) -> str | None:
        return self._live(key)

    async def set(self, key: str, value: str, ttl_ms: int) -> None:
        self._put(key, value, ttl_ms)

    async def set_if_absent(self, key: str, value: str, ttl_ms: int) -> bool:
        async with self._lock:
            if self._live(key) is not None:
                return False
            self._put(key, value, ttl_ms)
            return True

    async def delete(self, key: str) -> None:
        self._items.pop(key, None)


_local_store = MemoryTtlStore()


def get_ttl_store() -> TtlStore:
    if redis_module.redis_client is not None:
        return RedisTtlStore(redis_module.redis_client)
    return _local_store
