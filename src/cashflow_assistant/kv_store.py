from __future__ import annotations

import fnmatch
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Protocol, runtime_checkable

import redis.asyncio as redis
from loguru import logger
from redis.exceptions import RedisError

from cashflow_assistant.errors import StoreUnavailable


@runtime_checkable
class KeyValueStore(Protocol):
    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None: ...

    async def delete(self, *keys: str) -> int: ...

    async def keys(self, pattern: str) -> list[str]: ...

    async def ttl(self, key: str) -> int: ...

    async def append_list(self, key: str, values: list[str], *, max_len: int, ttl_seconds: int) -> None:
        """Atomically push values, keep the newest max_len items and reset the TTL."""
        ...

    async def read_list(self, key: str) -> list[str]: ...

    async def ping(self) -> bool: ...

    async def close(self) -> None: ...


class RedisKeyValueStore:
    def __init__(self, client: redis.Redis):
        self._client = client

    @classmethod
    def from_url(cls, url: str, *, timeout_seconds: float = 3.0) -> RedisKeyValueStore:
        client = redis.Redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=timeout_seconds,
            socket_connect_timeout=timeout_seconds,
        )
        return cls(client)

    @asynccontextmanager
    async def _guard(self, operation: str) -> AsyncIterator[None]:
        try:
            yield
        except RedisError as ex:
            logger.warning(f"Redis {operation} failed: {ex}")
            raise StoreUnavailable(f"redis {operation} failed: {ex}") from ex

    async def get(self, key: str) -> str | None:
        async with self._guard("get"):
            return await self._client.get(key)

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        async with self._guard("set"):
            await self._client.set(key, value, ex=ttl_seconds)

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        async with self._guard("delete"):
            return int(await self._client.delete(*keys))

    async def keys(self, pattern: str) -> list[str]:
        async with self._guard("scan"):
            return [key async for key in self._client.scan_iter(match=pattern, count=500)]

    async def ttl(self, key: str) -> int:
        async with self._guard("ttl"):
            return int(await self._client.ttl(key))

    async def append_list(self, key: str, values: list[str], *, max_len: int, ttl_seconds: int) -> None:
        if not values:
            return
        async with self._guard("append"):
            async with self._client.pipeline(transaction=True) as pipe:
                pipe.rpush(key, *values)
                if max_len > 0:
                    pipe.ltrim(key, -max_len, -1)
                pipe.expire(key, ttl_seconds)
                await pipe.execute()

    async def read_list(self, key: str) -> list[str]:
        async with self._guard("lrange"):
            return list(await self._client.lrange(key, 0, -1))

    async def ping(self) -> bool:
        async with self._guard("ping"):
            return bool(await self._client.ping())

    async def close(self) -> None:
        await self._client.aclose()


class InMemoryKeyValueStore:
    """Process-local store with Redis-like TTL semantics."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._data: dict[str, tuple[str | list[str], float | None]] = {}

    def _live(self, key: str) -> str | list[str] | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._data[key]
            return None
        return value

    def _expiry(self, ttl_seconds: int | None) -> float | None:
        if ttl_seconds is None or ttl_seconds <= 0:
            return None
        return self._clock() + ttl_seconds

    async def get(self, key: str) -> str | None:
        value = self._live(key)
        if isinstance(value, list):
            raise StoreUnavailable(f"WRONGTYPE: {key} holds a list")
        return value

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        self._data[key] = (value, self._expiry(ttl_seconds))

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self._live(key) is not None:
                del self._data[key]
                removed += 1
        return removed

    async def keys(self, pattern: str) -> list[str]:
        return [key for key in list(self._data) if self._live(key) is not None and fnmatch.fnmatchcase(key, pattern)]

    async def ttl(self, key: str) -> int:
        if self._live(key) is None:
            return -2
        expires_at = self._data[key][1]
        if expires_at is None:
            return -1
        return max(0, int(expires_at - self._clock()))

    async def append_list(self, key: str, values: list[str], *, max_len: int, ttl_seconds: int) -> None:
        if not values:
            return
        current = self._live(key)
        items = list(current) if isinstance(current, list) else []
        items.extend(values)
        if max_len > 0:
            items = items[-max_len:]
        self._data[key] = (items, self._expiry(ttl_seconds))

    async def read_list(self, key: str) -> list[str]:
        value = self._live(key)
        return list(value) if isinstance(value, list) else []

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        self._data.clear()
