"""
Redis key-value connector.

Each namespace is one Redis hash; field names are entity keys and values
are JSON documents. ``multi_get`` is a single HMGET round trip and
``scan_all`` a single HGETALL.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import redis.asyncio as redis

from ..errors import ConnectorError
from .base import KeyValueConnector

logger = logging.getLogger(__name__)


class RedisKeyValueConnector(KeyValueConnector):
    """Key-value connector over ``redis.asyncio``."""

    def __init__(
        self,
        url: str = "redis://localhost:6379/0",
        key_prefix: str = "polystore",
        client: redis.Redis | None = None,
    ) -> None:
        self.url = url
        self.key_prefix = key_prefix
        self._client = client

    def _key(self, namespace: str) -> str:
        return f"{self.key_prefix}:{namespace}" if self.key_prefix else namespace

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            raise ConnectorError("Redis connector is not connected", backend="redis")
        return self._client

    async def connect(self) -> None:
        if self._client is None:
            self._client = redis.Redis.from_url(self.url, decode_responses=True)
        await self._client.ping()
        logger.info(f"Redis key-value connector connected to {self.url}")

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def health_check(self) -> dict[str, Any]:
        try:
            await self.client.ping()
            return {"status": "healthy", "backend": "redis", "url": self.url}
        except Exception as e:
            return {"status": "unhealthy", "backend": "redis", "error": str(e)}

    async def get(self, namespace: str, key: str) -> dict[str, Any] | None:
        raw = await self.client.hget(self._key(namespace), str(key))
        return json.loads(raw) if raw is not None else None

    async def set(self, namespace: str, key: str, value: dict[str, Any]) -> None:
        await self.client.hset(self._key(namespace), str(key), json.dumps(value, default=str))

    async def multi_get(self, namespace: str, keys: list[str]) -> list[dict[str, Any] | None]:
        if not keys:
            return []
        raws = await self.client.hmget(self._key(namespace), [str(k) for k in keys])
        return [json.loads(raw) if raw is not None else None for raw in raws]

    async def delete(self, namespace: str, key: str) -> bool:
        return bool(await self.client.hdel(self._key(namespace), str(key)))

    async def scan_all(self, namespace: str) -> dict[str, dict[str, Any]]:
        raw = await self.client.hgetall(self._key(namespace))
        return {key: json.loads(value) for key, value in raw.items()}

    async def clear(self, namespace: str) -> None:
        await self.client.delete(self._key(namespace))

    async def namespaces(self, pattern: str = "*") -> list[str]:
        prefix = self._key("")
        return sorted([
            key[len(prefix):] async for key in self.client.scan_iter(match=self._key(pattern))
        ])
