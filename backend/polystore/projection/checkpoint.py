"""
Projection checkpoint stores.

A checkpoint is the global log position of the last event a projection has
applied. Catch-up resumes strictly after it.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any

import redis.asyncio as redis

from ..errors import ConnectorError

logger = logging.getLogger(__name__)


class CheckpointStore(ABC):
    """Persistent map from projection name to last applied position."""

    @abstractmethod
    async def get(self, name: str) -> int | None:
        pass

    @abstractmethod
    async def set(self, name: str, position: int) -> None:
        pass

    @abstractmethod
    async def delete(self, name: str) -> bool:
        pass

    async def exists(self, name: str) -> bool:
        return await self.get(name) is not None

    @abstractmethod
    async def get_all(self) -> dict[str, int]:
        pass

    @abstractmethod
    async def clear(self) -> None:
        pass

    async def connect(self) -> None:
        pass

    async def close(self) -> None:
        pass

    async def health_check(self) -> dict[str, Any]:
        return {"status": "healthy", "backend": type(self).__name__}


class MemoryCheckpointStore(CheckpointStore):
    def __init__(self) -> None:
        self._positions: dict[str, int] = {}

    async def get(self, name: str) -> int | None:
        return self._positions.get(name)

    async def set(self, name: str, position: int) -> None:
        self._positions[name] = position

    async def delete(self, name: str) -> bool:
        return self._positions.pop(name, None) is not None

    async def get_all(self) -> dict[str, int]:
        return dict(self._positions)

    async def clear(self) -> None:
        self._positions.clear()


class RedisCheckpointStore(CheckpointStore):
    """Checkpoints as plain Redis string keys under ``prefix``."""

    def __init__(
        self,
        url: str = "redis://localhost:6379/0",
        prefix: str = "checkpoint:",
        client: redis.Redis | None = None,
    ) -> None:
        self.url = url
        self.prefix = prefix
        self._client = client

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            raise ConnectorError("Redis checkpoint store is not connected", backend="redis")
        return self._client

    def _key(self, name: str) -> str:
        return f"{self.prefix}{name}"

    async def connect(self) -> None:
        if self._client is None:
            self._client = redis.Redis.from_url(self.url, decode_responses=True)
        await self._client.ping()

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def get(self, name: str) -> int | None:
        raw = await self.client.get(self._key(name))
        return int(raw) if raw is not None else None

    async def set(self, name: str, position: int) -> None:
        await self.client.set(self._key(name), str(position))

    async def delete(self, name: str) -> bool:
        return bool(await self.client.delete(self._key(name)))

    async def exists(self, name: str) -> bool:
        return bool(await self.client.exists(self._key(name)))

    async def get_all(self) -> dict[str, int]:
        positions = {}
        async for key in self.client.scan_iter(match=f"{self.prefix}*"):
            raw = await self.client.get(key)
            if raw is not None:
                positions[key[len(self.prefix):]] = int(raw)
        return positions

    async def clear(self) -> None:
        keys = [key async for key in self.client.scan_iter(match=f"{self.prefix}*")]
        if keys:
            await self.client.delete(*keys)
        logger.info(f"Cleared {len(keys)} checkpoints under {self.prefix}")

    async def health_check(self) -> dict[str, Any]:
        try:
            await self.client.ping()
            return {"status": "healthy", "backend": "redis"}
        except Exception as e:
            return {"status": "unhealthy", "backend": "redis", "error": str(e)}
