"""
In-process connectors.

Used for tests, local development and as the default backends when no
server is configured. Values are copied through JSON on the way in and out
so that callers never share mutable state with the store, matching what a
networked backend would do.
"""

from __future__ import annotations

import asyncio
import fnmatch
import json
import logging
from datetime import datetime, timezone
from typing import Any, AsyncIterator

from .base import (
    ANY_REVISION,
    NO_STREAM,
    EventData,
    EventLogConnector,
    KeyValueConnector,
    StoredEvent,
    StreamRevisionConflict,
)

logger = logging.getLogger(__name__)


def _copy(value: dict[str, Any]) -> dict[str, Any]:
    return json.loads(json.dumps(value, default=str))


class MemoryKeyValueConnector(KeyValueConnector):
    """Dictionary-backed key-value store."""

    def __init__(self) -> None:
        self._namespaces: dict[str, dict[str, str]] = {}
        self._connected = False

    async def connect(self) -> None:
        self._connected = True

    async def close(self) -> None:
        self._connected = False

    async def health_check(self) -> dict[str, Any]:
        return {
            "status": "healthy",
            "backend": "memory",
            "namespaces": len(self._namespaces),
        }

    async def get(self, namespace: str, key: str) -> dict[str, Any] | None:
        raw = self._namespaces.get(namespace, {}).get(str(key))
        return json.loads(raw) if raw is not None else None

    async def set(self, namespace: str, key: str, value: dict[str, Any]) -> None:
        self._namespaces.setdefault(namespace, {})[str(key)] = json.dumps(value, default=str)

    async def multi_get(self, namespace: str, keys: list[str]) -> list[dict[str, Any] | None]:
        bucket = self._namespaces.get(namespace, {})
        return [
            json.loads(bucket[str(k)]) if str(k) in bucket else None
            for k in keys
        ]

    async def delete(self, namespace: str, key: str) -> bool:
        return self._namespaces.get(namespace, {}).pop(str(key), None) is not None

    async def scan_all(self, namespace: str) -> dict[str, dict[str, Any]]:
        return {
            key: json.loads(raw)
            for key, raw in self._namespaces.get(namespace, {}).items()
        }

    async def namespaces(self, pattern: str = "*") -> list[str]:
        return sorted(
            name for name, bucket in self._namespaces.items()
            if bucket and fnmatch.fnmatchcase(name, pattern)
        )

    async def clear(self, namespace: str) -> None:
        self._namespaces.pop(namespace, None)


class MemoryEventLogConnector(EventLogConnector):
    """
    Event log kept in a Python list.

    Global positions start at 1. Appends notify waiting subscribers through
    an ``asyncio.Condition``, so a subscriber that has read up to the head
    cannot miss an event appended afterwards.
    """

    def __init__(self) -> None:
        self._events: list[StoredEvent] = []
        self._streams: dict[str, list[StoredEvent]] = {}
        self._condition: asyncio.Condition | None = None
        self._connected = False

    @property
    def condition(self) -> asyncio.Condition:
        if self._condition is None:
            self._condition = asyncio.Condition()
        return self._condition

    async def connect(self) -> None:
        self._connected = True

    async def close(self) -> None:
        self._connected = False

    async def health_check(self) -> dict[str, Any]:
        return {
            "status": "healthy",
            "backend": "memory",
            "streams": len(self._streams),
            "events": len(self._events),
        }

    def _current_revision(self, stream: str) -> int:
        return len(self._streams.get(stream, [])) - 1

    async def append(
        self,
        stream: str,
        events: list[EventData],
        expected_revision: int = ANY_REVISION,
    ) -> int:
        async with self.condition:
            current = self._current_revision(stream)
            if expected_revision != ANY_REVISION and expected_revision != current:
                raise StreamRevisionConflict(
                    stream=stream,
                    expected_revision=expected_revision,
                    actual_revision=None if current == NO_STREAM else current,
                )

            recorded = self._streams.setdefault(stream, [])
            for event in events:
                stored = StoredEvent(
                    event_type=event.event_type,
                    data=_copy(event.data),
                    metadata=_copy(event.metadata),
                    stream_name=stream,
                    stream_revision=len(recorded),
                    position=len(self._events) + 1,
                    event_id=event.event_id,
                    recorded_at=datetime.now(timezone.utc),
                )
                recorded.append(stored)
                self._events.append(stored)

            self.condition.notify_all()
            return len(recorded) - 1

    async def read_stream(self, stream: str, from_revision: int = 0) -> list[StoredEvent]:
        return list(self._streams.get(stream, [])[max(from_revision, 0):])

    async def read_last(self, stream: str) -> StoredEvent | None:
        events = self._streams.get(stream)
        return events[-1] if events else None

    async def read_all(
        self,
        stream_prefix: str,
        after_position: int | None = None,
        limit: int | None = None,
    ) -> list[StoredEvent]:
        start = after_position or 0
        matched = [
            e for e in self._events[start:]
            if e.stream_name.startswith(stream_prefix)
        ]
        return matched[:limit] if limit is not None else matched

    async def subscribe(
        self,
        stream_prefix: str,
        after_position: int | None = None,
    ) -> AsyncIterator[StoredEvent]:
        cursor = after_position or 0
        while True:
            async with self.condition:
                await self.condition.wait_for(lambda: len(self._events) > cursor)
                batch = self._events[cursor:]
            for event in batch:
                cursor = event.position
                if event.stream_name.startswith(stream_prefix):
                    yield event

    async def head_position(self, stream_prefix: str) -> int | None:
        for event in reversed(self._events):
            if event.stream_name.startswith(stream_prefix):
                return event.position
        return None
