"""
Connector interfaces.

Connectors are the opaque storage clients the backend strategies talk to.
They expose only the primitive operations each strategy needs; everything
entity-specific (namespaces, stream names, hydration) lives in the
repositories.
"""

from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, AsyncIterator

from ..errors import ConnectorError

NO_STREAM = -1
ANY_REVISION = -2

SNAPSHOT_STREAM_PREFIX = "snapshot."


class StreamRevisionConflict(ConnectorError):
    """The stream was not at the expected revision."""

    def __init__(
        self,
        stream: str,
        expected_revision: int,
        actual_revision: int | None = None,
        **kwargs: Any,
    ) -> None:
        details = kwargs.pop("details", {}) or {}
        details.update({
            "stream": stream,
            "expected_revision": expected_revision,
            "actual_revision": actual_revision,
        })
        super().__init__(
            message=f"Stream {stream} expected at revision {expected_revision}, found {actual_revision}",
            backend="event_log",
            details=details,
            **kwargs,
        )
        self.stream = stream
        self.expected_revision = expected_revision
        self.actual_revision = actual_revision


@dataclass
class EventData:
    """An event to append."""
    event_type: str
    data: dict[str, Any]
    metadata: dict[str, Any] = field(default_factory=dict)
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))


@dataclass
class StoredEvent:
    """
    An event read back from the log.

    Attributes:
        stream_revision: 0-based position inside its stream
        position: Global commit position across all streams
    """
    event_type: str
    data: dict[str, Any]
    metadata: dict[str, Any]
    stream_name: str
    stream_revision: int
    position: int
    event_id: str = ""
    recorded_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class Connector(ABC):
    """Lifecycle shared by all connectors."""

    backend: str = "unknown"

    @abstractmethod
    async def connect(self) -> None:
        pass

    @abstractmethod
    async def close(self) -> None:
        pass

    @abstractmethod
    async def health_check(self) -> dict[str, Any]:
        """
        Check connector health.

        Returns:
            Health status dictionary with a ``status`` key
        """
        pass


class KeyValueConnector(Connector):
    """
    Key-value store holding JSON documents grouped by namespace.

    A namespace is one hash-like container (one per tenant and entity).
    """

    backend = "key_value"

    @abstractmethod
    async def get(self, namespace: str, key: str) -> dict[str, Any] | None:
        pass

    @abstractmethod
    async def set(self, namespace: str, key: str, value: dict[str, Any]) -> None:
        pass

    @abstractmethod
    async def multi_get(self, namespace: str, keys: list[str]) -> list[dict[str, Any] | None]:
        """Fetch many keys in one round trip; misses are returned as None in place."""
        pass

    @abstractmethod
    async def delete(self, namespace: str, key: str) -> bool:
        pass

    @abstractmethod
    async def scan_all(self, namespace: str) -> dict[str, dict[str, Any]]:
        """Return every value of a namespace."""
        pass

    @abstractmethod
    async def namespaces(self, pattern: str = "*") -> list[str]:
        """Non-empty namespaces matching a glob-style ``pattern``."""
        pass

    async def clear(self, namespace: str) -> None:
        for key in list(await self.scan_all(namespace)):
            await self.delete(namespace, key)


class EventLogConnector(Connector):
    """
    Append-only event log with per-stream optimistic concurrency.

    ``expected_revision`` is the 0-based revision of the last event the
    caller has seen, ``NO_STREAM`` for a stream that must not exist yet, or
    ``ANY_REVISION`` to skip the check.
    """

    backend = "event_log"

    @abstractmethod
    async def append(
        self,
        stream: str,
        events: list[EventData],
        expected_revision: int = ANY_REVISION,
    ) -> int:
        """
        Append events to a stream.

        Args:
            stream: Stream name
            events: Events to append, in order
            expected_revision: Revision check (see class docstring)

        Returns:
            Revision of the last appended event

        Raises:
            StreamRevisionConflict: If the stream is not at ``expected_revision``
        """
        pass

    @abstractmethod
    async def read_stream(self, stream: str, from_revision: int = 0) -> list[StoredEvent]:
        """Events of a stream from ``from_revision`` on; empty for a missing stream."""
        pass

    @abstractmethod
    async def read_last(self, stream: str) -> StoredEvent | None:
        pass

    @abstractmethod
    async def read_all(
        self,
        stream_prefix: str,
        after_position: int | None = None,
        limit: int | None = None,
    ) -> list[StoredEvent]:
        """Events of all streams starting with ``stream_prefix`` after a global position."""
        pass

    @abstractmethod
    def subscribe(
        self,
        stream_prefix: str,
        after_position: int | None = None,
    ) -> AsyncIterator[StoredEvent]:
        """Endless iterator over matching events after a global position."""
        pass

    @abstractmethod
    async def head_position(self, stream_prefix: str) -> int | None:
        """Global position of the newest matching event, None when there is none."""
        pass

    # ===== Snapshots =====

    @staticmethod
    def snapshot_stream(stream: str) -> str:
        return f"{SNAPSHOT_STREAM_PREFIX}{stream}"

    async def write_snapshot(
        self,
        stream: str,
        snapshot_type: str,
        data: dict[str, Any],
        metadata: dict[str, Any] | None = None,
    ) -> None:
        await self.append(
            self.snapshot_stream(stream),
            [EventData(event_type=snapshot_type, data=data, metadata=metadata or {})],
            expected_revision=ANY_REVISION,
        )

    async def read_latest_snapshot(self, stream: str) -> StoredEvent | None:
        return await self.read_last(self.snapshot_stream(stream))


class DocumentConnector(Connector):
    """Document store connector. No implementation ships with polystore."""

    backend = "document"

    @abstractmethod
    async def find_one(self, collection: str, key: str) -> dict[str, Any] | None:
        pass

    @abstractmethod
    async def upsert(self, collection: str, key: str, document: dict[str, Any]) -> None:
        pass

    @abstractmethod
    async def remove(self, collection: str, key: str) -> bool:
        pass
