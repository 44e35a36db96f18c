"""
KurrentDB event log connector.

Events are stored as JSON with ``application/json`` content type. Stream
revisions map to KurrentDB stream positions and global positions to commit
positions. Catch-up reads and subscriptions filter ``$all`` by stream name
prefix on the server.
"""

from __future__ import annotations

import json
import logging
import re
import uuid
from typing import Any, AsyncIterator

from kurrentdbclient import AsyncKurrentDBClient, NewEvent, RecordedEvent, StreamState
from kurrentdbclient.exceptions import NotFoundError as StreamNotFoundError
from kurrentdbclient.exceptions import WrongCurrentVersionError

from ..errors import ConnectorError
from .base import (
    ANY_REVISION,
    NO_STREAM,
    EventData,
    EventLogConnector,
    StoredEvent,
    StreamRevisionConflict,
)

logger = logging.getLogger(__name__)


def _decode(payload: bytes | None) -> dict[str, Any]:
    if not payload:
        return {}
    return json.loads(payload.decode("utf-8"))


def _to_stored(event: RecordedEvent) -> StoredEvent:
    return StoredEvent(
        event_type=event.type,
        data=_decode(event.data),
        metadata=_decode(event.metadata),
        stream_name=event.stream_name,
        stream_revision=event.stream_position,
        position=event.commit_position or 0,
        event_id=str(event.id),
    )


def _prefix_filter(stream_prefix: str) -> list[str]:
    return [f"{re.escape(stream_prefix)}.*"]


class KurrentEventLogConnector(EventLogConnector):
    """Event log connector over ``kurrentdbclient``."""

    def __init__(self, uri: str, client: AsyncKurrentDBClient | None = None) -> None:
        self.uri = uri
        self._client = client

    @property
    def client(self) -> AsyncKurrentDBClient:
        if self._client is None:
            raise ConnectorError("KurrentDB connector is not connected", backend="kurrentdb")
        return self._client

    async def connect(self) -> None:
        if self._client is None:
            self._client = AsyncKurrentDBClient(uri=self.uri)
        await self._client.connect()
        logger.info("Connected to KurrentDB")

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None

    async def health_check(self) -> dict[str, Any]:
        try:
            events = await self.client.read_all(backwards=True, limit=1)
            async for _ in events:
                break
            return {"status": "healthy", "backend": "kurrentdb"}
        except Exception as e:
            return {"status": "unhealthy", "backend": "kurrentdb", "error": str(e)}

    async def append(
        self,
        stream: str,
        events: list[EventData],
        expected_revision: int = ANY_REVISION,
    ) -> int:
        if expected_revision == ANY_REVISION:
            current_version: Any = StreamState.ANY
        elif expected_revision == NO_STREAM:
            current_version = StreamState.NO_STREAM
        else:
            current_version = expected_revision

        new_events = [
            NewEvent(
                type=event.event_type,
                id=uuid.UUID(event.event_id),
                data=json.dumps(event.data, default=str).encode("utf-8"),
                metadata=json.dumps(event.metadata, default=str).encode("utf-8"),
                content_type="application/json",
            )
            for event in events
        ]

        try:
            await self.client.append_to_stream(
                stream_name=stream,
                current_version=current_version,
                events=new_events,
            )
        except WrongCurrentVersionError as e:
            last = await self.read_last(stream)
            raise StreamRevisionConflict(
                stream=stream,
                expected_revision=expected_revision,
                actual_revision=last.stream_revision if last else None,
            ) from e

        if expected_revision >= NO_STREAM:
            return expected_revision + len(events)
        last = await self.read_last(stream)
        return last.stream_revision if last else NO_STREAM

    async def read_stream(self, stream: str, from_revision: int = 0) -> list[StoredEvent]:
        try:
            events = await self.client.read_stream(
                stream_name=stream,
                stream_position=from_revision or None,
            )
            return [_to_stored(e) async for e in events]
        except StreamNotFoundError:
            return []

    async def read_last(self, stream: str) -> StoredEvent | None:
        try:
            events = await self.client.read_stream(
                stream_name=stream,
                backwards=True,
                limit=1,
            )
            async for event in events:
                return _to_stored(event)
        except StreamNotFoundError:
            return None
        return None

    async def read_all(
        self,
        stream_prefix: str,
        after_position: int | None = None,
        limit: int | None = None,
    ) -> list[StoredEvent]:
        kwargs: dict[str, Any] = {
            "commit_position": after_position,
            "filter_include": _prefix_filter(stream_prefix),
            "filter_by_stream_name": True,
        }
        if limit is not None:
            kwargs["limit"] = limit + 1

        events = await self.client.read_all(**kwargs)
        result = []
        async for event in events:
            # commit_position is inclusive on read_all
            if after_position is not None and (event.commit_position or 0) <= after_position:
                continue
            result.append(_to_stored(event))
            if limit is not None and len(result) >= limit:
                break
        return result

    async def subscribe(
        self,
        stream_prefix: str,
        after_position: int | None = None,
    ) -> AsyncIterator[StoredEvent]:
        subscription = await self.client.subscribe_to_all(
            commit_position=after_position,
            filter_include=_prefix_filter(stream_prefix),
            filter_by_stream_name=True,
        )
        try:
            async for event in subscription:
                yield _to_stored(event)
        finally:
            await subscription.stop()

    async def head_position(self, stream_prefix: str) -> int | None:
        events = await self.client.read_all(
            backwards=True,
            limit=1,
            filter_include=_prefix_filter(stream_prefix),
            filter_by_stream_name=True,
        )
        async for event in events:
            return event.commit_position
        return None
