"""
Event-log backend strategy.

Every aggregate instance owns one append-only stream named
``<context>.<entity>.<version>-<tenant>-<key>``. Saves append the pending
domain events under an expected-revision check and then write a snapshot to
the companion ``snapshot.<stream>`` stream. Reads start from the latest
snapshot and fold only the events appended after it. Deletes append a
tombstone. ``list`` is served by the entity's projection and fails with
``projectionNotAvailable`` until the projection is ready.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from ..connectors.base import EventData, EventLogConnector, StoredEvent, StreamRevisionConflict
from ..contract import EntityRepository, PageOptions, QueryResult, SagaContext, Snapshot, UserToken
from ..domain.aggregate import NEW_AGGREGATE_VERSION, DomainEvent, EntityAggregate, EventKind, event_type
from ..errors import ErrorKind, translate_errors
from ..resolver.storage import StorageType
from ..schema.naming import kebab_case

if TYPE_CHECKING:
    from ..projection.runner import ProjectionRunner

logger = logging.getLogger(__name__)


def stream_prefix(context: str, entity_name: str, version: str) -> str:
    return f"{context}.{kebab_case(entity_name)}.{version}-"


class EventLogRepository(EntityRepository):
    """
    Entity repository backed by an ``EventLogConnector``.

    Args:
        connector: Event log connector
        projection: Runner materializing this entity's list cache
        context: Bounded context segment of stream names
        version: Version segment of stream names
    """

    storage_type = StorageType.EVENT_LOG

    def __init__(
        self,
        *args: Any,
        connector: EventLogConnector,
        projection: ProjectionRunner | None = None,
        context: str | None = None,
        version: str | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(*args, **kwargs)
        self.connector = connector
        self.projection = projection
        self.context = context or self.schema.context
        self.version = version or self.schema.version
        self.stream_prefix = stream_prefix(self.context, self.entity.name, self.version)

    def stream_name(self, user: UserToken, key: Any) -> str:
        return f"{self.stream_prefix}{user.tenant}-{key}"

    # ===== Reads =====

    async def load_aggregate(self, user: UserToken, key: Any) -> EntityAggregate:
        """
        Current aggregate state: latest snapshot plus the events appended after it.

        Streams without a snapshot are folded from the start.
        """
        stream = self.stream_name(user, key)
        snapshot = await self.connector.read_latest_snapshot(stream)

        state: dict[str, Any] | None = None
        version = NEW_AGGREGATE_VERSION
        deleted = False
        if snapshot is not None:
            state = snapshot.data.get("state")
            version = snapshot.data.get("version", NEW_AGGREGATE_VERSION)
            deleted = snapshot.data.get("deleted", False)

        tail = await self.connector.read_stream(stream, from_revision=version + 1)
        if tail:
            logger.debug(f"{self.component}: folding {len(tail)} events after snapshot of {stream}")
        return EntityAggregate.rebuild_from_events(
            self.properties.class_name,
            str(key),
            tail,
            state=state,
            version=version,
            deleted=deleted,
        )

    async def _load(self, user: UserToken, key: Any) -> Snapshot | None:
        if key is None:
            return None
        aggregate = await self.load_aggregate(user, key)
        if not aggregate.exists:
            return None
        return dict(aggregate.state)

    async def get_revision(self, user: UserToken, key: Any) -> int:
        """Stream revision of the aggregate, ``-1`` when it has no events."""
        aggregate = await self.load_aggregate(user, key)
        return aggregate.version

    async def _query(self, user: UserToken, options: PageOptions, size: int) -> QueryResult:
        if self.projection is None or not self.projection.is_ready:
            raise self.errors.error(
                ErrorKind.UNAVAILABLE.value,
                details={
                    "projection": self.projection.name if self.projection else None,
                    "state": self.projection.state.value if self.projection else None,
                },
            )
        snapshots, total = await self.projection.cache.query(
            user.tenant,
            filters=options.filters,
            order_by=self.order_column(options),
            descending=options.order == "DESC",
            offset=(options.page - 1) * size,
            limit=size,
        )
        return QueryResult(snapshots=snapshots, total=total)

    # ===== Writes =====

    def _metadata(self, user: UserToken, key: Any, saga: SagaContext | None) -> dict[str, Any]:
        return {
            "context": self.context,
            "aggregateType": self.properties.class_name,
            "aggregateId": str(key),
            "version": self.version,
            "tenant": user.tenant,
            "user": user.sub,
            "sagaId": saga.saga_id if saga else None,
            "operationId": saga.operation_id if saga else None,
            "correlationId": saga.correlation_id if saga else None,
            "causationId": (saga.causation_id or saga.operation_id) if saga else None,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    async def operation_applied(self, user: UserToken, key: Any, operation_id: str) -> bool:
        """True when an event of this stream was appended for ``operation_id``."""
        return bool(await self._operation_events(user, key, operation_id))

    async def _operation_events(self, user: UserToken, key: Any, operation_id: str) -> list[StoredEvent]:
        events = await self.connector.read_stream(self.stream_name(user, key))
        return [
            e for e in events
            if e.metadata.get("operationId") == operation_id
            and not e.metadata.get("isCompensation")
        ]

    async def _commit(
        self,
        user: UserToken,
        aggregate: EntityAggregate,
        saga: SagaContext | None,
        expected_revision: int,
        extra_metadata: dict[str, Any] | None = None,
    ) -> int:
        """Append the aggregate's pending events, then snapshot the result."""
        stream = self.stream_name(user, aggregate.key)
        metadata = {**self._metadata(user, aggregate.key, saga), **(extra_metadata or {})}
        events = [_event_data(e, metadata) for e in aggregate.pending_events]

        try:
            revision = await self.connector.append(stream, events, expected_revision=expected_revision)
        except StreamRevisionConflict as e:
            raise self.errors.error(
                "concurrencyConflict",
                details={
                    "stream": stream,
                    "expected_revision": e.expected_revision,
                    "actual_revision": e.actual_revision,
                },
            ) from e

        aggregate.mark_committed(revision)
        await self.connector.write_snapshot(
            stream,
            event_type(self.properties.class_name, EventKind.SNAPSHOT),
            aggregate.to_snapshot(),
            metadata={"revision": revision, "tenant": user.tenant},
        )
        logger.debug(f"{self.component}: appended {len(events)} events to {stream} at revision {revision}")
        return revision

    async def _store(
        self,
        user: UserToken,
        snapshot: Snapshot,
        existing: Snapshot | None,
        saga: SagaContext | None,
        expected_revision: int | None = None,
    ) -> None:
        key = snapshot[self.primary_key]
        aggregate = await self.load_aggregate(user, key)
        if expected_revision is not None and expected_revision != aggregate.version:
            raise self.errors.error(
                "concurrencyConflict",
                details={
                    "stream": self.stream_name(user, key),
                    "expected_revision": expected_revision,
                    "actual_revision": aggregate.version,
                },
            )

        base_version = aggregate.version
        aggregate.save(self.scrub(snapshot))
        if not aggregate.has_pending_events:
            return
        await self._commit(user, aggregate, saga, expected_revision=base_version)

    async def _remove(
        self,
        user: UserToken,
        key: Any,
        existing: Snapshot,
        saga: SagaContext | None,
    ) -> None:
        aggregate = await self.load_aggregate(user, key)
        base_version = aggregate.version
        aggregate.delete()
        await self._commit(user, aggregate, saga, expected_revision=base_version)

    @translate_errors("compensate_save", ErrorKind.UPDATE)
    async def compensate_save(self, user: UserToken, key: Any, saga: SagaContext) -> None:
        """
        Roll back the save made under ``saga.operation_id``.

        Appends an ``UpdateCompensated`` event carrying the state from before
        the operation, or a tombstone when the operation created the
        aggregate. Does nothing when the operation left no events.
        """
        if user is None:
            raise self.errors.error(ErrorKind.UNAUTHORIZED.value)

        applied = await self._operation_events(user, key, saga.operation_id)
        if not applied:
            logger.info(f"{self.component}: nothing to compensate for operation {saga.operation_id} on {key}")
            return

        first_revision = applied[0].stream_revision
        history = await self.connector.read_stream(self.stream_name(user, key))
        previous = EntityAggregate.rebuild_from_events(
            self.properties.class_name,
            str(key),
            [e for e in history if e.stream_revision < first_revision],
        )

        aggregate = await self.load_aggregate(user, key)
        base_version = aggregate.version
        aggregate.compensate(previous.state if previous.exists else None)
        await self._commit(
            user,
            aggregate,
            saga,
            expected_revision=base_version,
            extra_metadata={"isCompensation": True, "originalOperationId": saga.operation_id},
        )
        logger.info(f"{self.component}: compensated operation {saga.operation_id} on {key}")

    async def health_check(self) -> dict[str, Any]:
        status = await super().health_check()
        status["connector"] = await self.connector.health_check()
        if self.projection is not None:
            status["projection"] = await self.projection.health_check()
        if status["connector"].get("status") != "healthy":
            status["status"] = "unhealthy"
        return status


def _event_data(event: DomainEvent, metadata: dict[str, Any]) -> EventData:
    return EventData(
        event_type=event.event_type,
        data=event.data,
        metadata={**metadata, "eventId": event.event_id, "occurredAt": event.occurred_at.isoformat()},
        event_id=event.event_id,
    )
