"""
Event-sourced aggregate state.

``EntityAggregate`` records state changes of one entity instance as pending
``DomainEvent`` objects and folds stored events back into state. It is
schema-driven: event types are derived from the entity class name
(``<Class>Created``, ``<Class>Updated``, ``<Class>Deleted``,
``<Class>UpdateCompensated``).
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable

logger = logging.getLogger(__name__)

# Revision of an aggregate whose stream has no events yet
NEW_AGGREGATE_VERSION = -1


class EventKind(str, Enum):
    """Suffix of an event type after the entity class name."""
    CREATED = "Created"
    UPDATED = "Updated"
    DELETED = "Deleted"
    COMPENSATED = "UpdateCompensated"
    SNAPSHOT = "Snapshot"


def event_type(class_name: str, kind: EventKind) -> str:
    return f"{class_name}{kind.value}"


@dataclass(frozen=True)
class DomainEvent:
    """A state change of one aggregate, not yet appended to the log."""
    event_type: str
    aggregate_id: str
    data: dict[str, Any]
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "event_type": self.event_type,
            "aggregate_id": self.aggregate_id,
            "occurred_at": self.occurred_at.isoformat(),
            "data": self.data,
        }


class EntityAggregate:
    """
    Current state of one entity instance plus its uncommitted events.

    Attributes:
        class_name: Entity class name used as event type prefix
        key: Primary key value
        state: Current flat snapshot
        version: Stream revision of the last applied event
        deleted: True once a Deleted event has been applied
    """

    def __init__(
        self,
        class_name: str,
        key: str,
        state: dict[str, Any] | None = None,
        version: int = NEW_AGGREGATE_VERSION,
        deleted: bool = False,
    ) -> None:
        self.class_name = class_name
        self.key = key
        self.state: dict[str, Any] = dict(state or {})
        self.version = version
        self.deleted = deleted
        self._pending: list[DomainEvent] = []

    @property
    def exists(self) -> bool:
        return self.version > NEW_AGGREGATE_VERSION and not self.deleted

    @property
    def pending_events(self) -> list[DomainEvent]:
        return list(self._pending)

    @property
    def has_pending_events(self) -> bool:
        return bool(self._pending)

    # ===== Commands =====

    def create(self, data: dict[str, Any]) -> None:
        self._record(EventKind.CREATED, dict(data))

    def update(self, data: dict[str, Any]) -> None:
        """Record only the fields that differ from the current state."""
        changes = {k: v for k, v in data.items() if self.state.get(k) != v}
        if not changes:
            logger.debug(f"{self.class_name} {self.key}: no changes to record")
            return
        self._record(EventKind.UPDATED, changes)

    def save(self, data: dict[str, Any]) -> None:
        if self.exists:
            self.update(data)
        else:
            self.create(data)

    def delete(self) -> None:
        self._record(EventKind.DELETED, {"deletedAt": datetime.now(timezone.utc).isoformat()})

    def compensate(self, previous_state: dict[str, Any] | None) -> None:
        """
        Record a rollback to ``previous_state``.

        An empty or missing previous state means the compensated operation
        created the aggregate, so the rollback is a tombstone.
        """
        if previous_state:
            self._record(EventKind.COMPENSATED, dict(previous_state))
        else:
            self._record(EventKind.DELETED, {
                "deletedAt": datetime.now(timezone.utc).isoformat(),
                "compensation": True,
            })

    def _record(self, kind: EventKind, data: dict[str, Any]) -> None:
        event = DomainEvent(
            event_type=event_type(self.class_name, kind),
            aggregate_id=self.key,
            data=data,
        )
        self.apply(event.event_type, event.data)
        self._pending.append(event)

    def mark_committed(self, revision: int) -> list[DomainEvent]:
        """Clear pending events after they were appended at ``revision``."""
        committed = self._pending
        self._pending = []
        self.version = revision
        return committed

    # ===== Folding =====

    def apply(self, type_name: str, data: dict[str, Any]) -> None:
        """Fold one event into the current state."""
        suffix = type_name[len(self.class_name):] if type_name.startswith(self.class_name) else None
        if suffix == EventKind.CREATED.value:
            self.state = dict(data)
            self.deleted = False
        elif suffix == EventKind.UPDATED.value:
            self.state = {**self.state, **data}
        elif suffix == EventKind.DELETED.value:
            self.state = {**self.state, "deletedAt": data.get("deletedAt")}
            self.deleted = True
        elif suffix == EventKind.COMPENSATED.value:
            self.state = dict(data)
            self.deleted = False
        else:
            logger.warning(f"{self.class_name} {self.key}: unknown event type {type_name}")

    @classmethod
    def rebuild_from_events(
        cls,
        class_name: str,
        key: str,
        events: Iterable[Any],
        state: dict[str, Any] | None = None,
        version: int = NEW_AGGREGATE_VERSION,
        deleted: bool = False,
    ) -> "EntityAggregate":
        """
        Fold stored events on top of an optional snapshot.

        Args:
            class_name: Entity class name
            key: Primary key value
            events: Stored events exposing ``event_type``, ``data`` and ``stream_revision``
            state: Snapshot state to start from
            version: Revision the snapshot was taken at
            deleted: Whether the snapshot is a tombstone
        """
        aggregate = cls(class_name, key, state=state, version=version, deleted=deleted)
        for event in events:
            if event.stream_revision <= aggregate.version:
                continue
            aggregate.apply(event.event_type, event.data)
            aggregate.version = event.stream_revision
        return aggregate

    def to_snapshot(self) -> dict[str, Any]:
        return {
            "state": self.state,
            "version": self.version,
            "deleted": self.deleted,
        }

    def __repr__(self) -> str:
        return f"EntityAggregate({self.class_name}, {self.key!r}, version={self.version}, deleted={self.deleted})"
