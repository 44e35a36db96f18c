"""
Storage assignment resolution.

Reads the per-entity ``store`` and ``cancel`` parameters and resolves them,
once per entity, into a ``StoragePlan``: the backend strategy to bind, the
list-path materialization target for event-log entities and the set of
enabled operations.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from ..schema.models import Entity, Operation, Schema, StoreAssignment


class StorageType(str, Enum):
    """Backend strategy kinds."""
    RELATIONAL = "relational"
    KEY_VALUE = "key_value"
    EVENT_LOG = "event_log"
    DOCUMENT = "document"
    DEFAULT = "default"


class ProjectionType(str, Enum):
    """Materialization targets for event-log list reads."""
    MEMORY = "memory"
    KEY_VALUE = "key_value"
    RELATIONAL = "relational"


BACKEND_ALIASES: dict[str, StorageType] = {
    "relational": StorageType.RELATIONAL,
    "sql": StorageType.RELATIONAL,
    "postgres": StorageType.RELATIONAL,
    "key_value": StorageType.KEY_VALUE,
    "key-value": StorageType.KEY_VALUE,
    "redis": StorageType.KEY_VALUE,
    "event_log": StorageType.EVENT_LOG,
    "event-log": StorageType.EVENT_LOG,
    "eventstream": StorageType.EVENT_LOG,
    "document": StorageType.DOCUMENT,
    "mongo": StorageType.DOCUMENT,
    "default": StorageType.DEFAULT,
}

_PROJECTION_TARGETS: dict[StorageType, ProjectionType] = {
    StorageType.KEY_VALUE: ProjectionType.KEY_VALUE,
    StorageType.RELATIONAL: ProjectionType.RELATIONAL,
}


def normalize_backend(name: str | None) -> StorageType | None:
    """Map a backend name or alias to a ``StorageType``; unknown names map to None."""
    if not name:
        return None
    return BACKEND_ALIASES.get(name.strip().lower())


def is_join_valid(
    parent_store: StoreAssignment | None,
    child_store: StoreAssignment | None,
) -> bool:
    """Two entities share a native join when both use a relational store."""
    def relational(store: StoreAssignment | None) -> bool:
        if store is None:
            return False
        return any(normalize_backend(p) == StorageType.RELATIONAL for p in store.paths())

    return relational(parent_store) and relational(child_store)


def get_storage_type(schema: Schema, entity_name: str) -> StorageType:
    """Read-path backend of an entity, or ``DEFAULT`` when unassigned."""
    params = schema.parameters_for(entity_name)
    if params is None:
        return StorageType.DEFAULT
    return normalize_backend(params.store.read) or StorageType.DEFAULT


def is_operation_enabled(schema: Schema, entity_name: str, operation: Operation | str) -> bool:
    """False only when the operation is explicitly cancelled."""
    params = schema.parameters_for(entity_name)
    if params is None:
        return True
    return not params.cancel.is_cancelled(operation)


def get_projection_type(schema: Schema, entity: Entity) -> ProjectionType | None:
    """
    List-path materialization target for event-log entities.

    Returns None when the entity's write path is not the event log.
    """
    params = schema.parameters_for(entity.name)
    if params is None or normalize_backend(params.store.write) != StorageType.EVENT_LOG:
        return None
    target = normalize_backend(params.store.list)
    return _PROJECTION_TARGETS.get(target, ProjectionType.MEMORY)


@dataclass(frozen=True)
class StoragePlan:
    """Resolved storage assignment of one entity."""
    entity: str
    storage_type: StorageType
    write_type: StorageType
    projection_type: ProjectionType | None
    enabled: frozenset[Operation]

    def allows(self, operation: Operation | str) -> bool:
        return Operation(operation) in self.enabled

    @property
    def uses_projection(self) -> bool:
        return self.projection_type is not None

    def to_dict(self) -> dict:
        return {
            "entity": self.entity,
            "storage_type": self.storage_type.value,
            "write_type": self.write_type.value,
            "projection_type": self.projection_type.value if self.projection_type else None,
            "enabled": sorted(op.value for op in self.enabled),
        }


def resolve_storage_plan(schema: Schema, entity: Entity) -> StoragePlan:
    params = schema.parameters_for(entity.name)
    write = normalize_backend(params.store.write) if params else None
    storage_type = get_storage_type(schema, entity.name)
    projection = get_projection_type(schema, entity)
    if projection is not None:
        # event-log entities read and write through the log
        storage_type = StorageType.EVENT_LOG
    return StoragePlan(
        entity=entity.name,
        storage_type=storage_type,
        write_type=write or storage_type,
        projection_type=projection,
        enabled=frozenset(
            op for op in Operation if is_operation_enabled(schema, entity.name, op)
        ),
    )
