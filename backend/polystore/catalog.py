"""
Per-entity error catalog.

A catalog is assembled from independent pure passes. Each pass returns its
own ``ErrorCatalog`` and the caller merges them; merging keeps the first
entry for a key so that later passes cannot overwrite earlier definitions.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator

from .errors import (
    ConcurrencyConflictError,
    DomainError,
    ErrorEntry,
    ErrorKind,
    ErrorSeverity,
)
from .resolver.relationships import (
    get_table_properties,
    get_unique_relationships,
)
from .schema.models import Entity, Schema
from .schema.naming import camel_case, constant_case, pascal_case, sentence_case, upper_first


@dataclass(frozen=True)
class ErrorCatalog:
    """Immutable mapping of error keys to entries for one entity."""
    entity: str
    entries: tuple[ErrorEntry, ...] = ()
    _index: dict[str, ErrorEntry] = field(default_factory=dict, compare=False, repr=False)

    def __post_init__(self) -> None:
        for entry in self.entries:
            self._index.setdefault(entry.key, entry)

    def merge(self, other: "ErrorCatalog") -> "ErrorCatalog":
        merged = list(self.entries)
        merged.extend(e for e in other.entries if e.key not in self._index)
        return ErrorCatalog(entity=self.entity, entries=tuple(merged))

    def __contains__(self, key: object) -> bool:
        return key in self._index

    def __getitem__(self, key: str) -> ErrorEntry:
        return self._index[key]

    def __iter__(self) -> Iterator[ErrorEntry]:
        return iter(self._index.values())

    def __len__(self) -> int:
        return len(self._index)

    def keys(self) -> list[str]:
        return list(self._index)

    def error(
        self,
        key: str,
        context: dict[str, Any] | None = None,
        details: dict[str, Any] | None = None,
    ) -> DomainError:
        """Build the exception for ``key``; unknown keys fall back to ``notFound``."""
        entry = self._index.get(key) or self._index.get(ErrorKind.NOT_FOUND.value)
        if entry is None:
            raise KeyError(f"No error entry '{key}' for {self.entity}")
        if entry.key == "concurrencyConflict":
            return ConcurrencyConflictError(
                message=entry.message,
                key=entry.key,
                code=entry.code,
                status_code=entry.status_code,
                context=context,
                details=details,
            )
        return DomainError.from_entry(entry, context=context, details=details)

    def to_dict(self) -> dict[str, dict[str, Any]]:
        return {key: entry.to_dict() for key, entry in self._index.items()}


def merge_catalogs(entity: str, catalogs: Iterable[ErrorCatalog]) -> ErrorCatalog:
    result = ErrorCatalog(entity=entity)
    for catalog in catalogs:
        result = result.merge(catalog)
    return result


# ===== Catalog Passes =====

def base_entries(entity: Entity) -> ErrorCatalog:
    class_name = pascal_case(entity.name)
    upper = constant_case(entity.name)
    entries = (
        ErrorEntry(
            key="notFound",
            code=f"{upper}_NOT_FOUND",
            message=f"{class_name} not found",
            description=f"The requested {class_name} entity could not be found in the system",
            kind=ErrorKind.NOT_FOUND,
            status_code=404,
            severity=ErrorSeverity.LOW,
        ),
        ErrorEntry(
            key="createError",
            code=f"INVALID_{upper}_CREATE_DETAILS",
            message=f"Invalid {class_name} details creating an item",
            description=f"The provided {class_name} details are invalid or incomplete for creation",
            kind=ErrorKind.CREATE,
            status_code=400,
        ),
        ErrorEntry(
            key="updateError",
            code=f"INVALID_{upper}_UPDATE_DETAILS",
            message=f"Invalid {class_name} details updating an item",
            description=f"The provided {class_name} details are invalid or incomplete for update",
            kind=ErrorKind.UPDATE,
            status_code=400,
        ),
        ErrorEntry(
            key="deleteError",
            code=f"INVALID_{upper}_DELETE_DETAILS",
            message=f"Invalid {class_name} details for deleting an item",
            description=f"The provided {class_name} details are invalid or the entity cannot be deleted",
            kind=ErrorKind.DELETE,
            status_code=400,
        ),
        ErrorEntry(
            key="notImplemented",
            code=f"NOT_IMPLEMENTED_{upper}",
            message=f"This operation is not implemented for {class_name}",
            description=f"The requested operation is not yet implemented for {class_name} entities",
            kind=ErrorKind.NOT_IMPLEMENTED,
            status_code=501,
            severity=ErrorSeverity.LOW,
        ),
        ErrorEntry(
            key="unauthorized",
            code=f"USER_REQUIRED_FOR_{upper}",
            message=f"User token is required for {class_name} operations",
            kind=ErrorKind.UNAUTHORIZED,
            status_code=401,
            severity=ErrorSeverity.LOW,
        ),
        ErrorEntry(
            key="validationError",
            code=f"INVALID_{upper}_DETAILS",
            message=f"Invalid {class_name} details",
            kind=ErrorKind.VALIDATION,
            status_code=400,
            severity=ErrorSeverity.LOW,
        ),
        ErrorEntry(
            key="projectionNotAvailable",
            code=f"PROJECTION_NOT_AVAILABLE_{upper}",
            message=f"{class_name} projection is not ready",
            description=f"The {class_name} read model is still catching up with the event log",
            kind=ErrorKind.UNAVAILABLE,
            status_code=503,
        ),
        ErrorEntry(
            key="concurrencyConflict",
            code=f"CONCURRENCY_CONFLICT_{upper}",
            message=f"{class_name} was modified by another operation",
            kind=ErrorKind.UPDATE,
            status_code=409,
        ),
    )
    return ErrorCatalog(entity=entity.name, entries=entries)


def relation_entries(schema: Schema, entity: Entity) -> ErrorCatalog:
    """One ``<parent>NotFound`` entry per unique parent relationship."""
    table = constant_case(entity.name)
    entries = []
    for rel in get_unique_relationships(schema, entity):
        parent_class = pascal_case(rel.parent_entity)
        entries.append(ErrorEntry(
            key=f"{parent_class}NotFound",
            code=f"{constant_case(rel.parent_entity)}_NOT_FOUND_{table}",
            message=f"{parent_class} not found",
            description=f"The specified {sentence_case(rel.parent_entity).lower()} could not be found in the system",
            kind=ErrorKind.NOT_FOUND,
            status_code=404,
            severity=ErrorSeverity.LOW,
        ))
    return ErrorCatalog(entity=entity.name, entries=tuple(entries))


def hydration_entries(schema: Schema, entity: Entity) -> ErrorCatalog:
    """One ``<Column>NotFound`` entry per relation column that hydration resolves."""
    table = constant_case(entity.name)
    entries = []
    for obj in get_table_properties(schema, entity).relation_columns:
        entries.append(ErrorEntry(
            key=hydration_error_key(obj.column.name),
            code=f"{constant_case(obj.column.name)}_NOT_FOUND_{table}",
            message=f"{upper_first(camel_case(obj.column.name))} not found",
            kind=ErrorKind.NOT_FOUND,
            status_code=404,
            severity=ErrorSeverity.LOW,
        ))
        for nested in obj.tables:
            entries.append(ErrorEntry(
                key=hydration_error_key(nested.table_name),
                code=f"{constant_case(nested.table_name)}_NOT_FOUND_{table}",
                message=f"{pascal_case(nested.table_name)} not found",
                kind=ErrorKind.NOT_FOUND,
                status_code=404,
                severity=ErrorSeverity.LOW,
            ))
    return ErrorCatalog(entity=entity.name, entries=tuple(entries))


def hydration_error_key(name: str) -> str:
    return f"{upper_first(camel_case(name))}NotFound"


def build_error_catalog(schema: Schema, entity: Entity) -> ErrorCatalog:
    return merge_catalogs(entity.name, [
        base_entries(entity),
        relation_entries(schema, entity),
        hydration_entries(schema, entity),
    ])
