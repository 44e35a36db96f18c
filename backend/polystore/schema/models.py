"""
Schema models.

In-memory form of a normalized data model: entities with ordered columns,
directed child -> parent relationships and per-entity storage parameters.
All models are frozen; the resolver and the repository registry treat a
``Schema`` as immutable input.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator

DICTIONARY_DEFAULT = "object()"
GENERATED_ID_DEFAULT = "uuid()"
RECORD_TYPES = frozenset({"Record<string, any>", "record", "dict", "object"})


class Cardinality(str, Enum):
    """Cardinality of one side of a relationship."""
    ONE = "one"
    MANY = "many"


class Operation(str, Enum):
    """Operations that can be cancelled per entity."""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    GET = "get"
    BATCH = "batch"


@dataclass(frozen=True)
class Column:
    """
    A single entity column.

    Attributes:
        name: Column name as declared in the model
        type: Semantic type (string, number, boolean, date, Record<string, any>...)
        pk: Primary key flag
        nullable: Whether the value may be absent
        default: Default value directive (``uuid()``, ``object()``, literal)
        embedded: True for JSON/object-shaped columns
        indexed: Whether the column participates in an index
        reference: Snapshot key holding the raw relation id for an embedded column
    """
    name: str
    type: str = "string"
    pk: bool = False
    nullable: bool = True
    default: str | None = None
    embedded: bool = False
    indexed: bool = False
    reference: str | None = None

    @property
    def required(self) -> bool:
        return not self.nullable

    @property
    def snapshot_key(self) -> str:
        return self.reference or self.name

    @property
    def has_dictionary_default(self) -> bool:
        return self.default == DICTIONARY_DEFAULT

    @property
    def has_generated_default(self) -> bool:
        return self.default == GENERATED_ID_DEFAULT

    @property
    def is_record_type(self) -> bool:
        return self.type in RECORD_TYPES


@dataclass(frozen=True)
class Index:
    """Index over a single column; fulltext indexes filter with substring match."""
    column: str
    fulltext: bool = False


@dataclass(frozen=True)
class Relationship:
    """
    Directed edge from a child entity column to a parent entity column.

    ``child_cardinality`` and ``parent_cardinality`` describe each side of
    the edge; many on both sides is a many-to-many relationship.
    """
    child_entity: str
    child_column: str
    parent_entity: str
    parent_column: str
    child_cardinality: Cardinality = Cardinality.MANY
    parent_cardinality: Cardinality = Cardinality.ONE

    @property
    def is_many_to_many(self) -> bool:
        return (
            self.child_cardinality == Cardinality.MANY
            and self.parent_cardinality == Cardinality.MANY
        )

    @property
    def is_one_to_one(self) -> bool:
        return (
            self.child_cardinality == Cardinality.ONE
            and self.parent_cardinality == Cardinality.ONE
        )


@dataclass(frozen=True)
class Entity:
    """An entity with ordered columns and indexes."""
    name: str
    columns: tuple[Column, ...] = ()
    indexes: tuple[Index, ...] = ()
    tenant_column: str = "tenantId"

    def column(self, name: str) -> Column | None:
        for col in self.columns:
            if col.name == name:
                return col
        return None

    @property
    def primary_column(self) -> Column | None:
        for col in self.columns:
            if col.pk and col.name != self.tenant_column and col.name != "tenant":
                return col
        return None

    @property
    def indexed_columns(self) -> list[Column]:
        names = [idx.column for idx in self.indexes]
        names.extend(c.name for c in self.columns if c.indexed and c.name not in names)
        columns = [self.column(name) for name in names]
        return [col for col in columns if col is not None]

    def is_fulltext(self, column_name: str) -> bool:
        return any(idx.column == column_name and idx.fulltext for idx in self.indexes)

    @property
    def should_skip(self) -> bool:
        """Entities without a scalar primary key get no repository."""
        primary = self.primary_column
        return primary is None or primary.embedded


@dataclass(frozen=True)
class StoreAssignment:
    """Backend names for the read, write and list paths."""
    read: str | None = None
    write: str | None = None
    list: str | None = None

    def paths(self) -> tuple[str | None, str | None]:
        return self.read, self.write


@dataclass(frozen=True)
class CancelSet:
    """Operations explicitly cancelled for an entity."""
    create: bool = False
    update: bool = False
    delete: bool = False
    get: bool = False
    batch: bool = False

    def is_cancelled(self, operation: Operation | str) -> bool:
        return bool(getattr(self, Operation(operation).value, False))


@dataclass(frozen=True)
class EntityParameters:
    store: StoreAssignment = field(default_factory=StoreAssignment)
    cancel: CancelSet = field(default_factory=CancelSet)


@dataclass(frozen=True)
class Schema:
    """
    Normalized data model.

    Attributes:
        entities: Entities by name, in declaration order
        relationships: All relationships, in declaration order
        parameters: Storage parameters by entity name
        context: Bounded context name used for stream naming
        version: Model version used for stream naming
    """
    entities: dict[str, Entity] = field(default_factory=dict)
    relationships: tuple[Relationship, ...] = ()
    parameters: dict[str, EntityParameters] = field(default_factory=dict)
    context: str = "app"
    version: str = "v1"

    def entity(self, name: str) -> Entity | None:
        return self.entities.get(name)

    def parameters_for(self, name: str) -> EntityParameters | None:
        return self.parameters.get(name)

    def __iter__(self) -> Iterator[Entity]:
        return iter(self.entities.values())
