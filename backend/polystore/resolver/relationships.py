"""
Relationship resolution.

Computes, per entity, which columns need related entities fetched to build
the full aggregate:

- special: a scalar relation column whose parent cannot be joined natively
  because the two entities do not share a relational store
- simple: a scalar relation column resolved with a peer repository call, or
  an embedded relation column whose parent has no further relations
- complex: an embedded column whose parent has relations of its own; when the
  parent is a value type (embedded primary key) its own relations are carried
  as nested table descriptors
- recordset: an embedded dictionary column stored and returned as-is

Resolution walks an adjacency index keyed by entity name and never looks
further than two hops from the queried entity. All functions are pure and
return empty results for entities without relationships.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum

from ..schema.models import Cardinality, Column, Entity, Relationship, Schema
from ..schema.naming import camel_case, pascal_case, pluralize, singularize, snake_case
from .storage import is_join_valid

logger = logging.getLogger(__name__)

MAX_DEPTH = 2


class ObjectKind(str, Enum):
    """Classification of a relation column."""
    SIMPLE = "simple"
    COMPLEX = "complex"
    RECORDSET = "recordset"
    SPECIAL = "special"


@dataclass(frozen=True)
class NestedTable:
    """
    Sub-relationship of a complex object, one hop below its parent.

    Attributes:
        table_name: Entity fetched for this nested reference
        child_column: Key inside the embedded value holding the reference
        parent_column: Column of ``table_name`` the reference targets
        cardinality: ``one`` or ``many``
        primary: Primary column name of the value-type parent
        swapped: True when folded in from the symmetric case
    """
    table_name: str
    child_column: str | None
    parent_column: str | None
    cardinality: Cardinality
    primary: str
    swapped: bool = False


@dataclass(frozen=True)
class ComplexObject:
    """A classified relation column of an entity."""
    kind: ObjectKind
    column: Column
    relationship: Relationship
    key: str
    accessor: str
    table_name: str
    is_array: bool = False
    tables: tuple[NestedTable, ...] = ()

    @property
    def parent_entity(self) -> str:
        return self.relationship.parent_entity

    @property
    def required(self) -> bool:
        return self.column.required


@dataclass(frozen=True)
class ComplexRelationships:
    """Nested descriptors per complex object key plus the contributing edges."""
    tables: dict[str, tuple[NestedTable, ...]] = field(default_factory=dict)
    relationships: tuple[Relationship, ...] = ()

    def __bool__(self) -> bool:
        return bool(self.relationships)


class RelationshipGraph:
    """
    Adjacency index over a schema's relationships.

    ``incident`` lookups carry the hop depth they are made at; lookups beyond
    ``MAX_DEPTH`` return nothing, which is how the two-hop bound is enforced.
    """

    def __init__(self, schema: Schema):
        self.schema = schema
        self._incident: dict[str, list[Relationship]] = {}
        for rel in schema.relationships or ():
            self._incident.setdefault(rel.child_entity, []).append(rel)
            if rel.parent_entity != rel.child_entity:
                self._incident.setdefault(rel.parent_entity, []).append(rel)

    def incident(self, entity_name: str, depth: int = 0) -> list[Relationship]:
        """Relationships touching ``entity_name`` in declaration order."""
        if depth > MAX_DEPTH:
            return []
        return list(self._incident.get(entity_name, ()))

    def outgoing(self, entity_name: str, depth: int = 0) -> list[Relationship]:
        return [
            rel for rel in self.incident(entity_name, depth)
            if rel.child_entity == entity_name
        ]

    def entity(self, name: str) -> Entity | None:
        return self.schema.entity(name)


def _accessor(rel: Relationship) -> str:
    if rel.is_many_to_many:
        return f"get_{snake_case(pascal_case(pluralize(rel.parent_entity)))}"
    return f"get_{snake_case(pascal_case(singularize(rel.parent_entity)))}"


def _nested_tables(graph: RelationshipGraph, table_name: str) -> tuple[NestedTable, ...]:
    """Descriptors for relations of a value-type parent, two hops from the origin."""
    complex_table = graph.entity(table_name)
    if complex_table is None:
        return ()
    primary = next((c for c in complex_table.columns if c.pk and c.embedded), None)
    if primary is None:
        return ()

    tables = []
    for rel in graph.outgoing(table_name, depth=MAX_DEPTH):
        tables.append(NestedTable(
            table_name=rel.parent_entity,
            child_column=rel.child_column,
            parent_column=rel.parent_column,
            cardinality=Cardinality.MANY if rel.is_many_to_many else Cardinality.ONE,
            primary=primary.name,
        ))
    return tuple(tables)


def _classify_embedded(
    graph: RelationshipGraph,
    col: Column,
    relation: Relationship,
) -> ObjectKind | None:
    """
    Classify an embedded relation column by looking at the parent's relations.

    The first parent relation to produce a classification decides it.
    """
    parent = graph.entity(relation.parent_entity)
    if parent is None:
        return None

    for rel in graph.incident(parent.name, depth=1):
        parent_col = parent.column(rel.child_column)
        if parent_col is not None and not parent_col.embedded:
            return ObjectKind.COMPLEX
        if col.has_dictionary_default:
            return ObjectKind.RECORDSET
    if col.has_dictionary_default:
        return ObjectKind.RECORDSET
    return ObjectKind.SIMPLE


def get_complex_objects(schema: Schema, entity: Entity) -> list[ComplexObject]:
    """
    Classify the relation columns of ``entity`` as simple, complex or recordset.

    Args:
        schema: Normalized schema
        entity: Entity to resolve

    Returns:
        Complex objects in relationship declaration order, unique by key
    """
    graph = RelationshipGraph(schema)
    relationships = graph.outgoing(entity.name)
    if not relationships:
        return []

    resolved: dict[str, tuple[ObjectKind, Column, Relationship]] = {}
    for relation in relationships:
        col = entity.column(relation.child_column)
        if col is None:
            continue
        key = camel_case(col.name)
        if key in resolved:
            continue

        if col.embedded:
            kind = _classify_embedded(graph, col, relation)
        else:
            kind = ObjectKind.SIMPLE
        if kind is not None:
            resolved[key] = (kind, col, relation)

    objects = []
    for key, (kind, col, relation) in resolved.items():
        is_array = relation.is_many_to_many or kind == ObjectKind.RECORDSET
        accessor = (
            f"get_{snake_case(pascal_case(pluralize(relation.parent_entity)))}"
            if kind == ObjectKind.RECORDSET
            else _accessor(relation)
        )
        objects.append(ComplexObject(
            kind=kind,
            column=col,
            relationship=relation,
            key=key,
            accessor=accessor,
            table_name=relation.parent_entity,
            is_array=is_array,
            tables=_nested_tables(graph, relation.parent_entity),
        ))
    return objects


def get_special_columns(schema: Schema, entity: Entity) -> list[ComplexObject]:
    """
    Scalar relation columns that must be fetched through a peer repository.

    A column is special when its parent and child entities cannot share a
    native join. Returns an empty list when the entity has no relationships.
    """
    graph = RelationshipGraph(schema)
    relationships = graph.outgoing(entity.name)
    if not relationships:
        return []

    special = []
    for col in entity.columns:
        if col.embedded:
            continue
        rel = next((r for r in relationships if r.child_column == col.name), None)
        if rel is None or col.is_record_type:
            continue

        parent_params = schema.parameters_for(rel.parent_entity)
        child_params = schema.parameters_for(rel.child_entity)
        if is_join_valid(
            parent_params.store if parent_params else None,
            child_params.store if child_params else None,
        ):
            continue

        special.append(ComplexObject(
            kind=ObjectKind.SPECIAL,
            column=col,
            relationship=rel,
            key=camel_case(col.name),
            accessor=_accessor(rel),
            table_name=rel.parent_entity,
            is_array=rel.is_many_to_many,
        ))
    return special


def get_complex_relationships(schema: Schema, entity: Entity) -> ComplexRelationships:
    """
    Nested table descriptors of every complex object plus the edges behind them.

    Besides the parent's own outgoing relations this pass also folds in the
    symmetric case: an edge pointing at the value-type parent whose child
    column, looked up on ``entity``, defaults to a dictionary. Such edges are
    added with parent and child roles swapped.
    """
    graph = RelationshipGraph(schema)
    tables: dict[str, tuple[NestedTable, ...]] = {}
    contributing: list[Relationship] = []

    for obj in get_complex_objects(schema, entity):
        complex_table = graph.entity(obj.table_name)
        if complex_table is None:
            continue
        primary = next((c for c in complex_table.columns if c.pk and c.embedded), None)
        if primary is None:
            continue

        nested = []
        for rel in graph.incident(complex_table.name, depth=MAX_DEPTH):
            if rel.child_entity == complex_table.name:
                nested.append(NestedTable(
                    table_name=rel.parent_entity,
                    child_column=rel.child_column,
                    parent_column=rel.parent_column,
                    cardinality=Cardinality.MANY if rel.is_many_to_many else Cardinality.ONE,
                    primary=primary.name,
                ))
                contributing.append(rel)
                continue

            child_col = entity.column(rel.child_column)
            if child_col is not None and child_col.has_dictionary_default:
                nested.append(NestedTable(
                    table_name=rel.child_entity,
                    child_column=rel.parent_column,
                    parent_column=child_col.name,
                    cardinality=rel.parent_cardinality,
                    primary=primary.name,
                    swapped=True,
                ))
                contributing.append(rel)

        if nested:
            tables[obj.key] = tuple(nested)

    return ComplexRelationships(tables=tables, relationships=tuple(contributing))


def get_unique_relationships(schema: Schema, entity: Entity) -> list[Relationship]:
    """One outgoing relationship per parent entity, first declaration wins."""
    seen: set[str] = set()
    unique = []
    for rel in RelationshipGraph(schema).outgoing(entity.name):
        if rel.parent_entity == entity.name or rel.parent_entity in seen:
            continue
        seen.add(rel.parent_entity)
        unique.append(rel)
    return unique


def _is_hydrated(obj: ComplexObject) -> bool:
    # Embedded simple relations hold a reference that is swapped for the parent.
    return obj.kind == ObjectKind.COMPLEX or (
        obj.kind == ObjectKind.SIMPLE and obj.column.embedded
    )


def has_complex_hydration(schema: Schema, entity: Entity) -> bool:
    return any(
        _is_hydrated(obj) for obj in get_complex_objects(schema, entity)
    ) or bool(get_special_columns(schema, entity))


@dataclass(frozen=True)
class TableProperties:
    """Everything a repository needs to know about its entity's shape."""
    class_name: str
    primary_column: Column | None
    field_columns: tuple[Column, ...]
    indexed_columns: tuple[Column, ...]
    complex_objects: tuple[ComplexObject, ...]
    special_columns: tuple[ComplexObject, ...]

    @property
    def relation_columns(self) -> tuple[ComplexObject, ...]:
        """Columns resolved during hydration: embedded relations, then special columns."""
        hydrated = [o for o in self.complex_objects if _is_hydrated(o)]
        keys = {o.key for o in hydrated}
        hydrated.extend(o for o in self.special_columns if o.key not in keys)
        return tuple(hydrated)

    @property
    def reference_columns(self) -> tuple[ComplexObject, ...]:
        """Columns stored as parent keys: every relation column except recordsets."""
        columns = list(self.relation_columns)
        keys = {o.key for o in columns}
        columns.extend(
            o for o in self.complex_objects
            if o.kind != ObjectKind.RECORDSET and o.key not in keys
        )
        return tuple(columns)


def get_table_properties(schema: Schema, entity: Entity) -> TableProperties:
    primary = entity.primary_column
    return TableProperties(
        class_name=pascal_case(entity.name),
        primary_column=primary,
        field_columns=tuple(
            c for c in entity.columns
            if c.name != entity.tenant_column and (primary is None or c.name != primary.name)
        ),
        indexed_columns=tuple(entity.indexed_columns),
        complex_objects=tuple(get_complex_objects(schema, entity)),
        special_columns=tuple(get_special_columns(schema, entity)),
    )
