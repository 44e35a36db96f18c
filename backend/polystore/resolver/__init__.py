"""
Resolver Module - Relationship and storage assignment resolution.

Provides:
- relationships: complex object, special column and nested table resolution
- storage: backend selection, enabled operations and projection targets
"""

from .storage import (
    ProjectionType,
    StoragePlan,
    StorageType,
    get_projection_type,
    get_storage_type,
    is_join_valid,
    is_operation_enabled,
    resolve_storage_plan,
)
from .relationships import (
    ComplexObject,
    ComplexRelationships,
    NestedTable,
    ObjectKind,
    RelationshipGraph,
    TableProperties,
    get_complex_objects,
    get_complex_relationships,
    get_special_columns,
    get_table_properties,
    get_unique_relationships,
    has_complex_hydration,
)

__all__ = [
    "ProjectionType",
    "StoragePlan",
    "StorageType",
    "get_projection_type",
    "get_storage_type",
    "is_join_valid",
    "is_operation_enabled",
    "resolve_storage_plan",
    "ComplexObject",
    "ComplexRelationships",
    "NestedTable",
    "ObjectKind",
    "RelationshipGraph",
    "TableProperties",
    "get_complex_objects",
    "get_complex_relationships",
    "get_special_columns",
    "get_table_properties",
    "get_unique_relationships",
    "has_complex_hydration",
]
