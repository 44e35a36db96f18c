"""
Schema Module - Data model definitions and loading.
"""

from .loader import SchemaLoader, load_schema
from .models import (
    CancelSet,
    Cardinality,
    Column,
    Entity,
    EntityParameters,
    Index,
    Operation,
    Relationship,
    Schema,
    StoreAssignment,
)

__all__ = [
    "SchemaLoader",
    "load_schema",
    "CancelSet",
    "Cardinality",
    "Column",
    "Entity",
    "EntityParameters",
    "Index",
    "Operation",
    "Relationship",
    "Schema",
    "StoreAssignment",
]
