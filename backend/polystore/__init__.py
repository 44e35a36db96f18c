"""
Polystore - Schema-driven data access over interchangeable backends.

From a declarative data model (entities, columns, relationships and a
per-entity storage assignment) polystore builds one repository per entity
with a uniform contract, backed by a relational store, a key-value store,
an append-only event log or a document store.

Architecture:
┌─────────────────────────────────────────────────────────────┐
│                    Registry Layer                            │
│         (Per-entity synthesis, peers, lifecycle)            │
├─────────────────────────────────────────────────────────────┤
│                    Repository Layer                          │
│   (Contract, Hydration, Relational/KV/Event log/Document)   │
├─────────────────────────────────────────────────────────────┤
│                    Projection Layer                          │
│         (Runner, Checkpoints, Read caches)                  │
├─────────────────────────────────────────────────────────────┤
│                    Resolver Layer                            │
│         (Relationships, Storage assignment, Errors)         │
├─────────────────────────────────────────────────────────────┤
│                    Schema & Connectors                       │
│         (Models, Loader, SQLAlchemy, Redis, KurrentDB)      │
└─────────────────────────────────────────────────────────────┘
"""

from .config import PolystoreConfig, get_config, load_config, set_config
from .contract import EntityRepository, Page, PageMeta, PageOptions, SagaContext, UserToken
from .errors import (
    ConcurrencyConflictError,
    CreateError,
    DeleteError,
    DomainError,
    NotFoundError,
    OperationNotImplementedError,
    ProjectionNotAvailableError,
    UnauthorizedError,
    UpdateError,
    ValidationError,
)
from .repository import RepositoryRegistry
from .schema import Schema, SchemaLoader, load_schema

__version__ = "0.1.0"

__all__ = [
    "PolystoreConfig",
    "get_config",
    "load_config",
    "set_config",
    "EntityRepository",
    "Page",
    "PageMeta",
    "PageOptions",
    "SagaContext",
    "UserToken",
    "ConcurrencyConflictError",
    "CreateError",
    "DeleteError",
    "DomainError",
    "NotFoundError",
    "OperationNotImplementedError",
    "ProjectionNotAvailableError",
    "UnauthorizedError",
    "UpdateError",
    "ValidationError",
    "RepositoryRegistry",
    "Schema",
    "SchemaLoader",
    "load_schema",
]
