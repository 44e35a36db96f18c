"""
Repository contract.

Value types shared by every backend (user token, page options, pages, saga
context) and the ``EntityRepository`` base class. The base class owns the
parts of each operation that do not depend on the backend:

- operation enablement (cancelled operations raise ``notImplemented``)
- user and primary key validation
- error translation and the structured operation context
- hydration of stored snapshots into aggregates
- relationship accessors (``get_<parent>`` / ``get_<parents>_by_codes``)

Backends implement the ``_load`` / ``_load_many`` / ``_query`` / ``_store`` /
``_remove`` hooks.
"""

from __future__ import annotations

import asyncio
import logging
import math
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Literal

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from .catalog import ErrorCatalog
from .errors import DomainError, ErrorKind, ErrorSeverity, NotFoundError, translate_errors
from .logging_config import create_log_context
from .resolver.relationships import TableProperties, get_unique_relationships
from .resolver.storage import StoragePlan, StorageType
from .schema.models import Entity, Operation, Relationship, Schema
from .schema.naming import pascal_case, pluralize, snake_case

if TYPE_CHECKING:
    from .repository.hydration import Hydrator

logger = logging.getLogger(__name__)

Aggregate = dict[str, Any]
Snapshot = dict[str, Any]


@dataclass(frozen=True)
class UserToken:
    """Acting user; ``tenant`` scopes every stored key and stream."""
    sub: str
    tenant: str
    preferred_username: str | None = None
    roles: tuple[str, ...] = ()


class PageOptions(BaseModel):
    """Paging, ordering and filtering of a ``list`` call."""

    page: int = Field(default=1, ge=1)
    size: int | None = Field(default=None, ge=1, le=1000)
    order_by: str | None = None
    order: Literal["ASC", "DESC"] = "ASC"
    filters: dict[str, Any] = Field(default_factory=dict)

    model_config = {"extra": "forbid"}


@dataclass
class PageMeta:
    page: int
    size: int
    item_count: int
    page_count: int
    has_previous_page: bool
    has_next_page: bool

    @classmethod
    def build(cls, page: int, size: int, item_count: int) -> "PageMeta":
        page_count = math.ceil(item_count / size) if size else 0
        return cls(
            page=page,
            size=size,
            item_count=item_count,
            page_count=page_count,
            has_previous_page=page > 1,
            has_next_page=page < page_count,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "page": self.page,
            "size": self.size,
            "itemCount": self.item_count,
            "pageCount": self.page_count,
            "hasPreviousPage": self.has_previous_page,
            "hasNextPage": self.has_next_page,
        }


@dataclass
class Page:
    data: list[Aggregate]
    meta: PageMeta

    def to_dict(self) -> dict[str, Any]:
        return {"data": self.data, "meta": self.meta.to_dict()}


@dataclass(frozen=True)
class SagaContext:
    """
    Distributed-workflow metadata passed by callers that may retry.

    ``operation_id`` is the idempotency key: a save carrying an operation id
    that was already applied returns the stored result instead of applying
    it again.
    """
    saga_id: str
    operation_id: str
    correlation_id: str | None = None
    causation_id: str | None = None
    is_retry: bool = False


@dataclass(frozen=True)
class QueryResult:
    """Snapshots of one page plus the total number of matches."""
    snapshots: list[Snapshot] = field(default_factory=list)
    total: int = 0


class EntityRepository(ABC):
    """
    Uniform data-access surface of one entity.

    Attributes:
        entity: Entity served by this repository
        plan: Resolved storage plan of the entity
        properties: Resolved shape (primary column, indexes, relation columns)
        errors: Error catalog of the entity
    """

    storage_type: StorageType = StorageType.DEFAULT
    default_page_size: int = 20

    def __init__(
        self,
        schema: Schema,
        entity: Entity,
        plan: StoragePlan,
        properties: TableProperties,
        errors: ErrorCatalog,
        hydrator: Hydrator | None = None,
        peers: Callable[[str], "EntityRepository | None"] | None = None,
    ) -> None:
        self.schema = schema
        self.entity = entity
        self.plan = plan
        self.properties = properties
        self.errors = errors
        self.hydrator = hydrator
        self._peers = peers or (lambda name: None)
        self._accessors = self._build_accessors()

    # ===== Identity =====

    @property
    def component(self) -> str:
        return f"{self.properties.class_name}Repository"

    @property
    def primary_key(self) -> str:
        primary = self.properties.primary_column
        if primary is None:
            raise self.errors.error(ErrorKind.NOT_IMPLEMENTED.value)
        return primary.name

    @property
    def tenant_column(self) -> str:
        return self.entity.tenant_column

    def subject_key(self, value: Any) -> str | None:
        if value is None:
            return None
        if isinstance(value, dict):
            key = value.get(self.properties.primary_column.name) if self.properties.primary_column else None
            return None if key is None else str(key)
        if isinstance(value, (list, tuple)):
            return ",".join(str(v) for v in value)
        return str(value)

    def peer(self, entity_name: str) -> "EntityRepository | None":
        return self._peers(entity_name)

    def log_context(self, operation: str, subject: Any = None, user: UserToken | None = None) -> dict[str, Any]:
        return create_log_context(self.component, operation, subject, user)

    # ===== Contract =====

    @translate_errors("get", ErrorKind.NOT_FOUND)
    async def get(self, user: UserToken, key: Any) -> Aggregate:
        """
        Fetch one hydrated aggregate.

        Raises:
            NotFoundError: If no aggregate is stored under ``key``
        """
        self._require_enabled(Operation.GET)
        snapshot = await self._load(user, key)
        if snapshot is None:
            raise self.errors.error(ErrorKind.NOT_FOUND.value, context=self.log_context("get", key, user))
        return await self._hydrate(user, snapshot)

    @translate_errors("get_by_codes", ErrorKind.NOT_FOUND)
    async def get_by_codes(self, user: UserToken, keys: list[Any]) -> list[Aggregate]:
        """Fetch many aggregates; keys without a stored aggregate are omitted."""
        self._require_enabled(Operation.GET)
        self._require_enabled(Operation.BATCH)
        unique_keys = list(dict.fromkeys(k for k in keys or [] if k is not None))
        if not unique_keys:
            return []
        snapshots = await self._load_many(user, unique_keys)
        return await self._hydrate_many(user, [s for s in snapshots if s is not None])

    @translate_errors("list", ErrorKind.NOT_FOUND)
    async def list(self, user: UserToken, options: PageOptions | dict[str, Any] | None = None) -> Page:
        """Filtered, ordered page of aggregates; only entities with indexed columns support it."""
        if not self.properties.indexed_columns:
            raise self.errors.error(ErrorKind.NOT_IMPLEMENTED.value)
        page_options = self._page_options(options)
        size = page_options.size or self.default_page_size

        result = await self._query(user, page_options, size)
        data = await self._hydrate_many(user, result.snapshots)
        return Page(data=data, meta=PageMeta.build(page_options.page, size, result.total))

    @translate_errors("save", ErrorKind.UPDATE)
    async def save(
        self,
        user: UserToken,
        aggregate: Aggregate,
        saga: SagaContext | None = None,
        expected_revision: int | None = None,
    ) -> Aggregate:
        """
        Create or update an aggregate and return it freshly loaded.

        Args:
            user: Acting user
            aggregate: Aggregate or flat snapshot to persist
            saga: Workflow context; its operation id makes the save idempotent
                on backends that record it
            expected_revision: Revision the caller last read; checked by
                backends with optimistic concurrency

        Raises:
            UnauthorizedError: If no user is given
            ValidationError: If the primary key is missing and not generated
            OperationNotImplementedError: If create or update is cancelled and
                the saga operation was not already applied
            CreateError: If the backend fails while creating
            UpdateError: If the backend fails while updating
        """
        if user is None:
            raise self.errors.error(ErrorKind.UNAUTHORIZED.value)
        if not isinstance(aggregate, dict):
            raise self.errors.error(ErrorKind.VALIDATION.value, details={"reason": "aggregate must be a mapping"})

        snapshot = self.to_snapshot(user, aggregate)
        key = snapshot.get(self.primary_key)
        existing = await self._load(user, key)
        if saga is not None and await self.operation_applied(user, key, saga.operation_id):
            logger.info(f"{self.component}: operation {saga.operation_id} already applied to {key}")
        else:
            await self._store_checked(user, snapshot, existing, saga, expected_revision)

        stored = await self._load(user, key)
        if stored is None:
            raise self.errors.error(ErrorKind.NOT_FOUND.value, context=self.log_context("save", key, user))
        return await self._hydrate(user, stored)

    @translate_errors("delete", ErrorKind.DELETE)
    async def delete(self, user: UserToken, key: Any, saga: SagaContext | None = None) -> None:
        """Remove an aggregate after verifying it exists."""
        self._require_enabled(Operation.DELETE)
        if user is None:
            raise self.errors.error(ErrorKind.UNAUTHORIZED.value)
        existing = await self._load(user, key)
        if existing is None:
            raise self.errors.error(ErrorKind.NOT_FOUND.value, context=self.log_context("delete", key, user))
        await self._remove(user, key, existing, saga)

    async def _store_checked(
        self,
        user: UserToken,
        snapshot: Snapshot,
        existing: Snapshot | None,
        saga: SagaContext | None,
        expected_revision: int | None,
    ) -> None:
        """Store after checking enablement; backend faults become create or update errors."""
        creating = existing is None
        self._require_enabled(Operation.CREATE if creating else Operation.UPDATE)
        try:
            await self._store(user, snapshot, existing, saga, expected_revision=expected_revision)
        except DomainError:
            raise
        except Exception as e:
            kind = ErrorKind.CREATE if creating else ErrorKind.UPDATE
            key = snapshot.get(self.primary_key)
            error = self.errors.error(
                kind.value,
                context=self.log_context("save", key, user),
                details={"original_type": type(e).__name__},
            )
            error.severity = ErrorSeverity.HIGH
            logger.error(f"{self.component}.save failed: {type(e).__name__}: {e}")
            raise error from e

    # ===== Backend Hooks =====

    async def operation_applied(self, user: UserToken, key: Any, operation_id: str) -> bool:
        """True when ``operation_id`` was already applied to ``key``; only the event log records it."""
        return False

    @abstractmethod
    async def _load(self, user: UserToken, key: Any) -> Snapshot | None:
        pass

    async def _load_many(self, user: UserToken, keys: list[Any]) -> list[Snapshot | None]:
        return list(await asyncio.gather(*(self._load(user, k) for k in keys)))

    @abstractmethod
    async def _query(self, user: UserToken, options: PageOptions, size: int) -> QueryResult:
        pass

    @abstractmethod
    async def _store(
        self,
        user: UserToken,
        snapshot: Snapshot,
        existing: Snapshot | None,
        saga: SagaContext | None,
        expected_revision: int | None = None,
    ) -> None:
        pass

    @abstractmethod
    async def _remove(
        self,
        user: UserToken,
        key: Any,
        existing: Snapshot,
        saga: SagaContext | None,
    ) -> None:
        pass

    # ===== Snapshots and Hydration =====

    def to_snapshot(self, user: UserToken, aggregate: Aggregate) -> Snapshot:
        """
        Flatten an aggregate into its stored form.

        Relation values are reduced to the parent keys they reference and
        stored under the column's snapshot key; everything else is copied.
        """
        snapshot = dict(aggregate)
        primary = self.properties.primary_column
        if primary is not None and snapshot.get(primary.name) in (None, ""):
            if not primary.has_generated_default:
                raise self.errors.error(
                    ErrorKind.VALIDATION.value,
                    details={"field": primary.name, "reason": "primary key required"},
                )
            snapshot[primary.name] = str(uuid.uuid4())

        for obj in self.properties.reference_columns:
            col = obj.column
            if col.name not in snapshot:
                continue
            value = snapshot.pop(col.name)
            snapshot[col.snapshot_key] = _reference_of(value, obj.relationship.parent_column)
        snapshot[self.tenant_column] = user.tenant
        return snapshot

    def scrub(self, snapshot: Snapshot) -> Snapshot:
        """Drop storage-only fields before a snapshot is returned to callers."""
        return {k: v for k, v in snapshot.items() if k != self.tenant_column}

    async def _hydrate(self, user: UserToken, snapshot: Snapshot) -> Aggregate:
        if self.hydrator is None:
            return self.scrub(snapshot)
        return await self.hydrator.hydrate(user, self.scrub(snapshot))

    async def _hydrate_many(self, user: UserToken, snapshots: list[Snapshot]) -> list[Aggregate]:
        """Hydrate concurrently; aggregates whose required relations are missing are dropped."""
        results = await asyncio.gather(
            *(self._hydrate(user, s) for s in snapshots),
            return_exceptions=True,
        )
        aggregates = []
        for snapshot, result in zip(snapshots, results):
            if isinstance(result, NotFoundError):
                logger.warning(
                    f"{self.component}: dropping {self.subject_key(snapshot)} from batch: {result.key}",
                )
                continue
            if isinstance(result, BaseException):
                raise result
            aggregates.append(result)
        return aggregates

    # ===== Relationship Accessors =====

    def _build_accessors(self) -> dict[str, Callable[..., Awaitable[Any]]]:
        accessors: dict[str, Callable[..., Awaitable[Any]]] = {}
        for rel in get_unique_relationships(self.schema, self.entity):
            singular = snake_case(pascal_case(rel.parent_entity))
            plural = snake_case(pascal_case(pluralize(rel.parent_entity)))
            accessors[f"get_{singular}"] = _bind(self.fetch_parent, rel)
            accessors[f"get_{plural}_by_codes"] = _bind(self.fetch_parents, rel)
        return accessors

    @property
    def accessors(self) -> list[str]:
        return list(self._accessors)

    def __getattr__(self, name: str) -> Any:
        accessors = self.__dict__.get("_accessors") or {}
        if name in accessors:
            return accessors[name]
        raise AttributeError(f"{type(self).__name__} has no attribute '{name}'")

    async def fetch_parent(self, rel: Relationship, user: UserToken, key: Any) -> Aggregate:
        """
        Fetch the parent referenced through ``rel``.

        Raises:
            NotFoundError: ``<Parent>NotFound`` when the parent does not exist
        """
        item = await self._fetch_parent_native(rel, user, key)
        if item is None:
            peer = self.peer(rel.parent_entity)
            if peer is not None:
                try:
                    item = await peer.get(user, key)
                except NotFoundError:
                    item = None
        if item is None:
            raise self.errors.error(
                f"{pascal_case(rel.parent_entity)}NotFound",
                context=self.log_context(f"get_{snake_case(pascal_case(rel.parent_entity))}", key, user),
            )
        return item

    async def fetch_parents(self, rel: Relationship, user: UserToken, keys: list[Any]) -> list[Aggregate]:
        peer = self.peer(rel.parent_entity)
        if peer is None:
            return []
        return await peer.get_by_codes(user, keys)

    async def _fetch_parent_native(self, rel: Relationship, user: UserToken, key: Any) -> Aggregate | None:
        """Native join lookup; backends without one return None."""
        return None

    # ===== Helpers =====

    def _require_enabled(self, operation: Operation) -> None:
        if not self.plan.allows(operation):
            raise self.errors.error(
                ErrorKind.NOT_IMPLEMENTED.value,
                details={"operation": operation.value},
            )

    def _page_options(self, options: PageOptions | dict[str, Any] | None) -> PageOptions:
        if isinstance(options, PageOptions):
            page_options = options
        else:
            try:
                page_options = PageOptions(**(options or {}))
            except PydanticValidationError as e:
                raise self.errors.error(
                    ErrorKind.VALIDATION.value,
                    details={"errors": e.errors(include_url=False)},
                ) from e
        if page_options.size is None and self.default_page_size:
            return page_options.model_copy(update={"size": self.default_page_size})
        return page_options

    def order_column(self, options: PageOptions) -> str | None:
        """
        Column to order by: the requested one, else the first index.

        Raises:
            ValidationError: If ``order_by`` is not an indexed column or the
                primary key
        """
        allowed = [c.name for c in self.properties.indexed_columns]
        if self.properties.primary_column is not None:
            allowed.append(self.properties.primary_column.name)
        if options.order_by:
            if options.order_by not in allowed:
                raise self.errors.error(
                    ErrorKind.VALIDATION.value,
                    details={"order_by": options.order_by, "allowed": allowed},
                )
            return options.order_by
        return allowed[0] if allowed else None

    async def health_check(self) -> dict[str, Any]:
        return {
            "status": "healthy",
            "component": self.component,
            "storage_type": self.storage_type.value,
        }


def _bind(
    method: Callable[..., Awaitable[Any]],
    rel: Relationship,
) -> Callable[..., Awaitable[Any]]:
    async def accessor(user: UserToken, key: Any) -> Any:
        return await method(rel, user, key)

    accessor.__name__ = method.__name__
    return accessor


def _reference_of(value: Any, parent_column: str) -> Any:
    """Reduce a relation value (aggregate, list of aggregates, or raw key) to keys."""
    if isinstance(value, dict):
        return value.get(parent_column, value)
    if isinstance(value, (list, tuple)):
        return [_reference_of(v, parent_column) for v in value]
    return value


def not_implemented(repository: EntityRepository, operation: str) -> DomainError:
    return repository.errors.error(ErrorKind.NOT_IMPLEMENTED.value, details={"operation": operation})
