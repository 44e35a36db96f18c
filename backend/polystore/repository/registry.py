"""
Repository registry.

Synthesizes one repository per entity of a schema. Each entity's storage
plan is resolved once, here, into a bound strategy object; repositories
find their peers (for hydration and relationship accessors) through the
registry. The registry also owns the connectors and the projection runners
of event-log entities, and exposes their lifecycle.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Iterator

from ..catalog import build_error_catalog
from ..config import PolystoreConfig
from ..connectors.base import Connector, DocumentConnector, EventLogConnector, KeyValueConnector
from ..connectors.kurrent import KurrentEventLogConnector
from ..connectors.memory import MemoryEventLogConnector, MemoryKeyValueConnector
from ..connectors.redis_store import RedisKeyValueConnector
from ..connectors.relational import RelationalConnector
from ..contract import EntityRepository
from ..logging_config import setup_logging
from ..projection.cache import (
    KeyValueProjectionCache,
    MemoryProjectionCache,
    ProjectionCache,
    RelationalProjectionCache,
)
from ..projection.checkpoint import CheckpointStore, MemoryCheckpointStore, RedisCheckpointStore
from ..projection.runner import ProjectionRunner
from ..resolver.relationships import get_table_properties
from ..resolver.storage import ProjectionType, StoragePlan, StorageType, resolve_storage_plan
from ..schema.loader import load_schema
from ..schema.models import Entity, Schema
from .document import DocumentRepository, UnassignedRepository
from .event_log import EventLogRepository, stream_prefix
from .hydration import Hydrator
from .key_value import KeyValueRepository
from .relational import RelationalRepository

logger = logging.getLogger(__name__)


class RepositoryRegistry:
    """
    Repositories of every entity in a schema.

    Connectors not passed explicitly are created from ``config`` the first
    time an entity needs them.

    Usage:
        registry = RepositoryRegistry(schema)
        await registry.start()
        invoice = await registry["Invoice"].get(user, "INV-1")
        await registry.stop()
    """

    def __init__(
        self,
        schema: Schema,
        config: PolystoreConfig | None = None,
        relational: RelationalConnector | None = None,
        key_value: KeyValueConnector | None = None,
        event_log: EventLogConnector | None = None,
        document: DocumentConnector | None = None,
        checkpoints: CheckpointStore | None = None,
    ) -> None:
        self.schema = schema
        self.config = config or PolystoreConfig()
        self._relational = relational
        self._key_value = key_value
        self._event_log = event_log
        self._document = document
        self._checkpoints = checkpoints
        self._used: list[Connector] = []

        self._repositories: dict[str, EntityRepository] = {}
        self.projections: dict[str, ProjectionRunner] = {}
        self.plans: dict[str, StoragePlan] = {}
        self.skipped: list[str] = []
        self._running = False

        self._factories: dict[StorageType, Callable[[dict[str, Any], Entity, StoragePlan], EntityRepository]] = {
            StorageType.RELATIONAL: self._relational_repository,
            StorageType.KEY_VALUE: self._key_value_repository,
            StorageType.EVENT_LOG: self._event_log_repository,
            StorageType.DOCUMENT: self._document_repository,
            StorageType.DEFAULT: self._unassigned_repository,
        }
        self._build()

    @classmethod
    def from_config(cls, config: PolystoreConfig, **connectors: Any) -> "RepositoryRegistry":
        """Load the schema named by ``config.schema_path`` and build the registry."""
        if not config.schema_path:
            raise ValueError("config.schema_path is required to build a registry from config")
        setup_logging(
            level=config.logging.level,
            log_file=config.logging.file,
            structured_console=config.logging.structured_console,
        )
        return cls(load_schema(config.schema_path), config=config, **connectors)

    # ===== Connectors =====

    def _use(self, connector: Connector) -> Connector:
        if connector not in self._used:
            self._used.append(connector)
        return connector

    @property
    def relational(self) -> RelationalConnector:
        if self._relational is None:
            settings = self.config.relational
            self._relational = RelationalConnector(
                settings.resolve_database_url(),
                pool_size=settings.pool_size,
                echo=settings.echo_sql,
            )
        return self._use(self._relational)

    @property
    def key_value(self) -> KeyValueConnector:
        if self._key_value is None:
            settings = self.config.key_value
            if settings.backend == "redis":
                self._key_value = RedisKeyValueConnector(settings.resolve_redis_url(), key_prefix=settings.key_prefix)
            else:
                self._key_value = MemoryKeyValueConnector()
        return self._use(self._key_value)

    @property
    def event_log(self) -> EventLogConnector:
        if self._event_log is None:
            settings = self.config.event_log
            if settings.backend == "kurrentdb":
                self._event_log = KurrentEventLogConnector(settings.resolve_uri())
            else:
                self._event_log = MemoryEventLogConnector()
        return self._use(self._event_log)

    @property
    def checkpoints(self) -> CheckpointStore:
        if self._checkpoints is None:
            settings = self.config.projection
            if settings.checkpoint_backend == "redis":
                self._checkpoints = RedisCheckpointStore(
                    self.config.key_value.resolve_redis_url(),
                    prefix=settings.checkpoint_prefix,
                )
            else:
                self._checkpoints = MemoryCheckpointStore()
        return self._checkpoints

    # ===== Synthesis =====

    def _build(self) -> None:
        for entity in self.schema:
            if entity.should_skip:
                logger.info(f"Skipping {entity.name}: no usable primary key")
                self.skipped.append(entity.name)
                continue

            plan = resolve_storage_plan(self.schema, entity)
            properties = get_table_properties(self.schema, entity)
            errors = build_error_catalog(self.schema, entity)
            hydrator = Hydrator(properties, self.get, errors) if properties.relation_columns else None
            common = {
                "schema": self.schema,
                "entity": entity,
                "plan": plan,
                "properties": properties,
                "errors": errors,
                "hydrator": hydrator,
                "peers": self.get,
            }
            self.plans[entity.name] = plan
            self._repositories[entity.name] = self._factories[plan.storage_type](common, entity, plan)
            logger.debug(f"Built {plan.storage_type.value} repository for {entity.name}")

        logger.info(
            f"Registry built: {len(self._repositories)} repositories, "
            f"{len(self.projections)} projections, {len(self.skipped)} skipped"
        )

    def _relational_repository(self, common: dict[str, Any], entity: Entity, plan: StoragePlan) -> EntityRepository:
        return RelationalRepository(
            connector=self.relational,
            page_size=self.config.projection.default_page_size,
            **common,
        )

    def _key_value_repository(self, common: dict[str, Any], entity: Entity, plan: StoragePlan) -> EntityRepository:
        return KeyValueRepository(
            connector=self.key_value,
            page_size=self.config.key_value.list_page_size,
            **common,
        )

    def _event_log_repository(self, common: dict[str, Any], entity: Entity, plan: StoragePlan) -> EntityRepository:
        context = self.config.event_log.context or self.schema.context
        version = self.config.event_log.version or self.schema.version
        projection = None
        if plan.projection_type is not None:
            projection = self._projection(entity, plan.projection_type, context, version)

        repository = EventLogRepository(
            connector=self.event_log,
            projection=projection,
            context=context,
            version=version,
            **common,
        )
        repository.default_page_size = self.config.projection.default_page_size
        return repository

    def _document_repository(self, common: dict[str, Any], entity: Entity, plan: StoragePlan) -> EntityRepository:
        return DocumentRepository(connector=self._document, **common)

    def _unassigned_repository(self, common: dict[str, Any], entity: Entity, plan: StoragePlan) -> EntityRepository:
        return UnassignedRepository(**common)

    def _projection_cache(self, entity: Entity, projection_type: ProjectionType) -> ProjectionCache:
        if projection_type == ProjectionType.KEY_VALUE:
            return KeyValueProjectionCache(entity, self.key_value)
        if projection_type == ProjectionType.RELATIONAL:
            return RelationalProjectionCache(entity, self.relational)
        return MemoryProjectionCache(entity)

    def _projection(
        self,
        entity: Entity,
        projection_type: ProjectionType,
        context: str,
        version: str,
    ) -> ProjectionRunner:
        prefix = stream_prefix(context, entity.name, version)
        settings = self.config.projection
        runner = ProjectionRunner(
            name=prefix.rstrip("-"),
            connector=self.event_log,
            stream_prefix=prefix,
            class_name=get_table_properties(self.schema, entity).class_name,
            cache=self._projection_cache(entity, projection_type),
            checkpoints=self.checkpoints,
            max_retries=settings.max_retries,
            base_delay=settings.base_delay,
            max_delay=settings.max_delay,
        )
        self.projections[entity.name] = runner
        return runner

    # ===== Lookup =====

    def get(self, entity_name: str) -> EntityRepository | None:
        return self._repositories.get(entity_name)

    def __getitem__(self, entity_name: str) -> EntityRepository:
        repository = self._repositories.get(entity_name)
        if repository is None:
            raise KeyError(f"No repository for entity '{entity_name}'")
        return repository

    def __contains__(self, entity_name: object) -> bool:
        return entity_name in self._repositories

    def __iter__(self) -> Iterator[EntityRepository]:
        return iter(self._repositories.values())

    def __len__(self) -> int:
        return len(self._repositories)

    @property
    def names(self) -> list[str]:
        return list(self._repositories)

    # ===== Lifecycle =====

    async def start(self) -> None:
        """Connect every used connector, then start all projections."""
        if self._running:
            return
        for connector in self._used:
            await connector.connect()
        if self.projections:
            await self.checkpoints.connect()
            await asyncio.gather(*(runner.start() for runner in self.projections.values()))
        self._running = True
        logger.info(f"Registry started with {len(self._used)} connectors")

    async def stop(self) -> None:
        await asyncio.gather(*(runner.stop() for runner in self.projections.values()))
        if self._checkpoints is not None:
            await self._checkpoints.close()
        for connector in reversed(self._used):
            try:
                await connector.close()
            except Exception as e:
                logger.warning(f"Error closing {type(connector).__name__}: {e}")
        self._running = False
        logger.info("Registry stopped")

    def is_healthy(self) -> bool:
        """Running, and every projection is running with a ready cache."""
        return self._running and all(runner.is_healthy() for runner in self.projections.values())

    async def health_check(self) -> dict[str, Any]:
        repositories = {
            name: await repository.health_check()
            for name, repository in self._repositories.items()
        }
        projections = {
            name: await runner.health_check()
            for name, runner in self.projections.items()
        }
        healthy = self.is_healthy() and all(
            status.get("status") == "healthy" for status in repositories.values()
        )
        return {
            "status": "healthy" if healthy else "unhealthy",
            "running": self._running,
            "repositories": repositories,
            "projections": projections,
            "skipped": self.skipped,
        }
