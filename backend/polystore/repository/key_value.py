"""
Key-value backend strategy.

Each aggregate is stored whole, as a flat snapshot, under its primary key in
a per-tenant, per-entity namespace. ``get_by_codes`` is one multi-get; ``list``
loads the namespace and filters, sorts and paginates in process.
"""

from __future__ import annotations

import logging
from typing import Any

from ..connectors.base import KeyValueConnector
from ..contract import EntityRepository, PageOptions, QueryResult, SagaContext, Snapshot, UserToken
from ..filtering import select_page
from ..resolver.storage import StorageType
from ..schema.naming import snake_case

logger = logging.getLogger(__name__)


class KeyValueRepository(EntityRepository):
    """Entity repository backed by a ``KeyValueConnector``."""

    storage_type = StorageType.KEY_VALUE

    def __init__(self, *args: Any, connector: KeyValueConnector, page_size: int = 250, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.connector = connector
        self.default_page_size = page_size

    def namespace(self, user: UserToken) -> str:
        return f"{user.tenant}:{snake_case(self.entity.name)}"

    async def _load(self, user: UserToken, key: Any) -> Snapshot | None:
        if key is None:
            return None
        return await self.connector.get(self.namespace(user), str(key))

    async def _load_many(self, user: UserToken, keys: list[Any]) -> list[Snapshot | None]:
        return await self.connector.multi_get(self.namespace(user), [str(k) for k in keys])

    async def _query(self, user: UserToken, options: PageOptions, size: int) -> QueryResult:
        stored = await self.connector.scan_all(self.namespace(user))
        fulltext = {c.name for c in self.properties.indexed_columns if self.entity.is_fulltext(c.name)}
        unknown = [f for f in options.filters if self.entity.column(f) is None]
        if unknown:
            logger.debug(f"{self.component}: ignoring filters on unknown columns {unknown}")
        filters = {k: v for k, v in options.filters.items() if k not in unknown}

        snapshots, total = select_page(
            stored.values(),
            filters,
            fulltext,
            self.order_column(options),
            options.order == "DESC",
            offset=(options.page - 1) * size,
            limit=size,
        )
        return QueryResult(snapshots=snapshots, total=total)

    async def _store(
        self,
        user: UserToken,
        snapshot: Snapshot,
        existing: Snapshot | None,
        saga: SagaContext | None,
        expected_revision: int | None = None,
    ) -> None:
        key = str(snapshot[self.primary_key])
        value = {**existing, **snapshot} if existing else snapshot
        await self.connector.set(self.namespace(user), key, value)
        logger.debug(f"{self.component}: stored {key} in {self.namespace(user)}")

    async def _remove(
        self,
        user: UserToken,
        key: Any,
        existing: Snapshot,
        saga: SagaContext | None,
    ) -> None:
        await self.connector.delete(self.namespace(user), str(key))

    async def health_check(self) -> dict[str, Any]:
        status = await super().health_check()
        status["connector"] = await self.connector.health_check()
        if status["connector"].get("status") != "healthy":
            status["status"] = "unhealthy"
        return status
