"""
Relational backend strategy.

Rows live in one table per entity, scoped by the tenant column. ``list`` is
a filtered, counted and paginated query; ordering is validated against the
indexed columns and defaults to the first index ascending. Parents stored in
the same database are fetched with a native query instead of a peer call.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import Table, delete, func, insert, select, update

from ..connectors.relational import RelationalConnector
from ..contract import Aggregate, EntityRepository, PageOptions, QueryResult, SagaContext, Snapshot, UserToken
from ..resolver.storage import StorageType, is_join_valid
from ..schema.models import Relationship

logger = logging.getLogger(__name__)


class RelationalRepository(EntityRepository):
    """Entity repository backed by a ``RelationalConnector``."""

    storage_type = StorageType.RELATIONAL

    def __init__(self, *args: Any, connector: RelationalConnector, page_size: int = 20, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.connector = connector
        self.default_page_size = page_size
        self.table: Table = connector.register_entity(self.entity)

    def _scope(self, user: UserToken) -> list[Any]:
        return [self.table.c[self.tenant_column] == user.tenant]

    def _row_values(self, snapshot: Snapshot) -> dict[str, Any]:
        return {k: v for k, v in snapshot.items() if k in self.table.c}

    async def _load(self, user: UserToken, key: Any) -> Snapshot | None:
        if key is None:
            return None
        stmt = select(self.table).where(
            *self._scope(user),
            self.table.c[self.primary_key] == key,
        )
        async with self.connector.session() as session:
            row = (await session.execute(stmt)).mappings().first()
        return dict(row) if row is not None else None

    async def _load_many(self, user: UserToken, keys: list[Any]) -> list[Snapshot | None]:
        stmt = select(self.table).where(
            *self._scope(user),
            self.table.c[self.primary_key].in_(keys),
        )
        async with self.connector.session() as session:
            rows = (await session.execute(stmt)).mappings().all()
        by_key = {str(row[self.primary_key]): dict(row) for row in rows}
        return [by_key.get(str(k)) for k in keys]

    def _filter_conditions(self, options: PageOptions) -> list[Any]:
        conditions = []
        for name, value in options.filters.items():
            if value is None or value == "" or name not in self.table.c:
                continue
            column = self.table.c[name]
            if isinstance(value, (list, tuple)):
                conditions.append(column.in_(value))
            elif isinstance(value, str) and self.entity.is_fulltext(name):
                conditions.append(column.ilike(f"%{value}%"))
            else:
                conditions.append(column == value)
        return conditions

    async def _query(self, user: UserToken, options: PageOptions, size: int) -> QueryResult:
        conditions = self._scope(user) + self._filter_conditions(options)

        order_name = self.order_column(options)
        stmt = select(self.table).where(*conditions)
        if order_name is not None:
            column = self.table.c[order_name]
            stmt = stmt.order_by(column.desc() if options.order == "DESC" else column.asc())
        stmt = stmt.offset((options.page - 1) * size).limit(size)
        count_stmt = select(func.count()).select_from(self.table).where(*conditions)

        async with self.connector.session() as session:
            total = (await session.execute(count_stmt)).scalar_one()
            rows = (await session.execute(stmt)).mappings().all()
        return QueryResult(snapshots=[dict(row) for row in rows], total=total)

    async def _store(
        self,
        user: UserToken,
        snapshot: Snapshot,
        existing: Snapshot | None,
        saga: SagaContext | None,
        expected_revision: int | None = None,
    ) -> None:
        values = self._row_values(snapshot)
        key = values[self.primary_key]
        async with self.connector.session() as session:
            if existing is None:
                await session.execute(insert(self.table).values(**values))
            else:
                changes = {k: v for k, v in values.items() if k not in (self.primary_key, self.tenant_column)}
                if changes:
                    await session.execute(
                        update(self.table)
                        .where(*self._scope(user), self.table.c[self.primary_key] == key)
                        .values(**changes)
                    )
        logger.debug(f"{self.component}: {'updated' if existing else 'inserted'} {key}")

    async def _remove(
        self,
        user: UserToken,
        key: Any,
        existing: Snapshot,
        saga: SagaContext | None,
    ) -> None:
        async with self.connector.session() as session:
            await session.execute(
                delete(self.table).where(*self._scope(user), self.table.c[self.primary_key] == key)
            )

    async def _fetch_parent_native(self, rel: Relationship, user: UserToken, key: Any) -> Aggregate | None:
        """Query the parent's table directly when both entities share this database."""
        parent_params = self.schema.parameters_for(rel.parent_entity)
        own_params = self.schema.parameters_for(self.entity.name)
        if not is_join_valid(
            parent_params.store if parent_params else None,
            own_params.store if own_params else None,
        ):
            return None
        parent = self.schema.entity(rel.parent_entity)
        if parent is None:
            return None

        table = self.connector.register_entity(parent)
        stmt = select(table).where(
            table.c[parent.tenant_column] == user.tenant,
            table.c[rel.parent_column] == key,
        )
        async with self.connector.session() as session:
            row = (await session.execute(stmt)).mappings().first()
        if row is None:
            return None

        snapshot = dict(row)
        peer = self.peer(rel.parent_entity)
        if peer is not None:
            return await peer._hydrate(user, snapshot)
        snapshot.pop(parent.tenant_column, None)
        return snapshot

    async def health_check(self) -> dict[str, Any]:
        status = await super().health_check()
        status["connector"] = await self.connector.health_check()
        if status["connector"].get("status") != "healthy":
            status["status"] = "unhealthy"
        return status
