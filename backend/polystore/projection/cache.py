"""
Projection read caches.

A cache holds the current flat snapshot of every live aggregate of one
entity, per tenant, together with the metadata of the event that last
changed it. The projection runner is its only writer; repositories read it
to serve ``list``.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON, Column as SAColumn, Integer, MetaData, String, Table, delete, func, insert, select, update

from ..connectors.base import KeyValueConnector
from ..connectors.relational import RelationalConnector, column_type
from ..filtering import select_page
from ..schema.models import Entity
from ..schema.naming import snake_case

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    """Cached snapshot plus the metadata of its last change."""
    snapshot: dict[str, Any]
    version: int
    source_event: str | None = None
    last_updated: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def metadata(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "last_updated": self.last_updated,
            "source_event": self.source_event,
        }

    def to_dict(self) -> dict[str, Any]:
        return {"snapshot": self.snapshot, "metadata": self.metadata()}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CacheEntry":
        metadata = data.get("metadata", {})
        return cls(
            snapshot=data.get("snapshot", {}),
            version=metadata.get("version", -1),
            source_event=metadata.get("source_event"),
            last_updated=metadata.get("last_updated") or datetime.now(timezone.utc).isoformat(),
        )


class ProjectionCache(ABC):
    """
    Read cache of one entity.

    Args:
        entity: Entity whose snapshots are cached
    """

    def __init__(self, entity: Entity) -> None:
        self.entity = entity
        self.fulltext = {c.name for c in entity.indexed_columns if entity.is_fulltext(c.name)}

    @abstractmethod
    async def get(self, tenant: str, key: str) -> CacheEntry | None:
        pass

    @abstractmethod
    async def put(self, tenant: str, key: str, entry: CacheEntry) -> None:
        pass

    @abstractmethod
    async def remove(self, tenant: str, key: str) -> bool:
        pass

    @abstractmethod
    async def query(
        self,
        tenant: str,
        filters: dict[str, Any],
        order_by: str | None,
        descending: bool,
        offset: int,
        limit: int,
    ) -> tuple[list[dict[str, Any]], int]:
        """Page of snapshots matching ``filters`` plus the total match count."""
        pass

    @abstractmethod
    async def clear(self) -> None:
        pass

    async def connect(self) -> None:
        pass

    async def close(self) -> None:
        pass

    async def health_check(self) -> dict[str, Any]:
        return {"status": "healthy", "cache": type(self).__name__}


# ===== Memory =====

class MemoryProjectionCache(ProjectionCache):
    def __init__(self, entity: Entity) -> None:
        super().__init__(entity)
        self._entries: dict[str, dict[str, CacheEntry]] = {}

    async def get(self, tenant: str, key: str) -> CacheEntry | None:
        return self._entries.get(tenant, {}).get(str(key))

    async def put(self, tenant: str, key: str, entry: CacheEntry) -> None:
        self._entries.setdefault(tenant, {})[str(key)] = entry

    async def remove(self, tenant: str, key: str) -> bool:
        return self._entries.get(tenant, {}).pop(str(key), None) is not None

    async def query(
        self,
        tenant: str,
        filters: dict[str, Any],
        order_by: str | None,
        descending: bool,
        offset: int,
        limit: int,
    ) -> tuple[list[dict[str, Any]], int]:
        snapshots = [dict(e.snapshot) for e in self._entries.get(tenant, {}).values()]
        return select_page(snapshots, filters, self.fulltext, order_by, descending, offset, limit)

    async def clear(self) -> None:
        self._entries.clear()

    async def health_check(self) -> dict[str, Any]:
        return {
            "status": "healthy",
            "cache": "memory",
            "entries": sum(len(bucket) for bucket in self._entries.values()),
        }


# ===== Key-Value =====

class KeyValueProjectionCache(ProjectionCache):
    """Cache entries stored through a ``KeyValueConnector``, one namespace per tenant."""

    def __init__(self, entity: Entity, connector: KeyValueConnector) -> None:
        super().__init__(entity)
        self.connector = connector

    def namespace(self, tenant: str) -> str:
        return f"projection:{tenant}:{snake_case(self.entity.name)}"

    async def get(self, tenant: str, key: str) -> CacheEntry | None:
        raw = await self.connector.get(self.namespace(tenant), str(key))
        return CacheEntry.from_dict(raw) if raw is not None else None

    async def put(self, tenant: str, key: str, entry: CacheEntry) -> None:
        await self.connector.set(self.namespace(tenant), str(key), entry.to_dict())

    async def remove(self, tenant: str, key: str) -> bool:
        return await self.connector.delete(self.namespace(tenant), str(key))

    async def query(
        self,
        tenant: str,
        filters: dict[str, Any],
        order_by: str | None,
        descending: bool,
        offset: int,
        limit: int,
    ) -> tuple[list[dict[str, Any]], int]:
        stored = await self.connector.scan_all(self.namespace(tenant))
        snapshots = [value.get("snapshot", {}) for value in stored.values()]
        return select_page(snapshots, filters, self.fulltext, order_by, descending, offset, limit)

    async def clear(self) -> None:
        for namespace in await self.connector.namespaces(self.namespace("*")):
            await self.connector.clear(namespace)

    async def health_check(self) -> dict[str, Any]:
        status = await self.connector.health_check()
        return {"status": status.get("status", "unhealthy"), "cache": "key_value", "connector": status}


# ===== Relational =====

class RelationalProjectionCache(ProjectionCache):
    """
    Cache entries as rows of ``<entity>_projection``.

    The full snapshot is kept in a JSON column; indexed columns are copied
    into real columns so filtering and ordering run in SQL.
    """

    def __init__(self, entity: Entity, connector: RelationalConnector) -> None:
        super().__init__(entity)
        self.connector = connector
        self.filter_columns = [c.name for c in entity.indexed_columns]
        columns = [
            SAColumn("tenant", String(255), primary_key=True),
            SAColumn("key", String(255), primary_key=True),
            SAColumn("data", JSON(), nullable=False),
            SAColumn("version", Integer(), nullable=False),
            SAColumn("last_updated", String(64), nullable=False),
            SAColumn("source_event", String(255), nullable=True),
        ]
        for col in entity.indexed_columns:
            columns.append(SAColumn(col.name, column_type(col), nullable=True, index=True))
        self.table = Table(
            f"{snake_case(entity.name)}_projection",
            MetaData(),
            *columns,
        )

    async def connect(self) -> None:
        async with self.connector.engine.begin() as conn:
            await conn.run_sync(self.table.create, checkfirst=True)

    def _row(self, tenant: str, key: str, entry: CacheEntry) -> dict[str, Any]:
        row = {
            "tenant": tenant,
            "key": str(key),
            "data": entry.snapshot,
            "version": entry.version,
            "last_updated": entry.last_updated,
            "source_event": entry.source_event,
        }
        for name in self.filter_columns:
            row[name] = entry.snapshot.get(name)
        return row

    def _where(self, tenant: str, key: str) -> list[Any]:
        return [self.table.c.tenant == tenant, self.table.c.key == str(key)]

    async def get(self, tenant: str, key: str) -> CacheEntry | None:
        stmt = select(self.table).where(*self._where(tenant, key))
        async with self.connector.session() as session:
            row = (await session.execute(stmt)).mappings().first()
        if row is None:
            return None
        return CacheEntry(
            snapshot=row["data"],
            version=row["version"],
            source_event=row["source_event"],
            last_updated=row["last_updated"],
        )

    async def put(self, tenant: str, key: str, entry: CacheEntry) -> None:
        values = self._row(tenant, key, entry)
        async with self.connector.session() as session:
            result = await session.execute(
                update(self.table).where(*self._where(tenant, key)).values(**values)
            )
            if result.rowcount == 0:
                await session.execute(insert(self.table).values(**values))

    async def remove(self, tenant: str, key: str) -> bool:
        async with self.connector.session() as session:
            result = await session.execute(delete(self.table).where(*self._where(tenant, key)))
        return result.rowcount > 0

    async def query(
        self,
        tenant: str,
        filters: dict[str, Any],
        order_by: str | None,
        descending: bool,
        offset: int,
        limit: int,
    ) -> tuple[list[dict[str, Any]], int]:
        conditions = [self.table.c.tenant == tenant]
        for name, value in filters.items():
            if value is None or value == "" or name not in self.filter_columns:
                continue
            column = self.table.c[name]
            if isinstance(value, (list, tuple)):
                conditions.append(column.in_(value))
            elif isinstance(value, str) and name in self.fulltext:
                conditions.append(column.ilike(f"%{value}%"))
            else:
                conditions.append(column == value)

        stmt = select(self.table.c.data).where(*conditions)
        if order_by in self.filter_columns:
            column = self.table.c[order_by]
            stmt = stmt.order_by(column.desc() if descending else column.asc())
        elif order_by is not None:
            stmt = stmt.order_by(self.table.c.key.desc() if descending else self.table.c.key.asc())
        stmt = stmt.offset(offset).limit(limit)
        count_stmt = select(func.count()).select_from(self.table).where(*conditions)

        async with self.connector.session() as session:
            total = (await session.execute(count_stmt)).scalar_one()
            rows = (await session.execute(stmt)).scalars().all()
        return [dict(data) for data in rows], total

    async def clear(self) -> None:
        async with self.connector.session() as session:
            await session.execute(delete(self.table))

    async def health_check(self) -> dict[str, Any]:
        status = await self.connector.health_check()
        return {"status": status.get("status", "unhealthy"), "cache": "relational", "table": self.table.name}
