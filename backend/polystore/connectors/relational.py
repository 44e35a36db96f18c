"""
Relational connector.

Owns the SQLAlchemy async engine and session factory, and builds one table
per entity from its schema columns. Every table carries the entity's tenant
column and a composite primary key of (tenant, primary key).
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from sqlalchemy import (
    JSON,
    Boolean,
    Column as SAColumn,
    Float,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    text,
)
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from ..schema.models import Column, Entity
from ..schema.naming import snake_case
from .base import Connector

logger = logging.getLogger(__name__)

_TYPE_MAP = {
    "string": String(255),
    "text": Text(),
    "number": Float(),
    "float": Float(),
    "decimal": Float(),
    "integer": Integer(),
    "int": Integer(),
    "boolean": Boolean(),
    "bool": Boolean(),
    "date": String(64),
    "datetime": String(64),
}


def column_type(col: Column) -> Any:
    if col.embedded or col.is_record_type or col.type.endswith("[]"):
        return JSON()
    return _TYPE_MAP.get(col.type.lower(), String(255))


class RelationalConnector(Connector):
    """Async SQLAlchemy engine plus the entity table registry."""

    backend = "relational"

    def __init__(
        self,
        database_url: str,
        pool_size: int = 10,
        echo: bool = False,
        engine: AsyncEngine | None = None,
    ) -> None:
        self.database_url = database_url
        self.pool_size = pool_size
        self.echo = echo
        self.metadata = MetaData()
        self._engine = engine
        self._session_maker: async_sessionmaker[AsyncSession] | None = None
        self._tables: dict[str, Table] = {}

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            kwargs: dict[str, Any] = {"echo": self.echo, "pool_pre_ping": True}
            if not self.database_url.startswith("sqlite"):
                kwargs.update(pool_size=self.pool_size, max_overflow=self.pool_size * 2)
            self._engine = create_async_engine(self.database_url, **kwargs)
        return self._engine

    @property
    def session_maker(self) -> async_sessionmaker[AsyncSession]:
        if self._session_maker is None:
            self._session_maker = async_sessionmaker(
                self.engine,
                class_=AsyncSession,
                expire_on_commit=False,
            )
        return self._session_maker

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Session wrapped in a transaction; commits on success, rolls back on error."""
        async with self.session_maker() as session:
            async with session.begin():
                yield session

    def register_entity(self, entity: Entity) -> Table:
        """Build (once) the table for ``entity``."""
        if entity.name in self._tables:
            return self._tables[entity.name]

        primary = entity.primary_column
        columns = [SAColumn(entity.tenant_column, String(255), primary_key=True)]
        for col in entity.columns:
            if col.name == entity.tenant_column:
                continue
            is_pk = primary is not None and col.name == primary.name
            columns.append(SAColumn(
                col.name,
                column_type(col),
                primary_key=is_pk,
                nullable=not is_pk,
                index=col.indexed and not is_pk,
            ))
            if col.reference and col.reference != col.name and entity.column(col.reference) is None:
                columns.append(SAColumn(col.reference, JSON(), nullable=True))

        table = Table(snake_case(entity.name), self.metadata, *columns)
        self._tables[entity.name] = table
        return table

    def table(self, entity_name: str) -> Table:
        return self._tables[entity_name]

    async def connect(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(self.metadata.create_all)
        logger.info(f"Relational connector ready with {len(self._tables)} tables")

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_maker = None

    async def health_check(self) -> dict[str, Any]:
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return {"status": "healthy", "backend": "relational", "tables": len(self._tables)}
        except Exception as e:
            return {"status": "unhealthy", "backend": "relational", "error": str(e)}
