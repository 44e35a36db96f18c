"""
Hydration engine.

Expands a flat stored snapshot into the full aggregate: every complex object
and special column of the entity is resolved through the peer repository of
its parent entity. All fetches of one hydration run are issued together and
joined once; required relations are validated only after the join, so a
failed hydration never returns a partial aggregate.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Callable

from ..catalog import ErrorCatalog, hydration_error_key
from ..errors import NotFoundError
from ..resolver.relationships import ComplexObject, NestedTable, TableProperties
from ..schema.models import Cardinality

if TYPE_CHECKING:
    from ..contract import EntityRepository, UserToken

logger = logging.getLogger(__name__)


class Hydrator:
    """
    Resolves the relation columns of one entity.

    Args:
        properties: Resolved table properties of the entity
        peers: Lookup from entity name to its repository
        errors: Error catalog of the entity
    """

    def __init__(
        self,
        properties: TableProperties,
        peers: Callable[[str], "EntityRepository | None"],
        errors: ErrorCatalog,
    ) -> None:
        self.properties = properties
        self.peers = peers
        self.errors = errors
        self.objects: tuple[ComplexObject, ...] = properties.relation_columns

    async def hydrate(self, user: "UserToken", snapshot: dict[str, Any]) -> dict[str, Any]:
        """
        Build the aggregate for ``snapshot``.

        Scalar fields are copied verbatim; each relation column is replaced
        by the fetched parent (or list of parents) under the column name and
        its reference key is dropped.

        Raises:
            NotFoundError: ``<Column>NotFound`` for a missing required relation
        """
        if not self.objects:
            return dict(snapshot)

        values = await asyncio.gather(*(
            self._resolve(user, obj, snapshot.get(obj.column.snapshot_key))
            for obj in self.objects
        ))

        for obj, value in zip(self.objects, values):
            if obj.required and _is_missing(value):
                raise self.errors.error(
                    hydration_error_key(obj.column.name),
                    details={"column": obj.column.name, "reference": snapshot.get(obj.column.snapshot_key)},
                )

        aggregate = dict(snapshot)
        for obj, value in zip(self.objects, values):
            col = obj.column
            if col.reference and col.reference != col.name:
                aggregate.pop(col.reference, None)
            aggregate[col.name] = value
        return aggregate

    async def _resolve(self, user: "UserToken", obj: ComplexObject, raw: Any) -> Any:
        if raw is None:
            return None
        if isinstance(raw, dict):
            return await self._resolve_nested(user, obj, raw)

        peer = self.peers(obj.parent_entity)
        if peer is None:
            logger.warning(f"No repository for {obj.parent_entity}; leaving {obj.column.name} unresolved")
            return None

        if isinstance(raw, (list, tuple)):
            return await peer.get_by_codes(user, list(raw))
        try:
            return await peer.get(user, raw)
        except NotFoundError:
            return None

    async def _resolve_nested(self, user: "UserToken", obj: ComplexObject, value: dict[str, Any]) -> dict[str, Any]:
        """Resolve the nested tables of an embedded value-type parent in place of their references."""
        if not obj.tables:
            return value

        tables = [t for t in obj.tables if value.get(t.child_column) is not None]
        fetched = await asyncio.gather(*(
            self._fetch_nested(user, table, value[table.child_column])
            for table in tables
        ))

        result = dict(value)
        for table, item in zip(tables, fetched):
            if _is_missing(item):
                raise self.errors.error(
                    hydration_error_key(table.table_name),
                    details={"column": obj.column.name, "reference": value.get(table.child_column)},
                )
            result[table.child_column] = item
        return result

    async def _fetch_nested(self, user: "UserToken", table: NestedTable, raw: Any) -> Any:
        peer = self.peers(table.table_name)
        if peer is None:
            return None
        if table.cardinality == Cardinality.MANY or isinstance(raw, (list, tuple)):
            keys = raw if isinstance(raw, (list, tuple)) else [raw]
            return await peer.get_by_codes(user, list(keys))
        try:
            return await peer.get(user, raw)
        except NotFoundError:
            return None


def _is_missing(value: Any) -> bool:
    return value is None
