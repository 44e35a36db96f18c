"""
Document and unassigned backend strategies.

Both expose the full repository contract, but every operation fails with
the entity's ``notImplemented`` error. Entities assigned to a document store,
or to no store at all, still get a repository so callers see a uniform
surface.
"""

from __future__ import annotations

import logging
from typing import Any

from ..connectors.base import DocumentConnector
from ..contract import EntityRepository, PageOptions, QueryResult, SagaContext, Snapshot, UserToken, not_implemented
from ..resolver.storage import StorageType

logger = logging.getLogger(__name__)


class DocumentRepository(EntityRepository):
    """Placeholder strategy for document-store entities."""

    storage_type = StorageType.DOCUMENT

    def __init__(self, *args: Any, connector: DocumentConnector | None = None, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.connector = connector

    async def _load(self, user: UserToken, key: Any) -> Snapshot | None:
        raise not_implemented(self, "get")

    async def _load_many(self, user: UserToken, keys: list[Any]) -> list[Snapshot | None]:
        raise not_implemented(self, "get_by_codes")

    async def _query(self, user: UserToken, options: PageOptions, size: int) -> QueryResult:
        raise not_implemented(self, "list")

    async def _store(
        self,
        user: UserToken,
        snapshot: Snapshot,
        existing: Snapshot | None,
        saga: SagaContext | None,
        expected_revision: int | None = None,
    ) -> None:
        raise not_implemented(self, "save")

    async def _remove(
        self,
        user: UserToken,
        key: Any,
        existing: Snapshot,
        saga: SagaContext | None,
    ) -> None:
        raise not_implemented(self, "delete")

    async def health_check(self) -> dict[str, Any]:
        status = await super().health_check()
        status["implemented"] = False
        return status


class UnassignedRepository(DocumentRepository):
    """Strategy for entities without a configured store."""

    storage_type = StorageType.DEFAULT
