"""
Tests for document-store and unassigned entities.
"""

import pytest

from polystore.errors import OperationNotImplementedError
from polystore.repository import DocumentRepository, RepositoryRegistry, UnassignedRepository
from polystore.resolver import StorageType
from polystore.schema import SchemaLoader

from conftest import build_schema


@pytest.fixture
def registry():
    return RepositoryRegistry(build_schema(Invoice={"store": {"read": "mongo", "write": "mongo"}}))


class TestDocumentRepository:
    """Every operation of a document-store entity is not implemented."""

    def test_strategy(self, registry):
        assert isinstance(registry["Invoice"], DocumentRepository)
        assert registry["Invoice"].storage_type == StorageType.DOCUMENT

    @pytest.mark.asyncio
    @pytest.mark.parametrize("operation, args", [
        ("get", ("INV-1",)),
        ("get_by_codes", (["INV-1", "INV-2"],)),
        ("list", ({"filters": {"status": "open"}},)),
        ("save", ({"invoiceId": "INV-1", "customerId": "C-1"},)),
        ("delete", ("INV-1",)),
    ])
    async def test_operation_raises(self, registry, user, operation, args):
        with pytest.raises(OperationNotImplementedError) as exc_info:
            await getattr(registry["Invoice"], operation)(user, *args)

        assert exc_info.value.code == "NOT_IMPLEMENTED_INVOICE"
        assert exc_info.value.status_code == 501

    @pytest.mark.asyncio
    async def test_health_reports_not_implemented(self, registry):
        health = await registry["Invoice"].health_check()

        assert health["implemented"] is False
        assert health["storage_type"] == "document"


class TestUnassignedRepository:
    """Entities without store parameters."""

    @pytest.fixture
    def unassigned(self, schema_data):
        del schema_data["parameters"]["Invoice"]
        return RepositoryRegistry(SchemaLoader().from_dict(schema_data))["Invoice"]

    def test_strategy(self, unassigned):
        assert isinstance(unassigned, UnassignedRepository)
        assert unassigned.storage_type == StorageType.DEFAULT

    @pytest.mark.asyncio
    async def test_get_raises(self, unassigned, user):
        with pytest.raises(OperationNotImplementedError):
            await unassigned.get(user, "INV-1")
