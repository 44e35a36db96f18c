"""
Tests for event-log projections: runner lifecycle, caches and listing.
"""

import asyncio
import copy
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock

import pytest

from polystore.connectors.base import ANY_REVISION, EventData
from polystore.connectors.memory import MemoryEventLogConnector, MemoryKeyValueConnector
from polystore.connectors.relational import RelationalConnector
from polystore.errors import ProjectionNotAvailableError
from polystore.projection import (
    CacheEntry,
    KeyValueProjectionCache,
    MemoryCheckpointStore,
    MemoryProjectionCache,
    ProjectionRunner,
    ProjectionState,
    RelationalProjectionCache,
)
from polystore.repository import RepositoryRegistry
from polystore.schema import SchemaLoader

from conftest import INVOICE_SCHEMA, build_schema

PREFIX = "billing.invoice.v1-"


def event_log_schema(list_store="memory"):
    return build_schema(Invoice={"store": {"read": "eventstream", "write": "eventstream", "list": list_store}})


@asynccontextmanager
async def running(registry):
    await registry.start()
    try:
        yield registry
    finally:
        await registry.stop()


async def seed(registry, user):
    await registry["Region"].save(user, {"regionId": "EU", "name": "Europe"})
    await registry["Customer"].save(user, {"customerId": "C-1", "name": "Acme Corp", "regionId": "EU"})
    for invoice_id, amount, status in (("INV-1", 100, "open"), ("INV-2", 250, "paid"), ("INV-3", 75, "open")):
        await registry["Invoice"].save(user, {
            "invoiceId": invoice_id,
            "customerId": "C-1",
            "amount": amount,
            "status": status,
        })


def make_runner(connector, cache, **kwargs):
    return ProjectionRunner(
        name="billing.invoice.v1",
        connector=connector,
        stream_prefix=PREFIX,
        class_name="Invoice",
        cache=cache,
        **kwargs,
    )


async def append(connector, key, event_type, data, expected_revision=ANY_REVISION):
    await connector.append(
        f"{PREFIX}acme-{key}",
        [EventData(event_type=event_type, data=data)],
        expected_revision=expected_revision,
    )


class TestEventLogListing:
    """list on event-log entities is served by the projection."""

    @pytest.fixture
    def registry(self):
        return RepositoryRegistry(event_log_schema(), event_log=MemoryEventLogConnector())

    @pytest.mark.asyncio
    async def test_unavailable_before_start(self, registry, user):
        await seed(registry, user)

        with pytest.raises(ProjectionNotAvailableError) as exc_info:
            await registry["Invoice"].list(user)

        assert exc_info.value.status_code == 503
        assert exc_info.value.code == "PROJECTION_NOT_AVAILABLE_INVOICE"
        assert exc_info.value.details["state"] == "uninitialized"

    @pytest.mark.asyncio
    async def test_unavailable_while_catching_up(self, user):
        data = copy.deepcopy(INVOICE_SCHEMA)
        data["parameters"]["Invoice"] = {"store": {"read": "eventstream", "write": "eventstream", "list": "memory"}}
        registry = RepositoryRegistry(SchemaLoader().from_dict(data), event_log=MemoryEventLogConnector())
        await registry["Customer"].save(user, {"customerId": "CUST-9", "name": "Acme"})
        await registry["Invoice"].save(user, {"invoiceId": "INV-1", "customerId": "CUST-9", "amount": 100})

        projection = registry.projections["Invoice"]
        entered = asyncio.Event()
        release = asyncio.Event()
        put = projection.cache.put

        async def blocking_put(tenant, key, entry):
            entered.set()
            await release.wait()
            await put(tenant, key, entry)

        projection.cache.put = blocking_put
        starting = asyncio.create_task(registry.start())
        try:
            await asyncio.wait_for(entered.wait(), timeout=1.0)
            assert projection.state == ProjectionState.CATCHING_UP

            with pytest.raises(ProjectionNotAvailableError) as exc_info:
                await registry["Invoice"].list(user)
            assert exc_info.value.details["state"] == "catching_up"
        finally:
            release.set()
            await starting

        try:
            page = await registry["Invoice"].list(user)
        finally:
            await registry.stop()

        assert page.data == [
            {"invoiceId": "INV-1", "amount": 100, "customer": {"customerId": "CUST-9", "name": "Acme"}},
        ]

    @pytest.mark.asyncio
    async def test_catch_up_serves_existing_events(self, registry, user):
        await seed(registry, user)

        async with running(registry):
            await registry.projections["Invoice"].wait_until_caught_up()
            page = await registry["Invoice"].list(user, {"filters": {"status": "open"}, "order_by": "amount"})

        assert [i["invoiceId"] for i in page.data] == ["INV-3", "INV-1"]
        assert page.data[0]["customer"]["name"] == "Acme Corp"
        assert page.meta.item_count == 2

    @pytest.mark.asyncio
    async def test_live_events_reach_the_cache(self, registry, user):
        async with running(registry):
            await seed(registry, user)
            await registry.projections["Invoice"].wait_until_caught_up()
            first = await registry["Invoice"].list(user)

            await registry["Invoice"].delete(user, "INV-2")
            await registry["Invoice"].save(user, {"invoiceId": "INV-1", "customerId": "C-1", "status": "paid"})
            await registry.projections["Invoice"].wait_until_caught_up()
            second = await registry["Invoice"].list(user, {"order_by": "invoiceId"})

        assert first.meta.item_count == 3
        assert [(i["invoiceId"], i["status"]) for i in second.data] == [("INV-1", "paid"), ("INV-3", "open")]

    @pytest.mark.asyncio
    async def test_list_is_tenant_scoped(self, registry, user, other_user):
        await seed(registry, user)

        async with running(registry):
            await registry.projections["Invoice"].wait_until_caught_up()
            page = await registry["Invoice"].list(other_user)

        assert page.data == []
        assert page.meta.item_count == 0

    @pytest.mark.asyncio
    async def test_registry_health_follows_projection(self, registry):
        async with running(registry):
            assert registry.is_healthy() is True
            health = await registry.health_check()
            assert health["projections"]["Invoice"]["state"] == "ready"

        assert registry.projections["Invoice"].state == ProjectionState.UNINITIALIZED
        assert registry.is_healthy() is False


class TestProjectionCaches:
    """list through the key-value and relational caches."""

    @pytest.mark.asyncio
    async def test_key_value_cache(self, user):
        key_value = MemoryKeyValueConnector()
        registry = RepositoryRegistry(
            event_log_schema("redis"),
            event_log=MemoryEventLogConnector(),
            key_value=key_value,
        )
        assert isinstance(registry.projections["Invoice"].cache, KeyValueProjectionCache)

        async with running(registry):
            await seed(registry, user)
            await registry.projections["Invoice"].wait_until_caught_up()
            page = await registry["Invoice"].list(user, {"order_by": "amount", "order": "DESC", "size": 2})

        assert [i["amount"] for i in page.data] == [250, 100]
        assert page.meta.has_next_page is True
        stored = await key_value.get("projection:acme:invoice", "INV-1")
        assert stored["metadata"]["version"] == 0

    @pytest.mark.asyncio
    async def test_key_value_clear_reaches_entries_of_other_instances(self, schema):
        connector = MemoryKeyValueConnector()
        writer = KeyValueProjectionCache(schema.entity("Invoice"), connector)
        await writer.put("acme", "INV-1", CacheEntry(snapshot={"invoiceId": "INV-1"}, version=0))
        await writer.put("globex", "INV-7", CacheEntry(snapshot={"invoiceId": "INV-7"}, version=0))
        await connector.set("projection:acme:customer", "C-1", {"snapshot": {}, "version": 0})

        restarted = KeyValueProjectionCache(schema.entity("Invoice"), connector)
        await restarted.clear()

        assert await restarted.get("acme", "INV-1") is None
        assert await restarted.get("globex", "INV-7") is None
        assert await connector.get("projection:acme:customer", "C-1") is not None

    @pytest.mark.asyncio
    async def test_relational_cache(self, tmp_path, user):
        registry = RepositoryRegistry(
            event_log_schema("sql"),
            event_log=MemoryEventLogConnector(),
            relational=RelationalConnector(f"sqlite+aiosqlite:///{tmp_path / 'projection.db'}"),
        )
        assert isinstance(registry.projections["Invoice"].cache, RelationalProjectionCache)

        async with running(registry):
            await seed(registry, user)
            await registry.projections["Invoice"].wait_until_caught_up()
            page = await registry["Invoice"].list(user, {"filters": {"status": "open"}, "order_by": "amount"})

        assert [i["invoiceId"] for i in page.data] == ["INV-3", "INV-1"]
        assert page.meta.item_count == 2


class TestProjectionRunner:
    """Tests for ProjectionRunner."""

    @pytest.fixture
    def connector(self):
        return MemoryEventLogConnector()

    @pytest.fixture
    def cache(self, schema):
        return MemoryProjectionCache(schema.entity("Invoice"))

    @pytest.mark.asyncio
    async def test_state_transitions(self, connector, cache):
        runner = make_runner(connector, cache)
        assert runner.state == ProjectionState.UNINITIALIZED

        await runner.start()
        assert runner.state == ProjectionState.READY
        assert runner.is_healthy()

        await runner.stop()
        assert runner.state == ProjectionState.UNINITIALIZED
        assert not runner.is_running

    @pytest.mark.asyncio
    async def test_key_and_tenant_from_stream_name(self, connector, cache):
        await append(connector, "INV-1", "InvoiceCreated", {"invoiceId": "INV-1", "status": "open"})
        runner = make_runner(connector, cache)

        await runner.start()
        await runner.stop()

        entry = await cache.get("acme", "INV-1")
        assert entry.snapshot == {"invoiceId": "INV-1", "status": "open"}
        assert entry.version == 0

    @pytest.mark.asyncio
    async def test_stale_events_are_skipped(self, connector, cache):
        await append(connector, "INV-1", "InvoiceCreated", {"invoiceId": "INV-1", "amount": 1})
        await append(connector, "INV-1", "InvoiceUpdated", {"amount": 2})
        await cache.put("acme", "INV-1", CacheEntry(snapshot={"invoiceId": "INV-1", "amount": 2}, version=1))
        runner = make_runner(connector, cache)

        await runner.start()
        await runner.stop()

        assert runner.events_skipped == 2
        assert runner.events_applied == 0
        assert (await cache.get("acme", "INV-1")).snapshot["amount"] == 2

    @pytest.mark.asyncio
    async def test_catch_up_failure_leaves_projection_uninitialized(self, connector, cache):
        cache.connect = AsyncMock(side_effect=RuntimeError("cache offline"))
        runner = make_runner(connector, cache)

        await runner.start()

        assert runner.state == ProjectionState.UNINITIALIZED
        assert runner.last_error == "RuntimeError: cache offline"
        health = await runner.health_check()
        assert health["status"] == "unhealthy"
        assert health["last_error"] == "RuntimeError: cache offline"

    @pytest.mark.asyncio
    async def test_failed_event_is_retried(self, connector, cache):
        await append(connector, "INV-1", "InvoiceCreated", {"invoiceId": "INV-1"})
        put = AsyncMock(side_effect=[ConnectionError("reset"), None])
        cache.put = put
        runner = make_runner(connector, cache, base_delay=0)

        await runner.start()
        await runner.stop()

        assert put.await_count == 2
        assert runner.events_applied == 1
        assert runner.position == 1

    @pytest.mark.asyncio
    async def test_exhausted_retries_fail_catch_up(self, connector, cache):
        await append(connector, "INV-1", "InvoiceCreated", {"invoiceId": "INV-1"})
        cache.put = AsyncMock(side_effect=ConnectionError("reset"))
        runner = make_runner(connector, cache, max_retries=2, base_delay=0)

        await runner.start()

        assert cache.put.await_count == 3
        assert runner.state == ProjectionState.UNINITIALIZED
        assert runner.position is None

    @pytest.mark.asyncio
    async def test_resumes_after_checkpoint(self, connector, cache, schema):
        checkpoints = MemoryCheckpointStore()
        await append(connector, "INV-1", "InvoiceCreated", {"invoiceId": "INV-1"})
        first = make_runner(connector, cache, checkpoints=checkpoints)
        await first.start()
        await first.stop()
        assert await checkpoints.get("billing.invoice.v1") == 1

        await append(connector, "INV-2", "InvoiceCreated", {"invoiceId": "INV-2"})
        fresh = MemoryProjectionCache(schema.entity("Invoice"))
        second = make_runner(connector, fresh, checkpoints=checkpoints)
        await second.start()
        await second.stop()

        assert await fresh.get("acme", "INV-1") is None
        assert await fresh.get("acme", "INV-2") is not None
        assert second.events_applied == 1

    @pytest.mark.asyncio
    async def test_reset_checkpoint_rebuilds(self, connector, cache):
        checkpoints = MemoryCheckpointStore()
        await append(connector, "INV-1", "InvoiceCreated", {"invoiceId": "INV-1"})
        runner = make_runner(connector, cache, checkpoints=checkpoints)
        await runner.start()
        await runner.stop()

        await runner.reset_checkpoint()
        assert await checkpoints.exists("billing.invoice.v1") is False
        assert await cache.get("acme", "INV-1") is None

        await runner.start()
        await runner.stop()
        assert await cache.get("acme", "INV-1") is not None

    @pytest.mark.asyncio
    async def test_deleted_event_removes_entry(self, connector, cache):
        await append(connector, "INV-1", "InvoiceCreated", {"invoiceId": "INV-1"})
        await append(connector, "INV-1", "InvoiceDeleted", {"deletedAt": "2026-01-01T00:00:00+00:00"})
        runner = make_runner(connector, cache)

        await runner.start()
        await runner.stop()

        assert await cache.get("acme", "INV-1") is None

    @pytest.mark.asyncio
    async def test_wait_without_events_returns(self, connector, cache):
        runner = make_runner(connector, cache)
        await runner.start()

        await runner.wait_until_caught_up(timeout=0.5)
        await runner.stop()
