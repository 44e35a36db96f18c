"""
Tests for storage connectors with mocked clients.
"""

import json
import uuid
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from kurrentdbclient import StreamState
from kurrentdbclient.exceptions import WrongCurrentVersionError

from polystore.connectors import (
    NO_STREAM,
    EventData,
    KurrentEventLogConnector,
    MemoryEventLogConnector,
    MemoryKeyValueConnector,
    RedisKeyValueConnector,
    StreamRevisionConflict,
)
from polystore.errors import ConnectorError
from polystore.projection import RedisCheckpointStore

STREAM = "billing.invoice.v1-acme-INV-1"


async def _aiter(*items):
    for item in items:
        yield item


def recorded(event_type, data, stream_position, commit_position):
    return SimpleNamespace(
        type=event_type,
        data=json.dumps(data).encode("utf-8"),
        metadata=b"",
        stream_name=STREAM,
        stream_position=stream_position,
        commit_position=commit_position,
        id=uuid.uuid4(),
    )


class TestRedisKeyValueConnector:
    """Tests for RedisKeyValueConnector."""

    @pytest.fixture
    def client(self):
        client = MagicMock()
        for name in ("ping", "hget", "hset", "hmget", "hdel", "hgetall", "delete", "aclose"):
            setattr(client, name, AsyncMock())
        return client

    @pytest.fixture
    def connector(self, client):
        return RedisKeyValueConnector(client=client)

    @pytest.mark.asyncio
    async def test_set_writes_json_into_namespace_hash(self, connector, client):
        await connector.set("acme:invoice", "INV-1", {"amount": 100})

        client.hset.assert_awaited_once_with("polystore:acme:invoice", "INV-1", '{"amount": 100}')

    @pytest.mark.asyncio
    async def test_get_decodes_json(self, connector, client):
        client.hget.return_value = '{"amount": 100}'

        assert await connector.get("acme:invoice", "INV-1") == {"amount": 100}

    @pytest.mark.asyncio
    async def test_multi_get_is_one_round_trip(self, connector, client):
        client.hmget.return_value = ['{"n": 1}', None]

        values = await connector.multi_get("acme:invoice", ["INV-1", "INV-2"])

        assert values == [{"n": 1}, None]
        client.hmget.assert_awaited_once_with("polystore:acme:invoice", ["INV-1", "INV-2"])

    @pytest.mark.asyncio
    async def test_multi_get_without_keys_skips_redis(self, connector, client):
        assert await connector.multi_get("acme:invoice", []) == []
        client.hmget.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_scan_all(self, connector, client):
        client.hgetall.return_value = {"INV-1": '{"n": 1}'}

        assert await connector.scan_all("acme:invoice") == {"INV-1": {"n": 1}}

    @pytest.mark.asyncio
    async def test_namespaces_scan_under_prefix(self, connector, client):
        client.scan_iter = MagicMock(return_value=_aiter(
            "polystore:projection:globex:invoice",
            "polystore:projection:acme:invoice",
        ))

        namespaces = await connector.namespaces("projection:*:invoice")

        assert namespaces == ["projection:acme:invoice", "projection:globex:invoice"]
        client.scan_iter.assert_called_once_with(match="polystore:projection:*:invoice")

    @pytest.mark.asyncio
    async def test_health_check_reports_failure(self, connector, client):
        client.ping.side_effect = ConnectionError("refused")

        health = await connector.health_check()

        assert health["status"] == "unhealthy"
        assert health["error"] == "refused"

    def test_unconnected_client_raises(self):
        with pytest.raises(ConnectorError):
            RedisKeyValueConnector().client

    @pytest.mark.asyncio
    async def test_close_releases_client(self, connector, client):
        await connector.close()

        client.aclose.assert_awaited_once()
        with pytest.raises(ConnectorError):
            connector.client


class TestKurrentEventLogConnector:
    """Tests for KurrentEventLogConnector."""

    @pytest.fixture
    def client(self):
        client = MagicMock()
        client.append_to_stream = AsyncMock()
        client.read_stream = AsyncMock()
        client.read_all = AsyncMock()
        return client

    @pytest.fixture
    def connector(self, client):
        return KurrentEventLogConnector("kurrentdb://localhost:2113?tls=false", client=client)

    @pytest.mark.asyncio
    async def test_append_to_new_stream(self, connector, client):
        revision = await connector.append(
            STREAM,
            [EventData(event_type="InvoiceCreated", data={"invoiceId": "INV-1"})],
            expected_revision=NO_STREAM,
        )

        assert revision == 0
        kwargs = client.append_to_stream.await_args.kwargs
        assert kwargs["current_version"] == StreamState.NO_STREAM
        assert json.loads(kwargs["events"][0].data) == {"invoiceId": "INV-1"}
        assert kwargs["events"][0].content_type == "application/json"

    @pytest.mark.asyncio
    async def test_append_with_expected_revision(self, connector, client):
        events = [EventData(event_type="InvoiceUpdated", data={"n": i}) for i in range(2)]

        revision = await connector.append(STREAM, events, expected_revision=3)

        assert revision == 5
        assert client.append_to_stream.await_args.kwargs["current_version"] == 3

    @pytest.mark.asyncio
    async def test_wrong_version_becomes_revision_conflict(self, connector, client):
        client.append_to_stream.side_effect = WrongCurrentVersionError("wrong current version")
        client.read_stream.return_value = _aiter(recorded("InvoiceUpdated", {}, 4, 900))

        with pytest.raises(StreamRevisionConflict) as exc_info:
            await connector.append(STREAM, [EventData(event_type="InvoiceUpdated", data={})], expected_revision=2)

        assert exc_info.value.expected_revision == 2
        assert exc_info.value.actual_revision == 4

    @pytest.mark.asyncio
    async def test_read_stream_decodes_events(self, connector, client):
        client.read_stream.return_value = _aiter(recorded("InvoiceCreated", {"invoiceId": "INV-1"}, 0, 100))

        events = await connector.read_stream(STREAM)

        assert events[0].event_type == "InvoiceCreated"
        assert events[0].data == {"invoiceId": "INV-1"}
        assert events[0].metadata == {}
        assert events[0].position == 100

    @pytest.mark.asyncio
    async def test_read_all_excludes_start_position(self, connector, client):
        client.read_all.return_value = _aiter(
            recorded("InvoiceCreated", {}, 0, 10),
            recorded("InvoiceUpdated", {}, 1, 20),
            recorded("InvoiceUpdated", {}, 2, 30),
        )

        events = await connector.read_all("billing.invoice.v1-", after_position=10, limit=1)

        assert [e.position for e in events] == [20]
        kwargs = client.read_all.await_args.kwargs
        assert kwargs["commit_position"] == 10
        assert kwargs["limit"] == 2
        assert kwargs["filter_by_stream_name"] is True


class TestMemoryConnectors:
    """Tests for the in-process connectors."""

    @pytest.mark.asyncio
    async def test_key_value_returns_copies(self):
        connector = MemoryKeyValueConnector()
        await connector.set("acme:invoice", "INV-1", {"lines": [1]})

        stored = await connector.get("acme:invoice", "INV-1")
        stored["lines"].append(2)

        assert await connector.get("acme:invoice", "INV-1") == {"lines": [1]}

    @pytest.mark.asyncio
    async def test_key_value_namespaces_match_pattern(self):
        connector = MemoryKeyValueConnector()
        await connector.set("projection:acme:invoice", "INV-1", {})
        await connector.set("projection:acme:customer", "C-1", {})
        await connector.set("projection:globex:invoice", "INV-2", {})
        await connector.delete("projection:globex:invoice", "INV-2")

        assert await connector.namespaces("projection:*:invoice") == ["projection:acme:invoice"]
        assert len(await connector.namespaces()) == 2

    @pytest.mark.asyncio
    async def test_event_positions_are_global(self):
        connector = MemoryEventLogConnector()
        await connector.append(STREAM, [EventData(event_type="InvoiceCreated", data={})])
        await connector.append("billing.customer.v1-acme-C-1", [EventData(event_type="CustomerCreated", data={})])
        await connector.append(STREAM, [EventData(event_type="InvoiceUpdated", data={})])

        events = await connector.read_all("billing.invoice.v1-")

        assert [(e.stream_revision, e.position) for e in events] == [(0, 1), (1, 3)]
        assert await connector.head_position("billing.invoice.v1-") == 3
        assert [e.position for e in await connector.read_all("billing.invoice.v1-", after_position=1)] == [3]


class TestRedisCheckpointStore:
    """Tests for RedisCheckpointStore."""

    @pytest.fixture
    def client(self):
        client = MagicMock()
        client.get = AsyncMock()
        client.set = AsyncMock()
        client.delete = AsyncMock(return_value=1)
        return client

    @pytest.fixture
    def store(self, client):
        return RedisCheckpointStore(client=client)

    @pytest.mark.asyncio
    async def test_positions_are_stored_as_strings(self, store, client):
        await store.set("billing.invoice.v1", 42)

        client.set.assert_awaited_once_with("checkpoint:billing.invoice.v1", "42")

    @pytest.mark.asyncio
    async def test_get_parses_position(self, store, client):
        client.get.return_value = "42"

        assert await store.get("billing.invoice.v1") == 42

    @pytest.mark.asyncio
    async def test_get_all_scans_prefix(self, store, client):
        client.scan_iter = MagicMock(return_value=_aiter("checkpoint:a", "checkpoint:b"))
        client.get.side_effect = ["3", "7"]

        assert await store.get_all() == {"a": 3, "b": 7}
        client.scan_iter.assert_called_once_with(match="checkpoint:*")

    @pytest.mark.asyncio
    async def test_clear_deletes_matching_keys(self, store, client):
        client.scan_iter = MagicMock(return_value=_aiter("checkpoint:a", "checkpoint:b"))

        await store.clear()

        client.delete.assert_awaited_once_with("checkpoint:a", "checkpoint:b")
