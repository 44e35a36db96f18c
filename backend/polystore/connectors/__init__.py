"""
Connectors Module - Opaque storage clients used by the backend strategies.

Provides:
- base: connector interfaces and event records
- memory: in-process key-value and event log connectors
- redis_store: Redis key-value connector
- kurrent: KurrentDB event log connector
- relational: SQLAlchemy async engine and entity tables
"""

from .base import (
    ANY_REVISION,
    NO_STREAM,
    Connector,
    DocumentConnector,
    EventData,
    EventLogConnector,
    KeyValueConnector,
    StoredEvent,
    StreamRevisionConflict,
)
from .kurrent import KurrentEventLogConnector
from .memory import MemoryEventLogConnector, MemoryKeyValueConnector
from .redis_store import RedisKeyValueConnector
from .relational import RelationalConnector

__all__ = [
    "ANY_REVISION",
    "NO_STREAM",
    "Connector",
    "DocumentConnector",
    "EventData",
    "EventLogConnector",
    "KeyValueConnector",
    "StoredEvent",
    "StreamRevisionConflict",
    "KurrentEventLogConnector",
    "MemoryEventLogConnector",
    "MemoryKeyValueConnector",
    "RedisKeyValueConnector",
    "RelationalConnector",
]
