"""Event-log projections: read caches materialized from entity streams."""

from .cache import (
    CacheEntry,
    KeyValueProjectionCache,
    MemoryProjectionCache,
    ProjectionCache,
    RelationalProjectionCache,
)
from .checkpoint import CheckpointStore, MemoryCheckpointStore, RedisCheckpointStore
from .runner import ProjectionRunner
from .state import ProjectionState

__all__ = [
    "CacheEntry",
    "CheckpointStore",
    "KeyValueProjectionCache",
    "MemoryCheckpointStore",
    "MemoryProjectionCache",
    "ProjectionCache",
    "ProjectionRunner",
    "ProjectionState",
    "RedisCheckpointStore",
    "RelationalProjectionCache",
]
