"""
Repository Module - Backend strategies of the repository contract.

Provides:
- hydration: reassembly of aggregates from flat snapshots
- relational, key_value, event_log, document: backend strategies
- registry: per-entity synthesis, peer lookup and lifecycle
"""

from .document import DocumentRepository, UnassignedRepository
from .event_log import EventLogRepository, stream_prefix
from .hydration import Hydrator
from .key_value import KeyValueRepository
from .registry import RepositoryRegistry
from .relational import RelationalRepository

__all__ = [
    "DocumentRepository",
    "EventLogRepository",
    "Hydrator",
    "KeyValueRepository",
    "RelationalRepository",
    "RepositoryRegistry",
    "UnassignedRepository",
    "stream_prefix",
]
