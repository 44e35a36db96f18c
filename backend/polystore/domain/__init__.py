"""Event-sourced aggregate state."""

from .aggregate import (
    NEW_AGGREGATE_VERSION,
    DomainEvent,
    EntityAggregate,
    EventKind,
    event_type,
)

__all__ = [
    "NEW_AGGREGATE_VERSION",
    "DomainEvent",
    "EntityAggregate",
    "EventKind",
    "event_type",
]
