"""Projection lifecycle states."""

from enum import Enum


class ProjectionState(str, Enum):
    """Readiness of a projection's read cache."""
    UNINITIALIZED = "uninitialized"
    CATCHING_UP = "catching_up"
    READY = "ready"
