"""
Projection runner.

Folds the event streams of one entity into its read cache:

1. ``start`` moves the projection from UNINITIALIZED to CATCHING_UP and
   replays every stored event after the checkpoint up to the log head.
2. Once the backlog is applied a live subscription task is attached,
   resuming strictly after the last applied position, and the projection
   becomes READY.
3. A fault during catch-up returns it to UNINITIALIZED and is reported by
   ``health_check``; ``stop`` cancels the subscription and also returns it
   to UNINITIALIZED.

Events of one stream are applied in revision order; an event at or below
the revision already cached for its aggregate is skipped. Every application
is retried with exponential backoff and checkpointed once it succeeds.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from ..connectors.base import EventLogConnector, StoredEvent
from ..domain.aggregate import NEW_AGGREGATE_VERSION, EntityAggregate
from ..logging_config import create_log_context, log_context
from .cache import CacheEntry, ProjectionCache
from .checkpoint import CheckpointStore, MemoryCheckpointStore
from .state import ProjectionState

logger = logging.getLogger(__name__)


class ProjectionRunner:
    """
    Catch-up plus live projection of one entity's streams.

    Args:
        name: Projection name, also the checkpoint key
        connector: Event log to read from
        stream_prefix: Prefix shared by the entity's streams
        class_name: Entity class name prefixing its event types
        cache: Read cache to maintain
        checkpoints: Checkpoint store; in-memory when omitted
        max_retries: Retries per event before the fault propagates
        base_delay: First retry delay in seconds, doubled per retry
        max_delay: Upper bound of a retry delay
        batch_size: Events read per catch-up batch
    """

    def __init__(
        self,
        name: str,
        connector: EventLogConnector,
        stream_prefix: str,
        class_name: str,
        cache: ProjectionCache,
        checkpoints: CheckpointStore | None = None,
        max_retries: int = 3,
        base_delay: float = 0.1,
        max_delay: float = 5.0,
        batch_size: int = 500,
    ) -> None:
        self.name = name
        self.connector = connector
        self.stream_prefix = stream_prefix
        self.class_name = class_name
        self.cache = cache
        self.checkpoints = checkpoints or MemoryCheckpointStore()
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.batch_size = batch_size

        self.position: int | None = None
        self.last_error: str | None = None
        self.events_applied = 0
        self.events_skipped = 0
        self._state = ProjectionState.UNINITIALIZED
        self._running = False
        self._task: asyncio.Task | None = None
        self._condition: asyncio.Condition | None = None

    @property
    def state(self) -> ProjectionState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_ready(self) -> bool:
        return self._state == ProjectionState.READY

    @property
    def condition(self) -> asyncio.Condition:
        if self._condition is None:
            self._condition = asyncio.Condition()
        return self._condition

    def is_healthy(self) -> bool:
        return self._running and self.is_ready

    # ===== Lifecycle =====

    async def start(self) -> None:
        """Catch up with the log, then follow it live."""
        if self._running:
            logger.debug(f"Projection {self.name} already running")
            return

        self._running = True
        self._state = ProjectionState.CATCHING_UP
        self.last_error = None
        logger.info(f"Projection {self.name} catching up from {self.stream_prefix}")

        try:
            await self.cache.connect()
            self.position = await self.checkpoints.get(self.name)
            await self._catch_up()
        except Exception as e:
            self._running = False
            self._state = ProjectionState.UNINITIALIZED
            self.last_error = f"{type(e).__name__}: {e}"
            logger.error(f"Projection {self.name} failed during catch-up: {self.last_error}")
            return

        self._task = asyncio.create_task(self._follow(self.position))
        self._state = ProjectionState.READY
        logger.info(f"Projection {self.name} ready at position {self.position}")

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self._running = False
        self._state = ProjectionState.UNINITIALIZED
        logger.info(f"Projection {self.name} stopped")

    async def reset_checkpoint(self) -> None:
        """Forget the checkpoint and the cache so the next start rebuilds from scratch."""
        await self.checkpoints.delete(self.name)
        await self.cache.clear()
        self.position = None
        self.events_applied = 0
        self.events_skipped = 0
        logger.info(f"Projection {self.name} checkpoint reset")

    async def wait_until_caught_up(self, timeout: float = 5.0) -> None:
        """
        Wait until every event stored so far has been applied.

        Raises:
            asyncio.TimeoutError: If the projection does not get there in time
        """
        head = await self.connector.head_position(self.stream_prefix)
        if head is None:
            return
        async with self.condition:
            await asyncio.wait_for(
                self.condition.wait_for(lambda: (self.position or 0) >= head),
                timeout,
            )

    # ===== Processing =====

    async def _catch_up(self) -> None:
        head = await self.connector.head_position(self.stream_prefix)
        while head is not None and (self.position or 0) < head:
            batch = await self.connector.read_all(
                self.stream_prefix,
                after_position=self.position,
                limit=self.batch_size,
            )
            if not batch:
                break
            for event in batch:
                await self._process(event)
        logger.debug(f"Projection {self.name} caught up: {self.events_applied} applied, {self.events_skipped} skipped")

    async def _follow(self, position: int | None) -> None:
        try:
            async for event in self.connector.subscribe(self.stream_prefix, position):
                await self._process(event)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._running = False
            self._state = ProjectionState.UNINITIALIZED
            self.last_error = f"{type(e).__name__}: {e}"
            logger.error(f"Projection {self.name} subscription failed: {self.last_error}")

    async def _process(self, event: StoredEvent) -> None:
        await self._apply_with_retry(event)
        self.position = event.position
        await self.checkpoints.set(self.name, event.position)
        async with self.condition:
            self.condition.notify_all()

    async def _apply_with_retry(self, event: StoredEvent) -> None:
        attempt = 0
        while True:
            try:
                await self.apply(event)
                return
            except Exception as e:
                if attempt >= self.max_retries:
                    raise
                delay = min(self.base_delay * (2 ** attempt), self.max_delay)
                attempt += 1
                with log_context(**create_log_context(self.name, event.event_type, event.stream_name)):
                    logger.warning(
                        f"Projection {self.name}: applying {event.event_type} at {event.position} failed "
                        f"({type(e).__name__}: {e}), retry {attempt}/{self.max_retries} in {delay:.2f}s"
                    )
                await asyncio.sleep(delay)

    def identity(self, event: StoredEvent) -> tuple[str, str]:
        """Tenant and aggregate key of an event, from its metadata or stream name."""
        tenant = event.metadata.get("tenant")
        key = event.metadata.get("aggregateId")
        if tenant is None or key is None:
            tail = event.stream_name[len(self.stream_prefix):]
            tenant, _, key = tail.partition("-")
        return str(tenant), str(key)

    async def apply(self, event: StoredEvent) -> bool:
        """
        Fold one event into the cache.

        Returns:
            False when the event was skipped as stale
        """
        tenant, key = self.identity(event)
        entry = await self.cache.get(tenant, key)
        if entry is not None and event.stream_revision <= entry.version:
            self.events_skipped += 1
            logger.debug(
                f"Projection {self.name}: skipping {event.event_type} r{event.stream_revision} "
                f"for {key}, cache at r{entry.version}"
            )
            return False

        aggregate = EntityAggregate(
            self.class_name,
            key,
            state=entry.snapshot if entry else None,
            version=entry.version if entry else NEW_AGGREGATE_VERSION,
        )
        aggregate.apply(event.event_type, event.data)

        if aggregate.deleted:
            await self.cache.remove(tenant, key)
        else:
            await self.cache.put(tenant, key, CacheEntry(
                snapshot=aggregate.state,
                version=event.stream_revision,
                source_event=event.event_id,
            ))
        self.events_applied += 1
        return True

    async def health_check(self) -> dict[str, Any]:
        return {
            "status": "healthy" if self.is_healthy() else "unhealthy",
            "name": self.name,
            "state": self._state.value,
            "running": self._running,
            "position": self.position,
            "events_applied": self.events_applied,
            "events_skipped": self.events_skipped,
            "last_error": self.last_error,
            "cache": await self.cache.health_check(),
        }
