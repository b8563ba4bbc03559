"""
Chain event bridge.

The bridge is the single owner of the engine's view of the event log. It
keeps one cursor per event type, polls every type once per cycle, and hands
the combined, de-duplicated result to each listener as one batch.

Invariants:
    - Each listener's on_events() is called exactly once per cycle, even with
      an empty batch
    - Events of the same type keep chain order; the whole batch is sorted by
      (block_number, log_index)
    - A (transaction_hash, log_index) pair is delivered at most once
    - A type whose query fails keeps its cursor and is re-polled next cycle

How to change safely:
    - New event types must be added to ChainEventType and EVENT_SOURCES
    - Listeners must not block; long work belongs in their own tasks
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import TYPE_CHECKING, Deque, Dict, Iterable, List, Optional, Protocol, Set, Tuple

from ..errors import RpcUnavailable
from .types import ChainEvent, ChainEventType

if TYPE_CHECKING:
    from ..chain.base import ChainClient

logger = logging.getLogger(__name__)

DEFAULT_EVENT_TYPES: Tuple[ChainEventType, ...] = tuple(ChainEventType)


class EventListener(Protocol):
    """Receives one batch of events per polling cycle."""

    async def on_events(self, batch: List[ChainEvent]) -> None:
        ...


class ChainEventBridge:
    """Polls the chain for events and emits them in batches.

    Attributes:
        client: Chain client used for block and log queries
        event_types: Types with their own cursor
        poll_interval_seconds: Delay between cycles in the background loop

    Example:
        >>> bridge = ChainEventBridge(client, listeners=[registry], start_block=0)
        >>> batch = await bridge.poll_once()
    """

    def __init__(
        self,
        client: "ChainClient",
        listeners: Optional[Iterable[EventListener]] = None,
        event_types: Iterable[ChainEventType] = DEFAULT_EVENT_TYPES,
        poll_interval_seconds: float = 4.0,
        start_block: Optional[int] = None,
        dedupe_window: int = 10_000,
    ) -> None:
        self.client = client
        self.event_types = tuple(event_types)
        self.poll_interval_seconds = poll_interval_seconds
        self._listeners: List[EventListener] = list(listeners or [])
        self._start_block = start_block
        self._cursors: Dict[ChainEventType, int] = {}
        self._seen: Set[Tuple[str, int]] = set()
        self._seen_order: Deque[Tuple[str, int]] = deque()
        self._dedupe_window = dedupe_window
        self._running = False
        self._stop_event = asyncio.Event()

        # Stats
        self._cycles = 0
        self._delivered = 0
        self._failed_queries = 0

    def add_listener(self, listener: EventListener) -> None:
        self._listeners.append(listener)

    @property
    def cursors(self) -> Dict[ChainEventType, int]:
        """Next block to scan per event type."""
        return dict(self._cursors)

    @property
    def is_running(self) -> bool:
        return self._running

    async def poll_once(self) -> List[ChainEvent]:
        """Run one polling cycle and deliver its batch to every listener."""
        self._cycles += 1
        batch: List[ChainEvent] = []

        try:
            head = await self.client.block_number()
        except RpcUnavailable as e:
            logger.warning("Event poll skipped, chain unavailable", extra={"error": str(e)})
            head = None

        if head is not None:
            for event_type in self.event_types:
                batch.extend(await self._poll_type(event_type, head))

        batch.sort(key=lambda e: e.chain_order)
        self._delivered += len(batch)
        if batch:
            logger.debug(
                "Event batch collected",
                extra={"events": len(batch), "head": head, "cycle": self._cycles},
            )

        for listener in self._listeners:
            try:
                await listener.on_events(batch)
            except Exception as e:
                logger.error(
                    f"Event listener failed: {e}",
                    exc_info=True,
                    extra={"listener": type(listener).__name__, "events": len(batch)},
                )
        return batch

    async def _poll_type(self, event_type: ChainEventType, head: int) -> List[ChainEvent]:
        from_block = self._cursors.get(event_type)
        if from_block is None:
            from_block = self._start_block if self._start_block is not None else head
        if from_block > head:
            self._cursors[event_type] = from_block
            return []

        try:
            events = await self.client.query_events(
                event_type, from_block=from_block, to_block=head
            )
        except RpcUnavailable as e:
            self._failed_queries += 1
            self._cursors[event_type] = from_block
            logger.warning(
                "Event query failed, will retry next cycle",
                extra={"event_type": event_type.value, "from_block": from_block, "error": str(e)},
            )
            return []

        self._cursors[event_type] = head + 1
        fresh = []
        for event in events:
            if event.event_id in self._seen:
                continue
            self._remember(event.event_id)
            fresh.append(event)
        return fresh

    def _remember(self, event_id: Tuple[str, int]) -> None:
        self._seen.add(event_id)
        self._seen_order.append(event_id)
        while len(self._seen_order) > self._dedupe_window:
            self._seen.discard(self._seen_order.popleft())

    async def start(self) -> None:
        """Run polling cycles until stop() is called."""
        if self._running:
            logger.warning("Event bridge already running")
            return

        self._running = True
        self._stop_event.clear()
        logger.info(
            "Starting event bridge",
            extra={
                "event_types": len(self.event_types),
                "poll_interval": self.poll_interval_seconds,
                "start_block": self._start_block,
            },
        )

        try:
            while self._running:
                try:
                    await self.poll_once()
                except Exception as e:
                    logger.error(f"Event poll cycle failed: {e}", exc_info=True)
                try:
                    await asyncio.wait_for(
                        self._stop_event.wait(), timeout=self.poll_interval_seconds
                    )
                except asyncio.TimeoutError:
                    pass
        except asyncio.CancelledError:
            logger.info("Event bridge cancelled")
        finally:
            self._running = False

    async def stop(self) -> None:
        """Stop the polling loop after the current cycle."""
        self._running = False
        self._stop_event.set()
        logger.info("Event bridge stopped")

    def get_stats(self) -> dict:
        return {
            "running": self._running,
            "cycles": self._cycles,
            "events_delivered": self._delivered,
            "failed_queries": self._failed_queries,
            "cursors": {t.value: c for t, c in self._cursors.items()},
        }
