"""
In-flight transition tracking.

The tracker is the concurrency guard between user transitions and background
reconciliation. It holds:
- one in-flight marker per entity key, so a duplicate transition is refused
  before it can spend an allowance twice
- the block of the last confirmed step per entity, so the projector can
  tell a read that predates our own writes from a current one

Invariants:
    - At most one InFlight per marker key
    - Block floors only move forward
    - Everything runs on one event loop; no locks are needed
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Dict, Optional, Set

from ..errors import TransitionInProgress
from ..model import EntityKey

logger = logging.getLogger(__name__)


@dataclass
class InFlight:
    """A transition that has started and not yet finished.

    Attributes:
        key: Marker key the transition was started under
        action: Action name
        started_at: Monotonic start time
        step: Index of the step currently executing (1-based)
        tx_hash: Hash of the transaction currently awaited, if any
        last_confirmed_block: Block of the most recent confirmed step
        aliases: Further keys covered by this transition
        abandoned: Set when the caller abandons the current wait
    """

    key: EntityKey
    action: str
    started_at: float = field(default_factory=time.monotonic)
    step: int = 0
    tx_hash: Optional[str] = None
    last_confirmed_block: Optional[int] = None
    aliases: Set[EntityKey] = field(default_factory=set)
    abandoned: asyncio.Event = field(default_factory=asyncio.Event)


class InFlightTracker:
    """Per-entity in-flight markers and confirmed-block floors."""

    def __init__(self) -> None:
        self._flights: Dict[EntityKey, InFlight] = {}
        self._alias_index: Dict[EntityKey, EntityKey] = {}
        self._floors: Dict[EntityKey, int] = {}

    def begin(self, key: EntityKey, action: str) -> InFlight:
        """Mark key as in flight.

        Raises:
            TransitionInProgress: If a transition already covers key
        """
        if self.get(key) is not None:
            raise TransitionInProgress(str(key))
        flight = InFlight(key=key, action=action)
        self._flights[key] = flight
        logger.debug("Transition started", extra={"entity_key": str(key), "action": action})
        return flight

    def finish(self, key: EntityKey) -> None:
        flight = self._flights.pop(key, None)
        if flight is None:
            return
        for alias in flight.aliases:
            self._alias_index.pop(alias, None)
        logger.debug(
            "Transition finished",
            extra={
                "entity_key": str(key),
                "action": flight.action,
                "duration_ms": int((time.monotonic() - flight.started_at) * 1000),
            },
        )

    def alias(self, key: EntityKey, other: EntityKey) -> None:
        """Extend the in-flight marker of key to cover other as well."""
        flight = self._flights[key]
        flight.aliases.add(other)
        self._alias_index[other] = key

    def get(self, key: EntityKey) -> Optional[InFlight]:
        if key in self._flights:
            return self._flights[key]
        owner = self._alias_index.get(key)
        return self._flights.get(owner) if owner is not None else None

    def is_in_flight(self, key: EntityKey) -> bool:
        return self.get(key) is not None

    def record_confirmed(self, key: EntityKey, block_number: int) -> None:
        """Note that a step covering key confirmed in block_number."""
        flight = self.get(key)
        targets = {key}
        if flight is not None:
            flight.last_confirmed_block = max(flight.last_confirmed_block or 0, block_number)
            targets |= {flight.key} | flight.aliases
        for target in targets:
            if block_number > self._floors.get(target, -1):
                self._floors[target] = block_number

    def confirmed_floor(self, key: EntityKey) -> Optional[int]:
        """Lowest block a read of key must come from to reflect our writes."""
        return self._floors.get(key)

    def abandon(self, key: EntityKey) -> Optional[str]:
        """Abandon the confirmation wait of key's current step.

        Returns the transaction hash being waited on, or None if no
        transition is in flight.
        """
        flight = self.get(key)
        if flight is None:
            return None
        flight.abandoned.set()
        logger.info(
            "Confirmation wait abandoned",
            extra={"entity_key": str(key), "step": flight.step, "tx_hash": flight.tx_hash},
        )
        return flight.tx_hash

    def in_flight_keys(self) -> Set[EntityKey]:
        return set(self._flights)
