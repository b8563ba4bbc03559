"""
View subscriptions.

A view (a dashboard page, an API poller) subscribes to a set of entity keys.
When an event batch arrives, every affected key is projected once and each
view whose keys match receives one update carrying all of its refreshed
ViewModels.

Invariants:
    - One projection per affected key per batch, however many views share it
    - One listener call per view per batch, and none for views with no match
    - A failing listener or projection never stops delivery to other views
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, FrozenSet, Iterable, List, Optional

from ..errors import EngineError
from ..events.types import ChainEvent, affected_keys
from ..model import EntityKey
from .projector import ReconciliationProjector, ViewModel

logger = logging.getLogger(__name__)

ViewListener = Callable[[str, Dict[EntityKey, ViewModel]], Awaitable[None]]


@dataclass(frozen=True)
class ViewSubscription:
    view_id: str
    keys: FrozenSet[EntityKey]
    listener: Optional[ViewListener] = None

    def wants(self, key: EntityKey) -> bool:
        return any(k.matches(key) for k in self.keys)


class ViewSubscriptionRegistry:
    """Routes event batches to subscribed views.

    Plugs into ChainEventBridge as a listener.

    Example:
        >>> registry = ViewSubscriptionRegistry(projector)
        >>> registry.subscribe("ngo-dashboard", [EntityKey.wildcard(EntityKind.PROJECT)], push)
        >>> bridge.add_listener(registry)
    """

    def __init__(self, projector: ReconciliationProjector) -> None:
        self.projector = projector
        self._views: Dict[str, ViewSubscription] = {}
        # Latest delivered models, for views polled instead of pushed
        self._latest: Dict[str, Dict[EntityKey, ViewModel]] = {}

        # Stats
        self._batches = 0
        self._projections = 0
        self._updates = 0
        self._listener_errors = 0

    def subscribe(
        self,
        view_id: str,
        keys: Iterable[EntityKey],
        listener: Optional[ViewListener] = None,
    ) -> ViewSubscription:
        """Register or replace the subscription of view_id."""
        subscription = ViewSubscription(view_id, frozenset(keys), listener)
        self._views[view_id] = subscription
        self._latest.setdefault(view_id, {})
        logger.info(
            "View subscribed",
            extra={"view_id": view_id, "keys": sorted(str(k) for k in subscription.keys)},
        )
        return subscription

    def unsubscribe(self, view_id: str) -> bool:
        removed = self._views.pop(view_id, None) is not None
        self._latest.pop(view_id, None)
        if removed:
            logger.info("View unsubscribed", extra={"view_id": view_id})
        return removed

    def subscriptions(self) -> List[ViewSubscription]:
        return list(self._views.values())

    def latest(self, view_id: str) -> Dict[EntityKey, ViewModel]:
        return dict(self._latest.get(view_id, {}))

    async def on_events(self, batch: List[ChainEvent]) -> None:
        await self.notify(batch)

    async def notify(self, batch: List[ChainEvent]) -> Dict[str, Dict[EntityKey, ViewModel]]:
        """Project the keys batch affects and deliver per-view updates.

        Returns the updates delivered, keyed by view id.
        """
        self._batches += 1
        if not batch or not self._views:
            return {}

        wanted = [
            key
            for key in sorted(affected_keys(batch), key=str)
            if any(view.wants(key) for view in self._views.values())
        ]
        models = await self._project_all(wanted)

        updates: Dict[str, Dict[EntityKey, ViewModel]] = {}
        for view in list(self._views.values()):
            update = {key: vm for key, vm in models.items() if view.wants(key)}
            if not update:
                continue
            updates[view.view_id] = update
            await self._deliver(view, update)
        return updates

    async def refresh(self, view_id: str) -> Dict[EntityKey, ViewModel]:
        """Re-project every concrete key of a view and deliver the result.

        Wildcard keys are skipped; they only match keys named by events.
        """
        view = self._views[view_id]
        concrete = [k for k in view.keys if not k.is_wildcard]
        update = await self._project_all(concrete)
        if update:
            await self._deliver(view, update)
        return update

    async def _project_all(self, keys: Iterable[EntityKey]) -> Dict[EntityKey, ViewModel]:
        models: Dict[EntityKey, ViewModel] = {}
        for key in keys:
            if key in models:
                continue
            try:
                models[key] = await self.projector.project(key)
                self._projections += 1
            except EngineError as e:
                logger.warning(
                    "Projection failed for view update",
                    extra={"entity_key": str(key), "error_code": e.code, "error": e.message},
                )
        return models

    async def _deliver(self, view: ViewSubscription, update: Dict[EntityKey, ViewModel]) -> None:
        self._latest.setdefault(view.view_id, {}).update(update)
        self._updates += 1
        if view.listener is None:
            return
        try:
            await view.listener(view.view_id, update)
        except Exception as e:
            self._listener_errors += 1
            logger.error(
                f"View listener failed: {e}",
                exc_info=True,
                extra={"view_id": view.view_id, "keys": len(update)},
            )

    def get_stats(self) -> dict:
        return {
            "views": len(self._views),
            "batches": self._batches,
            "projections": self._projections,
            "updates_delivered": self._updates,
            "listener_errors": self._listener_errors,
        }
