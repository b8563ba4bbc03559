"""
Read side of the engine.

ReconciliationProjector merges chain and store into ViewModels and heals
the store as it goes; ViewSubscriptionRegistry routes event batches to the
views that care about them.
"""

from .projector import ProjectFinancials, ReconciliationProjector, ViewModel
from .views import ViewListener, ViewSubscription, ViewSubscriptionRegistry

__all__ = [
    "ProjectFinancials",
    "ReconciliationProjector",
    "ViewModel",
    "ViewListener",
    "ViewSubscription",
    "ViewSubscriptionRegistry",
]
