"""
Lifecycle orchestration for roles, projects and products.

Invariants:
    - Steps of one transition confirm strictly in order
    - At most one transition per entity is in flight
"""

from .orchestrator import (
    LifecycleAction,
    LifecycleOrchestrator,
    LifecycleResult,
    StepKind,
    StepOutcome,
)
from .tracker import InFlight, InFlightTracker

__all__ = [
    "LifecycleAction",
    "LifecycleOrchestrator",
    "LifecycleResult",
    "StepKind",
    "StepOutcome",
    "InFlight",
    "InFlightTracker",
]
