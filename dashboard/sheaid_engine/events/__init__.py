"""
Chain events and the polling bridge that batches them.

Invariants:
    - Events of one type are delivered in chain order
    - Each (transaction_hash, log_index) is delivered at most once
    - Listeners are called once per polling cycle
"""

from .types import EVENT_SOURCES, ChainEvent, ChainEventType, affected_keys

__all__ = [
    "ChainEvent",
    "ChainEventType",
    "EVENT_SOURCES",
    "affected_keys",
]
