"""
Off-chain record store for the SheAid dashboard.

This module provides the pluggable OffChainStore interface:
- SqliteOffChainStore (production)
- InMemoryOffChainStore (testing)

Invariants:
    - Store status is a cache of chain status, converged by the projector
    - No transaction spans tables or chain calls
"""

from .base import TABLES, OffChainStore, StoreRecord, create_store, find_linked_record
from .memory import InMemoryOffChainStore
from .sqlite_store import SqliteOffChainStore

__all__ = [
    "OffChainStore",
    "StoreRecord",
    "TABLES",
    "create_store",
    "find_linked_record",
    "SqliteOffChainStore",
    "InMemoryOffChainStore",
]
