"""
Base protocol and types for the off-chain store.

The off-chain store holds human-facing metadata the chain does not carry:
applicant names, contact details, organizer profiles and rejection reasons.
Records are keyed by an opaque store-assigned id and, once linked, by the
entity's on-chain key.

Invariants:
    - Only the tables in TABLES exist; anything else raises StoreError
    - Every operation is a single-table, single-statement transaction
    - chain_key is unique per table when set
    - Timestamps are Unix milliseconds

How to change safely:
    - Protocol changes require updating SqliteOffChainStore and InMemoryOffChainStore
    - New columns must be nullable so existing databases keep working
"""

from __future__ import annotations

import time
from abc import abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Protocol, runtime_checkable

from ..errors import StoreError

if TYPE_CHECKING:
    from ..config import StoreConfig

TABLES = ("applications", "merchants", "organizers", "projects")

# Columns update() may change; "data" is merged rather than replaced
UPDATABLE_FIELDS = frozenset({"status", "rejection_reason", "reviewed_at", "chain_key", "data"})


def now_ms() -> int:
    return int(time.time() * 1000)


def check_table(table: str) -> None:
    if table not in TABLES:
        raise StoreError(f"Unknown table: {table}", table=table)


@dataclass
class StoreRecord:
    """One off-chain record.

    Attributes:
        id: Store-assigned identifier
        table: Owning table
        chain_key: On-chain key once linked (address or decimal id)
        status: Store status string
        data: Human-authored fields (names, descriptions, contact info)
        rejection_reason: Set only when status is "rejected"
        reviewed_at: Review time (Unix ms) for approved/rejected records
        created_at: Creation time (Unix ms)
        updated_at: Last update time (Unix ms)
    """

    id: str
    table: str
    chain_key: Optional[str]
    status: str
    data: Dict[str, Any] = field(default_factory=dict)
    rejection_reason: Optional[str] = None
    reviewed_at: Optional[int] = None
    created_at: int = 0
    updated_at: int = 0


@runtime_checkable
class OffChainStore(Protocol):
    """Protocol for record-oriented CRUD over the dashboard tables.

    Example:
        >>> record = await store.insert("merchants", "0xabc...", "pending", {"store_name": "Shop"})
        >>> await store.update("merchants", record.id, {"status": "approved"})
    """

    @abstractmethod
    async def initialize(self) -> None:
        """Create tables if needed."""
        ...

    @abstractmethod
    async def close(self) -> None:
        ...

    @abstractmethod
    async def insert(
        self,
        table: str,
        chain_key: Optional[str],
        status: str,
        data: Optional[Dict[str, Any]] = None,
        record_id: Optional[str] = None,
    ) -> StoreRecord:
        """Insert a new record.

        Raises:
            StoreError: On unknown table, duplicate chain_key or write failure
        """
        ...

    @abstractmethod
    async def get(self, table: str, record_id: str) -> Optional[StoreRecord]:
        ...

    @abstractmethod
    async def find_by_chain_key(self, table: str, chain_key: str) -> Optional[StoreRecord]:
        ...

    @abstractmethod
    async def query(
        self,
        table: str,
        status: Optional[str] = None,
        data_filters: Optional[Dict[str, Any]] = None,
    ) -> List[StoreRecord]:
        """Records matching status and exact data-field values, newest first."""
        ...

    @abstractmethod
    async def update(self, table: str, record_id: str, changes: Dict[str, Any]) -> StoreRecord:
        """Apply changes to a record and return it.

        Raises:
            StoreError: If the record does not exist or a field is not updatable
        """
        ...

    @abstractmethod
    async def delete(self, table: str, record_id: str) -> bool:
        ...

    @abstractmethod
    async def grant_role(self, user: str, role: str) -> bool:
        """Record a role grant; False if it already existed."""
        ...

    @abstractmethod
    async def list_roles(self, user: str) -> List[str]:
        ...


def check_changes(table: str, changes: Dict[str, Any]) -> None:
    unknown = set(changes) - UPDATABLE_FIELDS
    if unknown:
        raise StoreError(f"Fields not updatable: {', '.join(sorted(unknown))}", table=table)


def create_store(config: "StoreConfig") -> OffChainStore:
    """Factory function to create the off-chain store from configuration."""
    from pathlib import Path

    from .sqlite_store import SqliteOffChainStore

    return SqliteOffChainStore(
        db_path=str(Path(config.data_dir) / config.db_name),
        wal_mode=config.wal_mode,
        busy_timeout_ms=config.busy_timeout_ms,
    )


async def find_linked_record(
    store: OffChainStore,
    table: str,
    chain_key: str,
    legacy_filters: Optional[Dict[str, Any]] = None,
) -> Optional[StoreRecord]:
    """Find the record for chain_key, linking a legacy row if needed.

    Rows written before the on-chain key was persisted have chain_key NULL.
    When exactly one unlinked row matches legacy_filters it is linked to
    chain_key and returned; zero or several matches return None.
    """
    record = await store.find_by_chain_key(table, chain_key)
    if record is not None or not legacy_filters:
        return record

    candidates = [
        r for r in await store.query(table, data_filters=legacy_filters) if r.chain_key is None
    ]
    if len(candidates) != 1:
        return None
    return await store.update(table, candidates[0].id, {"chain_key": chain_key})
