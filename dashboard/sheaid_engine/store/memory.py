"""
In-memory off-chain store for testing.

Same semantics as SqliteOffChainStore (unique chain_key per table, merged
data updates, newest-first queries) without touching disk. fail_next()
injects a StoreError into the next matching operation so tests can exercise
partial-failure paths.
"""

from __future__ import annotations

import copy
import itertools
import logging
import uuid
from typing import Any, Dict, List, Optional, Set, Tuple

from ..errors import StoreError
from .base import TABLES, StoreRecord, check_changes, check_table, now_ms

logger = logging.getLogger(__name__)


class InMemoryOffChainStore:
    """In-memory implementation of OffChainStore.

    Example:
        >>> store = InMemoryOffChainStore()
        >>> store.fail_next("insert", "merchants")
        >>> await store.insert("merchants", "0xabc...", "pending")  # raises StoreError
    """

    def __init__(self) -> None:
        self._tables: Dict[str, Dict[str, StoreRecord]] = {t: {} for t in TABLES}
        self._roles: Set[Tuple[str, str]] = set()
        self._failures: List[Tuple[str, Optional[str]]] = []
        self._sequence = itertools.count()
        self._order: Dict[str, int] = {}
        self.writes = 0

    def fail_next(self, operation: str, table: Optional[str] = None) -> None:
        """Make the next `operation` (insert, update, delete, grant_role) fail."""
        self._failures.append((operation, table))

    def _maybe_fail(self, operation: str, table: Optional[str]) -> None:
        for i, (op, tbl) in enumerate(self._failures):
            if op == operation and (tbl is None or tbl == table):
                del self._failures[i]
                raise StoreError(f"Injected {operation} failure", table=table)

    async def initialize(self) -> None:
        pass

    async def close(self) -> None:
        pass

    async def insert(
        self,
        table: str,
        chain_key: Optional[str],
        status: str,
        data: Optional[Dict[str, Any]] = None,
        record_id: Optional[str] = None,
    ) -> StoreRecord:
        check_table(table)
        self._maybe_fail("insert", table)
        rows = self._tables[table]
        if chain_key is not None and any(r.chain_key == chain_key for r in rows.values()):
            raise StoreError(f"Duplicate chain_key {chain_key} in {table}", table=table)
        record_id = record_id or str(uuid.uuid4())
        if record_id in rows:
            raise StoreError(f"Duplicate id {record_id} in {table}", table=table)

        now = now_ms()
        record = StoreRecord(
            id=record_id,
            table=table,
            chain_key=chain_key,
            status=status,
            data=dict(data or {}),
            created_at=now,
            updated_at=now,
        )
        rows[record_id] = record
        self._order[record_id] = next(self._sequence)
        self.writes += 1
        return copy.deepcopy(record)

    async def get(self, table: str, record_id: str) -> Optional[StoreRecord]:
        check_table(table)
        record = self._tables[table].get(record_id)
        return copy.deepcopy(record) if record else None

    async def find_by_chain_key(self, table: str, chain_key: str) -> Optional[StoreRecord]:
        check_table(table)
        for record in self._tables[table].values():
            if record.chain_key == chain_key:
                return copy.deepcopy(record)
        return None

    async def query(
        self,
        table: str,
        status: Optional[str] = None,
        data_filters: Optional[Dict[str, Any]] = None,
    ) -> List[StoreRecord]:
        check_table(table)
        records = [
            r
            for r in self._tables[table].values()
            if (status is None or r.status == status)
            and all(r.data.get(k) == v for k, v in (data_filters or {}).items())
        ]
        records.sort(key=lambda r: self._order[r.id], reverse=True)
        return [copy.deepcopy(r) for r in records]

    async def update(self, table: str, record_id: str, changes: Dict[str, Any]) -> StoreRecord:
        check_table(table)
        check_changes(table, changes)
        self._maybe_fail("update", table)
        record = self._tables[table].get(record_id)
        if record is None:
            raise StoreError(f"Record not found: {table}/{record_id}", table=table)

        new_key = changes.get("chain_key", record.chain_key)
        if new_key is not None and new_key != record.chain_key:
            if any(r.chain_key == new_key for r in self._tables[table].values()):
                raise StoreError(f"Duplicate chain_key {new_key} in {table}", table=table)

        for name, value in changes.items():
            if name == "data":
                record.data.update(value)
            else:
                setattr(record, name, value)
        record.updated_at = now_ms()
        self.writes += 1
        return copy.deepcopy(record)

    async def delete(self, table: str, record_id: str) -> bool:
        check_table(table)
        self._maybe_fail("delete", table)
        removed = self._tables[table].pop(record_id, None)
        return removed is not None

    async def grant_role(self, user: str, role: str) -> bool:
        self._maybe_fail("grant_role", None)
        if (user, role) in self._roles:
            return False
        self._roles.add((user, role))
        return True

    async def list_roles(self, user: str) -> List[str]:
        return sorted(role for u, role in self._roles if u == user)
