"""
SQLite off-chain store for the SheAid dashboard.

This module manages the SQLite database holding human-facing records:
- applications (beneficiary applications)
- merchants (merchant store profiles)
- organizers (NGO profiles)
- projects (project descriptions, linked to on-chain project ids)
- user_roles (off-chain role grants mirroring on-chain approvals)

The store is a cache for lifecycle status: the chain is authoritative and
the projector converges this copy to it. Metadata columns live in data_json.

Invariants:
    - All writes run in a single BEGIN IMMEDIATE transaction
    - chain_key is unique per table when not NULL
    - No operation spans more than one table

How to change safely:
    - Schema changes must be backward compatible (nullable columns only)
    - Use transactions for all write operations

Table schema (applications, merchants, organizers, projects):
    - id TEXT PRIMARY KEY (UUID)
    - chain_key TEXT (wallet address or decimal on-chain id, nullable)
    - status TEXT
    - rejection_reason TEXT (nullable)
    - reviewed_at INTEGER (Unix ms, nullable)
    - data_json TEXT (JSON)
    - created_at INTEGER (Unix ms)
    - updated_at INTEGER (Unix ms)
    - UNIQUE (chain_key) WHERE chain_key IS NOT NULL

    user_roles:
        - user TEXT
        - role TEXT
        - granted_at INTEGER
        - PRIMARY KEY (user, role)
"""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..errors import StoreError
from .base import TABLES, StoreRecord, check_changes, check_table, now_ms

logger = logging.getLogger(__name__)


class SqliteOffChainStore:
    """SQLite implementation of OffChainStore.

    Thread safety:
        Each operation opens its own connection.
        SQLite handles concurrent access via WAL mode.

    Example:
        >>> store = SqliteOffChainStore("/var/lib/sheaid/dashboard.db")
        >>> await store.initialize()
        >>> record = await store.insert("organizers", "0xabc...", "pending", {"organization_name": "Aid"})
    """

    SCHEMA_VERSION = 1

    def __init__(
        self,
        db_path: str,
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
    ) -> None:
        self.db_path = Path(db_path)
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self._lock = asyncio.Lock()

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(
            str(self.db_path),
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,  # Autocommit by default, explicit transactions
        )
        conn.row_factory = sqlite3.Row
        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            yield conn
        except sqlite3.Error as e:
            raise StoreError(f"SQLite error: {e}")
        finally:
            conn.close()

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        statements = [
            """
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at INTEGER NOT NULL
            )
            """,
            """
            CREATE TABLE IF NOT EXISTS user_roles (
                user TEXT NOT NULL,
                role TEXT NOT NULL,
                granted_at INTEGER NOT NULL,
                PRIMARY KEY (user, role)
            )
            """,
        ]
        for table in TABLES:
            statements.append(
                f"""
                CREATE TABLE IF NOT EXISTS {table} (
                    id TEXT PRIMARY KEY,
                    chain_key TEXT,
                    status TEXT NOT NULL,
                    rejection_reason TEXT,
                    reviewed_at INTEGER,
                    data_json TEXT NOT NULL DEFAULT '{{}}',
                    created_at INTEGER NOT NULL,
                    updated_at INTEGER NOT NULL
                )
                """
            )
            statements.append(
                f"CREATE UNIQUE INDEX IF NOT EXISTS idx_{table}_chain_key "
                f"ON {table}(chain_key) WHERE chain_key IS NOT NULL"
            )
            statements.append(
                f"CREATE INDEX IF NOT EXISTS idx_{table}_status ON {table}(status)"
            )
        statements.append(
            "INSERT OR IGNORE INTO schema_version (version, applied_at) "
            f"VALUES ({self.SCHEMA_VERSION}, strftime('%s', 'now') * 1000)"
        )
        for statement in statements:
            conn.execute(statement)

    async def initialize(self) -> None:
        async with self._lock:
            with self._get_connection() as conn:
                self._create_schema(conn)
        logger.info("Initialized off-chain store", extra={"db_path": str(self.db_path)})

    async def close(self) -> None:
        # Connections are per-operation; nothing to release
        pass

    @staticmethod
    def _row_to_record(table: str, row: sqlite3.Row) -> StoreRecord:
        return StoreRecord(
            id=row["id"],
            table=table,
            chain_key=row["chain_key"],
            status=row["status"],
            data=json.loads(row["data_json"]),
            rejection_reason=row["rejection_reason"],
            reviewed_at=row["reviewed_at"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    async def insert(
        self,
        table: str,
        chain_key: Optional[str],
        status: str,
        data: Optional[Dict[str, Any]] = None,
        record_id: Optional[str] = None,
    ) -> StoreRecord:
        check_table(table)
        record = StoreRecord(
            id=record_id or str(uuid.uuid4()),
            table=table,
            chain_key=chain_key,
            status=status,
            data=dict(data or {}),
            created_at=now_ms(),
        )
        record.updated_at = record.created_at

        async with self._lock:
            with self._get_connection() as conn:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    conn.execute(
                        f"""
                        INSERT INTO {table} (id, chain_key, status, rejection_reason,
                                             reviewed_at, data_json, created_at, updated_at)
                        VALUES (?, ?, ?, NULL, NULL, ?, ?, ?)
                        """,
                        (
                            record.id,
                            chain_key,
                            status,
                            json.dumps(record.data),
                            record.created_at,
                            record.updated_at,
                        ),
                    )
                    conn.execute("COMMIT")
                except sqlite3.IntegrityError as e:
                    conn.execute("ROLLBACK")
                    raise StoreError(f"Duplicate record in {table}: {e}", table=table)
                except Exception:
                    conn.execute("ROLLBACK")
                    raise

        logger.debug(
            "Record inserted",
            extra={"table": table, "record_id": record.id, "chain_key": chain_key, "status": status},
        )
        return record

    async def get(self, table: str, record_id: str) -> Optional[StoreRecord]:
        check_table(table)
        with self._get_connection() as conn:
            row = conn.execute(f"SELECT * FROM {table} WHERE id = ?", (record_id,)).fetchone()
        return self._row_to_record(table, row) if row else None

    async def find_by_chain_key(self, table: str, chain_key: str) -> Optional[StoreRecord]:
        check_table(table)
        with self._get_connection() as conn:
            row = conn.execute(
                f"SELECT * FROM {table} WHERE chain_key = ?", (chain_key,)
            ).fetchone()
        return self._row_to_record(table, row) if row else None

    async def query(
        self,
        table: str,
        status: Optional[str] = None,
        data_filters: Optional[Dict[str, Any]] = None,
    ) -> List[StoreRecord]:
        check_table(table)
        sql = f"SELECT * FROM {table}"
        params: list[Any] = []
        if status is not None:
            sql += " WHERE status = ?"
            params.append(status)
        sql += " ORDER BY created_at DESC, rowid DESC"

        with self._get_connection() as conn:
            rows = conn.execute(sql, params).fetchall()

        records = [self._row_to_record(table, row) for row in rows]
        if data_filters:
            records = [
                r for r in records if all(r.data.get(k) == v for k, v in data_filters.items())
            ]
        return records

    async def update(self, table: str, record_id: str, changes: Dict[str, Any]) -> StoreRecord:
        check_table(table)
        check_changes(table, changes)

        async with self._lock:
            with self._get_connection() as conn:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    row = conn.execute(
                        f"SELECT * FROM {table} WHERE id = ?", (record_id,)
                    ).fetchone()
                    if row is None:
                        raise StoreError(f"Record not found: {table}/{record_id}", table=table)

                    record = self._row_to_record(table, row)
                    for name, value in changes.items():
                        if name == "data":
                            record.data.update(value)
                        else:
                            setattr(record, name, value)
                    record.updated_at = now_ms()

                    conn.execute(
                        f"""
                        UPDATE {table}
                        SET chain_key = ?, status = ?, rejection_reason = ?,
                            reviewed_at = ?, data_json = ?, updated_at = ?
                        WHERE id = ?
                        """,
                        (
                            record.chain_key,
                            record.status,
                            record.rejection_reason,
                            record.reviewed_at,
                            json.dumps(record.data),
                            record.updated_at,
                            record_id,
                        ),
                    )
                    conn.execute("COMMIT")
                except sqlite3.IntegrityError as e:
                    conn.execute("ROLLBACK")
                    raise StoreError(f"Constraint violation in {table}: {e}", table=table)
                except Exception:
                    conn.execute("ROLLBACK")
                    raise

        logger.debug(
            "Record updated",
            extra={"table": table, "record_id": record_id, "fields": sorted(changes)},
        )
        return record

    async def delete(self, table: str, record_id: str) -> bool:
        check_table(table)
        async with self._lock:
            with self._get_connection() as conn:
                cursor = conn.execute(f"DELETE FROM {table} WHERE id = ?", (record_id,))
                return cursor.rowcount > 0

    async def grant_role(self, user: str, role: str) -> bool:
        async with self._lock:
            with self._get_connection() as conn:
                cursor = conn.execute(
                    "INSERT OR IGNORE INTO user_roles (user, role, granted_at) VALUES (?, ?, ?)",
                    (user, role, now_ms()),
                )
                return cursor.rowcount > 0

    async def list_roles(self, user: str) -> List[str]:
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT role FROM user_roles WHERE user = ? ORDER BY role", (user,)
            ).fetchall()
        return [row["role"] for row in rows]
