"""
Reconciliation projector.

project(key) merges the authoritative chain read with the cached store
record into one ViewModel, and nudges the store toward the chain as a side
effect:

    lifecycle status, money, role grants   <- chain
    names, descriptions, contact, reasons  <- store (chain value as fallback)

Invariants:
    - A missing store record for a live (non-terminal) chain record is
      recreated; a store status that disagrees with the merged status is
      rewritten. An approved merchant or NGO without its off-chain role
      grant gets it back. None of this happens while a transition for the
      key is in flight.
    - A chain read older than the last block our own transition confirmed
      for the key is discarded, never merged or written back
    - RpcUnavailable never reaches the caller; the last known view comes
      back with stale=True
    - Projecting twice with no chain change gives equal ViewModels

How to change safely:
    - Keep repair writes idempotent: they only fire when the record or the
      role grant is absent
    - New metadata fields belong in _NAME_KEYS or _DESCRIPTION_KEYS, never in
      the chain-precedence path
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

from ..chain.abi import decode_bytes32
from ..chain.base import ChainClient
from ..errors import RpcUnavailable, StoreError
from ..ledger.reader import AllocationLedgerReader
from ..lifecycle.tracker import InFlightTracker
from ..model import EntityKey, EntityKind
from ..money import format_units
from ..reads import ChainState, effective_status, linked_store_record, read_chain_state
from ..status import LifecycleStatus, from_store
from ..store.base import OffChainStore, StoreRecord, now_ms

logger = logging.getLogger(__name__)

# Store data keys holding the display name, per kind, in lookup order
_NAME_KEYS = {
    EntityKind.BENEFICIARY: ("name", "applicant_name"),
    EntityKind.MERCHANT: ("name", "store_name"),
    EntityKind.NGO: ("name", "organization_name"),
    EntityKind.PROJECT: ("title",),
}
_DESCRIPTION_KEYS = ("description", "metadata", "situation")
_CONTACT_KEYS = ("contact_email", "contact_phone")

# kind -> off-chain role granted once the chain approves the account
_STORE_ROLES = {
    EntityKind.MERCHANT: "merchant",
    EntityKind.NGO: "ngo",
}

# kind -> role granted on chain once approved
_CHAIN_ROLES = {
    EntityKind.BENEFICIARY: "beneficiary",
    EntityKind.MERCHANT: "merchant",
    EntityKind.NGO: "ngo",
}


@dataclass(frozen=True)
class ProjectFinancials:
    """Monetary sub-record of a project, in base units."""

    budget: int
    deposit: int
    donated_amount: int
    remaining_funds: int
    allocated_total: int

    def to_dict(self) -> Dict[str, str]:
        return {
            "budget": format_units(self.budget),
            "deposit": format_units(self.deposit),
            "donated_amount": format_units(self.donated_amount),
            "remaining_funds": format_units(self.remaining_funds),
            "allocated_total": format_units(self.allocated_total),
        }


@dataclass(frozen=True)
class ViewModel:
    """Merged view of one entity.

    Attributes:
        key: Entity key
        status: Effective lifecycle status
        off_chain_id: Store record id, if linked
        name: Display name
        description: Human-authored description
        contact: Contact fields from the store
        rejection_reason: Reason text for rejected entities
        reviewed_at: Review time (Unix ms)
        roles: Role grants held on chain
        details: Kind-specific chain fields (stake, price, issuer...)
        financials: Project money, for projects that exist on chain
        ledger_warnings: Ledger cross-check messages
        stale: The chain could not be read; this is the last known view
        as_of_block: Block of the chain read behind this view
        repaired: This projection recreated the store record
    """

    key: EntityKey
    status: LifecycleStatus
    off_chain_id: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    contact: Dict[str, Any] = field(default_factory=dict, hash=False)
    rejection_reason: Optional[str] = None
    reviewed_at: Optional[int] = None
    roles: Tuple[str, ...] = ()
    details: Dict[str, Any] = field(default_factory=dict, hash=False)
    financials: Optional[ProjectFinancials] = None
    ledger_warnings: Tuple[str, ...] = ()
    stale: bool = False
    as_of_block: Optional[int] = field(default=None, compare=False)
    repaired: bool = field(default=False, compare=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": str(self.key),
            "kind": self.key.kind.value,
            "chain_key": self.key.chain_key,
            "status": self.status.value,
            "off_chain_id": self.off_chain_id,
            "name": self.name,
            "description": self.description,
            "contact": dict(self.contact),
            "rejection_reason": self.rejection_reason,
            "reviewed_at": self.reviewed_at,
            "roles": list(self.roles),
            "details": dict(self.details),
            "financials": self.financials.to_dict() if self.financials else None,
            "ledger_warnings": list(self.ledger_warnings),
            "stale": self.stale,
            "as_of_block": self.as_of_block,
        }


class ReconciliationProjector:
    """Builds ViewModels and converges the store toward the chain.

    Example:
        >>> projector = ReconciliationProjector(client, store, tracker)
        >>> view = await projector.project(EntityKey.of(EntityKind.MERCHANT, "0xabc..."))
        >>> view.status
        <LifecycleStatus.PENDING: 'pending'>
    """

    def __init__(
        self,
        client: ChainClient,
        store: OffChainStore,
        tracker: Optional[InFlightTracker] = None,
        ledger: Optional[AllocationLedgerReader] = None,
    ) -> None:
        self.client = client
        self.store = store
        self.tracker = tracker or InFlightTracker()
        self.ledger = ledger or AllocationLedgerReader(client)
        self._last_known: Dict[EntityKey, ViewModel] = {}

        # Stats
        self._projections = 0
        self._repairs = 0
        self._convergence_writes = 0
        self._role_grants = 0
        self._stale_served = 0
        self._discarded_reads = 0

    def last_known(self, key: EntityKey) -> Optional[ViewModel]:
        return self._last_known.get(key)

    async def project(self, key: EntityKey) -> ViewModel:
        """Project key into a ViewModel.

        Raises:
            UnknownStatus: If chain or store hold an unmapped status
            StoreError: If the store cannot be read
        """
        self._projections += 1
        try:
            chain = await read_chain_state(self.client, key)
        except RpcUnavailable as e:
            logger.warning(
                "Chain unavailable, serving stale view",
                extra={"entity_key": str(key), "error": str(e)},
            )
            return await self._stale(key)

        floor = self.tracker.confirmed_floor(key)
        if floor is not None and chain.block_number < floor:
            self._discarded_reads += 1
            logger.info(
                "Discarding chain read older than confirmed transition step",
                extra={"entity_key": str(key), "read_block": chain.block_number, "floor": floor},
            )
            return await self._stale(key)

        in_flight = self.tracker.is_in_flight(key)
        record = await linked_store_record(self.store, chain)
        status = effective_status(chain, record.status if record else None)

        repaired = False
        if not in_flight and key.kind.table is not None:
            if record is None:
                record = await self._repair(chain, status)
                repaired = record is not None
            else:
                record = await self._converge(record, status)
            if chain.status is LifecycleStatus.APPROVED and key.kind in _STORE_ROLES:
                await self._sync_role(key)

        financials = None
        warnings: Tuple[str, ...] = ()
        if key.kind is EntityKind.PROJECT and chain.exists:
            try:
                ledger = await self.ledger.compute_ledger(key.numeric_id)
            except RpcUnavailable as e:
                logger.warning(
                    "Ledger unavailable, serving stale view",
                    extra={"entity_key": str(key), "error": str(e)},
                )
                return await self._stale(key)
            financials = ProjectFinancials(
                budget=ledger.budget,
                deposit=ledger.deposit,
                donated_amount=ledger.donated,
                remaining_funds=ledger.remaining,
                allocated_total=ledger.allocated_total,
            )
            warnings = tuple(w.message for w in ledger.warnings)

        view = self._build(chain, record, status, financials, warnings, repaired)
        self._last_known[key] = view
        return view

    # ------------------------------------------------------------------
    # Self-healing writes
    # ------------------------------------------------------------------

    async def _repair(self, chain: ChainState, status: LifecycleStatus) -> Optional[StoreRecord]:
        """Recreate a missing store record from the chain record."""
        if not chain.exists or chain.status.is_terminal or status.store_value is None:
            return None

        data = self._repair_data(chain)
        try:
            record = await self.store.insert(
                chain.key.kind.table, chain.key.chain_key, status.store_value, data
            )
            if status in (LifecycleStatus.APPROVED, LifecycleStatus.REJECTED):
                record = await self.store.update(
                    record.table, record.id, {"reviewed_at": now_ms()}
                )
        except StoreError as e:
            logger.warning(
                "Store repair failed, will retry on next projection",
                extra={"entity_key": str(chain.key), "error": str(e)},
            )
            return None

        self._repairs += 1
        logger.info(
            "Recreated missing store record",
            extra={
                "entity_key": str(chain.key),
                "record_id": record.id,
                "status": status.store_value,
            },
        )
        return record

    @staticmethod
    def _repair_data(chain: ChainState) -> Dict[str, Any]:
        r = chain.record
        kind = chain.key.kind
        if kind is EntityKind.PROJECT:
            return {
                "title": r.get("title", ""),
                "description": r.get("description", ""),
                "category": r.get("categoryTag", ""),
                "target_amount": format_units(int(r.get("budget", 0))),
                "issuer": r.get("ngo"),
                "repaired": True,
            }
        data: Dict[str, Any] = {"repaired": True}
        if r.get("name"):
            data["name"] = r["name"]
        if kind is EntityKind.MERCHANT:
            data["metadata"] = r.get("metadata", "")
        elif kind is EntityKind.NGO:
            data["license_id"] = r.get("licenseId", "")
        if "stake" in r:
            data["stake"] = format_units(int(r["stake"]))
        return data

    async def _converge(self, record: StoreRecord, status: LifecycleStatus) -> StoreRecord:
        """Rewrite the store status when it disagrees with the merged status."""
        desired = status.store_value
        if desired is None or record.status == desired:
            return record

        changes: Dict[str, Any] = {"status": desired}
        if status in (LifecycleStatus.APPROVED, LifecycleStatus.REJECTED) and record.reviewed_at is None:
            changes["reviewed_at"] = now_ms()
        if status is not LifecycleStatus.REJECTED and record.rejection_reason is not None:
            changes["rejection_reason"] = None
        try:
            updated = await self.store.update(record.table, record.id, changes)
        except StoreError as e:
            logger.warning(
                "Store convergence write failed, will retry on next projection",
                extra={"record_id": record.id, "table": record.table, "error": str(e)},
            )
            return record

        self._convergence_writes += 1
        logger.info(
            "Converged store status to chain",
            extra={
                "table": record.table,
                "record_id": record.id,
                "from_status": record.status,
                "to_status": desired,
            },
        )
        return updated

    async def _sync_role(self, key: EntityKey) -> None:
        """Grant the off-chain role of an approved account that lacks it."""
        role = _STORE_ROLES[key.kind]
        try:
            if role in await self.store.list_roles(key.chain_key):
                return
            await self.store.grant_role(key.chain_key, role)
        except StoreError as e:
            logger.warning(
                "Role grant failed, will retry on next projection",
                extra={"entity_key": str(key), "role": role, "error": str(e)},
            )
            return

        self._role_grants += 1
        logger.info(
            "Restored missing role grant",
            extra={"entity_key": str(key), "role": role},
        )

    # ------------------------------------------------------------------
    # View assembly

    # ------------------------------------------------------------------

    async def _stale(self, key: EntityKey) -> ViewModel:
        self._stale_served += 1
        last = self._last_known.get(key)
        if last is not None:
            return dataclasses.replace(last, stale=True)

        # Nothing projected yet: the store is the only source left
        record = None
        if key.kind.table is not None:
            record = await self.store.find_by_chain_key(key.kind.table, key.chain_key)
        status = from_store(record.status if record else None) or LifecycleStatus.UNREGISTERED
        return ViewModel(
            key=key,
            status=status,
            off_chain_id=record.id if record else None,
            name=self._first(record.data, _NAME_KEYS.get(key.kind, ())) if record else None,
            rejection_reason=record.rejection_reason if record else None,
            reviewed_at=record.reviewed_at if record else None,
            stale=True,
        )

    def _build(
        self,
        chain: ChainState,
        record: Optional[StoreRecord],
        status: LifecycleStatus,
        financials: Optional[ProjectFinancials],
        warnings: Tuple[str, ...],
        repaired: bool,
    ) -> ViewModel:
        kind = chain.key.kind
        data = record.data if record else {}
        r = chain.record

        chain_name = r.get("title") if kind is EntityKind.PROJECT else r.get("name")
        if kind is EntityKind.PRODUCT:
            chain_name = r.get("metadata")
        name = self._first(data, _NAME_KEYS.get(kind, ())) or chain_name or None

        chain_description = r.get("description") or r.get("metadata")
        description = self._first(data, _DESCRIPTION_KEYS) or chain_description or None

        roles: Tuple[str, ...] = ()
        if kind in _CHAIN_ROLES and chain.status is LifecycleStatus.APPROVED:
            roles = (_CHAIN_ROLES[kind],)

        return ViewModel(
            key=chain.key,
            status=status,
            off_chain_id=record.id if record else None,
            name=name,
            description=description,
            contact={k: data[k] for k in _CONTACT_KEYS if data.get(k)},
            rejection_reason=record.rejection_reason if record and status is LifecycleStatus.REJECTED else None,
            reviewed_at=record.reviewed_at if record else None,
            roles=roles,
            details=self._details(chain),
            financials=financials,
            ledger_warnings=warnings,
            stale=False,
            as_of_block=chain.block_number,
            repaired=repaired,
        )

    @staticmethod
    def _details(chain: ChainState) -> Dict[str, Any]:
        r = chain.record
        kind = chain.key.kind
        if kind in (EntityKind.MERCHANT, EntityKind.NGO) and chain.exists:
            return {"stake": format_units(int(r["stake"]))}
        if kind is EntityKind.PROJECT and chain.exists:
            return {"issuer": r["ngo"], "category": r.get("categoryTag", "")}
        if kind is EntityKind.PRODUCT and chain.exists:
            return {
                "merchant": r["merchant"],
                "category": decode_bytes32(r["categoryId"]),
                "price": format_units(int(r["price"])),
                "stock": int(r.get("stock", 0)),
                "active": bool(r["active"]),
            }
        return {}

    @staticmethod
    def _first(data: Dict[str, Any], keys: Tuple[str, ...]) -> Optional[str]:
        for k in keys:
            if data.get(k):
                return data[k]
        return None

    def get_stats(self) -> dict:
        return {
            "projections": self._projections,
            "repairs": self._repairs,
            "convergence_writes": self._convergence_writes,
            "role_grants": self._role_grants,
            "stale_served": self._stale_served,
            "discarded_reads": self._discarded_reads,
            "cached_views": len(self._last_known),
        }
