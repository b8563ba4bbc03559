"""
Authoritative chain reads per entity kind.

Every component that needs "what does the chain say about this entity"
goes through read_chain_state(), so the contract getter, the status mapping
and the treatment of empty records live in one place.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from .chain.base import ChainClient
from .model import EntityKey, EntityKind
from .store.base import OffChainStore, StoreRecord, find_linked_record
from .status import (
    LifecycleStatus,
    from_project_chain,
    from_role_chain,
    from_store,
    merge_status,
)

# kind -> (contract, getter)
ROLE_REGISTRIES = {
    EntityKind.MERCHANT: ("MerchantRegistry", "merchants"),
    EntityKind.NGO: ("NGORegistry", "ngos"),
}


@dataclass(frozen=True)
class ChainState:
    """What the chain reports for one entity.

    Attributes:
        key: Entity key
        status: Mapped lifecycle status (UNREGISTERED when no record exists)
        record: Raw getter output (struct fields by name)
        block_number: Block the read was served from
    """

    key: EntityKey
    status: LifecycleStatus
    record: Dict[str, Any] = field(default_factory=dict, compare=False)
    block_number: int = field(default=0, compare=False)

    @property
    def exists(self) -> bool:
        return self.status is not LifecycleStatus.UNREGISTERED


def effective_status(chain: ChainState, store_status_value: Optional[str]) -> LifecycleStatus:
    """Merge a chain read with the store's status string.

    Raises:
        UnknownStatus: If the store holds an unmapped status
    """
    kind = chain.key.kind
    if kind is EntityKind.PRODUCT:
        return chain.status
    store_status = from_store(store_status_value)
    chain_status: Optional[LifecycleStatus] = chain.status
    if kind.is_role and not chain.exists:
        chain_status = None
    return merge_status(kind, chain_status, store_status)


async def read_chain_state(client: ChainClient, key: EntityKey) -> ChainState:
    """Read and map the on-chain record for key.

    Raises:
        RpcUnavailable: On connectivity loss
        UnknownStatus: If the chain reports an unmapped status value
    """
    kind = key.kind

    if kind is EntityKind.BENEFICIARY:
        read = await client.call("SheAidRoles", "isBeneficiary", [key.chain_key])
        granted = bool(read.value)
        status = LifecycleStatus.APPROVED if granted else LifecycleStatus.UNREGISTERED
        return ChainState(key, status, {"isBeneficiary": granted}, read.block_number)

    if kind in ROLE_REGISTRIES:
        contract, getter = ROLE_REGISTRIES[kind]
        read = await client.call(contract, getter, [key.chain_key])
        record = dict(read.value)
        return ChainState(key, from_role_chain(record["status"]), record, read.block_number)

    if kind is EntityKind.PROJECT:
        read = await client.call("ProjectVaultManager", "projects", [key.numeric_id])
        record = dict(read.value)
        if int(record["id"]) == 0:
            return ChainState(key, LifecycleStatus.UNREGISTERED, record, read.block_number)
        return ChainState(key, from_project_chain(record["status"]), record, read.block_number)

    read = await client.call("Marketplace", "products", [key.numeric_id])
    record = dict(read.value)
    if int(record["id"]) == 0:
        status = LifecycleStatus.UNREGISTERED
    elif record["active"]:
        status = LifecycleStatus.ACTIVE
    else:
        # Delisted products can be reactivated, so this is not CLOSED
        status = LifecycleStatus.FROZEN
    return ChainState(key, status, record, read.block_number)


async def linked_store_record(store: OffChainStore, chain: ChainState) -> Optional[StoreRecord]:
    """The store record for chain.key, linking a legacy project row if needed."""
    table = chain.key.kind.table
    if table is None:
        return None
    legacy = None
    if chain.key.kind is EntityKind.PROJECT and chain.exists:
        legacy = {"title": chain.record.get("title"), "issuer": chain.record.get("ngo")}
    return await find_linked_record(store, table, chain.key.chain_key, legacy)
