"""
Typed chain events.

A ChainEvent is a decoded contract log tagged with its semantic type. Events
are transient: the bridge hands them to listeners once and drops them.

Invariants:
    - (transaction_hash, log_index) uniquely identifies an event
    - Ordering within one type is (block_number, log_index)
    - Payload keys are the contract's event argument names
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..model import EntityKey, EntityKind


class ChainEventType(Enum):
    PROJECT_CREATED = "ProjectCreated"
    PROJECT_DONATION_RECEIVED = "ProjectDonationReceived"
    PROJECT_FUNDS_ALLOCATED = "ProjectFundsAllocatedToBeneficiary"
    PROJECT_CLOSED = "ProjectClosed"
    PRODUCT_LISTED = "ProductListed"
    PRODUCT_PRICE_UPDATED = "ProductPriceUpdated"
    PRODUCT_STATUS_CHANGED = "ProductStatusChanged"
    PURCHASE_RECORDED = "PurchaseRecorded"
    MERCHANT_REGISTERED = "MerchantRegistered"
    MERCHANT_STATUS_CHANGED = "MerchantStatusChanged"
    NGO_REGISTERED = "NGORegistered"
    NGO_STATUS_CHANGED = "NGOStatusChanged"
    BENEFICIARY_ROLE_GRANTED = "BeneficiaryRoleGranted"

    @property
    def contract(self) -> str:
        """Name of the contract that emits this event."""
        return EVENT_SOURCES[self]


EVENT_SOURCES: dict[ChainEventType, str] = {
    ChainEventType.PROJECT_CREATED: "ProjectVaultManager",
    ChainEventType.PROJECT_DONATION_RECEIVED: "ProjectVaultManager",
    ChainEventType.PROJECT_FUNDS_ALLOCATED: "ProjectVaultManager",
    ChainEventType.PROJECT_CLOSED: "ProjectVaultManager",
    ChainEventType.PRODUCT_LISTED: "Marketplace",
    ChainEventType.PRODUCT_PRICE_UPDATED: "Marketplace",
    ChainEventType.PRODUCT_STATUS_CHANGED: "Marketplace",
    ChainEventType.PURCHASE_RECORDED: "Marketplace",
    ChainEventType.MERCHANT_REGISTERED: "MerchantRegistry",
    ChainEventType.MERCHANT_STATUS_CHANGED: "MerchantRegistry",
    ChainEventType.NGO_REGISTERED: "NGORegistry",
    ChainEventType.NGO_STATUS_CHANGED: "NGORegistry",
    ChainEventType.BENEFICIARY_ROLE_GRANTED: "SheAidRoles",
}

# Event argument -> entity kind it identifies
_KEY_ARGS: dict[str, EntityKind] = {
    "projectId": EntityKind.PROJECT,
    "productId": EntityKind.PRODUCT,
    "merchant": EntityKind.MERCHANT,
    "ngo": EntityKind.NGO,
    "beneficiary": EntityKind.BENEFICIARY,
    "account": EntityKind.BENEFICIARY,
}


@dataclass(frozen=True)
class ChainEvent:
    """A decoded contract event.

    Attributes:
        type: Semantic event tag
        payload: Event arguments by name
        block_timestamp: Block time (Unix seconds)
        block_number: Block containing the log
        transaction_hash: Emitting transaction
        log_index: Position of the log within the block
    """

    type: ChainEventType
    payload: dict[str, Any] = field(hash=False)
    block_timestamp: int
    block_number: int
    transaction_hash: str
    log_index: int

    @property
    def event_id(self) -> tuple[str, int]:
        return (self.transaction_hash, self.log_index)

    @property
    def chain_order(self) -> tuple[int, int]:
        return (self.block_number, self.log_index)

    def affected_keys(self) -> set[EntityKey]:
        """Entities whose projection may change because of this event."""
        keys = set()
        for arg, kind in _KEY_ARGS.items():
            value = self.payload.get(arg)
            if value is None or value == "":
                continue
            keys.add(EntityKey.of(kind, value))
        return keys

    def __str__(self) -> str:
        return f"{self.type.value}@{self.block_number}:{self.log_index}"


def affected_keys(batch: list[ChainEvent]) -> set[EntityKey]:
    keys: set[EntityKey] = set()
    for event in batch:
        keys |= event.affected_keys()
    return keys
