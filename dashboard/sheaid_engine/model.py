"""
Entity identity for the engine.

An entity is addressed by its on-chain key: a wallet address for role
registrations and a numeric id for projects and products. The off-chain id
assigned by the store is carried separately on view models.

Invariants:
    - Addresses are normalized to lower-case hex
    - EntityKey string form is "<kind>:<chain_key>" and round-trips through parse()
    - A chain_key of "*" is a wildcard usable only in view subscriptions
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

WILDCARD = "*"


class EntityKind(Enum):
    """Kinds of entities the dashboard tracks."""

    BENEFICIARY = "beneficiary"
    MERCHANT = "merchant"
    NGO = "ngo"
    PROJECT = "project"
    PRODUCT = "product"

    @property
    def table(self) -> str | None:
        """Off-chain table holding this kind's records (None if chain-only)."""
        return _TABLES.get(self)

    @property
    def is_role(self) -> bool:
        return self in (EntityKind.BENEFICIARY, EntityKind.MERCHANT, EntityKind.NGO)

    @property
    def numeric_key(self) -> bool:
        return self in (EntityKind.PROJECT, EntityKind.PRODUCT)


_TABLES = {
    EntityKind.BENEFICIARY: "applications",
    EntityKind.MERCHANT: "merchants",
    EntityKind.NGO: "organizers",
    EntityKind.PROJECT: "projects",
}


def normalize_address(address: str) -> str:
    """Normalize a wallet address for use as a key."""
    address = address.strip().lower()
    if not address.startswith("0x"):
        address = "0x" + address
    return address


@dataclass(frozen=True)
class EntityKey:
    """On-chain identity of an entity.

    Attributes:
        kind: Entity kind
        chain_key: Lower-case address for roles, decimal id for projects/products
    """

    kind: EntityKind
    chain_key: str

    @classmethod
    def of(cls, kind: EntityKind, chain_key: str | int) -> EntityKey:
        """Build a key, normalizing the chain key for its kind."""
        if isinstance(chain_key, int):
            return cls(kind, str(chain_key))
        if chain_key == WILDCARD:
            return cls(kind, WILDCARD)
        if kind.numeric_key:
            return cls(kind, str(int(chain_key)))
        return cls(kind, normalize_address(chain_key))

    @classmethod
    def parse(cls, text: str) -> EntityKey:
        kind, _, chain_key = text.partition(":")
        if not chain_key:
            raise ValueError(f"Invalid entity key: {text!r}")
        return cls.of(EntityKind(kind), chain_key)

    @classmethod
    def wildcard(cls, kind: EntityKind) -> EntityKey:
        return cls(kind, WILDCARD)

    @property
    def is_wildcard(self) -> bool:
        return self.chain_key == WILDCARD

    @property
    def numeric_id(self) -> int:
        """Numeric id for project/product keys."""
        if not self.kind.numeric_key or self.is_wildcard:
            raise ValueError(f"{self} has no numeric id")
        return int(self.chain_key)

    def matches(self, other: EntityKey) -> bool:
        """Whether this key (possibly a wildcard) covers another key."""
        if self.kind is not other.kind:
            return False
        return self.is_wildcard or other.is_wildcard or self.chain_key == other.chain_key

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.chain_key}"
