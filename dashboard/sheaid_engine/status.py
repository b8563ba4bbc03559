"""
Canonical lifecycle status and its mappings.

On-chain registries encode status as small integers, the off-chain store as
lower-case strings. Both are mapped onto one LifecycleStatus through total
lookup tables; a value without an entry raises UnknownStatus instead of
falling back to a default.

Role registries:   None=0, Pending=1, Active=2, Frozen=3, Banned=4
Project vault:     None=0, Active=1, Closed=2
Store:             pending, approved, rejected, active, closed

State machine:
    roles:    UNREGISTERED -> PENDING -> {APPROVED, REJECTED}
              REJECTED -> UNREGISTERED          (re-submission)
    projects: UNREGISTERED -> ACTIVE -> CLOSED  (CLOSED is terminal)
"""

from __future__ import annotations

from enum import Enum

from .errors import InvalidTransition, UnknownStatus
from .model import EntityKind


class LifecycleStatus(Enum):
    UNREGISTERED = "unregistered"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    FROZEN = "frozen"
    BANNED = "banned"
    ACTIVE = "active"
    CLOSED = "closed"

    @property
    def is_terminal(self) -> bool:
        return self in (LifecycleStatus.CLOSED, LifecycleStatus.BANNED)

    @property
    def store_value(self) -> str | None:
        """Store representation, None when the store has no such status."""
        return _TO_STORE.get(self)


ROLE_CHAIN_STATUS: dict[int, LifecycleStatus] = {
    0: LifecycleStatus.UNREGISTERED,
    1: LifecycleStatus.PENDING,
    2: LifecycleStatus.APPROVED,
    3: LifecycleStatus.FROZEN,
    4: LifecycleStatus.BANNED,
}

PROJECT_CHAIN_STATUS: dict[int, LifecycleStatus] = {
    0: LifecycleStatus.UNREGISTERED,
    1: LifecycleStatus.ACTIVE,
    2: LifecycleStatus.CLOSED,
}

STORE_STATUS: dict[str, LifecycleStatus] = {
    "pending": LifecycleStatus.PENDING,
    "approved": LifecycleStatus.APPROVED,
    "rejected": LifecycleStatus.REJECTED,
    "active": LifecycleStatus.ACTIVE,
    "closed": LifecycleStatus.CLOSED,
}

_TO_STORE = {status: value for value, status in STORE_STATUS.items()}

ROLE_TRANSITIONS: dict[LifecycleStatus, frozenset[LifecycleStatus]] = {
    LifecycleStatus.UNREGISTERED: frozenset({LifecycleStatus.PENDING}),
    LifecycleStatus.PENDING: frozenset({LifecycleStatus.APPROVED, LifecycleStatus.REJECTED}),
    LifecycleStatus.REJECTED: frozenset({LifecycleStatus.UNREGISTERED}),
}

PROJECT_TRANSITIONS: dict[LifecycleStatus, frozenset[LifecycleStatus]] = {
    LifecycleStatus.UNREGISTERED: frozenset({LifecycleStatus.ACTIVE}),
    LifecycleStatus.ACTIVE: frozenset({LifecycleStatus.CLOSED}),
}


def from_role_chain(value: int) -> LifecycleStatus:
    """Map a registry status integer."""
    try:
        return ROLE_CHAIN_STATUS[int(value)]
    except (KeyError, TypeError, ValueError):
        raise UnknownStatus(f"Unmapped role status {value!r}", source="chain", value=value)


def from_project_chain(value: int) -> LifecycleStatus:
    """Map a project vault status integer."""
    try:
        return PROJECT_CHAIN_STATUS[int(value)]
    except (KeyError, TypeError, ValueError):
        raise UnknownStatus(f"Unmapped project status {value!r}", source="chain", value=value)


def from_store(value: str | None) -> LifecycleStatus | None:
    """Map a store status string; None means the record is absent."""
    if value is None:
        return None
    try:
        return STORE_STATUS[value]
    except KeyError:
        raise UnknownStatus(f"Unmapped store status {value!r}", source="store", value=value)


def allowed_targets(kind: EntityKind, current: LifecycleStatus) -> frozenset[LifecycleStatus]:
    table = PROJECT_TRANSITIONS if kind is EntityKind.PROJECT else ROLE_TRANSITIONS
    return table.get(current, frozenset())


def check_transition(kind: EntityKind, current: LifecycleStatus, target: LifecycleStatus) -> None:
    """Raise InvalidTransition unless current -> target is an edge of the machine."""
    if target not in allowed_targets(kind, current):
        raise InvalidTransition(
            f"{kind.value} cannot move from {current.value} to {target.value}",
            current=current.value,
            target=target.value,
        )


def merge_status(
    kind: EntityKind,
    chain_status: LifecycleStatus | None,
    store_status: LifecycleStatus | None,
) -> LifecycleStatus:
    """Combine the chain and store views into the effective status.

    The chain wins wherever it has an opinion. Rejection is recorded only
    off-chain, so a chain PENDING refined by a store REJECTED is REJECTED.
    Beneficiary applications exist on-chain only once the role is granted;
    before that the store carries the status.
    """
    if kind is EntityKind.BENEFICIARY:
        if chain_status is LifecycleStatus.APPROVED:
            return LifecycleStatus.APPROVED
        if store_status in (LifecycleStatus.PENDING, LifecycleStatus.REJECTED):
            return store_status
        return LifecycleStatus.UNREGISTERED

    if chain_status is None:
        return store_status or LifecycleStatus.UNREGISTERED

    if chain_status is LifecycleStatus.PENDING and store_status is LifecycleStatus.REJECTED:
        return LifecycleStatus.REJECTED
    return chain_status
