"""
Allocation ledger derived from chain event logs.

A project's ledger is rebuilt on every request from one authoritative
projects(id) snapshot plus the full ProjectFundsAllocatedToBeneficiary log
for that project. Nothing is cached, so a ledger can never drift from the
chain; it can only be incomplete if the node drops logs, which the
cross-check below reports.

Invariants:
    - Allocations are summed in block order and displayed newest first
    - remaining == donated - sum(allocations) within one base unit, else a
      LedgerWarning is attached (and logged), never raised
    - Title resolution matches exactly; it never guesses between candidates
    - Project listings take ids from the event log and balances from the vault
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List

from ..chain.base import ChainClient
from ..errors import ProjectNotFound, ProjectResolutionAmbiguous
from ..events.types import ChainEvent, ChainEventType
from ..model import normalize_address
from ..status import LifecycleStatus, from_project_chain

logger = logging.getLogger(__name__)

# Rounding tolerance for the ledger identity, in base units
LEDGER_TOLERANCE = 1


@dataclass(frozen=True)
class AllocationRecord:
    """One on-chain allocation of project funds to a beneficiary."""

    project_id: int
    beneficiary: str
    amount: int
    timestamp: int
    transaction_hash: str
    block_number: int
    log_index: int

    @classmethod
    def from_event(cls, event: ChainEvent) -> AllocationRecord:
        payload = event.payload
        return cls(
            project_id=int(payload["projectId"]),
            beneficiary=normalize_address(payload["beneficiary"]),
            amount=int(payload["amount"]),
            timestamp=int(payload.get("timestamp") or event.block_timestamp),
            transaction_hash=event.transaction_hash,
            block_number=event.block_number,
            log_index=event.log_index,
        )


@dataclass(frozen=True)
class LedgerWarning:
    """Non-fatal mismatch between the snapshot and the allocation log."""

    project_id: int
    expected_allocated: int
    observed_allocated: int
    message: str


@dataclass(frozen=True)
class ProjectSnapshot:
    """One project as the vault reports it.

    Attributes:
        project_id: On-chain project id
        ngo: Issuing NGO address
        title: Project title
        description: Project description
        category: Category tag
        budget: Budget in base units
        deposit: Deposit held by the vault in base units
        donated: Total donations
        remaining: Unallocated funds
        status: Lifecycle status mapped from the vault status
        created_block: Block of the ProjectCreated event
    """

    project_id: int
    ngo: str
    title: str
    description: str
    category: str
    budget: int
    deposit: int
    donated: int
    remaining: int
    status: LifecycleStatus
    created_block: int


@dataclass
class ProjectLedger:
    """Financial ledger of one project.

    Attributes:
        project_id: On-chain project id
        ngo: Issuing NGO address
        budget: Budget in base units
        deposit: Deposit held by the vault in base units
        donated: Total donations (snapshot)
        remaining: Unallocated funds (snapshot)
        status: Raw vault status integer
        allocated_total: Sum of allocation events
        allocations: Allocation records, newest first
        warnings: Cross-check warnings
        as_of_block: Block of the snapshot read
    """

    project_id: int
    ngo: str
    budget: int
    deposit: int
    donated: int
    remaining: int
    status: int
    allocated_total: int
    allocations: List[AllocationRecord] = field(default_factory=list)
    warnings: List[LedgerWarning] = field(default_factory=list)
    as_of_block: int = 0

    @property
    def consistent(self) -> bool:
        return not self.warnings


class AllocationLedgerReader:
    """Builds project ledgers from a ChainClient.

    Example:
        >>> reader = AllocationLedgerReader(client)
        >>> ledger = await reader.compute_ledger(7)
        >>> ledger.remaining == ledger.donated - ledger.allocated_total
        True
    """

    def __init__(self, client: ChainClient) -> None:
        self.client = client

    async def compute_ledger(self, project_id: int) -> ProjectLedger:
        """Snapshot the project and reconstruct its allocations.

        Raises:
            ProjectNotFound: If the vault has no project with this id
            RpcUnavailable: On connectivity loss
        """
        snapshot = await self.client.call("ProjectVaultManager", "projects", [project_id])
        project = snapshot.value
        if int(project["id"]) == 0:
            raise ProjectNotFound(f"No on-chain project with id {project_id}")

        events = await self.client.query_events(
            ChainEventType.PROJECT_FUNDS_ALLOCATED, filters={"projectId": project_id}
        )
        in_block_order = sorted(
            (AllocationRecord.from_event(e) for e in events),
            key=lambda a: (a.block_number, a.log_index),
        )
        allocated = 0
        for record in in_block_order:
            allocated += record.amount

        ledger = ProjectLedger(
            project_id=project_id,
            ngo=normalize_address(project["ngo"]),
            budget=int(project["budget"]),
            deposit=int(project["deposit"]),
            donated=int(project["donatedAmount"]),
            remaining=int(project["remainingFunds"]),
            status=int(project["status"]),
            allocated_total=allocated,
            allocations=sorted(
                in_block_order,
                key=lambda a: (a.timestamp, a.block_number, a.log_index),
                reverse=True,
            ),
            as_of_block=snapshot.block_number,
        )

        expected = ledger.donated - ledger.remaining
        if abs(expected - allocated) > LEDGER_TOLERANCE:
            warning = LedgerWarning(
                project_id=project_id,
                expected_allocated=expected,
                observed_allocated=allocated,
                message=(
                    f"Allocation log sums to {allocated} but donated - remaining is {expected}; "
                    "an allocation event may be missing"
                ),
            )
            ledger.warnings.append(warning)
            logger.warning(
                "Ledger mismatch",
                extra={
                    "project_id": project_id,
                    "expected_allocated": expected,
                    "observed_allocated": allocated,
                    "block": snapshot.block_number,
                },
            )
        return ledger

    async def resolve_project_id(self, title: str, issuer: str) -> int:
        """Find the on-chain id of a project known only by title and issuer.

        Raises:
            ProjectNotFound: If no ProjectCreated event matches
            ProjectResolutionAmbiguous: If more than one matches
        """
        issuer = normalize_address(issuer)
        events = await self.client.query_events(
            ChainEventType.PROJECT_CREATED, filters={"ngo": issuer}
        )
        candidates = [int(e.payload["projectId"]) for e in events if e.payload.get("title") == title]

        if not candidates:
            raise ProjectNotFound(
                f"No project titled {title!r} created by {issuer}", title=title, issuer=issuer
            )
        if len(candidates) > 1:
            raise ProjectResolutionAmbiguous(
                f"{len(candidates)} projects titled {title!r} created by {issuer}",
                candidates=candidates,
            )
        logger.debug(
            "Resolved project by title",
            extra={"title": title, "issuer": issuer, "project_id": candidates[0]},
        )
        return candidates[0]

    async def list_projects(self, issuer: str) -> List[ProjectSnapshot]:
        """All projects created by issuer, oldest first.

        The ProjectCreated log gives the ids; each project is then read
        from the vault so balances and status are current.

        Raises:
            RpcUnavailable: On connectivity loss
        """
        issuer = normalize_address(issuer)
        events = await self.client.query_events(
            ChainEventType.PROJECT_CREATED, filters={"ngo": issuer}
        )
        created: Dict[int, int] = {}
        for event in sorted(events, key=lambda e: (e.block_number, e.log_index)):
            created.setdefault(int(event.payload["projectId"]), event.block_number)

        projects = []
        for project_id, block_number in created.items():
            project = (await self.client.call("ProjectVaultManager", "projects", [project_id])).value
            if int(project["id"]) == 0:
                logger.warning(
                    "Created project missing from vault",
                    extra={"project_id": project_id, "issuer": issuer},
                )
                continue
            projects.append(
                ProjectSnapshot(
                    project_id=project_id,
                    ngo=normalize_address(project["ngo"]),
                    title=project["title"],
                    description=project["description"],
                    category=project["categoryTag"],
                    budget=int(project["budget"]),
                    deposit=int(project["deposit"]),
                    donated=int(project["donatedAmount"]),
                    remaining=int(project["remainingFunds"]),
                    status=from_project_chain(project["status"]),
                    created_block=block_number,
                )
            )
        return projects
