"""
Lifecycle orchestration.

The orchestrator moves entities between lifecycle states by running ordered
step sequences, each step being one chain send or one store write:

    stake-and-register   approve(spender, amount) -> register*/createProject -> store insert
    approve              approve*/grantBeneficiaryRole -> store update [-> role grant]
    reject               store update (reason required)
    close project        closeProject -> store update
    product actions      listProduct | setProductActive | updateProductPrice

Invariants:
    - Step n+1 is never started before step n's receipt confirms
    - Preconditions (state machine, parameters, amounts, the in-flight
      guard) are checked before any step runs and raise directly
    - Step failures are returned in LifecycleResult with the failing step
      index; nothing is rolled back or retried
    - One transition per entity at a time; the marker is released when the
      transition returns, whatever the outcome
    - Once abandoned, a transition submits no further transaction

How to change safely:
    - New actions need an entry in ACTION_KINDS and a handler in _HANDLERS
    - Keep chain sends before store writes; the projector heals a missing
      store row, nothing heals a store row without its chain counterpart
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from ..chain.abi import encode_bytes32
from ..chain.base import ChainClient, Receipt
from ..errors import (
    ConfirmationAbandoned,
    EngineError,
    InvalidAmount,
    InvalidParameters,
    InvalidTransition,
)
from ..events.types import ChainEventType
from ..ledger.reader import AllocationLedgerReader
from ..model import EntityKey, EntityKind
from ..money import deposit_for_budget, format_units, to_base_units
from ..reads import ROLE_REGISTRIES, effective_status, linked_store_record, read_chain_state
from ..status import LifecycleStatus, check_transition
from ..store.base import OffChainStore, StoreRecord, find_linked_record, now_ms
from .tracker import InFlight, InFlightTracker

logger = logging.getLogger(__name__)


class LifecycleAction(Enum):
    REGISTER = "register"
    RESUBMIT = "resubmit"
    CREATE_PROJECT = "create_project"
    APPROVE = "approve"
    REJECT = "reject"
    CLOSE_PROJECT = "close_project"
    LIST_PRODUCT = "list_product"
    SET_PRODUCT_ACTIVE = "set_product_active"
    UPDATE_PRODUCT_PRICE = "update_product_price"


_ROLES = frozenset({EntityKind.BENEFICIARY, EntityKind.MERCHANT, EntityKind.NGO})

ACTION_KINDS: Dict[LifecycleAction, frozenset] = {
    LifecycleAction.REGISTER: _ROLES,
    LifecycleAction.RESUBMIT: _ROLES,
    LifecycleAction.APPROVE: _ROLES,
    LifecycleAction.REJECT: _ROLES,
    LifecycleAction.CREATE_PROJECT: frozenset({EntityKind.PROJECT}),
    LifecycleAction.CLOSE_PROJECT: frozenset({EntityKind.PROJECT}),
    LifecycleAction.LIST_PRODUCT: frozenset({EntityKind.MERCHANT}),
    LifecycleAction.SET_PRODUCT_ACTIVE: frozenset({EntityKind.PRODUCT}),
    LifecycleAction.UPDATE_PRODUCT_PRICE: frozenset({EntityKind.PRODUCT}),
}

# kind -> (register method, approve method, off-chain role name)
_ROLE_METHODS = {
    EntityKind.MERCHANT: ("registerMerchant", "approveMerchant", "merchant"),
    EntityKind.NGO: ("registerNGO", "approveNGO", "ngo"),
}


class StepKind(Enum):
    CHAIN = "chain"
    STORE = "store"


@dataclass(frozen=True)
class StepOutcome:
    """A step that completed.

    Attributes:
        index: 1-based position in the sequence
        name: Contract method or store operation
        kind: chain or store
        tx_hash: Transaction hash for chain steps
        block_number: Confirmation block for chain steps
    """

    index: int
    name: str
    kind: StepKind
    tx_hash: Optional[str] = None
    block_number: Optional[int] = None


@dataclass
class LifecycleResult:
    """Outcome of one transition.

    Attributes:
        success: All steps completed
        key: Entity key (for CREATE_PROJECT and LIST_PRODUCT, the new entity's key)
        action: Action performed
        status: Effective status after the transition, as far as it got
        steps: Completed steps in order
        failed_step: Index of the step that failed, if any
        error: The error raised by the failed step
        off_chain_id: Store record id touched by the transition
    """

    success: bool
    key: EntityKey
    action: LifecycleAction
    status: LifecycleStatus
    steps: List[StepOutcome] = field(default_factory=list)
    failed_step: Optional[int] = None
    error: Optional[EngineError] = None
    off_chain_id: Optional[str] = None

    @property
    def abandoned(self) -> bool:
        """The caller stopped waiting; the last transaction may still confirm."""
        return isinstance(self.error, ConfirmationAbandoned)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "key": str(self.key),
            "action": self.action.value,
            "status": self.status.value,
            "steps": [
                {
                    "index": s.index,
                    "name": s.name,
                    "kind": s.kind.value,
                    "tx_hash": s.tx_hash,
                    "block_number": s.block_number,
                }
                for s in self.steps
            ],
            "failed_step": self.failed_step,
            "error": self.error.to_dict() if self.error else None,
            "off_chain_id": self.off_chain_id,
            "abandoned": self.abandoned,
        }


@dataclass
class _Run:
    """Mutable state of one running transition."""

    key: EntityKey
    action: LifecycleAction
    flight: InFlight
    actor: ChainClient
    before: LifecycleStatus
    target: LifecycleStatus
    steps: List[StepOutcome] = field(default_factory=list)
    current_step: int = 0
    realized: bool = False
    off_chain_id: Optional[str] = None

    @property
    def status(self) -> LifecycleStatus:
        return self.target if self.realized else self.before


class LifecycleOrchestrator:
    """Runs lifecycle transitions against the chain and the off-chain store.

    The default client signs admin actions (approvals). Actions taken by the
    entity itself (registration, project creation, product listing) are
    signed by the `signer` passed to transition(), falling back to the
    default client.

    Example:
        >>> orchestrator = LifecycleOrchestrator(admin_client, store)
        >>> result = await orchestrator.transition(
        ...     EntityKey.of(EntityKind.MERCHANT, merchant_client.account),
        ...     LifecycleAction.REGISTER,
        ...     {"name": "Shop", "metadata": "bio", "stake": "100"},
        ...     signer=merchant_client,
        ... )
        >>> result.success, result.status
        (True, <LifecycleStatus.PENDING: 'pending'>)
    """

    def __init__(
        self,
        client: ChainClient,
        store: OffChainStore,
        tracker: Optional[InFlightTracker] = None,
        confirmation_timeout: float = 120.0,
        deposit_percent: int = 120,
    ) -> None:
        self.client = client
        self.store = store
        self.tracker = tracker or InFlightTracker()
        self.confirmation_timeout = confirmation_timeout
        self.deposit_percent = deposit_percent
        self._ledger = AllocationLedgerReader(client)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def transition(
        self,
        key: EntityKey,
        action: LifecycleAction,
        params: Optional[Dict[str, Any]] = None,
        signer: Optional[ChainClient] = None,
    ) -> LifecycleResult:
        """Run action for key.

        Raises:
            TransitionInProgress: A transition for the same entity is in flight
            InvalidTransition: The state machine forbids the move
            InvalidParameters: Missing/malformed params or action not valid for the kind
            InvalidAmount: Malformed monetary parameter
            RpcUnavailable: The precondition read could not reach the chain
        """
        params = dict(params or {})
        if key.kind not in ACTION_KINDS[action]:
            raise InvalidParameters(f"{action.value} is not defined for {key.kind.value}")
        actor = signer or self.client

        marker = self._marker_key(key, action, actor)
        flight = self.tracker.begin(marker, action.value)
        try:
            run = await self._prepare(key, action, params, actor, flight)
            logger.info(
                "Transition started",
                extra={
                    "entity_key": str(key),
                    "action": action.value,
                    "from_status": run.before.value,
                    "to_status": run.target.value,
                },
            )
            try:
                await _HANDLERS[action](self, run, params)
            except EngineError as e:
                if run.current_step == 0:
                    # Parameter checks inside handlers run before any step
                    raise
                return self._failed(run, e)

            result = LifecycleResult(
                success=True,
                key=run.key,
                action=action,
                status=run.status,
                steps=run.steps,
                off_chain_id=run.off_chain_id,
            )
            logger.info(
                "Transition completed",
                extra={
                    "entity_key": str(run.key),
                    "action": action.value,
                    "status": result.status.value,
                    "steps": len(run.steps),
                },
            )
            return result
        finally:
            self.tracker.finish(marker)

    def abandon(self, key: EntityKey) -> Optional[str]:
        """Stop key's transition at its current chain step.

        A transaction already submitted stays pending on chain and the
        transition returns with a ConfirmationAbandoned error. If the next
        transaction has not been sent yet it never is. Returns the hash
        being waited on, or None when nothing is in flight for key or no
        transaction of the current step was submitted yet.
        """
        return self.tracker.abandon(key)

    async def current_status(self, key: EntityKey) -> LifecycleStatus:
        """Merged chain/store status of key."""
        chain = await read_chain_state(self.client, key)
        record = await linked_store_record(self.store, chain)
        return effective_status(chain, record.status if record else None)

    # ------------------------------------------------------------------
    # Preconditions
    # ------------------------------------------------------------------

    @staticmethod
    def _marker_key(key: EntityKey, action: LifecycleAction, actor: ChainClient) -> EntityKey:
        # A project has no id until createProject confirms; guard its issuer instead
        if action is LifecycleAction.CREATE_PROJECT:
            return EntityKey.of(EntityKind.NGO, actor.account)
        return key

    async def _prepare(
        self,
        key: EntityKey,
        action: LifecycleAction,
        params: Dict[str, Any],
        actor: ChainClient,
        flight: InFlight,
    ) -> _Run:
        if action is LifecycleAction.CREATE_PROJECT:
            ngo = await self.current_status(EntityKey.of(EntityKind.NGO, actor.account))
            if ngo is not LifecycleStatus.APPROVED:
                raise InvalidTransition(
                    f"NGO {actor.account} is {ngo.value}; only approved NGOs create projects",
                    current=ngo.value,
                    target=LifecycleStatus.ACTIVE.value,
                )
            check_transition(EntityKind.PROJECT, LifecycleStatus.UNREGISTERED, LifecycleStatus.ACTIVE)
            return _Run(key, action, flight, actor, LifecycleStatus.UNREGISTERED, LifecycleStatus.ACTIVE)

        if action is LifecycleAction.LIST_PRODUCT:
            self._require_self(key, actor)
            merchant = await self.current_status(key)
            if merchant is not LifecycleStatus.APPROVED:
                raise InvalidTransition(
                    f"Merchant {key.chain_key} is {merchant.value}; only approved merchants list products",
                    current=merchant.value,
                    target=LifecycleStatus.ACTIVE.value,
                )
            return _Run(key, action, flight, actor, merchant, merchant)

        current = await self.current_status(key)

        if action is LifecycleAction.SET_PRODUCT_ACTIVE:
            if current is LifecycleStatus.UNREGISTERED:
                raise InvalidParameters(f"Unknown product {key.chain_key}", field_name="chain_key")
            self._require_param(params, "active")
            target = LifecycleStatus.ACTIVE if bool(params["active"]) else LifecycleStatus.FROZEN
            return _Run(key, action, flight, actor, current, target)

        if action is LifecycleAction.UPDATE_PRODUCT_PRICE:
            if current is LifecycleStatus.UNREGISTERED:
                raise InvalidParameters(f"Unknown product {key.chain_key}", field_name="chain_key")
            return _Run(key, action, flight, actor, current, current)

        if action is LifecycleAction.RESUBMIT:
            check_transition(key.kind, current, LifecycleStatus.UNREGISTERED)
            check_transition(key.kind, LifecycleStatus.UNREGISTERED, LifecycleStatus.PENDING)
            target = LifecycleStatus.PENDING
        else:
            target = {
                LifecycleAction.REGISTER: LifecycleStatus.PENDING,
                LifecycleAction.APPROVE: LifecycleStatus.APPROVED,
                LifecycleAction.REJECT: LifecycleStatus.REJECTED,
                LifecycleAction.CLOSE_PROJECT: LifecycleStatus.CLOSED,
            }[action]
            check_transition(key.kind, current, target)

        if action in (LifecycleAction.REGISTER, LifecycleAction.RESUBMIT) and key.kind in _ROLE_METHODS:
            self._require_self(key, actor)
        return _Run(key, action, flight, actor, current, target)

    @staticmethod
    def _require_self(key: EntityKey, actor: ChainClient) -> None:
        if key.chain_key != actor.account:
            raise InvalidParameters(
                f"{key} must be signed by its own account, not {actor.account}",
                field_name="chain_key",
            )

    @staticmethod
    def _require_param(params: Dict[str, Any], name: str) -> Any:
        value = params.get(name)
        if value is None or (isinstance(value, str) and not value.strip()):
            raise InvalidParameters(f"Missing parameter: {name}", field_name=name)
        return value

    def _positive_amount(self, params: Dict[str, Any], name: str) -> int:
        amount = to_base_units(self._require_param(params, name))
        if amount <= 0:
            raise InvalidAmount(f"{name} must be positive", value=params[name])
        return amount

    # ------------------------------------------------------------------
    # Step execution
    # ------------------------------------------------------------------

    async def _chain_step(
        self,
        run: _Run,
        contract: str,
        method: str,
        args: List[Any],
        actor: Optional[ChainClient] = None,
    ) -> Receipt:
        run.current_step += 1
        run.flight.step = run.current_step
        run.flight.tx_hash = None
        if run.flight.abandoned.is_set():
            raise ConfirmationAbandoned(
                f"Stopped before step {run.current_step} ({method}); no transaction was sent",
                submitted=False,
            )

        handle = await (actor or run.actor).send(contract, method, args)
        run.flight.tx_hash = handle.tx_hash
        logger.debug(
            "Step submitted",
            extra={
                "entity_key": str(run.key),
                "step": run.current_step,
                "method": method,
                "tx_hash": handle.tx_hash,
            },
        )

        receipt = await self._await_confirmation(run.flight, handle)
        self.tracker.record_confirmed(run.flight.key, receipt.block_number)
        run.steps.append(
            StepOutcome(
                index=run.current_step,
                name=f"{contract}.{method}",
                kind=StepKind.CHAIN,
                tx_hash=receipt.tx_hash,
                block_number=receipt.block_number,
            )
        )
        return receipt

    async def _await_confirmation(self, flight: InFlight, handle: Any) -> Receipt:
        wait_task = asyncio.ensure_future(handle.wait(self.confirmation_timeout))
        abandon_task = asyncio.ensure_future(flight.abandoned.wait())
        try:
            await asyncio.wait({wait_task, abandon_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            abandon_task.cancel()
            if not wait_task.done():
                wait_task.cancel()

        if wait_task.done() and not wait_task.cancelled():
            return wait_task.result()
        raise ConfirmationAbandoned(
            f"Stopped waiting for {handle.tx_hash}; the transaction may still confirm",
            tx_hash=handle.tx_hash,
        )

    def _begin_store_step(self, run: _Run) -> None:
        run.current_step += 1
        run.flight.step = run.current_step
        run.flight.tx_hash = None

    def _store_step_done(self, run: _Run, name: str, record: Optional[StoreRecord] = None) -> None:
        if record is not None:
            run.off_chain_id = record.id
        run.steps.append(StepOutcome(index=run.current_step, name=name, kind=StepKind.STORE))

    def _failed(self, run: _Run, error: EngineError) -> LifecycleResult:
        result = LifecycleResult(
            success=False,
            key=run.key,
            action=run.action,
            status=run.status,
            steps=run.steps,
            failed_step=run.current_step,
            error=error,
            off_chain_id=run.off_chain_id,
        )
        log = logger.info if result.abandoned else logger.warning
        log(
            "Transition stopped at step %d",
            run.current_step,
            extra={
                "entity_key": str(run.key),
                "action": run.action.value,
                "error_code": error.code,
                "status": result.status.value,
                "tx_hash": getattr(error, "tx_hash", None),
            },
        )
        return result

    # ------------------------------------------------------------------
    # Store helpers
    # ------------------------------------------------------------------

    async def _write_record(
        self,
        run: _Run,
        status: LifecycleStatus,
        changes: Dict[str, Any],
        data: Optional[Dict[str, Any]] = None,
        legacy: Optional[Dict[str, Any]] = None,
    ) -> StoreRecord:
        """Update the entity's record, inserting it first if it is missing."""
        table = run.key.kind.table
        record = await find_linked_record(self.store, table, run.key.chain_key, legacy)
        if record is None:
            record = await self.store.insert(table, run.key.chain_key, status.store_value, data)
            if not changes:
                return record
        elif data:
            changes = {**changes, "data": data}
        return await self.store.update(table, record.id, {"status": status.store_value, **changes})

    @staticmethod
    def _record_data(params: Dict[str, Any], exclude: tuple = ()) -> Dict[str, Any]:
        return {k: v for k, v in params.items() if k not in exclude and v is not None}

    # ------------------------------------------------------------------
    # Action handlers
    # ------------------------------------------------------------------

    async def _register(self, run: _Run, params: Dict[str, Any]) -> None:
        kind = run.key.kind
        if kind is EntityKind.BENEFICIARY:
            await self._register_beneficiary(run, params)
            return

        register_method, _, _ = _ROLE_METHODS[kind]
        contract = ROLE_REGISTRIES[kind][0]
        name = self._require_param(params, "name")
        detail_field = "metadata" if kind is EntityKind.MERCHANT else "license_id"
        detail = params.get(detail_field) or ""
        stake = self._positive_amount(params, "stake")

        # Step 1: allowance for the registry to pull the stake
        await self._chain_step(run, "MockToken", "approve", [self.client.address_of(contract), stake])
        # Step 2: registration, which pulls the stake
        await self._chain_step(run, contract, register_method, [name, detail, stake])
        run.realized = True

        # Step 3: the pending record with its human-facing details
        self._begin_store_step(run)
        data = self._record_data(params, exclude=("stake",))
        data["stake"] = format_units(stake)
        changes: Dict[str, Any] = {}
        if run.action is LifecycleAction.RESUBMIT:
            changes = {"rejection_reason": None, "reviewed_at": None}
        record = await self._write_record(run, LifecycleStatus.PENDING, changes, data)
        self._store_step_done(run, f"{kind.table}.insert", record)

    async def _register_beneficiary(self, run: _Run, params: Dict[str, Any]) -> None:
        self._require_param(params, "name")
        if params.get("requested_amount") is not None:
            to_base_units(params["requested_amount"])

        self._begin_store_step(run)
        changes: Dict[str, Any] = {}
        if run.action is LifecycleAction.RESUBMIT:
            changes = {"rejection_reason": None, "reviewed_at": None}
        record = await self._write_record(run, LifecycleStatus.PENDING, changes, self._record_data(params))
        run.realized = True
        self._store_step_done(run, "applications.insert", record)

    async def _approve(self, run: _Run, params: Dict[str, Any]) -> None:
        kind = run.key.kind
        address = run.key.chain_key
        if kind is EntityKind.BENEFICIARY:
            await self._chain_step(run, "SheAidRoles", "grantBeneficiaryRole", [address], self.client)
        else:
            _, approve_method, _ = _ROLE_METHODS[kind]
            await self._chain_step(run, ROLE_REGISTRIES[kind][0], approve_method, [address], self.client)
        run.realized = True

        self._begin_store_step(run)
        record = await self._write_record(run, LifecycleStatus.APPROVED, {"reviewed_at": now_ms()})
        self._store_step_done(run, f"{kind.table}.update", record)

        if kind in _ROLE_METHODS:
            self._begin_store_step(run)
            await self.store.grant_role(address, _ROLE_METHODS[kind][2])
            self._store_step_done(run, "user_roles.insert")

    async def _reject(self, run: _Run, params: Dict[str, Any]) -> None:
        reason = str(self._require_param(params, "reason")).strip()
        self._begin_store_step(run)
        record = await self._write_record(
            run,
            LifecycleStatus.REJECTED,
            {"rejection_reason": reason, "reviewed_at": now_ms()},
        )
        run.realized = True
        self._store_step_done(run, f"{run.key.kind.table}.update", record)

    async def _create_project(self, run: _Run, params: Dict[str, Any]) -> None:
        title = str(self._require_param(params, "title"))
        description = params.get("description") or ""
        category = params.get("category") or ""
        budget = self._positive_amount(params, "budget")
        deposit = deposit_for_budget(budget, self.deposit_percent)
        issuer = run.actor.account

        # Step 1: allowance for the vault to pull the deposit
        await self._chain_step(
            run,
            "MockToken",
            "approve",
            [self.client.address_of("ProjectVaultManager"), deposit],
        )
        # Step 2: project creation
        receipt = await self._chain_step(
            run,
            "ProjectVaultManager",
            "createProject",
            [budget, title, description, category, deposit],
        )
        # The project exists from here on even if its id cannot be resolved
        run.realized = True

        # Step 3: resolve the new id, then write the project record linked to it
        self._begin_store_step(run)
        created = receipt.events_of(ChainEventType.PROJECT_CREATED)
        if created:
            project_id = int(created[0].payload["projectId"])
        else:
            project_id = await self._ledger.resolve_project_id(title, issuer)
        run.key = EntityKey.of(EntityKind.PROJECT, project_id)
        self.tracker.alias(run.flight.key, run.key)
        self.tracker.record_confirmed(run.key, receipt.block_number)

        data = self._record_data(params, exclude=("budget",))
        data.update(
            {
                "title": title,
                "description": description,
                "category": category,
                "target_amount": format_units(budget),
                "deposit": format_units(deposit),
                "issuer": issuer,
            }
        )
        record = await self.store.insert("projects", run.key.chain_key, "active", data)
        self._store_step_done(run, "projects.insert", record)

    async def _close_project(self, run: _Run, params: Dict[str, Any]) -> None:
        chain = await read_chain_state(self.client, run.key)
        donated = int(chain.record["donatedAmount"])
        remaining = int(chain.record["remainingFunds"])
        if remaining != 0 or donated == 0:
            raise InvalidTransition(
                f"Project {run.key.chain_key} is not fully allocated "
                f"(donated {format_units(donated)}, remaining {format_units(remaining)})",
                current=run.before.value,
                target=LifecycleStatus.CLOSED.value,
            )

        await self._chain_step(run, "ProjectVaultManager", "closeProject", [run.key.numeric_id])
        run.realized = True

        self._begin_store_step(run)
        legacy = {"title": chain.record.get("title"), "issuer": chain.record.get("ngo")}
        record = await self._write_record(run, LifecycleStatus.CLOSED, {}, legacy=legacy)
        self._store_step_done(run, "projects.update", record)

    async def _list_product(self, run: _Run, params: Dict[str, Any]) -> None:
        category = str(self._require_param(params, "category"))
        price = self._positive_amount(params, "price")
        metadata = params.get("metadata") or ""
        try:
            category_id = encode_bytes32(category)
        except ValueError as e:
            raise InvalidParameters(str(e), field_name="category")

        receipt = await self._chain_step(
            run, "Marketplace", "listProduct", [category_id, price, metadata]
        )
        listed = receipt.events_of(ChainEventType.PRODUCT_LISTED)
        if listed:
            run.key = EntityKey.of(EntityKind.PRODUCT, int(listed[0].payload["productId"]))
            run.before = LifecycleStatus.UNREGISTERED
            run.target = LifecycleStatus.ACTIVE
            run.realized = True

    async def _set_product_active(self, run: _Run, params: Dict[str, Any]) -> None:
        await self._chain_step(
            run, "Marketplace", "setProductActive", [run.key.numeric_id, bool(params["active"])]
        )
        run.realized = True

    async def _update_product_price(self, run: _Run, params: Dict[str, Any]) -> None:
        price = self._positive_amount(params, "price")
        await self._chain_step(
            run, "Marketplace", "updateProductPrice", [run.key.numeric_id, price]
        )
        run.realized = True


_HANDLERS = {
    LifecycleAction.REGISTER: LifecycleOrchestrator._register,
    LifecycleAction.RESUBMIT: LifecycleOrchestrator._register,
    LifecycleAction.APPROVE: LifecycleOrchestrator._approve,
    LifecycleAction.REJECT: LifecycleOrchestrator._reject,
    LifecycleAction.CREATE_PROJECT: LifecycleOrchestrator._create_project,
    LifecycleAction.CLOSE_PROJECT: LifecycleOrchestrator._close_project,
    LifecycleAction.LIST_PRODUCT: LifecycleOrchestrator._list_product,
    LifecycleAction.SET_PRODUCT_ACTIVE: LifecycleOrchestrator._set_product_active,
    LifecycleAction.UPDATE_PRODUCT_PRICE: LifecycleOrchestrator._update_product_price,
}
