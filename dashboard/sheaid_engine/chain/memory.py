"""
In-memory chain simulation for testing.

This module provides an in-process stand-in for the deployed contracts:
- Unit tests
- Integration tests
- Local development without an RPC node

One InMemoryChain holds the shared ledger state; each signer gets its own
InMemoryChainClient through client_for(account), the same way every wallet
talks to the same deployed contracts.

Invariants:
    - All data is lost on process exit
    - Every transaction mines exactly one block, reverted or not
    - State changes apply at submission; confirmation only gates the receipt
    - Reads can lag the head by read_lag blocks and report the block they used
    - Event logs are append-only and in chain order

How to change safely:
    - This is test-only code, changes don't affect production
    - Keep behaviour compatible with the ChainClient protocol
    - Contract rules mirror the deployed registries, vault and marketplace;
      add new ones next to the existing handlers
"""

from __future__ import annotations

import asyncio
import copy
import hashlib
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from ..errors import EngineError, RpcUnavailable, TransactionFailed, TransactionTimeout
from ..events.types import ChainEvent, ChainEventType
from ..model import normalize_address
from .base import CONTRACT_NAMES, ChainRead, Receipt

logger = logging.getLogger(__name__)

DEFAULT_ADMIN = "0x00000000000000000000000000000000000ad111"
BLOCK_TIME_SECONDS = 12
GENESIS_TIMESTAMP = 1_700_000_000
DEFAULT_BALANCE = 10**30

ROLE_NONE, ROLE_PENDING, ROLE_ACTIVE, ROLE_FROZEN, ROLE_BANNED = range(5)
PROJECT_NONE, PROJECT_ACTIVE, PROJECT_CLOSED = range(3)


class _Revert(Exception):
    """A contract require() failed."""


@dataclass
class _LedgerState:
    """Contract storage at one block."""

    balances: Dict[str, int] = field(default_factory=dict)
    allowances: Dict[Tuple[str, str], int] = field(default_factory=dict)
    merchants: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    ngos: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    beneficiaries: set = field(default_factory=set)
    projects: Dict[int, Dict[str, Any]] = field(default_factory=dict)
    products: Dict[int, Dict[str, Any]] = field(default_factory=dict)
    next_project_id: int = 1
    next_product_id: int = 1


@dataclass
class _PendingTx:
    tx_hash: str
    block_number: int
    events: List[ChainEvent]
    revert_reason: Optional[str] = None
    timeout: Optional[TransactionTimeout] = None


class InMemoryTransactionHandle:
    """Handle for a simulated transaction.

    wait() blocks on the chain's confirmation gate, so tests can hold a
    transaction "in the mempool" while other coroutines run.
    """

    def __init__(self, chain: InMemoryChain, pending: _PendingTx) -> None:
        self._chain = chain
        self._pending = pending

    @property
    def tx_hash(self) -> str:
        return self._pending.tx_hash

    async def wait(self, timeout: float) -> Receipt:
        if self._pending.timeout is not None:
            raise self._pending.timeout
        try:
            await asyncio.wait_for(self._chain.confirmation_gate.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            raise TransactionTimeout(
                f"No receipt for {self.tx_hash} within {timeout}s",
                tx_hash=self.tx_hash,
                timeout=timeout,
            )
        if self._pending.revert_reason is not None:
            raise TransactionFailed(
                f"Transaction {self.tx_hash} reverted: {self._pending.revert_reason}",
                tx_hash=self.tx_hash,
                reason=self._pending.revert_reason,
            )
        return Receipt(
            tx_hash=self.tx_hash,
            block_number=self._pending.block_number,
            status=1,
            events=list(self._pending.events),
        )


class InMemoryChainClient:
    """ChainClient bound to one signing account of an InMemoryChain."""

    def __init__(self, chain: InMemoryChain, account: str) -> None:
        self._chain = chain
        self._account = normalize_address(account)

    @property
    def account(self) -> str:
        return self._account

    @property
    def chain(self) -> InMemoryChain:
        return self._chain

    def address_of(self, contract: str) -> str:
        return self._chain.addresses[contract]

    async def call(self, contract: str, method: str, args: Sequence[Any] = ()) -> ChainRead:
        await asyncio.sleep(0)
        return self._chain.read(contract, method, list(args))

    async def send(
        self, contract: str, method: str, args: Sequence[Any] = ()
    ) -> InMemoryTransactionHandle:
        await asyncio.sleep(0)
        return self._chain.submit(self._account, contract, method, list(args))

    async def query_events(
        self,
        event_type: ChainEventType,
        filters: Optional[Dict[str, Any]] = None,
        from_block: int = 0,
        to_block: Optional[int] = None,
    ) -> List[ChainEvent]:
        await asyncio.sleep(0)
        return self._chain.logs_for(event_type, filters, from_block, to_block)

    async def block_number(self) -> int:
        await asyncio.sleep(0)
        self._chain.check_available()
        return self._chain.head


class InMemoryChain:
    """Simulated deployment of the SheAid contracts.

    Attributes:
        admin: Platform admin allowed to approve registrations
        addresses: Contract name -> synthetic deployed address
        head: Current block number
        sent: Every submitted transaction as (sender, contract, method, args)
        calls: Every read as (contract, method, args)
        available: When False, every RPC raises RpcUnavailable
        read_lag: Reads are served this many blocks behind the head
        confirmation_gate: Receipts are released only while this is set

    Example:
        >>> chain = InMemoryChain()
        >>> ngo = chain.client_for("0x" + "11" * 20)
        >>> handle = await ngo.send("MockToken", "approve", [chain.addresses["NGORegistry"], 100])
        >>> receipt = await handle.wait(timeout=5)
    """

    def __init__(
        self,
        admin: str = DEFAULT_ADMIN,
        start_block: int = 100,
        default_balance: int = DEFAULT_BALANCE,
    ) -> None:
        self.admin = normalize_address(admin)
        self.addresses = {
            name: "0x" + hashlib.sha256(name.encode()).hexdigest()[:40] for name in CONTRACT_NAMES
        }
        self.default_balance = default_balance
        self.head = start_block
        self.sent: List[Tuple[str, str, str, List[Any]]] = []
        self.calls: List[Tuple[str, str, List[Any]]] = []
        self.available = True
        self.read_lag = 0
        self.confirmation_gate = asyncio.Event()
        self.confirmation_gate.set()

        self._state = _LedgerState()
        self._snapshots: Dict[int, _LedgerState] = {start_block: copy.deepcopy(self._state)}
        self._logs: List[ChainEvent] = []
        self._failures: Dict[Tuple[str, str], List[Optional[EngineError]]] = defaultdict(list)
        self._tx_counter = 0

        self._views: Dict[Tuple[str, str], Callable[..., Any]] = {
            ("MockToken", "allowance"): self._view_allowance,
            ("MockToken", "balanceOf"): self._view_balance,
            ("SheAidRoles", "isBeneficiary"): self._view_is_beneficiary,
            ("MerchantRegistry", "merchants"): self._view_merchant,
            ("NGORegistry", "ngos"): self._view_ngo,
            ("Marketplace", "products"): self._view_product,
            ("Marketplace", "nextProductId"): lambda s: s.next_product_id,
            ("ProjectVaultManager", "projects"): self._view_project,
            ("ProjectVaultManager", "nextProjectId"): lambda s: s.next_project_id,
        }
        self._handlers: Dict[Tuple[str, str], Callable[..., List[Tuple[ChainEventType, dict]]]] = {
            ("MockToken", "approve"): self._tx_approve,
            ("SheAidRoles", "grantBeneficiaryRole"): self._tx_grant_beneficiary,
            ("MerchantRegistry", "registerMerchant"): self._tx_register_merchant,
            ("MerchantRegistry", "approveMerchant"): self._tx_approve_merchant,
            ("NGORegistry", "registerNGO"): self._tx_register_ngo,
            ("NGORegistry", "approveNGO"): self._tx_approve_ngo,
            ("Marketplace", "listProduct"): self._tx_list_product,
            ("Marketplace", "setProductActive"): self._tx_set_product_active,
            ("Marketplace", "updateProductPrice"): self._tx_update_product_price,
            ("ProjectVaultManager", "createProject"): self._tx_create_project,
            ("ProjectVaultManager", "closeProject"): self._tx_close_project,
        }

    def client_for(self, account: str) -> InMemoryChainClient:
        return InMemoryChainClient(self, account)

    # ------------------------------------------------------------------
    # Test controls
    # ------------------------------------------------------------------

    def fail_next(self, contract: str, method: str, error: Optional[EngineError] = None) -> None:
        """Make the next send of contract.method fail.

        With no error the transaction is mined and reverts, so wait() raises
        TransactionFailed. A TransactionTimeout is raised from wait(); any
        other error is raised from send() itself.
        """
        self._failures[(contract, method)].append(error)

    def hold_confirmations(self) -> None:
        self.confirmation_gate.clear()

    def release_confirmations(self) -> None:
        self.confirmation_gate.set()

    def check_available(self) -> None:
        if not self.available:
            raise RpcUnavailable("In-memory chain is offline", endpoint="memory://")

    def logs(self) -> List[ChainEvent]:
        """Every mined event, in chain order."""
        return list(self._logs)

    def sends_of(self, method: str) -> List[Tuple[str, str, str, List[Any]]]:
        return [s for s in self.sent if s[2] == method]

    # ------------------------------------------------------------------
    # Activity by parties outside the engine (donors, beneficiaries, admin)
    # ------------------------------------------------------------------

    def donate(self, project_id: int, donor: str, amount: int) -> ChainEvent:
        project = self._state.projects.get(project_id)
        if project is None or project["status"] != PROJECT_ACTIVE:
            raise ValueError(f"Project {project_id} is not active")
        project["donatedAmount"] += amount
        project["remainingFunds"] += amount
        return self._mine_external(
            ChainEventType.PROJECT_DONATION_RECEIVED,
            {"projectId": project_id, "donor": normalize_address(donor), "amount": amount},
        )

    def allocate(self, project_id: int, beneficiary: str, amount: int) -> ChainEvent:
        project = self._state.projects.get(project_id)
        if project is None or project["remainingFunds"] < amount:
            raise ValueError(f"Project {project_id} cannot allocate {amount}")
        project["remainingFunds"] -= amount
        return self._mine_external(
            ChainEventType.PROJECT_FUNDS_ALLOCATED,
            {
                "projectId": project_id,
                "beneficiary": normalize_address(beneficiary),
                "amount": amount,
                "timestamp": self._timestamp(self.head + 1),
            },
        )

    def record_purchase(self, product_id: int, beneficiary: str, quantity: int = 1) -> ChainEvent:
        product = self._state.products[product_id]
        return self._mine_external(
            ChainEventType.PURCHASE_RECORDED,
            {
                "productId": product_id,
                "beneficiary": normalize_address(beneficiary),
                "merchant": product["merchant"],
                "quantity": quantity,
                "amount": product["price"] * quantity,
            },
        )

    def set_role_status(self, contract: str, account: str, status: int) -> ChainEvent:
        """Force a registry status (e.g. Frozen or Banned) as the admin would."""
        account = normalize_address(account)
        if contract == "MerchantRegistry":
            self._state.merchants.setdefault(account, self._empty_role("metadata"))["status"] = status
            return self._mine_external(
                ChainEventType.MERCHANT_STATUS_CHANGED, {"merchant": account, "status": status}
            )
        self._state.ngos.setdefault(account, self._empty_role("licenseId"))["status"] = status
        return self._mine_external(
            ChainEventType.NGO_STATUS_CHANGED, {"ngo": account, "status": status}
        )

    # ------------------------------------------------------------------
    # RPC surface used by InMemoryChainClient
    # ------------------------------------------------------------------

    def read(self, contract: str, method: str, args: List[Any]) -> ChainRead:
        self.check_available()
        self.calls.append((contract, method, args))
        view = self._views.get((contract, method))
        if view is None:
            raise EngineError(f"Unknown view {contract}.{method}", code="UNKNOWN_METHOD")

        block = max(self.head - self.read_lag, min(self._snapshots))
        while block not in self._snapshots:
            block -= 1
        value = view(self._snapshots[block], *args)
        return ChainRead(value=copy.deepcopy(value), block_number=block)

    def submit(
        self, sender: str, contract: str, method: str, args: List[Any]
    ) -> InMemoryTransactionHandle:
        self.check_available()
        self.sent.append((sender, contract, method, args))
        handler = self._handlers.get((contract, method))
        if handler is None:
            raise TransactionFailed(f"Unknown method {contract}.{method}", reason="unknown-method")

        injected: Optional[EngineError] = None
        forced_revert = False
        queue = self._failures.get((contract, method))
        if queue:
            injected = queue.pop(0)
            forced_revert = injected is None
            if injected is not None and not isinstance(injected, TransactionTimeout):
                raise injected

        tx_hash = self._next_tx_hash()
        revert_reason: Optional[str] = None
        emitted: List[Tuple[ChainEventType, dict]] = []
        if forced_revert:
            revert_reason = "injected revert"
        else:
            scratch = copy.deepcopy(self._state)
            try:
                emitted = handler(scratch, sender, *args)
            except _Revert as e:
                revert_reason = str(e)
            else:
                self._state = scratch

        events = self._mine(tx_hash, emitted if revert_reason is None else [])
        logger.debug(
            "Simulated transaction mined",
            extra={
                "contract": contract,
                "method": method,
                "tx_hash": tx_hash,
                "block": self.head,
                "reverted": revert_reason is not None,
            },
        )
        pending = _PendingTx(
            tx_hash=tx_hash,
            block_number=self.head,
            events=events,
            revert_reason=revert_reason,
            timeout=(
                TransactionTimeout(
                    f"No receipt for {tx_hash}", tx_hash=tx_hash, timeout=injected.timeout
                )
                if isinstance(injected, TransactionTimeout)
                else None
            ),
        )
        return InMemoryTransactionHandle(self, pending)

    def logs_for(
        self,
        event_type: ChainEventType,
        filters: Optional[Dict[str, Any]],
        from_block: int,
        to_block: Optional[int],
    ) -> List[ChainEvent]:
        self.check_available()
        wanted = {k: self._normalize_arg(v) for k, v in (filters or {}).items()}
        out = []
        for event in self._logs:
            if event.type is not event_type or event.block_number < from_block:
                continue
            if to_block is not None and event.block_number > to_block:
                continue
            if any(event.payload.get(k) != v for k, v in wanted.items()):
                continue
            out.append(event)
        return out

    # ------------------------------------------------------------------
    # Block production
    # ------------------------------------------------------------------

    @staticmethod
    def _timestamp(block: int) -> int:
        return GENESIS_TIMESTAMP + block * BLOCK_TIME_SECONDS

    def _next_tx_hash(self) -> str:
        self._tx_counter += 1
        return "0x" + hashlib.sha256(f"tx-{self._tx_counter}".encode()).hexdigest()

    def _mine(self, tx_hash: str, emitted: List[Tuple[ChainEventType, dict]]) -> List[ChainEvent]:
        self.head += 1
        events = [
            ChainEvent(
                type=event_type,
                payload=payload,
                block_timestamp=self._timestamp(self.head),
                block_number=self.head,
                transaction_hash=tx_hash,
                log_index=index,
            )
            for index, (event_type, payload) in enumerate(emitted)
        ]
        self._logs.extend(events)
        self._snapshots[self.head] = copy.deepcopy(self._state)
        return events

    def _mine_external(self, event_type: ChainEventType, payload: dict) -> ChainEvent:
        return self._mine(self._next_tx_hash(), [(event_type, payload)])[0]

    @staticmethod
    def _normalize_arg(value: Any) -> Any:
        if isinstance(value, str) and value.lower().startswith("0x") and len(value) == 42:
            return normalize_address(value)
        return value

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    @staticmethod
    def _empty_role(detail_field: str) -> Dict[str, Any]:
        return {"name": "", detail_field: "", "stake": 0, "status": ROLE_NONE}

    def _view_allowance(self, s: _LedgerState, owner: str, spender: str) -> int:
        return s.allowances.get((normalize_address(owner), normalize_address(spender)), 0)

    def _view_balance(self, s: _LedgerState, account: str) -> int:
        return s.balances.get(normalize_address(account), self.default_balance)

    def _view_is_beneficiary(self, s: _LedgerState, account: str) -> bool:
        return normalize_address(account) in s.beneficiaries

    def _view_merchant(self, s: _LedgerState, account: str) -> Dict[str, Any]:
        return s.merchants.get(normalize_address(account), self._empty_role("metadata"))

    def _view_ngo(self, s: _LedgerState, account: str) -> Dict[str, Any]:
        return s.ngos.get(normalize_address(account), self._empty_role("licenseId"))

    def _view_product(self, s: _LedgerState, product_id: int) -> Dict[str, Any]:
        return s.products.get(
            int(product_id),
            {
                "id": 0,
                "merchant": "0x" + "0" * 40,
                "categoryId": b"\x00" * 32,
                "price": 0,
                "stock": 0,
                "active": False,
                "metadata": "",
            },
        )

    def _view_project(self, s: _LedgerState, project_id: int) -> Dict[str, Any]:
        return s.projects.get(
            int(project_id),
            {
                "id": 0,
                "ngo": "0x" + "0" * 40,
                "budget": 0,
                "deposit": 0,
                "donatedAmount": 0,
                "remainingFunds": 0,
                "status": PROJECT_NONE,
                "title": "",
                "description": "",
                "categoryTag": "",
            },
        )

    # ------------------------------------------------------------------
    # Transaction handlers (mutate a scratch copy, raise _Revert on require)
    # ------------------------------------------------------------------

    def _pull(self, s: _LedgerState, owner: str, spender_contract: str, amount: int) -> None:
        """transferFrom(owner, contract, amount) as the registries perform it."""
        spender = self.addresses[spender_contract]
        allowance = s.allowances.get((owner, spender), 0)
        if allowance < amount:
            raise _Revert("ERC20: insufficient allowance")
        balance = s.balances.get(owner, self.default_balance)
        if balance < amount:
            raise _Revert("ERC20: transfer amount exceeds balance")
        s.allowances[(owner, spender)] = allowance - amount
        s.balances[owner] = balance - amount

    def _require_admin(self, sender: str) -> None:
        if sender != self.admin:
            raise _Revert("AccessControl: caller is not platform admin")

    def _tx_approve(self, s: _LedgerState, sender: str, spender: str, amount: int):
        if amount < 0:
            raise _Revert("ERC20: negative amount")
        s.allowances[(sender, normalize_address(spender))] = int(amount)
        return []

    def _tx_grant_beneficiary(self, s: _LedgerState, sender: str, account: str):
        self._require_admin(sender)
        account = normalize_address(account)
        s.beneficiaries.add(account)
        return [(ChainEventType.BENEFICIARY_ROLE_GRANTED, {"account": account})]

    def _register(self, s, registry, sender, name, detail_field, detail, stake, contract, event, key_arg):
        record = registry.get(sender)
        if record is not None and record["status"] not in (ROLE_NONE, ROLE_PENDING):
            raise _Revert("Already registered")
        if stake <= 0:
            raise _Revert("Stake required")
        self._pull(s, sender, contract, stake)
        previous_stake = record["stake"] if record else 0
        registry[sender] = {
            "name": name,
            detail_field: detail,
            "stake": previous_stake + stake,
            "status": ROLE_PENDING,
        }
        return [(event, {key_arg: sender, "name": name, "stake": stake})]

    def _approve_role(self, registry, sender, account, event, key_arg):
        self._require_admin(sender)
        account = normalize_address(account)
        record = registry.get(account)
        if record is None or record["status"] != ROLE_PENDING:
            raise _Revert("Not pending")
        record["status"] = ROLE_ACTIVE
        return [(event, {key_arg: account, "status": ROLE_ACTIVE})]

    def _tx_register_merchant(self, s, sender, name, metadata, stake):
        return self._register(
            s, s.merchants, sender, name, "metadata", metadata, int(stake),
            "MerchantRegistry", ChainEventType.MERCHANT_REGISTERED, "merchant",
        )

    def _tx_approve_merchant(self, s, sender, account):
        return self._approve_role(
            s.merchants, sender, account, ChainEventType.MERCHANT_STATUS_CHANGED, "merchant"
        )

    def _tx_register_ngo(self, s, sender, name, license_id, stake):
        return self._register(
            s, s.ngos, sender, name, "licenseId", license_id, int(stake),
            "NGORegistry", ChainEventType.NGO_REGISTERED, "ngo",
        )

    def _tx_approve_ngo(self, s, sender, account):
        return self._approve_role(s.ngos, sender, account, ChainEventType.NGO_STATUS_CHANGED, "ngo")

    def _tx_create_project(self, s, sender, budget, title, description, category, deposit):
        ngo = s.ngos.get(sender)
        if ngo is None or ngo["status"] != ROLE_ACTIVE:
            raise _Revert("Only active NGOs can create projects")
        if budget <= 0:
            raise _Revert("Budget must be positive")
        if deposit * 100 < budget * 120:
            raise _Revert("Deposit below 120% of budget")
        self._pull(s, sender, "ProjectVaultManager", int(deposit))
        project_id = s.next_project_id
        s.next_project_id += 1
        s.projects[project_id] = {
            "id": project_id,
            "ngo": sender,
            "budget": int(budget),
            "deposit": int(deposit),
            "donatedAmount": 0,
            "remainingFunds": 0,
            "status": PROJECT_ACTIVE,
            "title": title,
            "description": description,
            "categoryTag": category,
        }
        return [
            (
                ChainEventType.PROJECT_CREATED,
                {"projectId": project_id, "ngo": sender, "title": title, "budget": int(budget)},
            )
        ]

    def _tx_close_project(self, s, sender, project_id):
        project = s.projects.get(int(project_id))
        if project is None or project["status"] != PROJECT_ACTIVE:
            raise _Revert("Project not active")
        if project["ngo"] != sender:
            raise _Revert("Only the project NGO can close it")
        if project["remainingFunds"] != 0:
            raise _Revert("Funds remaining")
        project["status"] = PROJECT_CLOSED
        return [(ChainEventType.PROJECT_CLOSED, {"projectId": int(project_id)})]

    def _tx_list_product(self, s, sender, category_id, price, metadata):
        merchant = s.merchants.get(sender)
        if merchant is None or merchant["status"] != ROLE_ACTIVE:
            raise _Revert("Only active merchants can list products")
        if price <= 0:
            raise _Revert("Price must be positive")
        product_id = s.next_product_id
        s.next_product_id += 1
        s.products[product_id] = {
            "id": product_id,
            "merchant": sender,
            "categoryId": category_id,
            "price": int(price),
            "stock": 0,
            "active": True,
            "metadata": metadata,
        }
        return [
            (
                ChainEventType.PRODUCT_LISTED,
                {
                    "productId": product_id,
                    "merchant": sender,
                    "categoryId": category_id,
                    "price": int(price),
                },
            )
        ]

    def _owned_product(self, s, sender, product_id):
        product = s.products.get(int(product_id))
        if product is None:
            raise _Revert("Unknown product")
        if product["merchant"] != sender:
            raise _Revert("Not product owner")
        return product

    def _tx_set_product_active(self, s, sender, product_id, active):
        product = self._owned_product(s, sender, product_id)
        product["active"] = bool(active)
        return [
            (
                ChainEventType.PRODUCT_STATUS_CHANGED,
                {"productId": int(product_id), "active": bool(active)},
            )
        ]

    def _tx_update_product_price(self, s, sender, product_id, price):
        product = self._owned_product(s, sender, product_id)
        if price <= 0:
            raise _Revert("Price must be positive")
        product["price"] = int(price)
        return [
            (
                ChainEventType.PRODUCT_PRICE_UPDATED,
                {"productId": int(product_id), "price": int(price)},
            )
        ]


