"""
Base protocol and types for chain access.

This module defines the ChainClient protocol every backend implements, along
with the read, receipt and transaction-handle types shared by callers.

Invariants:
    - call() and query_events() are read-only and idempotent
    - send() is the only operation with externally visible side effects
    - Every read reports the block it was served from
    - No retries happen at this layer; retry policy belongs to callers

How to change safely:
    - Protocol changes require updating Web3ChainClient and InMemoryChainClient
    - New contracts must be added to CONTRACT_NAMES and chain/abi.py
"""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass, field
from typing import (
    TYPE_CHECKING,
    Any,
    Dict,
    List,
    Optional,
    Protocol,
    Sequence,
    runtime_checkable,
)
import logging

from ..events.types import ChainEvent, ChainEventType

if TYPE_CHECKING:
    from ..config import ChainConfig

logger = logging.getLogger(__name__)

CONTRACT_NAMES = (
    "MockToken",
    "SheAidRoles",
    "PlatformAdmin",
    "NGORegistry",
    "MerchantRegistry",
    "Marketplace",
    "BeneficiaryModule",
    "ProjectVaultManager",
)


@dataclass(frozen=True)
class ChainRead:
    """Result of a read-only contract call.

    Attributes:
        value: Decoded return value (dict for struct getters)
        block_number: Block the read was served from
    """

    value: Any
    block_number: int


@dataclass
class Receipt:
    """Confirmed transaction receipt.

    Attributes:
        tx_hash: Transaction hash (0x-prefixed hex)
        block_number: Block that included the transaction
        status: 1 for success (failed receipts raise instead)
        events: Events emitted by the transaction, decoded
    """

    tx_hash: str
    block_number: int
    status: int = 1
    events: List[ChainEvent] = field(default_factory=list)

    def events_of(self, event_type: ChainEventType) -> List[ChainEvent]:
        return [e for e in self.events if e.type is event_type]


@runtime_checkable
class TransactionHandle(Protocol):
    """A submitted transaction whose confirmation can be awaited."""

    @property
    @abstractmethod
    def tx_hash(self) -> str:
        ...

    @abstractmethod
    async def wait(self, timeout: float) -> Receipt:
        """Wait for confirmation.

        Raises:
            TransactionFailed: If the transaction reverted
            TransactionTimeout: If no receipt was observed within timeout
        """
        ...


@runtime_checkable
class ChainClient(Protocol):
    """Protocol for typed access to the deployed contracts.

    Example:
        >>> read = await client.call("MerchantRegistry", "merchants", [addr])
        >>> handle = await client.send("MockToken", "approve", [spender, amount])
        >>> receipt = await handle.wait(timeout=120)
    """

    @property
    @abstractmethod
    def account(self) -> str:
        """Address that signs transactions sent through this client."""
        ...

    @abstractmethod
    def address_of(self, contract: str) -> str:
        """Deployed address of a named contract."""
        ...

    @abstractmethod
    async def call(self, contract: str, method: str, args: Sequence[Any] = ()) -> ChainRead:
        """Read-only call.

        Raises:
            RpcUnavailable: On connectivity loss
        """
        ...

    @abstractmethod
    async def send(self, contract: str, method: str, args: Sequence[Any] = ()) -> TransactionHandle:
        """Submit a state-changing call.

        Raises:
            TransactionFailed: If the transaction is rejected before submission
            RpcUnavailable: If it could not be submitted
        """
        ...

    @abstractmethod
    async def query_events(
        self,
        event_type: ChainEventType,
        filters: Optional[Dict[str, Any]] = None,
        from_block: int = 0,
        to_block: Optional[int] = None,
    ) -> List[ChainEvent]:
        """Query historical events in chain order.

        Raises:
            RpcUnavailable: On connectivity loss
        """
        ...

    @abstractmethod
    async def block_number(self) -> int:
        """Current head block."""
        ...


def create_chain_client(config: "ChainConfig") -> ChainClient:
    """Factory function to create a chain client from configuration.

    Raises:
        ValueError: If required settings are missing
    """
    from .web3_client import Web3ChainClient

    if not config.rpc_url:
        raise ValueError("CHAIN_RPC_URL is required")
    return Web3ChainClient(config)
