"""
web3.py implementation of the ChainClient protocol.

Reads are pinned to an explicit block so every ChainRead knows which block
served it. Transactions are built, signed locally with the configured key and
submitted raw; confirmation is awaited through wait_for_transaction_receipt.

Error translation:
    - Connection failures and request timeouts -> RpcUnavailable
    - Reverts (including during gas estimation) and status=0 receipts -> TransactionFailed
    - TimeExhausted while waiting for a receipt -> TransactionTimeout
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

from eth_account import Account
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3.exceptions import (
    ContractLogicError,
    ProviderConnectionError,
    TimeExhausted,
    Web3Exception,
)
from web3.logs import DISCARD

from ..config import ChainConfig
from ..errors import EngineError, RpcUnavailable, TransactionFailed, TransactionTimeout
from ..events.types import EVENT_SOURCES, ChainEvent, ChainEventType
from ..model import normalize_address
from .abi import CONTRACT_ABIS, output_names
from .base import ChainRead, Receipt

logger = logging.getLogger(__name__)

_CONNECTIVITY_ERRORS = (OSError, asyncio.TimeoutError, ProviderConnectionError)


def _normalize(value: Any) -> Any:
    """Convert web3 return values into plain Python values."""
    if isinstance(value, str) and value.startswith("0x") and len(value) == 42:
        return normalize_address(value)
    if isinstance(value, (list, tuple)):
        return [_normalize(v) for v in value]
    return value


class Web3TransactionHandle:
    """Handle for a transaction submitted through Web3ChainClient."""

    def __init__(self, client: Web3ChainClient, contract: str, tx_hash: str) -> None:
        self._client = client
        self._contract = contract
        self._tx_hash = tx_hash

    @property
    def tx_hash(self) -> str:
        return self._tx_hash

    async def wait(self, timeout: float) -> Receipt:
        try:
            raw = await self._client.w3.eth.wait_for_transaction_receipt(
                self._tx_hash, timeout=timeout
            )
        except TimeExhausted:
            raise TransactionTimeout(
                f"No receipt for {self._tx_hash} within {timeout}s",
                tx_hash=self._tx_hash,
                timeout=timeout,
            )
        except _CONNECTIVITY_ERRORS as e:
            raise RpcUnavailable(f"Lost connection waiting for receipt: {e}", self._client.endpoint)

        if raw["status"] != 1:
            raise TransactionFailed(
                f"Transaction {self._tx_hash} reverted",
                tx_hash=self._tx_hash,
                reason="status=0",
            )

        events = await self._client.decode_receipt(self._contract, raw)
        return Receipt(
            tx_hash=self._tx_hash,
            block_number=raw["blockNumber"],
            status=1,
            events=events,
        )


class Web3ChainClient:
    """ChainClient backed by a JSON-RPC node through web3.py.

    Example:
        >>> client = Web3ChainClient(ChainConfig.from_env())
        >>> await client.connect()
        >>> read = await client.call("ProjectVaultManager", "projects", [1])
    """

    def __init__(self, config: ChainConfig) -> None:
        self.config = config
        self.endpoint = config.rpc_url
        self.w3 = AsyncWeb3(AsyncHTTPProvider(config.rpc_url))
        self._signer = Account.from_key(config.private_key) if config.private_key else None
        self._contracts: Dict[str, Any] = {}
        self._block_times: Dict[int, int] = {}
        self._nonce_lock = asyncio.Lock()

        for name, abi in CONTRACT_ABIS.items():
            address = config.contracts.get(name)
            if address:
                self._contracts[name] = self.w3.eth.contract(
                    address=Web3.to_checksum_address(address), abi=abi
                )

    @property
    def account(self) -> str:
        if self._signer is None:
            return ""
        return normalize_address(self._signer.address)

    def address_of(self, contract: str) -> str:
        return normalize_address(self.config.contracts[contract])

    async def connect(self) -> None:
        """Check connectivity and that the node serves the expected chain.

        Raises:
            RpcUnavailable: If the node cannot be reached
            ValueError: If the node reports a different chain id
        """
        async with self._rpc():
            chain_id = await self.w3.eth.chain_id
        if chain_id != self.config.chain_id:
            raise ValueError(f"Expected chain {self.config.chain_id}, node reports {chain_id}")
        logger.info("Chain client connected", extra={"rpc_url": self.endpoint, "chain_id": chain_id})

    @asynccontextmanager
    async def _rpc(self) -> AsyncIterator[None]:
        try:
            yield
        except _CONNECTIVITY_ERRORS as e:
            raise RpcUnavailable(f"RPC request failed: {e}", self.endpoint)

    def _contract(self, name: str) -> Any:
        try:
            return self._contracts[name]
        except KeyError:
            raise EngineError(f"Unknown contract: {name}", code="UNKNOWN_CONTRACT")

    async def block_number(self) -> int:
        async with self._rpc():
            return await asyncio.wait_for(
                self.w3.eth.block_number, timeout=self.config.request_timeout_seconds
            )

    async def call(self, contract: str, method: str, args: Sequence[Any] = ()) -> ChainRead:
        fn = self._contract(contract).get_function_by_name(method)(*self._prepare(args))
        block = await self.block_number()
        try:
            async with self._rpc():
                value = await asyncio.wait_for(
                    fn.call(block_identifier=block),
                    timeout=self.config.request_timeout_seconds,
                )
        except ContractLogicError as e:
            raise EngineError(f"{contract}.{method} reverted: {e}", code="CALL_REVERTED")

        names = output_names(contract, method)
        value = _normalize(value)
        if len(names) > 1 and isinstance(value, list):
            value = dict(zip(names, value))
        return ChainRead(value=value, block_number=block)

    async def send(
        self, contract: str, method: str, args: Sequence[Any] = ()
    ) -> Web3TransactionHandle:
        if self._signer is None:
            raise TransactionFailed(
                f"Cannot send {contract}.{method}: no signing key configured",
                reason="no-signer",
            )

        fn = self._contract(contract).get_function_by_name(method)(*self._prepare(args))
        async with self._nonce_lock:
            try:
                async with self._rpc():
                    nonce = await self.w3.eth.get_transaction_count(self._signer.address, "pending")
                    tx = await fn.build_transaction(
                        {
                            "from": self._signer.address,
                            "nonce": nonce,
                            "chainId": self.config.chain_id,
                        }
                    )
                    signed = self._signer.sign_transaction(tx)
                    raw_hash = await self.w3.eth.send_raw_transaction(signed.raw_transaction)
            except ContractLogicError as e:
                raise TransactionFailed(f"{contract}.{method} would revert: {e}", reason=str(e))
            except Web3Exception as e:
                raise TransactionFailed(f"{contract}.{method} rejected: {e}", reason=str(e))

        tx_hash = Web3.to_hex(raw_hash)
        logger.info(
            "Transaction submitted",
            extra={"contract": contract, "method": method, "tx_hash": tx_hash, "nonce": nonce},
        )
        return Web3TransactionHandle(self, contract, tx_hash)

    async def query_events(
        self,
        event_type: ChainEventType,
        filters: Optional[Dict[str, Any]] = None,
        from_block: int = 0,
        to_block: Optional[int] = None,
    ) -> List[ChainEvent]:
        event = self._contract(EVENT_SOURCES[event_type]).events[event_type.value]()
        argument_filters = {k: self._prepare_one(v) for k, v in (filters or {}).items()}
        async with self._rpc():
            logs = await event.get_logs(
                argument_filters=argument_filters or None,
                from_block=from_block,
                to_block=to_block if to_block is not None else "latest",
            )

        decoded = [await self._to_event(event_type, log) for log in logs]
        decoded.sort(key=lambda e: e.chain_order)
        return decoded

    async def decode_receipt(self, contract: str, raw_receipt: Any) -> List[ChainEvent]:
        """Decode every known event the contract emitted in this receipt."""
        events = []
        for event_type, source in EVENT_SOURCES.items():
            if source != contract:
                continue
            event = self._contract(contract).events[event_type.value]()
            for log in event.process_receipt(raw_receipt, errors=DISCARD):
                events.append(await self._to_event(event_type, log))
        events.sort(key=lambda e: e.chain_order)
        return events

    async def _to_event(self, event_type: ChainEventType, log: Any) -> ChainEvent:
        block = log["blockNumber"]
        return ChainEvent(
            type=event_type,
            payload={k: _normalize(v) for k, v in dict(log["args"]).items()},
            block_timestamp=await self._block_timestamp(block),
            block_number=block,
            transaction_hash=Web3.to_hex(log["transactionHash"]),
            log_index=log["logIndex"],
        )

    async def _block_timestamp(self, block: int) -> int:
        if block not in self._block_times:
            async with self._rpc():
                data = await self.w3.eth.get_block(block)
            self._block_times[block] = int(data["timestamp"])
        return self._block_times[block]

    def _prepare(self, args: Sequence[Any]) -> list[Any]:
        return [self._prepare_one(a) for a in args]

    @staticmethod
    def _prepare_one(value: Any) -> Any:
        if isinstance(value, str) and value.startswith("0x") and len(value) == 42:
            return Web3.to_checksum_address(value)
        return value
