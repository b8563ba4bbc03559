"""
Chain access for the SheAid engine.

This module provides the pluggable ChainClient interface:
- Web3ChainClient for a JSON-RPC node (production)
- InMemoryChain / InMemoryChainClient (testing and local development)

The chain is the system of record for lifecycle status, money and role
grants. Everything the engine shows is ultimately derived from these reads
and event logs.

Invariants:
    - send() is the only side-effecting operation
    - Reads report the block they were served from
    - No retries at this layer

How to change safely:
    - New backends must implement the ChainClient protocol
    - Keep the in-memory contract rules in step with the deployed contracts
"""

from .base import (
    CONTRACT_NAMES,
    ChainClient,
    ChainRead,
    Receipt,
    TransactionHandle,
    create_chain_client,
)
from .memory import InMemoryChain, InMemoryChainClient
from .web3_client import Web3ChainClient

__all__ = [
    # Protocol and types
    "ChainClient",
    "ChainRead",
    "Receipt",
    "TransactionHandle",
    "CONTRACT_NAMES",
    # Factory
    "create_chain_client",
    # Implementations
    "Web3ChainClient",
    "InMemoryChain",
    "InMemoryChainClient",
]
