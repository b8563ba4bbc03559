"""
SheAid Engine - chain-state reconciliation for the charity marketplace dashboard.

This package mediates between two systems of record:
- The on-chain ledger (role registries, project vaults, marketplace), which is
  authoritative for lifecycle status, money and role grants
- The off-chain relational store, which holds human-facing metadata
  (applications, organizer profiles, rejection reasons)

Architecture:
    ┌─────────────┐     ┌──────────────────────┐     ┌─────────────────┐
    │  Dashboard  │────▶│ LifecycleOrchestrator│────▶│   ChainClient   │
    │  (HTTP API) │     │  (approve-then-act)  │     │ (web3 / memory) │
    └──────┬──────┘     └──────────┬───────────┘     └────────┬────────┘
           │                       │                          │ event logs
           │                       ▼                          ▼
           │            ┌──────────────────────┐     ┌─────────────────┐
           │            │    OffChainStore     │     │ ChainEventBridge│
           │            │  (sqlite / memory)   │     │ (batched polls) │
           │            └──────────▲───────────┘     └────────┬────────┘
           │                       │                          │ batches
           │                       │                          ▼
           │            ┌──────────┴───────────┐     ┌─────────────────┐
           └───────────▶│ ReconciliationProj.  │◀────│ ViewSubscription│
                        │ (+ AllocationLedger) │     │    Registry     │
                        └──────────────────────┘     └─────────────────┘

Invariants:
    - Chain reads are authoritative; store rows are caches that converge
      within one reconciliation cycle
    - Multi-step transitions confirm strictly in order
    - At most one transition is in flight per entity
    - Ledgers are derived purely from event logs and one snapshot read

How to change safely:
    - New contract methods go through chain/abi.py and both ChainClient
      implementations
    - New entity kinds need a status mapping in status.py; unmapped chain
      values must keep failing loudly
"""

from ._version import __version__

__all__ = ["__version__"]
