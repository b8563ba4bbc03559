"""
SheAid engine - Main entry point.

This module wires every engine component from configuration:
- Chain client (web3 over JSON-RPC)
- Off-chain store (SQLite)
- Lifecycle orchestrator and in-flight tracker
- Reconciliation projector and view registry
- Event bridge loop (chain events -> view registry)

Usage:
    python -m dashboard.sheaid_engine.main

Configuration is entirely via environment variables.
See config.py for all available settings.

Invariants:
    - The store schema exists before the bridge delivers its first batch
    - Orchestrator and projector share one InFlightTracker
    - Shutdown stops the bridge before closing the store

How to change safely:
    - New background loops get their own task in self._tasks
    - Keep Engine constructible from injected components for tests
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Dict, List, Optional

import json_log_formatter

from .chain.base import ChainClient, create_chain_client
from .config import EngineConfig, ObservabilityConfig
from .events.bridge import ChainEventBridge
from .ledger.catalog import ProductCatalogReader
from .ledger.reader import AllocationLedgerReader
from .lifecycle.orchestrator import LifecycleOrchestrator
from .lifecycle.tracker import InFlightTracker
from .model import normalize_address
from .projection.projector import ReconciliationProjector
from .projection.views import ViewSubscriptionRegistry
from .store.base import OffChainStore, create_store

logger = logging.getLogger(__name__)


def setup_logging(config: ObservabilityConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Observability configuration
    """
    level = getattr(logging, config.log_level.upper(), logging.INFO)

    if config.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("web3").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("aiohttp").setLevel(logging.WARNING)


class Engine:
    """SheAid engine orchestrator.

    Attributes:
        config: Engine configuration
        client: Chain client signing admin actions
        store: Off-chain store
        tracker: Shared in-flight tracker
        orchestrator: Lifecycle orchestrator
        ledger: Allocation ledger and project listing reader
        catalog: Marketplace product catalogue reader
        projector: Reconciliation projector
        views: View subscription registry
        bridge: Event bridge

    Example:
        >>> engine = Engine(config)
        >>> await engine.start()
        >>> view = await engine.projector.project(key)
        >>> await engine.stop()
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        client: Optional[ChainClient] = None,
        store: Optional[OffChainStore] = None,
    ) -> None:
        """Initialize the engine.

        Args:
            config: Optional configuration (loaded from env if not provided)
            client: Optional chain client (built from config if not provided)
            store: Optional off-chain store (built from config if not provided)
        """
        self.config = config or EngineConfig.from_env()
        self._owns_client = client is None
        self.client = client or create_chain_client(self.config.chain)
        self.store = store or create_store(self.config.store)

        self.tracker = InFlightTracker()
        self.orchestrator = LifecycleOrchestrator(
            self.client,
            self.store,
            tracker=self.tracker,
            confirmation_timeout=self.config.chain.confirmation_timeout_seconds,
            deposit_percent=self.config.lifecycle.project_deposit_percent,
        )
        self.ledger = AllocationLedgerReader(self.client)
        self.catalog = ProductCatalogReader(self.client)
        self.projector = ReconciliationProjector(
            self.client, self.store, tracker=self.tracker, ledger=self.ledger
        )
        # account -> client, for actions the entity signs itself
        self.signers: Dict[str, ChainClient] = {}
        if self.client.account:
            self.signers[self.client.account] = self.client
        self.views = ViewSubscriptionRegistry(self.projector)
        self.bridge = ChainEventBridge(
            self.client,
            listeners=[self.views],
            poll_interval_seconds=self.config.bridge.poll_interval_seconds,
            start_block=self.config.bridge.start_block,
        )

        self._running = False
        self._shutdown_event = asyncio.Event()
        self._tasks: List[asyncio.Task] = []

    def add_signer(self, client: ChainClient) -> None:
        """Make client available to sign transitions as its own account."""
        self.signers[client.account] = client

    def signer_for(self, account: Optional[str]) -> Optional[ChainClient]:
        if account is None:
            return None
        return self.signers.get(normalize_address(account))

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self, run_bridge: bool = True) -> None:
        """Initialize components and start background loops."""
        if self._running:
            logger.warning("Engine already running")
            return

        logger.info("Starting SheAid engine")
        self.config.log_config()

        try:
            Path(self.config.store.data_dir).mkdir(parents=True, exist_ok=True)
            await self.store.initialize()
            logger.info("Off-chain store initialized")

            connect = getattr(self.client, "connect", None)
            if self._owns_client and connect is not None:
                await connect()

            if run_bridge:
                self._tasks.append(asyncio.create_task(self.bridge.start()))

            self._running = True
            logger.info("SheAid engine started", extra={"signer": self.client.account})
        except Exception as e:
            logger.error(f"Engine startup failed: {e}", exc_info=True)
            await self.stop()
            raise

    async def run_forever(self) -> None:
        """Start and block until request_shutdown()."""
        await self.start()
        await self._shutdown_event.wait()

    async def stop(self) -> None:
        """Stop the engine gracefully."""
        logger.info("Stopping SheAid engine")

        await self.bridge.stop()
        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

        await self.store.close()

        self._running = False
        logger.info("SheAid engine stopped")

    def request_shutdown(self) -> None:
        """Request graceful shutdown."""
        self._shutdown_event.set()

    def get_stats(self) -> dict:
        return {
            "running": self._running,
            "in_flight": sorted(str(k) for k in self.tracker.in_flight_keys()),
            "bridge": self.bridge.get_stats(),
            "projector": self.projector.get_stats(),
            "views": self.views.get_stats(),
        }


def main() -> None:
    """Main entry point."""
    # Load configuration
    try:
        config = EngineConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config.observability)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    # Engine owns an asyncio.Event; build it with the loop installed
    engine = Engine(config)

    def handle_signal(sig: int) -> None:
        logger.info(f"Received signal {sig}, initiating shutdown")
        engine.request_shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, handle_signal, sig)

    try:
        loop.run_until_complete(engine.run_forever())
    except KeyboardInterrupt:
        pass
    finally:
        loop.run_until_complete(engine.stop())
        loop.close()


if __name__ == "__main__":
    main()
