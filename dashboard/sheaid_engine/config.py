"""
Configuration management for the SheAid engine.

All configuration is done via environment variables.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - Contract addresses default to the Sepolia deployment
    - Secrets (the signing key) are never logged

How to change safely:
    - Add new settings with defaults that keep existing deployments working
    - Redeployed contracts only need CONTRACT_<NAME> overrides
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

SEPOLIA_CHAIN_ID = 11155111

DEFAULT_CONTRACT_ADDRESSES = {
    "MockToken": "0xA3EC7a8038a9664C14cc6171Da7dA542b6e79d73",
    "SheAidRoles": "0x0bf0d01b73819424B186f0C8657C351A3B49dc23",
    "PlatformAdmin": "0xAF627d2B41c8E719EaF2988fda7313673C1914E7",
    "NGORegistry": "0x2950605552A9de420deB7Af849Ee39A2210167DF",
    "MerchantRegistry": "0xE61E8375502839779bD42c8149f2f3e2354c7041",
    "Marketplace": "0x63561c8d02325e6c63514eBe627d718B2c0067be",
    "BeneficiaryModule": "0xB0ddE3F0b79fe36b97a4a070bd15a0F6f8ff204b",
    "ProjectVaultManager": "0x97e9D8d190fCCacc1DA7A228A0fbE6Cb1A19A3fc",
}


def _env_key(contract: str) -> str:
    """MerchantRegistry -> CONTRACT_MERCHANT_REGISTRY, NGORegistry -> CONTRACT_NGO_REGISTRY."""
    out = []
    for i, ch in enumerate(contract):
        if ch.isupper() and i:
            prev_lower = contract[i - 1].islower()
            next_lower = i + 1 < len(contract) and contract[i + 1].islower()
            if prev_lower or next_lower:
                out.append("_")
        out.append(ch.upper())
    return "CONTRACT_" + "".join(out)


@dataclass(frozen=True)
class ChainConfig:
    """Chain RPC and signing configuration.

    Attributes:
        rpc_url: HTTP JSON-RPC endpoint
        chain_id: Expected chain id (checked on connect)
        private_key: Hex key used to sign transactions (optional for read-only use)
        confirmation_timeout_seconds: Bound on each confirmation wait
        request_timeout_seconds: HTTP timeout for RPC requests
        contracts: Contract name -> deployed address
    """

    rpc_url: str = "http://localhost:8545"
    chain_id: int = SEPOLIA_CHAIN_ID
    private_key: str | None = None
    confirmation_timeout_seconds: float = 120.0
    request_timeout_seconds: float = 30.0
    contracts: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_CONTRACT_ADDRESSES))

    @classmethod
    def from_env(cls) -> ChainConfig:
        """Load configuration from environment variables."""
        contracts = {
            name: os.getenv(_env_key(name), address)
            for name, address in DEFAULT_CONTRACT_ADDRESSES.items()
        }
        return cls(
            rpc_url=os.getenv("CHAIN_RPC_URL", "http://localhost:8545"),
            chain_id=int(os.getenv("CHAIN_ID", str(SEPOLIA_CHAIN_ID))),
            private_key=os.getenv("CHAIN_PRIVATE_KEY"),
            confirmation_timeout_seconds=float(
                os.getenv("CHAIN_CONFIRMATION_TIMEOUT_SECONDS", "120")
            ),
            request_timeout_seconds=float(os.getenv("CHAIN_REQUEST_TIMEOUT_SECONDS", "30")),
            contracts=contracts,
        )


@dataclass(frozen=True)
class StoreConfig:
    """Off-chain store configuration.

    Attributes:
        data_dir: Directory for the SQLite database
        db_name: Database file name
        wal_mode: SQLite WAL mode enabled
        busy_timeout_ms: SQLite busy timeout in milliseconds
    """

    data_dir: str = "/var/lib/sheaid"
    db_name: str = "dashboard.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000

    @classmethod
    def from_env(cls) -> StoreConfig:
        """Load configuration from environment variables."""
        return cls(
            data_dir=os.getenv("STORE_DATA_DIR", "/var/lib/sheaid"),
            db_name=os.getenv("STORE_DB_NAME", "dashboard.db"),
            wal_mode=os.getenv("SQLITE_WAL_MODE", "true").lower() == "true",
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
        )


@dataclass(frozen=True)
class BridgeConfig:
    """Event bridge polling configuration.

    Attributes:
        poll_interval_seconds: Delay between polling cycles
        start_block: First block to scan (None = current head at startup)
    """

    poll_interval_seconds: float = 4.0
    start_block: int | None = None

    @classmethod
    def from_env(cls) -> BridgeConfig:
        """Load configuration from environment variables."""
        start = os.getenv("BRIDGE_START_BLOCK")
        return cls(
            poll_interval_seconds=float(os.getenv("BRIDGE_POLL_INTERVAL_SECONDS", "4")),
            start_block=int(start) if start else None,
        )


@dataclass(frozen=True)
class LifecycleConfig:
    """Lifecycle orchestration settings.

    Attributes:
        project_deposit_percent: Deposit the vault requires, as a percentage of budget
    """

    project_deposit_percent: int = 120

    @classmethod
    def from_env(cls) -> LifecycleConfig:
        """Load configuration from environment variables."""
        return cls(
            project_deposit_percent=int(os.getenv("PROJECT_DEPOSIT_PERCENT", "120")),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


@dataclass
class EngineConfig:
    """Complete engine configuration.

    Attributes:
        chain: Chain RPC configuration
        store: Off-chain store configuration
        bridge: Event bridge configuration
        lifecycle: Lifecycle settings
        observability: Logging configuration
    """

    chain: ChainConfig = field(default_factory=ChainConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    bridge: BridgeConfig = field(default_factory=BridgeConfig)
    lifecycle: LifecycleConfig = field(default_factory=LifecycleConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> EngineConfig:
        """Load complete configuration from environment variables.

        Raises:
            ValueError: If required configuration is missing or invalid.
        """
        config = cls(
            chain=ChainConfig.from_env(),
            store=StoreConfig.from_env(),
            bridge=BridgeConfig.from_env(),
            lifecycle=LifecycleConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )
        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if not self.chain.rpc_url:
            raise ValueError("CHAIN_RPC_URL is required")
        missing = [name for name, address in self.chain.contracts.items() if not address]
        if missing:
            raise ValueError(f"Contract addresses missing: {', '.join(missing)}")
        if self.chain.confirmation_timeout_seconds <= 0:
            raise ValueError("CHAIN_CONFIRMATION_TIMEOUT_SECONDS must be positive")
        if self.bridge.poll_interval_seconds <= 0:
            raise ValueError("BRIDGE_POLL_INTERVAL_SECONDS must be positive")
        if self.lifecycle.project_deposit_percent < 100:
            raise ValueError("PROJECT_DEPOSIT_PERCENT must be at least 100")

        if not self.chain.private_key:
            logger.warning("CHAIN_PRIVATE_KEY not set; transitions will fail to sign")

        if not os.path.exists(self.store.data_dir):
            logger.warning(
                f"Data directory does not exist: {self.store.data_dir}. "
                "It will be created on first write."
            )

    def log_config(self) -> None:
        """Log configuration (redacting secrets)."""
        logger.info(
            "Engine configuration loaded",
            extra={
                "rpc_url": self.chain.rpc_url,
                "chain_id": self.chain.chain_id,
                "signer_configured": self.chain.private_key is not None,
                "confirmation_timeout": self.chain.confirmation_timeout_seconds,
                "data_dir": self.store.data_dir,
                "poll_interval": self.bridge.poll_interval_seconds,
                "start_block": self.bridge.start_block,
                "log_level": self.observability.log_level,
            },
        )
