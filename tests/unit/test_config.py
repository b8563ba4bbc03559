"""
Unit tests for environment configuration.
"""

import pytest

from dashboard.sheaid_engine.config import (
    DEFAULT_CONTRACT_ADDRESSES,
    SEPOLIA_CHAIN_ID,
    ChainConfig,
    EngineConfig,
    LifecycleConfig,
    StoreConfig,
    _env_key,
)


class TestEnvKey:
    @pytest.mark.parametrize(
        "contract,expected",
        [
            ("MockToken", "CONTRACT_MOCK_TOKEN"),
            ("NGORegistry", "CONTRACT_NGO_REGISTRY"),
            ("SheAidRoles", "CONTRACT_SHE_AID_ROLES"),
            ("ProjectVaultManager", "CONTRACT_PROJECT_VAULT_MANAGER"),
            ("Marketplace", "CONTRACT_MARKETPLACE"),
        ],
    )
    def test_contract_env_names(self, contract, expected):
        assert _env_key(contract) == expected


class TestFromEnv:
    def test_defaults(self, monkeypatch, tmp_path):
        monkeypatch.setenv("STORE_DATA_DIR", str(tmp_path))
        for name in DEFAULT_CONTRACT_ADDRESSES:
            monkeypatch.delenv(_env_key(name), raising=False)
        monkeypatch.delenv("CHAIN_ID", raising=False)
        monkeypatch.delenv("BRIDGE_START_BLOCK", raising=False)

        config = EngineConfig.from_env()

        assert config.chain.chain_id == SEPOLIA_CHAIN_ID
        assert config.chain.contracts == DEFAULT_CONTRACT_ADDRESSES
        assert config.store.data_dir == str(tmp_path)
        assert config.bridge.start_block is None
        assert config.lifecycle.project_deposit_percent == 120

    def test_overrides(self, monkeypatch):
        monkeypatch.setenv("CHAIN_RPC_URL", "https://rpc.example.org")
        monkeypatch.setenv("CHAIN_ID", "31337")
        monkeypatch.setenv("CHAIN_CONFIRMATION_TIMEOUT_SECONDS", "15")
        monkeypatch.setenv("CONTRACT_NGO_REGISTRY", "0x" + "ab" * 20)

        config = ChainConfig.from_env()

        assert config.rpc_url == "https://rpc.example.org"
        assert config.chain_id == 31337
        assert config.confirmation_timeout_seconds == 15.0
        assert config.contracts["NGORegistry"] == "0x" + "ab" * 20
        assert config.contracts["Marketplace"] == DEFAULT_CONTRACT_ADDRESSES["Marketplace"]

    def test_store_flags(self, monkeypatch):
        monkeypatch.setenv("SQLITE_WAL_MODE", "FALSE")
        monkeypatch.setenv("SQLITE_BUSY_TIMEOUT_MS", "100")

        config = StoreConfig.from_env()

        assert config.wal_mode is False
        assert config.busy_timeout_ms == 100

    def test_bridge_start_block(self, monkeypatch, tmp_path):
        monkeypatch.setenv("STORE_DATA_DIR", str(tmp_path))
        monkeypatch.setenv("BRIDGE_START_BLOCK", "4200000")

        assert EngineConfig.from_env().bridge.start_block == 4200000

    def test_non_numeric_value(self, monkeypatch):
        monkeypatch.setenv("CHAIN_ID", "sepolia")

        with pytest.raises(ValueError):
            EngineConfig.from_env()


class TestValidate:
    def test_defaults_are_valid(self, tmp_path):
        EngineConfig(store=StoreConfig(data_dir=str(tmp_path))).validate()

    @pytest.mark.parametrize(
        "config,message",
        [
            (EngineConfig(chain=ChainConfig(rpc_url="")), "CHAIN_RPC_URL"),
            (
                EngineConfig(chain=ChainConfig(confirmation_timeout_seconds=0)),
                "CHAIN_CONFIRMATION_TIMEOUT_SECONDS",
            ),
            (
                EngineConfig(lifecycle=LifecycleConfig(project_deposit_percent=90)),
                "PROJECT_DEPOSIT_PERCENT",
            ),
        ],
    )
    def test_invalid(self, config, message):
        with pytest.raises(ValueError, match=message):
            config.validate()

    def test_missing_contract_address(self):
        contracts = dict(DEFAULT_CONTRACT_ADDRESSES, Marketplace="")
        config = EngineConfig(chain=ChainConfig(contracts=contracts))

        with pytest.raises(ValueError, match="Marketplace"):
            config.validate()
