"""Settings, chain registry and wallet loading."""

import pytest
from structlog.testing import capture_logs

from cctp_bridge.core.config import Settings, build_chain_registry
from cctp_bridge.core.errors import ConfigurationError
from cctp_bridge.core.sentry import init_sentry
from cctp_bridge.modules.chains.evm import Web3AdapterFactory, load_account
from tests.conftest import WALLET

PRIVATE_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"
MNEMONIC = "test test test test test test test test test test test junk"


def test_registry_knows_testnets(registry):
    assert registry.keys() == ["base_sepolia", "ethereum_sepolia"]
    base = registry.get("base_sepolia")
    assert (base.chain_id, base.domain) == (84532, 6)
    assert registry.get("ethereum_sepolia").domain == 0
    assert base.explorer_url("0xabc") == "https://sepolia.basescan.org/tx/0xabc"


def test_registry_unknown_chain(registry):
    with pytest.raises(ConfigurationError, match="Unknown chain 'solana'"):
        registry.get("solana")
    assert "solana" not in registry


def test_rpc_url_comes_from_settings():
    settings = Settings(_env_file=None, BASE_SEPOLIA_RPC_URL="http://localhost:8545")
    assert build_chain_registry(settings).get("base_sepolia").rpc_url == "http://localhost:8545"


def test_require_wallet_credential(monkeypatch):
    monkeypatch.delenv("WALLET_PRIVATE_KEY", raising=False)
    monkeypatch.delenv("WALLET_SEED_PHRASE", raising=False)
    with pytest.raises(ConfigurationError):
        Settings(_env_file=None).require_wallet_credential()
    Settings(_env_file=None, WALLET_SEED_PHRASE=MNEMONIC).require_wallet_credential()


def test_load_account_from_private_key():
    account = load_account(Settings(_env_file=None, WALLET_PRIVATE_KEY=PRIVATE_KEY))
    assert account.address == WALLET


def test_load_account_private_key_wins_over_mnemonic():
    settings = Settings(_env_file=None, WALLET_PRIVATE_KEY=PRIVATE_KEY, WALLET_SEED_PHRASE=MNEMONIC)
    assert load_account(settings).address == WALLET


def test_load_account_from_mnemonic():
    account = load_account(Settings(_env_file=None, WALLET_PRIVATE_KEY="", WALLET_SEED_PHRASE=MNEMONIC))
    assert account.address == "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"


def test_load_account_rejects_garbage():
    with pytest.raises(ConfigurationError, match="Invalid wallet credential"):
        load_account(Settings(_env_file=None, WALLET_PRIVATE_KEY="0x1234"))


def test_factory_caches_adapters_per_chain():
    settings = Settings(_env_file=None, WALLET_PRIVATE_KEY=PRIVATE_KEY)
    factory = Web3AdapterFactory(settings, build_chain_registry(settings))
    base = factory("base_sepolia")
    assert factory("base_sepolia") is base
    assert factory("ethereum_sepolia").address == base.address == WALLET


def test_factory_without_credential_raises(monkeypatch):
    monkeypatch.delenv("WALLET_PRIVATE_KEY", raising=False)
    monkeypatch.delenv("WALLET_SEED_PHRASE", raising=False)
    settings = Settings(_env_file=None)
    with pytest.raises(ConfigurationError):
        Web3AdapterFactory(settings, build_chain_registry(settings))("base_sepolia")


def test_sentry_disabled_without_dsn_warns():
    with capture_logs() as logs:
        init_sentry(None)
    assert logs == [{"event": "sentry_disabled", "reason": "SENTRY_DSN not set", "log_level": "warning"}]
