from pathlib import Path

from pydantic import BaseModel, ConfigDict
from pydantic_settings import BaseSettings, SettingsConfigDict

from cctp_bridge.core.errors import ConfigurationError
from cctp_bridge.models.enums import BackoffStrategy

# USDC is a 6-decimal token on every CCTP chain
USDC_DECIMALS = 6

# Allowance granted to the TokenMessenger, as a multiple of the transfer amount.
# V2 deducts the fast-transfer fee on top of the burn amount.
APPROVAL_HEADROOM_MULTIPLIER = 2

# maxFee passed to depositForBurn, as a fraction of the transfer amount
MAX_FEE_DIVISOR = 10

FINALITY_THRESHOLD_FAST = 1000      # ~8-30s attestation
FINALITY_THRESHOLD_STANDARD = 2000  # hard finality, 15+ min on L1


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Application
    APP_ENV: str = "development"
    LOG_LEVEL: str = "INFO"

    # Sentry error monitoring
    SENTRY_DSN: str | None = None
    SENTRY_ENVIRONMENT: str = "development"

    # Wallet: one of the two is required to sign transactions
    WALLET_PRIVATE_KEY: str = ""
    WALLET_SEED_PHRASE: str = ""

    # Ledger
    BRIDGE_STATE_FILE: Path = Path("data/bridge-states.json")

    # Circle attestation service (Iris)
    ATTESTATION_API_URL: str = "https://iris-api-sandbox.circle.com"
    ATTESTATION_TIMEOUT_SECONDS: float = 10.0
    ATTESTATION_MAX_ATTEMPTS: int = 60
    ATTESTATION_INTERVAL_MS: int = 3000
    ATTESTATION_BACKOFF: BackoffStrategy = BackoffStrategy.FIXED
    ATTESTATION_MAX_INTERVAL_MS: int = 30_000
    ATTESTATION_JITTER: float = 0.0

    # RPC
    RPC_TIMEOUT_SECONDS: float = 30.0
    RECEIPT_TIMEOUT_SECONDS: float = 300.0
    BASE_SEPOLIA_RPC_URL: str = "https://sepolia.base.org"
    ETHEREUM_SEPOLIA_RPC_URL: str = "https://sepolia.drpc.org"

    def require_wallet_credential(self) -> None:
        if not (self.WALLET_PRIVATE_KEY.strip() or self.WALLET_SEED_PHRASE.strip()):
            raise ConfigurationError("WALLET_PRIVATE_KEY or WALLET_SEED_PHRASE must be set")


class ChainConfig(BaseModel):
    """Static CCTP deployment data for one EVM chain."""

    model_config = ConfigDict(frozen=True)

    key: str
    name: str
    chain_id: int
    rpc_url: str
    usdc: str
    token_messenger: str
    message_transmitter: str
    domain: int
    explorer: str

    def explorer_url(self, tx_hash: str) -> str:
        return f"{self.explorer}{tx_hash}"


class ChainRegistry:
    """Lookup of supported chains by key. Built once per process from Settings."""

    def __init__(self, chains: list[ChainConfig]) -> None:
        self._chains = {c.key: c for c in chains}

    def get(self, key: str) -> ChainConfig:
        chain = self._chains.get(key)
        if chain is None:
            raise ConfigurationError(
                f"Unknown chain '{key}'. Supported: {', '.join(self.keys())}"
            )
        return chain

    def keys(self) -> list[str]:
        return list(self._chains)

    def __iter__(self):
        return iter(self._chains.values())

    def __contains__(self, key: object) -> bool:
        return key in self._chains


def build_chain_registry(settings: Settings) -> ChainRegistry:
    """CCTP V2 testnet deployments (Fast Transfer enabled)."""
    return ChainRegistry([
        ChainConfig(
            key="base_sepolia",
            name="Base Sepolia",
            chain_id=84532,
            rpc_url=settings.BASE_SEPOLIA_RPC_URL,
            usdc="0x036CbD53842c5426634e7929541eC2318f3dCF7e",
            token_messenger="0x8fe6b999dc680ccfdd5bf7eb0974218be2542daa",
            message_transmitter="0xe737e5cebeeba77efe34d4aa090756590b1ce275",
            domain=6,
            explorer="https://sepolia.basescan.org/tx/",
        ),
        ChainConfig(
            key="ethereum_sepolia",
            name="Ethereum Sepolia",
            chain_id=11155111,
            rpc_url=settings.ETHEREUM_SEPOLIA_RPC_URL,
            usdc="0x1c7D4B196Cb0C7B01d743Fbc6116a902379C7238",
            token_messenger="0x8fe6b999dc680ccfdd5bf7eb0974218be2542daa",
            message_transmitter="0xe737e5cebeeba77efe34d4aa090756590b1ce275",
            domain=0,
            explorer="https://sepolia.etherscan.io/tx/",
        ),
    ])
