"""web3.py implementation of the chain adapter for EVM chains."""

from __future__ import annotations

from typing import Any

import structlog
from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3

from cctp_bridge.core.config import ChainConfig, ChainRegistry, Settings
from cctp_bridge.core.errors import ConfigurationError
from cctp_bridge.modules.chains.base import ChainAdapter
from cctp_bridge.modules.chains.schemas import LogEntry, TxReceipt

logger = structlog.get_logger()

ERC20_ABI: list[dict[str, Any]] = [
    {
        "type": "function",
        "name": "approve",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "spender", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "outputs": [{"name": "", "type": "bool"}],
    },
    {
        "type": "function",
        "name": "allowance",
        "stateMutability": "view",
        "inputs": [
            {"name": "owner", "type": "address"},
            {"name": "spender", "type": "address"},
        ],
        "outputs": [{"name": "", "type": "uint256"}],
    },
]

TOKEN_MESSENGER_V2_ABI: list[dict[str, Any]] = [
    {
        "type": "function",
        "name": "depositForBurn",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "amount", "type": "uint256"},
            {"name": "destinationDomain", "type": "uint32"},
            {"name": "mintRecipient", "type": "bytes32"},
            {"name": "burnToken", "type": "address"},
            {"name": "destinationCaller", "type": "bytes32"},
            {"name": "maxFee", "type": "uint256"},
            {"name": "minFinalityThreshold", "type": "uint32"},
        ],
        "outputs": [],
    },
]

MESSAGE_TRANSMITTER_V2_ABI: list[dict[str, Any]] = [
    {
        "type": "function",
        "name": "receiveMessage",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "message", "type": "bytes"},
            {"name": "attestation", "type": "bytes"},
        ],
        "outputs": [{"name": "success", "type": "bool"}],
    },
    {
        "type": "event",
        "name": "MessageSent",
        "anonymous": False,
        "inputs": [{"name": "message", "type": "bytes", "indexed": False}],
    },
]


def load_account(settings: Settings) -> LocalAccount:
    """Signing account from WALLET_PRIVATE_KEY, else first account of WALLET_SEED_PHRASE."""
    settings.require_wallet_credential()
    private_key = settings.WALLET_PRIVATE_KEY.strip()
    try:
        if private_key:
            return Account.from_key(private_key)
        Account.enable_unaudited_hdwallet_features()
        return Account.from_mnemonic(settings.WALLET_SEED_PHRASE.strip())
    except Exception as exc:
        raise ConfigurationError(f"Invalid wallet credential: {exc}") from exc


class Web3ChainAdapter(ChainAdapter):
    def __init__(
        self,
        chain: ChainConfig,
        account: LocalAccount,
        rpc_timeout: float = 30.0,
        receipt_timeout: float = 300.0,
    ) -> None:
        super().__init__(chain)
        self.account = account
        self.receipt_timeout = receipt_timeout
        self.w3 = AsyncWeb3(AsyncHTTPProvider(chain.rpc_url, request_kwargs={"timeout": rpc_timeout}))
        self._usdc = self.w3.eth.contract(address=Web3.to_checksum_address(chain.usdc), abi=ERC20_ABI)
        self._messenger = self.w3.eth.contract(
            address=Web3.to_checksum_address(chain.token_messenger), abi=TOKEN_MESSENGER_V2_ABI
        )
        self._transmitter = self.w3.eth.contract(
            address=Web3.to_checksum_address(chain.message_transmitter), abi=MESSAGE_TRANSMITTER_V2_ABI
        )

    @property
    def address(self) -> str:
        return self.account.address

    async def _send(self, func: Any) -> str:
        """Sign and broadcast a contract call; gas and EIP-1559 fees are filled by web3."""
        nonce = await self.w3.eth.get_transaction_count(self.account.address, "pending")
        tx = await func.build_transaction({
            "from": self.account.address,
            "chainId": self.chain.chain_id,
            "nonce": nonce,
        })
        signed = self.account.sign_transaction(tx)
        tx_hash = await self.w3.eth.send_raw_transaction(signed.raw_transaction)
        hex_hash = Web3.to_hex(tx_hash)
        logger.info("chains.tx_sent", chain=self.chain.key, tx_hash=hex_hash, nonce=nonce)
        return hex_hash

    async def approve(self, spender: str, amount: int) -> str:
        return await self._send(
            self._usdc.functions.approve(Web3.to_checksum_address(spender), amount)
        )

    async def read_allowance(self, owner: str, spender: str) -> int:
        return await self._usdc.functions.allowance(
            Web3.to_checksum_address(owner), Web3.to_checksum_address(spender)
        ).call()

    async def deposit_for_burn(
        self,
        amount: int,
        destination_domain: int,
        mint_recipient: bytes,
        burn_token: str,
        destination_caller: bytes,
        max_fee: int,
        min_finality_threshold: int,
    ) -> str:
        return await self._send(
            self._messenger.functions.depositForBurn(
                amount,
                destination_domain,
                mint_recipient,
                Web3.to_checksum_address(burn_token),
                destination_caller,
                max_fee,
                min_finality_threshold,
            )
        )

    async def receive_message(self, message: str, attestation: str) -> str:
        return await self._send(
            self._transmitter.functions.receiveMessage(
                Web3.to_bytes(hexstr=message), Web3.to_bytes(hexstr=attestation)
            )
        )

    async def await_receipt(self, tx_hash: str) -> TxReceipt:
        receipt = await self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout)
        return TxReceipt(
            tx_hash=tx_hash,
            success=receipt["status"] == 1,
            block_number=receipt.get("blockNumber"),
            logs=[
                LogEntry(
                    address=log["address"],
                    topics=[Web3.to_hex(t) for t in log["topics"]],
                    data=Web3.to_hex(log["data"]),
                )
                for log in receipt["logs"]
            ],
        )


class Web3AdapterFactory:
    """Builds one adapter per chain key, all signing with the same wallet.

    The account is loaded on first use so that a missing credential surfaces
    as a ConfigurationError before any ledger write.
    """

    def __init__(self, settings: Settings, registry: ChainRegistry) -> None:
        self.settings = settings
        self.registry = registry
        self._account: LocalAccount | None = None
        self._adapters: dict[str, ChainAdapter] = {}

    def __call__(self, chain_key: str) -> ChainAdapter:
        adapter = self._adapters.get(chain_key)
        if adapter is None:
            chain = self.registry.get(chain_key)
            if self._account is None:
                self._account = load_account(self.settings)
            adapter = Web3ChainAdapter(
                chain,
                self._account,
                rpc_timeout=self.settings.RPC_TIMEOUT_SECONDS,
                receipt_timeout=self.settings.RECEIPT_TIMEOUT_SECONDS,
            )
            self._adapters[chain_key] = adapter
        return adapter
