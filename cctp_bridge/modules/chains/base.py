"""Abstract chain adapter — the narrow surface the step executors need from a chain."""

from __future__ import annotations

from abc import ABC, abstractmethod

from cctp_bridge.core.config import ChainConfig
from cctp_bridge.modules.chains.schemas import TxReceipt


class ChainAdapter(ABC):
    """Submits CCTP transactions on one chain from one wallet.

    Submission methods return the transaction hash as soon as the transaction
    is broadcast; await_receipt() waits for inclusion.
    """

    def __init__(self, chain: ChainConfig) -> None:
        self.chain = chain

    @property
    @abstractmethod
    def address(self) -> str:
        """Signing wallet address on this chain."""
        ...

    @abstractmethod
    async def approve(self, spender: str, amount: int) -> str:
        ...

    @abstractmethod
    async def read_allowance(self, owner: str, spender: str) -> int:
        ...

    @abstractmethod
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
        ...

    @abstractmethod
    async def receive_message(self, message: str, attestation: str) -> str:
        ...

    @abstractmethod
    async def await_receipt(self, tx_hash: str) -> TxReceipt:
        ...
