"""Shared fixtures: fake chain adapter, fake Iris service, ledger with a ticking clock."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx
import pytest
from eth_abi import encode
from web3 import Web3

from cctp_bridge.core.config import ChainConfig, Settings, build_chain_registry
from cctp_bridge.modules.attestation.service import AttestationClient, RetryPolicy
from cctp_bridge.modules.bridge.service import BridgeOrchestrator
from cctp_bridge.modules.chains.base import ChainAdapter
from cctp_bridge.modules.chains.messages import MESSAGE_SENT_TOPIC
from cctp_bridge.modules.chains.schemas import LogEntry, TxReceipt
from cctp_bridge.modules.ledger.service import BridgeLedger

WALLET = "0x2c7536E3605D9C16a7a3D7b1898e529396a65c23"
SAMPLE_MESSAGE = bytes.fromhex("00000001" "00000006" "00000000") + b"\x11" * 100
SAMPLE_ATTESTATION = "0x" + "ab" * 65
IRIS_URL = "https://iris.test"


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


class FakeClock:
    """Strictly increasing UTC clock, one second per call."""

    def __init__(self) -> None:
        self.current = datetime(2026, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.current += timedelta(seconds=1)
        return self.current


def message_sent_log(transmitter: str, message: bytes = SAMPLE_MESSAGE) -> LogEntry:
    return LogEntry(
        address=transmitter,
        topics=[MESSAGE_SENT_TOPIC],
        data=Web3.to_hex(encode(["bytes"], [message])),
    )


class FakeChainAdapter(ChainAdapter):
    """In-memory chain: records every call and returns scripted receipts."""

    def __init__(
        self,
        chain: ChainConfig,
        address: str = WALLET,
        allowance: int = 0,
        emit_message: bool = True,
        fail: set[str] | None = None,
    ) -> None:
        super().__init__(chain)
        self._address = address
        self.allowance = allowance
        self.emit_message = emit_message
        self.fail = fail or set()
        self.calls: list[tuple[str, Any]] = []
        self.receipts: dict[str, TxReceipt] = {}
        self._nonce = 0

    @property
    def address(self) -> str:
        return self._address

    def _submit(self, kind: str, logs: list[LogEntry] | None = None) -> str:
        self._nonce += 1
        tx_hash = "0x" + f"{self.chain.chain_id:08x}{self._nonce:056x}"
        self.receipts[tx_hash] = TxReceipt(
            tx_hash=tx_hash,
            success=kind not in self.fail,
            block_number=self._nonce,
            logs=logs or [],
        )
        return tx_hash

    def submitted(self, kind: str) -> list[tuple[str, Any]]:
        return [c for c in self.calls if c[0] == kind]

    async def approve(self, spender: str, amount: int) -> str:
        self.calls.append(("approve", {"spender": spender, "amount": amount}))
        tx_hash = self._submit("approve")
        if self.receipts[tx_hash].success:
            self.allowance = amount
        return tx_hash

    async def read_allowance(self, owner: str, spender: str) -> int:
        self.calls.append(("allowance", {"owner": owner, "spender": spender}))
        return self.allowance

    async def deposit_for_burn(self, amount, destination_domain, mint_recipient, burn_token,
                               destination_caller, max_fee, min_finality_threshold) -> str:
        self.calls.append(("burn", {
            "amount": amount,
            "destination_domain": destination_domain,
            "mint_recipient": mint_recipient,
            "burn_token": burn_token,
            "destination_caller": destination_caller,
            "max_fee": max_fee,
            "min_finality_threshold": min_finality_threshold,
        }))
        logs = [message_sent_log(self.chain.message_transmitter)] if self.emit_message else []
        return self._submit("burn", logs)

    async def receive_message(self, message: str, attestation: str) -> str:
        self.calls.append(("mint", {"message": message, "attestation": attestation}))
        return self._submit("mint")

    async def await_receipt(self, tx_hash: str) -> TxReceipt:
        return self.receipts[tx_hash]


class FakeAdapters:
    """Adapter resolver keyed by chain; builds FakeChainAdapters on demand."""

    def __init__(self, registry, **kwargs: Any) -> None:
        self.registry = registry
        self.kwargs = kwargs
        self.adapters: dict[str, FakeChainAdapter] = {}

    def __call__(self, chain_key: str) -> FakeChainAdapter:
        if chain_key not in self.adapters:
            self.adapters[chain_key] = FakeChainAdapter(self.registry.get(chain_key), **self.kwargs)
        return self.adapters[chain_key]


class FakeIris:
    """Scriptable attestation service behind httpx.MockTransport.

    statuses are consumed one per V2 request; the last one repeats.
    """

    def __init__(self, statuses: list[str] | None = None, v1_status: str | None = None,
                 message: str | None = None) -> None:
        self.statuses = list(statuses or ["complete"])
        self.v1_status = v1_status
        self.message = message
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path.startswith("/v2/messages/"):
            status = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
            if status == "404":
                return httpx.Response(404, json={"error": "Message hash not found"})
            attestation = SAMPLE_ATTESTATION if status == "complete" else "PENDING"
            body = {"messages": [{"status": status, "attestation": attestation, "message": self.message}]}
            return httpx.Response(200, content=json.dumps(body).encode())
        if request.url.path.startswith("/attestations/"):
            if self.v1_status is None:
                return httpx.Response(404, json={"error": "not found"})
            attestation = SAMPLE_ATTESTATION if self.v1_status == "complete" else None
            return httpx.Response(200, json={"status": self.v1_status, "attestation": attestation})
        return httpx.Response(404)

    def client(self) -> AttestationClient:
        return AttestationClient(IRIS_URL, transport=httpx.MockTransport(self.handler))


class SleepRecorder:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None)


@pytest.fixture
def registry(settings):
    return build_chain_registry(settings)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def ledger(tmp_path, clock) -> BridgeLedger:
    return BridgeLedger(tmp_path / "bridge-states.json", clock=clock)


@pytest.fixture
def adapters(registry) -> FakeAdapters:
    return FakeAdapters(registry)


@pytest.fixture
def iris() -> FakeIris:
    return FakeIris()


@pytest.fixture
def sleeper() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def orchestrator(ledger, registry, adapters, iris, sleeper) -> BridgeOrchestrator:
    return BridgeOrchestrator(
        ledger=ledger,
        registry=registry,
        adapters=adapters,
        attestation_client=iris.client(),
        policy=RetryPolicy(max_attempts=3, interval_ms=0),
        sleep=sleeper,
    )
