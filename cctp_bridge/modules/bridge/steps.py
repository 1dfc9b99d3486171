"""Step executors — one per protocol phase.

Every executor re-reads the record from the ledger, returns it untouched when
its phase is already complete, and commits its artifacts in a single ledger
merge only after the on-chain or off-chain work has succeeded. The ledger
write is the commit point: anything that happens before it is repeated on the
next attempt.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any, ClassVar

import structlog

from cctp_bridge.core.config import (
    APPROVAL_HEADROOM_MULTIPLIER,
    FINALITY_THRESHOLD_FAST,
    MAX_FEE_DIVISOR,
    ChainRegistry,
)
from cctp_bridge.core.errors import (
    BridgeNotFoundError,
    ConfigurationError,
    MessageExtractionError,
    StepPreconditionError,
    TransactionFailedError,
)
from cctp_bridge.models.enums import BridgePhase, BridgeStatus
from cctp_bridge.modules.attestation.service import (
    AttestationClient,
    RetryPolicy,
    SleepFn,
    poll_attestation,
)
from cctp_bridge.modules.bridge.schemas import BridgeRecord
from cctp_bridge.modules.bridge.state import PHASE_STATUS, is_phase_complete
from cctp_bridge.modules.chains.base import ChainAdapter
from cctp_bridge.modules.chains.messages import (
    ANY_DESTINATION_CALLER,
    address_to_bytes32,
    extract_message_sent,
)
from cctp_bridge.modules.ledger.service import BridgeLedger

logger = structlog.get_logger()

AdapterResolver = Callable[[str], ChainAdapter]


class BridgeStep(ABC):
    """Idempotent executor for a single phase."""

    phase: ClassVar[BridgePhase]

    def __init__(self, ledger: BridgeLedger, registry: ChainRegistry, adapters: AdapterResolver) -> None:
        self.ledger = ledger
        self.registry = registry
        self.adapters = adapters

    async def execute(self, bridge_id: str) -> BridgeRecord:
        record = self.ledger.get(bridge_id)
        if record is None:
            raise BridgeNotFoundError(bridge_id)
        if is_phase_complete(record, self.phase):
            logger.info("bridge.step.already_complete", bridge_id=bridge_id, phase=self.phase.value)
            return record
        self.check_preconditions(record)
        return await self._run(record)

    def check_preconditions(self, record: BridgeRecord) -> None:
        """Raise StepPreconditionError if an earlier phase is missing."""

    @abstractmethod
    async def _run(self, record: BridgeRecord) -> BridgeRecord:
        ...

    def _mark_in_progress(self, record: BridgeRecord) -> BridgeRecord:
        in_progress = PHASE_STATUS[self.phase][0]
        if record.status is in_progress:
            return record
        fields: dict[str, Any] = {"status": in_progress}
        if record.status is BridgeStatus.FAILED:
            # retry after FAILED clears the stale error
            fields["error"] = None
        return self.ledger.merge(record.bridge_id, fields)

    def _source_adapter(self, record: BridgeRecord) -> ChainAdapter:
        adapter = self.adapters(record.source_chain)
        if adapter.address.lower() != record.wallet_address.lower():
            raise ConfigurationError(
                f"Configured wallet {adapter.address} does not own bridge {record.bridge_id} "
                f"(created by {record.wallet_address})"
            )
        return adapter

    @staticmethod
    def _ensure_success(success: bool, what: str, chain: str, tx_hash: str) -> None:
        if not success:
            raise TransactionFailedError(f"{what} transaction failed: {tx_hash}", chain=chain, tx_hash=tx_hash)


class ApproveStep(BridgeStep):
    """Grant the TokenMessenger an allowance of 2x the transfer amount.

    Skips the transaction entirely when the existing allowance already covers it.
    """

    phase = BridgePhase.APPROVE

    async def _run(self, record: BridgeRecord) -> BridgeRecord:
        chain = self.registry.get(record.source_chain)
        adapter = self._source_adapter(record)
        log = logger.bind(bridge_id=record.bridge_id, chain=chain.key)

        self._mark_in_progress(record)
        headroom = record.amount_base_units * APPROVAL_HEADROOM_MULTIPLIER

        allowance = await adapter.read_allowance(adapter.address, chain.token_messenger)
        if allowance >= headroom:
            log.info("bridge.approve.allowance_sufficient", allowance=allowance, required=headroom)
            return self.ledger.merge(record.bridge_id, {
                "status": BridgeStatus.APPROVED,
                "approved_at": self.ledger.now(),
            })

        tx_hash = await adapter.approve(chain.token_messenger, headroom)
        log.info("bridge.approve.submitted", tx_hash=tx_hash, amount=headroom)
        receipt = await adapter.await_receipt(tx_hash)
        self._ensure_success(receipt.success, "Approve", chain.key, tx_hash)

        log.info("bridge.approve.confirmed", tx_hash=tx_hash)
        return self.ledger.merge(record.bridge_id, {
            "status": BridgeStatus.APPROVED,
            "approve_tx_hash": tx_hash,
            "approved_at": self.ledger.now(),
        })


class BurnStep(BridgeStep):
    """depositForBurn on the source chain, then capture the emitted CCTP message."""

    phase = BridgePhase.BURN

    def __init__(
        self,
        ledger: BridgeLedger,
        registry: ChainRegistry,
        adapters: AdapterResolver,
        min_finality_threshold: int = FINALITY_THRESHOLD_FAST,
    ) -> None:
        super().__init__(ledger, registry, adapters)
        self.min_finality_threshold = min_finality_threshold

    def check_preconditions(self, record: BridgeRecord) -> None:
        if not is_phase_complete(record, BridgePhase.APPROVE):
            raise StepPreconditionError(f"Bridge {record.bridge_id}: must approve first")

    async def _run(self, record: BridgeRecord) -> BridgeRecord:
        source = self.registry.get(record.source_chain)
        destination = self.registry.get(record.destination_chain)
        adapter = self._source_adapter(record)
        log = logger.bind(bridge_id=record.bridge_id, chain=source.key)

        self._mark_in_progress(record)
        # 10% ceiling on the fast-transfer fee
        max_fee = record.amount_base_units // MAX_FEE_DIVISOR

        tx_hash = await adapter.deposit_for_burn(
            amount=record.amount_base_units,
            destination_domain=destination.domain,
            mint_recipient=address_to_bytes32(record.mint_recipient),
            burn_token=source.usdc,
            destination_caller=ANY_DESTINATION_CALLER,
            max_fee=max_fee,
            min_finality_threshold=self.min_finality_threshold,
        )
        log.info(
            "bridge.burn.submitted",
            tx_hash=tx_hash,
            max_fee=max_fee,
            min_finality_threshold=self.min_finality_threshold,
        )
        receipt = await adapter.await_receipt(tx_hash)
        self._ensure_success(receipt.success, "Burn", source.key, tx_hash)

        sent = extract_message_sent(receipt, source.message_transmitter)
        if sent is None:
            raise MessageExtractionError(
                f"Burn {tx_hash} succeeded but emitted no MessageSent log "
                f"from {source.message_transmitter}"
            )

        log.info("bridge.burn.confirmed", tx_hash=tx_hash, message_hash=sent.message_hash)
        return self.ledger.merge(record.bridge_id, {
            "status": BridgeStatus.BURNED,
            "burn_tx_hash": tx_hash,
            "burn_message": sent.message,
            "burn_message_hash": sent.message_hash,
            "burned_at": self.ledger.now(),
        })


class AttestStep(BridgeStep):
    """Poll the attestation service for the burn.

    Running out of attempts is not an error: the record is returned with status
    ATTESTING and a later call picks the poll up again.
    """

    phase = BridgePhase.ATTEST

    def __init__(
        self,
        ledger: BridgeLedger,
        registry: ChainRegistry,
        adapters: AdapterResolver,
        client: AttestationClient,
        policy: RetryPolicy | None = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        super().__init__(ledger, registry, adapters)
        self.client = client
        self.policy = policy or RetryPolicy()
        self.sleep = sleep

    def check_preconditions(self, record: BridgeRecord) -> None:
        if record.burn_tx_hash is None:
            raise StepPreconditionError(f"Bridge {record.bridge_id}: no burn transaction, must burn first")

    async def _run(self, record: BridgeRecord) -> BridgeRecord:
        source = self.registry.get(record.source_chain)
        self._mark_in_progress(record)

        result = await poll_attestation(
            self.client,
            source_domain=source.domain,
            burn_tx_hash=record.burn_tx_hash,
            message_hash=record.burn_message_hash,
            policy=self.policy,
            sleep=self.sleep,
        )
        if result is None:
            logger.warning(
                "bridge.attest.not_ready",
                bridge_id=record.bridge_id,
                attempts=self.policy.max_attempts,
                hint="resume later to keep polling",
            )
            return self.ledger.get(record.bridge_id) or record

        fields: dict[str, Any] = {
            "status": BridgeStatus.ATTESTED,
            "attestation": result.attestation,
            "attested_at": self.ledger.now(),
        }
        if result.message and result.message != "0x" and result.message != record.burn_message:
            fields["burn_message"] = result.message
        logger.info("bridge.attest.received", bridge_id=record.bridge_id, source=result.source)
        return self.ledger.merge(record.bridge_id, fields)


class MintStep(BridgeStep):
    """receiveMessage on the destination chain with the stored message and attestation."""

    phase = BridgePhase.MINT

    def check_preconditions(self, record: BridgeRecord) -> None:
        if record.attestation is None:
            raise StepPreconditionError(
                f"Bridge {record.bridge_id}: no attestation, must wait for attestation first"
            )

    async def _run(self, record: BridgeRecord) -> BridgeRecord:
        destination = self.registry.get(record.destination_chain)
        adapter = self.adapters(record.destination_chain)
        log = logger.bind(bridge_id=record.bridge_id, chain=destination.key)

        self._mark_in_progress(record)
        tx_hash = await adapter.receive_message(record.burn_message, record.attestation)
        log.info("bridge.mint.submitted", tx_hash=tx_hash)
        receipt = await adapter.await_receipt(tx_hash)
        self._ensure_success(receipt.success, "Mint", destination.key, tx_hash)

        log.info("bridge.mint.confirmed", tx_hash=tx_hash)
        return self.ledger.merge(record.bridge_id, {
            "status": BridgeStatus.COMPLETE,
            "mint_tx_hash": tx_hash,
            "minted_at": self.ledger.now(),
        })
