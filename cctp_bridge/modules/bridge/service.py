"""Bridge orchestrator — sequences the step executors and records failures.

run() walks all four phases; resume() walks only the suffix that is still
incomplete. Both stop early, without error, when the attestation is not ready
yet. The orchestrator is the only place that turns a step exception into
status=FAILED; configuration and precondition errors are re-raised untouched
and never written.
"""

from __future__ import annotations

import asyncio
from decimal import Decimal

import structlog

from cctp_bridge.core.config import FINALITY_THRESHOLD_FAST, ChainRegistry
from cctp_bridge.core.errors import (
    BridgeNotFoundError,
    ConfigurationError,
    LedgerError,
    StepPreconditionError,
)
from cctp_bridge.models.enums import BridgePhase, BridgeStatus
from cctp_bridge.modules.attestation.service import AttestationClient, RetryPolicy, SleepFn
from cctp_bridge.modules.bridge.schemas import BridgeRecord, generate_bridge_id, to_base_units
from cctp_bridge.modules.bridge.state import PHASES, is_phase_complete, remaining_phases
from cctp_bridge.modules.bridge.steps import (
    AdapterResolver,
    ApproveStep,
    AttestStep,
    BridgeStep,
    BurnStep,
    MintStep,
)
from cctp_bridge.modules.chains.messages import address_to_bytes32
from cctp_bridge.modules.ledger.service import BridgeLedger

logger = structlog.get_logger()

_SOURCE_PHASES = (BridgePhase.APPROVE, BridgePhase.BURN)


class BridgeOrchestrator:
    def __init__(
        self,
        ledger: BridgeLedger,
        registry: ChainRegistry,
        adapters: AdapterResolver,
        attestation_client: AttestationClient,
        policy: RetryPolicy | None = None,
        sleep: SleepFn = asyncio.sleep,
        min_finality_threshold: int = FINALITY_THRESHOLD_FAST,
    ) -> None:
        self.ledger = ledger
        self.registry = registry
        self.adapters = adapters
        self.steps: dict[BridgePhase, BridgeStep] = {
            BridgePhase.APPROVE: ApproveStep(ledger, registry, adapters),
            BridgePhase.BURN: BurnStep(ledger, registry, adapters, min_finality_threshold),
            BridgePhase.ATTEST: AttestStep(ledger, registry, adapters, attestation_client, policy, sleep),
            BridgePhase.MINT: MintStep(ledger, registry, adapters),
        }

    def initiate(
        self,
        source_chain: str,
        destination_chain: str,
        amount: Decimal | str,
        recipient: str | None = None,
    ) -> BridgeRecord:
        """Validate inputs and create a PENDING record. Nothing is written on invalid input."""
        source = self.registry.get(source_chain)
        destination = self.registry.get(destination_chain)
        if source.key == destination.key:
            raise ConfigurationError("Source and destination chains must differ")
        amount_base_units = to_base_units(amount)
        if recipient is not None:
            try:
                address_to_bytes32(recipient)
            except ValueError as exc:
                raise ConfigurationError(f"Invalid recipient address: {recipient}") from exc
        wallet_address = self.adapters(source.key).address

        bridge_id = generate_bridge_id()
        record = self.ledger.merge(bridge_id, {
            "status": BridgeStatus.PENDING,
            "source_chain": source.key,
            "destination_chain": destination.key,
            "amount": Decimal(str(amount).strip()),
            "amount_base_units": amount_base_units,
            "wallet_address": wallet_address,
            "recipient_address": recipient,
            "created_at": self.ledger.now(),
        })
        logger.info(
            "bridge.initiated",
            bridge_id=bridge_id,
            source=source.key,
            destination=destination.key,
            amount=str(record.amount),
            wallet=wallet_address,
        )
        return record

    def get(self, bridge_id: str) -> BridgeRecord:
        record = self.ledger.get(bridge_id)
        if record is None:
            raise BridgeNotFoundError(bridge_id)
        return record

    async def run(self, bridge_id: str) -> BridgeRecord:
        """Run all four phases in order; completed phases no-op."""
        return await self._execute(bridge_id, PHASES)

    async def resume(self, bridge_id: str) -> BridgeRecord:
        """Run the phases that are still incomplete. Safe to call any number of times."""
        record = self.get(bridge_id)
        phases = remaining_phases(record)
        logger.info(
            "bridge.resume",
            bridge_id=bridge_id,
            status=record.status.value,
            remaining=[p.value for p in phases],
        )
        if not phases:
            return record
        return await self._execute(bridge_id, phases)

    async def run_step(self, bridge_id: str, phase: BridgePhase) -> BridgeRecord:
        """Run a single phase, e.g. to poll for the attestation again or retry the mint."""
        return await self._execute(bridge_id, (phase,))

    async def _execute(self, bridge_id: str, phases: tuple[BridgePhase, ...] | list[BridgePhase]) -> BridgeRecord:
        record = self.get(bridge_id)
        self._resolve_adapters(record, phases)

        for phase in phases:
            try:
                record = await self.steps[phase].execute(bridge_id)
            except (ConfigurationError, StepPreconditionError):
                raise
            except Exception as exc:
                self._record_failure(bridge_id, phase, exc)
                raise
            if not is_phase_complete(record, phase):
                logger.info("bridge.paused", bridge_id=bridge_id, phase=phase.value, status=record.status.value)
                return record

        if record.status is BridgeStatus.COMPLETE:
            logger.info("bridge.complete", bridge_id=bridge_id, mint_tx_hash=record.mint_tx_hash)
        return record

    def _resolve_adapters(self, record: BridgeRecord, phases: tuple[BridgePhase, ...] | list[BridgePhase]) -> None:
        """Surface unknown chains and missing credentials before any step writes."""
        self.registry.get(record.source_chain)
        self.registry.get(record.destination_chain)
        if any(p in _SOURCE_PHASES for p in phases):
            self.adapters(record.source_chain)
        if BridgePhase.MINT in phases:
            self.adapters(record.destination_chain)

    def _record_failure(self, bridge_id: str, phase: BridgePhase, exc: Exception) -> None:
        message = str(exc) or type(exc).__name__
        logger.error("bridge.step_failed", bridge_id=bridge_id, phase=phase.value, error=message)
        try:
            self.ledger.merge(bridge_id, {"status": BridgeStatus.FAILED, "error": message})
        except LedgerError as ledger_exc:
            logger.error("bridge.failure_not_recorded", bridge_id=bridge_id, error=str(ledger_exc))
