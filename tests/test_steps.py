"""Step executors run in isolation against the fake chain and fake Iris."""

from decimal import Decimal

import pytest

from cctp_bridge.core.config import FINALITY_THRESHOLD_FAST
from cctp_bridge.core.errors import (
    ConfigurationError,
    MessageExtractionError,
    StepPreconditionError,
    TransactionFailedError,
)
from cctp_bridge.models.enums import BridgeStatus
from cctp_bridge.modules.attestation.service import RetryPolicy
from cctp_bridge.modules.bridge.steps import ApproveStep, AttestStep, BurnStep, MintStep
from cctp_bridge.modules.chains.messages import ANY_DESTINATION_CALLER, address_to_bytes32
from tests.conftest import SAMPLE_ATTESTATION, WALLET, FakeAdapters, FakeIris

pytestmark = pytest.mark.anyio

SOURCE = "base_sepolia"
DEST = "ethereum_sepolia"


def create(ledger, **extra):
    fields = {
        "status": BridgeStatus.PENDING,
        "source_chain": SOURCE,
        "destination_chain": DEST,
        "amount": Decimal("1"),
        "amount_base_units": 1_000_000,
        "wallet_address": WALLET,
    }
    fields.update(extra)
    return ledger.merge("bridge_test", fields)


def burned(ledger, **extra):
    return create(
        ledger,
        status=BridgeStatus.BURNED,
        approve_tx_hash="0xa1",
        burn_tx_hash="0xb1",
        burn_message="0x0102",
        burn_message_hash="0xc1",
        **extra,
    )


class TestApproveStep:
    async def test_sufficient_allowance_skips_transaction(self, ledger, registry):
        adapters = FakeAdapters(registry, allowance=2_000_000)
        create(ledger)
        record = await ApproveStep(ledger, registry, adapters).execute("bridge_test")

        assert record.status is BridgeStatus.APPROVED
        assert record.approve_tx_hash is None
        assert record.approved_at is not None
        assert adapters(SOURCE).submitted("approve") == []

    async def test_insufficient_allowance_approves_double(self, ledger, registry, adapters):
        create(ledger)
        record = await ApproveStep(ledger, registry, adapters).execute("bridge_test")

        [(_, call)] = adapters(SOURCE).submitted("approve")
        assert call["amount"] == 2_000_000
        assert call["spender"] == registry.get(SOURCE).token_messenger
        assert record.status is BridgeStatus.APPROVED
        assert record.approve_tx_hash is not None

    async def test_second_run_is_noop(self, ledger, registry, adapters):
        create(ledger)
        step = ApproveStep(ledger, registry, adapters)
        first = await step.execute("bridge_test")
        second = await step.execute("bridge_test")

        assert second.approve_tx_hash == first.approve_tx_hash
        assert len(adapters(SOURCE).submitted("approve")) == 1
        assert len(adapters(SOURCE).submitted("allowance")) == 1

    async def test_reverted_approve_raises_and_leaves_approving(self, ledger, registry):
        adapters = FakeAdapters(registry, fail={"approve"})
        create(ledger)
        with pytest.raises(TransactionFailedError) as exc_info:
            await ApproveStep(ledger, registry, adapters).execute("bridge_test")

        assert exc_info.value.chain == SOURCE
        record = ledger.get("bridge_test")
        assert record.status is BridgeStatus.APPROVING
        assert record.approve_tx_hash is None

    async def test_wallet_mismatch_is_configuration_error(self, ledger, registry):
        adapters = FakeAdapters(registry, address="0x" + "42" * 20)
        create(ledger)
        with pytest.raises(ConfigurationError, match="does not own"):
            await ApproveStep(ledger, registry, adapters).execute("bridge_test")
        assert ledger.get("bridge_test").status is BridgeStatus.PENDING


class TestBurnStep:
    async def test_requires_approval(self, ledger, registry, adapters):
        create(ledger)
        with pytest.raises(StepPreconditionError, match="approve first"):
            await BurnStep(ledger, registry, adapters).execute("bridge_test")
        assert adapters(SOURCE).submitted("burn") == []

    async def test_burn_arguments(self, ledger, registry, adapters):
        create(ledger, status=BridgeStatus.APPROVED, approve_tx_hash="0xa1")
        await BurnStep(ledger, registry, adapters).execute("bridge_test")

        [(_, call)] = adapters(SOURCE).submitted("burn")
        assert call["amount"] == 1_000_000
        assert call["destination_domain"] == 0
        assert call["mint_recipient"] == address_to_bytes32(WALLET)
        assert call["burn_token"] == registry.get(SOURCE).usdc
        assert call["destination_caller"] == ANY_DESTINATION_CALLER
        assert call["max_fee"] == 100_000
        assert call["min_finality_threshold"] == FINALITY_THRESHOLD_FAST

    async def test_burn_records_message(self, ledger, registry, adapters):
        create(ledger, status=BridgeStatus.APPROVED)
        record = await BurnStep(ledger, registry, adapters).execute("bridge_test")

        assert record.status is BridgeStatus.BURNED
        assert record.burn_tx_hash is not None
        assert record.burn_message.startswith("0x")
        assert record.burn_message_hash.startswith("0x")
        assert record.burned_at is not None

    async def test_second_run_is_noop(self, ledger, registry, adapters):
        create(ledger, status=BridgeStatus.APPROVED, approve_tx_hash="0xa1")
        step = BurnStep(ledger, registry, adapters)
        first = await step.execute("bridge_test")
        second = await step.execute("bridge_test")

        assert second.model_dump() == first.model_dump()
        assert second.updated_at == first.updated_at
        assert len(adapters(SOURCE).submitted("burn")) == 1

    async def test_custom_recipient_and_standard_finality(self, ledger, registry, adapters):
        recipient = "0x" + "ab" * 20
        create(ledger, status=BridgeStatus.APPROVED, recipient_address=recipient)
        await BurnStep(ledger, registry, adapters, min_finality_threshold=2000).execute("bridge_test")

        [(_, call)] = adapters(SOURCE).submitted("burn")
        assert call["mint_recipient"] == address_to_bytes32(recipient)
        assert call["min_finality_threshold"] == 2000

    async def test_missing_message_log_leaves_burning(self, ledger, registry):
        adapters = FakeAdapters(registry, emit_message=False)
        create(ledger, status=BridgeStatus.APPROVED)
        with pytest.raises(MessageExtractionError):
            await BurnStep(ledger, registry, adapters).execute("bridge_test")

        record = ledger.get("bridge_test")
        assert record.status is BridgeStatus.BURNING
        assert record.burn_tx_hash is None


class TestAttestStep:
    async def test_requires_burn(self, ledger, registry, adapters, iris):
        create(ledger, status=BridgeStatus.APPROVED)
        with pytest.raises(StepPreconditionError, match="must burn first"):
            await AttestStep(ledger, registry, adapters, iris.client()).execute("bridge_test")
        assert iris.requests == []

    async def test_stores_attestation(self, ledger, registry, adapters, iris, sleeper):
        burned(ledger)
        step = AttestStep(ledger, registry, adapters, iris.client(), RetryPolicy(max_attempts=2), sleeper)
        record = await step.execute("bridge_test")

        assert record.status is BridgeStatus.ATTESTED
        assert record.attestation == SAMPLE_ATTESTATION
        assert record.burn_message == "0x0102"
        assert iris.requests[0].url.path == "/v2/messages/6"

    async def test_refreshes_message_from_service(self, ledger, registry, adapters, sleeper):
        burned(ledger)
        iris = FakeIris(["complete"], message="0x0a0b0c")
        step = AttestStep(ledger, registry, adapters, iris.client(), RetryPolicy(max_attempts=1), sleeper)
        record = await step.execute("bridge_test")

        assert record.burn_message == "0x0a0b0c"
        assert record.burn_message_hash == "0xc1"

    async def test_second_run_is_noop(self, ledger, registry, adapters, iris, sleeper):
        burned(ledger)
        step = AttestStep(ledger, registry, adapters, iris.client(), RetryPolicy(max_attempts=2), sleeper)
        first = await step.execute("bridge_test")
        requests = len(iris.requests)
        second = await step.execute("bridge_test")

        assert second.model_dump() == first.model_dump()
        assert second.updated_at == first.updated_at
        assert len(iris.requests) == requests

    async def test_timeout_leaves_attesting(self, ledger, registry, adapters, sleeper):
        burned(ledger)
        iris = FakeIris(["pending_confirmations"])
        step = AttestStep(
            ledger, registry, adapters, iris.client(), RetryPolicy(max_attempts=3, interval_ms=0), sleeper
        )
        record = await step.execute("bridge_test")

        assert record.status is BridgeStatus.ATTESTING
        assert record.attestation is None
        # one V2 lookup plus one V1 fallback per attempt
        assert len([r for r in iris.requests if r.url.path.startswith("/v2/")]) == 3
        assert ledger.get("bridge_test").status is BridgeStatus.ATTESTING


class TestMintStep:
    async def test_requires_attestation(self, ledger, registry, adapters):
        burned(ledger)
        with pytest.raises(StepPreconditionError, match="must wait for attestation"):
            await MintStep(ledger, registry, adapters).execute("bridge_test")
        assert adapters(DEST).submitted("mint") == []

    async def test_mints_on_destination(self, ledger, registry, adapters):
        burned(ledger, attestation=SAMPLE_ATTESTATION)
        record = await MintStep(ledger, registry, adapters).execute("bridge_test")

        [(_, call)] = adapters(DEST).submitted("mint")
        assert call == {"message": "0x0102", "attestation": SAMPLE_ATTESTATION}
        assert adapters(SOURCE).submitted("mint") == []
        assert record.status is BridgeStatus.COMPLETE
        assert record.mint_tx_hash is not None
        assert record.minted_at is not None

    async def test_second_run_is_noop(self, ledger, registry, adapters):
        burned(ledger, attestation=SAMPLE_ATTESTATION)
        step = MintStep(ledger, registry, adapters)
        first = await step.execute("bridge_test")
        second = await step.execute("bridge_test")

        assert second.model_dump() == first.model_dump()
        assert second.updated_at == first.updated_at
        assert len(adapters(DEST).submitted("mint")) == 1

    async def test_reverted_mint_raises(self, ledger, registry):
        adapters = FakeAdapters(registry, fail={"mint"})
        burned(ledger, attestation=SAMPLE_ATTESTATION)
        with pytest.raises(TransactionFailedError):
            await MintStep(ledger, registry, adapters).execute("bridge_test")
        assert ledger.get("bridge_test").status is BridgeStatus.MINTING
