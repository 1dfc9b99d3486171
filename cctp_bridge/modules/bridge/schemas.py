"""Bridge record schema — one record per bridge attempt, persisted in the ledger."""

import time
import uuid
from datetime import datetime
from decimal import Decimal, InvalidOperation

from pydantic import BaseModel, ConfigDict, model_validator

from cctp_bridge.core.config import USDC_DECIMALS
from cctp_bridge.core.errors import AmountError
from cctp_bridge.models.enums import BridgeStatus
from cctp_bridge.modules.bridge.state import status_rank

# Fields that may be set once and never cleared or changed afterwards.
# burn_message is excluded: the attestation service may return a canonical copy.
WRITE_ONCE_FIELDS: tuple[str, ...] = (
    "approve_tx_hash",
    "burn_tx_hash",
    "burn_message_hash",
    "attestation",
    "mint_tx_hash",
)

# Fields that must be populated once status reaches the given point
_REQUIRED_BY_STATUS: tuple[tuple[BridgeStatus, tuple[str, ...]], ...] = (
    (BridgeStatus.BURNED, ("burn_tx_hash", "burn_message", "burn_message_hash")),
    (BridgeStatus.ATTESTED, ("attestation",)),
    (BridgeStatus.COMPLETE, ("mint_tx_hash",)),
)


def to_base_units(amount: Decimal | str | int) -> int:
    """Scale a human USDC amount to 6-decimal base units, rejecting any precision loss."""
    try:
        value = Decimal(str(amount).strip())
    except InvalidOperation:
        raise AmountError(f"Invalid amount: {amount!r}") from None
    if not value.is_finite() or value <= 0:
        raise AmountError(f"Amount must be a positive number, got {amount!r}")
    scaled = value.scaleb(USDC_DECIMALS)
    if scaled != scaled.to_integral_value():
        raise AmountError(f"Amount {amount} has more than {USDC_DECIMALS} decimal places")
    return int(scaled)


def from_base_units(units: int) -> Decimal:
    return Decimal(units).scaleb(-USDC_DECIMALS)


def generate_bridge_id() -> str:
    """Time-ordered, collision-resistant id, e.g. bridge_1718000000000_3f9a1c2b7."""
    return f"bridge_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


class BridgeRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    bridge_id: str
    status: BridgeStatus = BridgeStatus.PENDING
    source_chain: str
    destination_chain: str
    amount: Decimal
    amount_base_units: int
    wallet_address: str
    recipient_address: str | None = None

    approve_tx_hash: str | None = None
    burn_tx_hash: str | None = None
    burn_message: str | None = None
    burn_message_hash: str | None = None
    attestation: str | None = None
    mint_tx_hash: str | None = None
    error: str | None = None

    created_at: datetime
    updated_at: datetime
    approved_at: datetime | None = None
    burned_at: datetime | None = None
    attested_at: datetime | None = None
    minted_at: datetime | None = None

    @model_validator(mode="after")
    def _check_amount_scaling(self) -> "BridgeRecord":
        if to_base_units(self.amount) != self.amount_base_units:
            raise ValueError(
                f"amount_base_units {self.amount_base_units} does not match amount {self.amount}"
            )
        return self

    @model_validator(mode="after")
    def _check_status_fields(self) -> "BridgeRecord":
        rank = status_rank(self.status)
        if rank is None:
            return self
        for threshold, fields in _REQUIRED_BY_STATUS:
            if rank < status_rank(threshold):
                continue
            missing = [f for f in fields if getattr(self, f) is None]
            if missing:
                raise ValueError(f"status {self.status.value} requires {', '.join(missing)}")
        return self

    @property
    def mint_recipient(self) -> str:
        return self.recipient_address or self.wallet_address

    @property
    def is_terminal(self) -> bool:
        return self.status in (BridgeStatus.COMPLETE, BridgeStatus.FAILED)
