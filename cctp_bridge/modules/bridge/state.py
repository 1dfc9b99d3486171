"""Bridge state machine — phase order and resume computation.

Forward progress is a total order over statuses; FAILED sits outside it and can
be entered from any non-terminal status. Resume never dispatches on status
alone: the remaining phases are derived from which write-once fields are set,
and each step executor no-ops on a phase that is already complete.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from cctp_bridge.models.enums import BridgePhase, BridgeStatus

if TYPE_CHECKING:
    from cctp_bridge.modules.bridge.schemas import BridgeRecord

STATUS_ORDER: tuple[BridgeStatus, ...] = (
    BridgeStatus.PENDING,
    BridgeStatus.APPROVING,
    BridgeStatus.APPROVED,
    BridgeStatus.BURNING,
    BridgeStatus.BURNED,
    BridgeStatus.ATTESTING,
    BridgeStatus.ATTESTED,
    BridgeStatus.MINTING,
    BridgeStatus.COMPLETE,
)

PHASES: tuple[BridgePhase, ...] = (
    BridgePhase.APPROVE,
    BridgePhase.BURN,
    BridgePhase.ATTEST,
    BridgePhase.MINT,
)

# Status written while a phase is in flight, and once it has completed
PHASE_STATUS: dict[BridgePhase, tuple[BridgeStatus, BridgeStatus]] = {
    BridgePhase.APPROVE: (BridgeStatus.APPROVING, BridgeStatus.APPROVED),
    BridgePhase.BURN: (BridgeStatus.BURNING, BridgeStatus.BURNED),
    BridgePhase.ATTEST: (BridgeStatus.ATTESTING, BridgeStatus.ATTESTED),
    BridgePhase.MINT: (BridgeStatus.MINTING, BridgeStatus.COMPLETE),
}

# Write-once field whose presence marks the phase complete
PHASE_FIELD: dict[BridgePhase, str] = {
    BridgePhase.APPROVE: "approve_tx_hash",
    BridgePhase.BURN: "burn_tx_hash",
    BridgePhase.ATTEST: "attestation",
    BridgePhase.MINT: "mint_tx_hash",
}

_RANK = {status: i for i, status in enumerate(STATUS_ORDER)}


def status_rank(status: BridgeStatus) -> int | None:
    """Position in forward order; None for FAILED."""
    return _RANK.get(status)


def is_phase_complete(record: BridgeRecord, phase: BridgePhase) -> bool:
    # Fields are written in phase order, so a later artifact implies this phase is done
    later = PHASES[PHASES.index(phase):]
    if any(getattr(record, PHASE_FIELD[p]) is not None for p in later):
        return True
    if phase is BridgePhase.APPROVE:
        # Sufficient allowance completes approval without a transaction; approved_at
        # survives a later FAILED status
        if record.approved_at is not None:
            return True
        rank = status_rank(record.status)
        return rank is not None and rank >= _RANK[BridgeStatus.APPROVED]
    return False


def remaining_phases(record: BridgeRecord) -> list[BridgePhase]:
    """Minimal suffix of PHASES still to run, starting at the first incomplete phase."""
    for i, phase in enumerate(PHASES):
        if not is_phase_complete(record, phase):
            return list(PHASES[i:])
    return []


def first_incomplete_phase(record: BridgeRecord) -> BridgePhase | None:
    remaining = remaining_phases(record)
    return remaining[0] if remaining else None
