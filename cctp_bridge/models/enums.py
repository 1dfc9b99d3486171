"""Bridge lifecycle enums."""

import enum


class BridgeStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVING = "approving"
    APPROVED = "approved"
    BURNING = "burning"
    BURNED = "burned"
    ATTESTING = "attesting"
    ATTESTED = "attested"
    MINTING = "minting"
    COMPLETE = "complete"
    FAILED = "failed"


class BridgePhase(str, enum.Enum):
    APPROVE = "approve"
    BURN = "burn"
    ATTEST = "attest"
    MINT = "mint"


class BackoffStrategy(str, enum.Enum):
    FIXED = "fixed"
    EXPONENTIAL = "exponential"
