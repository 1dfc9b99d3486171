"""Attestation service response shapes."""

from pydantic import BaseModel

COMPLETE = "complete"


class AttestationResult(BaseModel):
    """One lookup against Circle's Iris API.

    message is only returned by the V2 endpoint; the V1 endpoint is keyed by
    message hash and returns the attestation alone.
    """

    status: str
    attestation: str | None = None
    message: str | None = None
    source: str = "v2"

    @property
    def is_complete(self) -> bool:
        return self.status == COMPLETE and bool(self.attestation)
