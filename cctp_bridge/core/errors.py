"""Bridge error taxonomy.

ConfigurationError is raised before any ledger mutation and is never recorded
as FAILED. Everything else raised from a step is converted by the orchestrator
into status=FAILED plus the error text.
"""


class BridgeError(Exception):
    """Base class for all bridge errors."""


class ConfigurationError(BridgeError):
    """Missing credential, unknown chain key or invalid setting."""


class AmountError(BridgeError, ValueError):
    """Amount is non-positive or not representable in USDC base units."""


class BridgeNotFoundError(BridgeError):
    def __init__(self, bridge_id: str) -> None:
        super().__init__(f"Bridge {bridge_id} not found")
        self.bridge_id = bridge_id


class StepPreconditionError(BridgeError):
    """A step was invoked before the phase it depends on completed."""


class TransactionFailedError(BridgeError):
    """Transaction reverted or was not included successfully."""

    def __init__(self, message: str, chain: str | None = None, tx_hash: str | None = None) -> None:
        super().__init__(message)
        self.chain = chain
        self.tx_hash = tx_hash


class MessageExtractionError(BridgeError):
    """Burn succeeded but its MessageSent log could not be found."""


class LedgerError(BridgeError):
    """Ledger write failed."""


class WriteOnceViolationError(LedgerError):
    def __init__(self, bridge_id: str, field: str) -> None:
        super().__init__(f"Bridge {bridge_id}: field '{field}' is already set and cannot change")
        self.bridge_id = bridge_id
        self.field = field
