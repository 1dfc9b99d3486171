"""Chain-neutral views of transaction receipts."""

from pydantic import BaseModel, Field


class LogEntry(BaseModel):
    address: str
    topics: list[str] = Field(default_factory=list)  # 0x-prefixed hex
    data: str = "0x"


class TxReceipt(BaseModel):
    tx_hash: str
    success: bool
    block_number: int | None = None
    logs: list[LogEntry] = Field(default_factory=list)


class SentMessage(BaseModel):
    """CCTP message emitted by the burn, and its keccak256 digest."""

    message: str
    message_hash: str
