"""CCTP message helpers: bytes32 address encoding and MessageSent log extraction."""

import structlog
from eth_abi import decode
from eth_abi.exceptions import DecodingError
from web3 import Web3

from cctp_bridge.modules.chains.schemas import SentMessage, TxReceipt

logger = structlog.get_logger()

MESSAGE_SENT_TOPIC = Web3.to_hex(Web3.keccak(text="MessageSent(bytes)"))

# bytes32(0): any address may call receiveMessage on the destination
ANY_DESTINATION_CALLER = b"\x00" * 32


def address_to_bytes32(address: str) -> bytes:
    """Left-pad a 20-byte EVM address to the 32-byte form CCTP uses for recipients."""
    raw = Web3.to_bytes(hexstr=address)
    if len(raw) != 20:
        raise ValueError(f"Not a 20-byte address: {address}")
    return raw.rjust(32, b"\x00")


def extract_message_sent(receipt: TxReceipt, message_transmitter: str) -> SentMessage | None:
    """Find the MessageSent(bytes) log emitted by the given transmitter contract."""
    for log in receipt.logs:
        if log.address.lower() != message_transmitter.lower():
            continue
        if not log.topics or log.topics[0].lower() != MESSAGE_SENT_TOPIC:
            continue
        try:
            (message,) = decode(["bytes"], Web3.to_bytes(hexstr=log.data))
        except (DecodingError, ValueError) as exc:
            logger.warning("chains.message_sent_undecodable", tx_hash=receipt.tx_hash, error=str(exc))
            continue
        return SentMessage(message=Web3.to_hex(message), message_hash=Web3.to_hex(Web3.keccak(message)))
    return None
