"""
Log decoder for the contract event indexer.

Maps a RawLog to a typed TransferEvent / ApprovalEvent using the signature
registry. Indexed addresses are read from the low-order 20 bytes of their
topic word; the uint256 value is ABI-decoded from the 32-byte payload.

Usage:
    from core.decoder import DecodeError, decode

    try:
        event = decode(raw_log)
    except DecodeError:
        ...  # skip the log
"""

from __future__ import annotations

from eth_abi.abi import decode as abi_decode

from core.registry import REGISTRY, EventRegistry
from shared.constants import ADDRESS_SIZE_BYTES, WORD_SIZE_BYTES
from shared.types import ApprovalEvent, DecodedEvent, EventKind, RawLog, TransferEvent


class DecodeError(ValueError):
    """Base error for logs that cannot be turned into a monitored event."""


class UnknownEventError(DecodeError):
    """topic[0] is missing or not a registered event signature."""


class MalformedTopicsError(DecodeError):
    """Topic count or topic width does not match the event's indexed params."""


class MalformedPayloadError(DecodeError):
    """Payload length does not match the event's non-indexed params."""


def topic_to_address(topic: bytes) -> str:
    """Extract an address from the low-order 20 bytes of a 32-byte topic word."""
    return "0x" + bytes(topic[-ADDRESS_SIZE_BYTES:]).hex()


def decode(raw_log: RawLog, registry: EventRegistry = REGISTRY) -> DecodedEvent:
    """
    Decode a raw log into a structured event.

    Args:
        raw_log: Log record from the node.
        registry: Signature table (defaults to the process-wide registry).

    Returns:
        TransferEvent or ApprovalEvent stamped with block number and tx hash.

    Raises:
        UnknownEventError, MalformedTopicsError, MalformedPayloadError.
    """
    topics = raw_log.topics
    if not topics:
        raise UnknownEventError(f"log in tx {raw_log.tx_hash} has no topics")

    entry = registry.lookup(topics[0])
    if entry is None:
        raise UnknownEventError(f"unrecognized topic0 {_hex(topics[0])} in tx {raw_log.tx_hash}")

    if len(topics) != entry.topic_count:
        raise MalformedTopicsError(
            f"{entry.kind.value} expects {entry.topic_count} topics, got {len(topics)} "
            f"(tx {raw_log.tx_hash})"
        )
    for topic in topics[1:]:
        if len(topic) != WORD_SIZE_BYTES:
            raise MalformedTopicsError(
                f"{entry.kind.value} indexed topic is {len(topic)} bytes, expected {WORD_SIZE_BYTES} "
                f"(tx {raw_log.tx_hash})"
            )

    expected_payload = WORD_SIZE_BYTES * len(entry.data_types)
    if len(raw_log.data) != expected_payload:
        raise MalformedPayloadError(
            f"{entry.kind.value} expects {expected_payload} payload bytes, got {len(raw_log.data)} "
            f"(tx {raw_log.tx_hash})"
        )

    first = topic_to_address(topics[1])
    second = topic_to_address(topics[2])
    (value,) = abi_decode(list(entry.data_types), bytes(raw_log.data))

    if entry.kind is EventKind.TRANSFER:
        return TransferEvent(
            from_address=first,
            to_address=second,
            value=value,
            block_number=raw_log.block_number,
            tx_hash=raw_log.tx_hash,
        )
    return ApprovalEvent(
        owner=first,
        spender=second,
        value=value,
        block_number=raw_log.block_number,
        tx_hash=raw_log.tx_hash,
    )


def _hex(value: bytes | str) -> str:
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    return value
