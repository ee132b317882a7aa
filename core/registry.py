"""
Event signature registry for the contract event indexer.

Pre-computed Keccak-256 hashes of the monitored event signatures, used for
O(1) event identification and as the topic[0] filter of the log
subscription. Built once at import time and read-only afterwards.

Usage:
    from core.registry import REGISTRY

    kind = REGISTRY.signature_of(raw_log.topics[0])
"""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping

from web3 import Web3

from shared.constants import EVENT_SIGNATURES
from shared.types import EventKind


@dataclass(frozen=True)
class EventSignature:
    kind: EventKind
    signature: str  # e.g. "Transfer(address,address,uint256)"
    topic: str  # 0x-prefixed lowercase keccak hash
    indexed_types: tuple[str, ...]
    data_types: tuple[str, ...]

    @property
    def topic_count(self) -> int:
        """Expected number of topics: signature hash + indexed params."""
        return 1 + len(self.indexed_types)


def compute_topic(signature: str) -> str:
    """Keccak-256 of a canonical event signature as 0x-prefixed lowercase hex."""
    return Web3.to_hex(Web3.keccak(text=signature)).lower()


def _normalize_topic(topic_hash: bytes | str) -> str:
    if isinstance(topic_hash, (bytes, bytearray)):
        return "0x" + bytes(topic_hash).hex()
    topic_hash = topic_hash.lower()
    if not topic_hash.startswith("0x"):
        topic_hash = "0x" + topic_hash
    return topic_hash


class EventRegistry:
    """Immutable topic hash -> event signature table."""

    def __init__(self, signatures: Mapping[str, tuple[str, tuple[str, ...], tuple[str, ...]]]) -> None:
        by_kind: dict[EventKind, EventSignature] = {}
        by_topic: dict[str, EventSignature] = {}
        for name, (signature, indexed_types, data_types) in signatures.items():
            entry = EventSignature(
                kind=EventKind(name),
                signature=signature,
                topic=compute_topic(signature),
                indexed_types=tuple(indexed_types),
                data_types=tuple(data_types),
            )
            by_kind[entry.kind] = entry
            by_topic[entry.topic] = entry
        self._by_kind = MappingProxyType(by_kind)
        self._by_topic = MappingProxyType(by_topic)

    def signature_of(self, topic_hash: bytes | str) -> EventKind | None:
        """Return the event kind for a topic[0] hash, or None if not monitored."""
        entry = self._by_topic.get(_normalize_topic(topic_hash))
        return entry.kind if entry is not None else None

    def lookup(self, topic_hash: bytes | str) -> EventSignature | None:
        return self._by_topic.get(_normalize_topic(topic_hash))

    def get(self, kind: EventKind) -> EventSignature:
        return self._by_kind[kind]

    def topic_hashes(self) -> list[str]:
        """All monitored topic hashes, for the subscription filter."""
        return [entry.topic for entry in self._by_kind.values()]

    def __len__(self) -> int:
        return len(self._by_kind)


REGISTRY = EventRegistry(EVENT_SIGNATURES)

TRANSFER_TOPIC = REGISTRY.get(EventKind.TRANSFER).topic
APPROVAL_TOPIC = REGISTRY.get(EventKind.APPROVAL).topic
