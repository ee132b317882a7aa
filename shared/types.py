"""
Shared data types for the contract event indexer.

Centralized dataclasses and enums used across all modules.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Union

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class EventKind(Enum):
    TRANSFER = "Transfer"
    APPROVAL = "Approval"


class LoopState(Enum):
    IDLE = "idle"  # constructed, run() not started
    SUBSCRIBED = "subscribed"
    RESUBSCRIBING = "resubscribing"
    FAILED = "failed"  # terminal, retries exhausted
    STOPPED = "stopped"  # terminal, cooperative shutdown


# ---------------------------------------------------------------------------
# Raw node data
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RawLog:
    """A log record as delivered by the node for the monitored contract."""

    address: str  # lowercase hex
    topics: tuple[bytes, ...]  # topics[0] = event signature hash
    data: bytes  # ABI-encoded non-indexed params
    block_number: int
    tx_hash: str
    log_index: int = 0
    removed: bool = False  # True when the node retracts the log after a reorg


# ---------------------------------------------------------------------------
# Decoded events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TransferEvent:
    from_address: str
    to_address: str
    value: int
    block_number: int
    tx_hash: str

    @property
    def kind(self) -> EventKind:
        return EventKind.TRANSFER


@dataclass(frozen=True)
class ApprovalEvent:
    owner: str
    spender: str
    value: int
    block_number: int
    tx_hash: str

    @property
    def kind(self) -> EventKind:
        return EventKind.APPROVAL


DecodedEvent = Union[TransferEvent, ApprovalEvent]


# ---------------------------------------------------------------------------
# Loop bookkeeping
# ---------------------------------------------------------------------------


@dataclass
class LoopStats:
    """Counters maintained by the subscription loop."""

    received: int = 0
    saved: int = 0
    skipped: int = 0  # unknown or malformed logs
    removed: int = 0  # reorg retractions ignored
    sink_failures: int = 0
    resubscriptions: int = 0
    last_block: int | None = field(default=None)
