"""
Shared pytest configuration and fixtures for the contract event indexer tests.

Provides log builders and in-memory fakes for the log source and subscription.
"""

from __future__ import annotations

import asyncio

import pytest

from shared.types import RawLog

# ---------------------------------------------------------------------------
# Well-known values
# ---------------------------------------------------------------------------

TRANSFER_SIG = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"
APPROVAL_SIG = "0x8c5be1e5ebec7d5bd14f71427d1e84f3dd0314c0f7b2291e5b200ac8c7c3b925"

SAMPLE_CONTRACT = "0x1234567890abcdef1234567890abcdef12345678"
ADDR_A = "0x" + "11" * 20
ADDR_B = "0x" + "22" * 20
SAMPLE_TX = "0x" + "ab" * 32

FAST_RECONNECT = {
    "max_attempts": 3,
    "base_delay_seconds": 0,
    "max_delay_seconds": 0,
    "jitter_max_seconds": 0,
}


# ---------------------------------------------------------------------------
# ABI helpers
# ---------------------------------------------------------------------------


def pad_address(address: str) -> bytes:
    """Left-pad a 20-byte address into a 32-byte topic word."""
    return bytes(12) + bytes.fromhex(address[2:])


def encode_uint(value: int) -> bytes:
    return value.to_bytes(32, "big")


def make_raw_log(
    topic0: str = TRANSFER_SIG,
    first: str = ADDR_A,
    second: str = ADDR_B,
    value: int = 1000,
    block_number: int = 100,
    tx_hash: str = SAMPLE_TX,
    topics: tuple[bytes, ...] | None = None,
    data: bytes | None = None,
    removed: bool = False,
) -> RawLog:
    if topics is None:
        topics = (bytes.fromhex(topic0[2:]), pad_address(first), pad_address(second))
    if data is None:
        data = encode_uint(value)
    return RawLog(
        address=SAMPLE_CONTRACT,
        topics=topics,
        data=data,
        block_number=block_number,
        tx_hash=tx_hash,
        removed=removed,
    )


# ---------------------------------------------------------------------------
# In-memory collaborators
# ---------------------------------------------------------------------------


class FakeSubscription:
    def __init__(self) -> None:
        self.logs: asyncio.Queue = asyncio.Queue()
        self.errors: asyncio.Queue = asyncio.Queue()
        self.unsubscribe_calls = 0

    async def unsubscribe(self) -> None:
        self.unsubscribe_calls += 1


class FakeLogSource:
    """
    Returns queued outcomes from subscribe(): a FakeSubscription or an
    exception to raise. Creates a fresh subscription once the script runs out.
    """

    def __init__(self, outcomes: list | None = None) -> None:
        self._outcomes = list(outcomes or [])
        self.calls: list[tuple[str, list[str]]] = []
        self.subscriptions: list[FakeSubscription] = []

    async def subscribe(self, address: str, topics: list[str]) -> FakeSubscription:
        self.calls.append((address, topics))
        outcome = self._outcomes.pop(0) if self._outcomes else FakeSubscription()
        if isinstance(outcome, BaseException):
            raise outcome
        self.subscriptions.append(outcome)
        return outcome


async def wait_until(predicate, timeout: float = 2.0) -> None:
    """Poll predicate until true or fail the test after timeout seconds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.01)


@pytest.fixture
def fake_subscription():
    return FakeSubscription()
