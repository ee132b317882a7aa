"""
Log subscription loop for the contract event indexer.

Owns the long-lived log subscription for one contract: waits on the first of
{raw log, subscription error, stop signal}, decodes each log, hands decoded
events to the sink, and re-establishes the subscription with capped
exponential backoff when the node reports an error.

Usage:
    loop = SubscriptionLoop(log_source, event_store, contract_address)
    task = asyncio.create_task(loop.run())
    ...
    loop.stop()
"""

from __future__ import annotations

import asyncio
import random
from typing import Protocol

from config.loader import get_config
from core.decoder import DecodeError, UnknownEventError, decode
from core.registry import REGISTRY
from indexer_logging.logger_manager import setup_module_logger
from shared.types import (
    ApprovalEvent,
    DecodedEvent,
    LoopState,
    LoopStats,
    RawLog,
    TransferEvent,
)

# ---------------------------------------------------------------------------
# Collaborator contracts
# ---------------------------------------------------------------------------


class Subscription(Protocol):
    """One subscription epoch: its log stream, its error stream, and teardown."""

    logs: asyncio.Queue[RawLog]
    errors: asyncio.Queue[Exception]

    async def unsubscribe(self) -> None: ...


class LogSource(Protocol):
    async def subscribe(self, address: str, topics: list[str]) -> Subscription: ...


class EventSink(Protocol):
    def save_event(
        self,
        block_number: int,
        tx_hash: str,
        event_type: str,
        from_address: str | None,
        to_address: str | None,
        owner: str | None,
        spender: str | None,
        value: int,
    ) -> None: ...


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class SubscriptionError(Exception):
    """The log stream terminated or could not be established."""


class ResubscriptionExhaustedError(Exception):
    """Raised when every resubscription attempt in the retry budget failed."""

    def __init__(self, attempts: int, last_error: BaseException | None) -> None:
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Resubscription failed after {attempts} attempts: {last_error}")


# ---------------------------------------------------------------------------
# Loop
# ---------------------------------------------------------------------------


class SubscriptionLoop:
    """
    Single-consumer ingestion loop.

    States:
        SUBSCRIBED     - draining the current subscription's log and error queues
        RESUBSCRIBING  - previous subscription released, requesting a new one
        FAILED         - retry budget exhausted (terminal, error raised)
        STOPPED        - stop() requested (terminal, normal return)
    """

    def __init__(
        self,
        log_source: LogSource,
        sink: EventSink,
        contract_address: str,
    ) -> None:
        self._log_source = log_source
        self._sink = sink
        self._contract_address = contract_address
        self._topics = REGISTRY.topic_hashes()

        reconnect_cfg = get_config().get_websocket_config().get("reconnection", {})
        self._max_attempts: int = reconnect_cfg.get("max_attempts", 10)
        self._base_delay: float = reconnect_cfg.get("base_delay_seconds", 2)
        self._max_delay: float = reconnect_cfg.get("max_delay_seconds", 60)
        self._jitter_max: float = reconnect_cfg.get("jitter_max_seconds", 1.0)

        self._stop_event = asyncio.Event()
        self._subscription: Subscription | None = None
        self._state = LoopState.IDLE
        self.stats = LoopStats()

        self._logger = setup_module_logger(
            "subscription", "subscription.log", module_folder="Subscription_Logs"
        )

    @property
    def state(self) -> LoopState:
        return self._state

    def stop(self) -> None:
        """Request cooperative shutdown; the loop returns after the current log."""
        self._stop_event.set()

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    async def run(self, subscription: Subscription | None = None) -> None:
        """
        Run until stop() is called or resubscription permanently fails.

        Args:
            subscription: An already-established subscription. When omitted the
                loop subscribes itself, using the same bounded retry policy.

        Raises:
            ResubscriptionExhaustedError: when the retry budget is spent.
        """
        self._logger.info(
            "Subscription loop starting for %s (%d topics)",
            self._contract_address,
            len(self._topics),
        )
        try:
            if subscription is None:
                self._state = LoopState.RESUBSCRIBING
                subscription = await self._subscribe_with_retry()
                if subscription is None:
                    return
            self._subscription = subscription
            self._state = LoopState.SUBSCRIBED

            while not self._stop_event.is_set():
                raw_log, error = await self._next_item(self._subscription)

                if raw_log is not None:
                    await self._handle_log(raw_log)

                if error is not None:
                    self._logger.warning("Subscription error: %s. Resubscribing...", error)
                    self._state = LoopState.RESUBSCRIBING
                    await self._release(self._subscription)
                    self._subscription = None
                    new_subscription = await self._subscribe_with_retry()
                    if new_subscription is None:
                        return
                    self.stats.resubscriptions += 1
                    self._subscription = new_subscription
                    self._state = LoopState.SUBSCRIBED
                    self._logger.info(
                        "Resubscribed (total resubscriptions: %d)", self.stats.resubscriptions
                    )
        finally:
            if self._subscription is not None:
                await self._release(self._subscription)
                self._subscription = None
            if self._state is not LoopState.FAILED:
                self._state = LoopState.STOPPED
            self._logger.info(
                "Subscription loop exited (%s): received=%d saved=%d skipped=%d "
                "sink_failures=%d resubscriptions=%d",
                self._state.value,
                self.stats.received,
                self.stats.saved,
                self.stats.skipped,
                self.stats.sink_failures,
                self.stats.resubscriptions,
            )

    async def _next_item(
        self, subscription: Subscription
    ) -> tuple[RawLog | None, Exception | None]:
        """Wait for the first of: a raw log, a subscription error, or stop."""
        log_task = asyncio.ensure_future(subscription.logs.get())
        error_task = asyncio.ensure_future(subscription.errors.get())
        stop_task = asyncio.ensure_future(self._stop_event.wait())
        waiters = {log_task, error_task, stop_task}
        try:
            await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        finally:
            pending = [task for task in waiters if not task.done()]
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        raw_log = log_task.result() if log_task.done() and not log_task.cancelled() else None
        error = error_task.result() if error_task.done() and not error_task.cancelled() else None
        return raw_log, error

    # ------------------------------------------------------------------
    # Per-log processing
    # ------------------------------------------------------------------

    async def _handle_log(self, raw_log: RawLog) -> None:
        self.stats.received += 1
        log_fields = {"block_number": raw_log.block_number, "tx_hash": raw_log.tx_hash}

        if raw_log.removed:
            self.stats.removed += 1
            self._logger.warning(
                "Ignoring removed log (reorg) block=%d tx=%s index=%d",
                raw_log.block_number,
                raw_log.tx_hash,
                raw_log.log_index,
                extra=log_fields,
            )
            return

        try:
            event = decode(raw_log)
        except UnknownEventError as exc:
            self.stats.skipped += 1
            self._logger.debug("Skipping log: %s", exc, extra=log_fields)
            return
        except DecodeError as exc:
            self.stats.skipped += 1
            self._logger.warning("Skipping malformed log: %s", exc, extra=log_fields)
            return

        try:
            await asyncio.to_thread(self._save, event)
        except Exception as exc:
            self.stats.sink_failures += 1
            self._logger.error(
                "Failed to save %s event block=%d tx=%s: %s",
                event.kind.value,
                event.block_number,
                event.tx_hash,
                exc,
                extra={**log_fields, "event_type": event.kind.value},
            )
            return

        self.stats.saved += 1
        self.stats.last_block = event.block_number
        self._logger.debug(
            "Saved %s block=%d tx=%s value=%d",
            event.kind.value,
            event.block_number,
            event.tx_hash,
            event.value,
        )

    def _save(self, event: DecodedEvent) -> None:
        if isinstance(event, TransferEvent):
            self._sink.save_event(
                event.block_number,
                event.tx_hash,
                event.kind.value,
                event.from_address,
                event.to_address,
                None,
                None,
                event.value,
            )
        elif isinstance(event, ApprovalEvent):
            self._sink.save_event(
                event.block_number,
                event.tx_hash,
                event.kind.value,
                None,
                None,
                event.owner,
                event.spender,
                event.value,
            )
        else:
            raise TypeError(f"Unsupported event type: {type(event).__name__}")

    # ------------------------------------------------------------------
    # Resubscription
    # ------------------------------------------------------------------

    async def _release(self, subscription: Subscription) -> None:
        try:
            await subscription.unsubscribe()
        except Exception as exc:
            self._logger.warning("Error while releasing subscription: %s", exc)

    async def _subscribe_with_retry(self) -> Subscription | None:
        """
        Request a subscription with the monitored filter, retrying with backoff.

        Returns None if stop() is requested while waiting.

        Raises:
            ResubscriptionExhaustedError: after max_attempts consecutive failures.
        """
        last_error: BaseException | None = None
        for attempt in range(1, self._max_attempts + 1):
            if self._stop_event.is_set():
                return None
            try:
                subscription = await self._log_source.subscribe(
                    self._contract_address, list(self._topics)
                )
                self._logger.info(
                    "Subscribed to logs of %s (attempt %d/%d)",
                    self._contract_address,
                    attempt,
                    self._max_attempts,
                )
                return subscription
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                last_error = exc
                if attempt == self._max_attempts:
                    break
                delay = self._backoff_delay(attempt)
                self._logger.warning(
                    "Subscribe attempt %d/%d failed: %s. Retry in %.1fs",
                    attempt,
                    self._max_attempts,
                    exc,
                    delay,
                    extra={"attempt": attempt},
                )
                if await self._wait_for_stop(delay):
                    return None

        self._state = LoopState.FAILED
        self._logger.critical(
            "Exhausted %d subscription attempts. Last error: %s", self._max_attempts, last_error
        )
        raise ResubscriptionExhaustedError(self._max_attempts, last_error)

    def _backoff_delay(self, attempt: int) -> float:
        """Capped exponential backoff with jitter for the given 1-based attempt."""
        jitter = random.uniform(0, self._jitter_max) if self._jitter_max > 0 else 0.0
        return min(self._base_delay * (2 ** (attempt - 1)) + jitter, self._max_delay)

    async def _wait_for_stop(self, delay: float) -> bool:
        """Sleep for delay seconds unless stop() is requested first. Returns True on stop."""
        if delay <= 0:
            return self._stop_event.is_set()
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return False
        return True
