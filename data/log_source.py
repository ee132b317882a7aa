"""
WebSocket log source for the contract event indexer.

Connects to an Ethereum-compatible node via WebSocket and opens an
eth_subscribe("logs", filter) subscription for one contract address and the
monitored event topics. Each subscription owns its own connection; a reader
task pushes parsed logs onto `logs` and any termination onto `errors`.

Usage:
    source = WebSocketLogSource("wss://node.example/ws")
    sub = await source.subscribe(contract_address, REGISTRY.topic_hashes())
    raw_log = await sub.logs.get()
    await sub.unsubscribe()
"""

from __future__ import annotations

import asyncio
import contextlib
import itertools
import json
from typing import Any

import websockets
from hexbytes import HexBytes
from web3 import Web3

from config.loader import get_config
from core.subscription import SubscriptionError
from indexer_logging.logger_manager import setup_module_logger
from shared.types import RawLog

_request_ids = itertools.count(1)


# ============================================================================
# JSON-RPC HELPERS
# ============================================================================


def _to_int(value: Any) -> int:
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        return int(value, 16) if value.startswith("0x") else int(value)
    raise ValueError(f"Cannot convert {value!r} to int")


def parse_rpc_log(payload: dict[str, Any]) -> RawLog:
    """
    Convert a JSON-RPC log object into a RawLog.

    Args:
        payload: Log dict with 'address', 'topics', 'data', 'blockNumber',
            'transactionHash' and optionally 'logIndex' / 'removed'.

    Raises:
        KeyError: if a required field is missing.
        ValueError: if a field cannot be parsed.
    """
    return RawLog(
        address=str(payload["address"]).lower(),
        topics=tuple(bytes(HexBytes(topic)) for topic in payload.get("topics", [])),
        data=bytes(HexBytes(payload.get("data") or "0x")),
        block_number=_to_int(payload["blockNumber"]),
        tx_hash=str(payload["transactionHash"]).lower(),
        log_index=_to_int(payload.get("logIndex", 0)),
        removed=bool(payload.get("removed", False)),
    )


def build_subscription_request(address: str, topics: list[str], request_id: int) -> dict[str, Any]:
    """
    Build the eth_subscribe JSON-RPC payload for the contract's logs.

    topic[0] may match any of the monitored event signatures.
    """
    return {
        "jsonrpc": "2.0",
        "id": request_id,
        "method": "eth_subscribe",
        "params": [
            "logs",
            {
                "address": Web3.to_checksum_address(address),
                "topics": [list(topics)],
            },
        ],
    }


# ============================================================================
# SUBSCRIPTION
# ============================================================================


class WebSocketSubscription:
    """One eth_subscribe subscription bound to its own WebSocket connection."""

    def __init__(self, ws: Any, subscription_id: str, queue_size: int = 0, logger=None) -> None:
        self._ws = ws
        self.subscription_id = subscription_id
        self.logs: asyncio.Queue[RawLog] = asyncio.Queue(maxsize=queue_size)
        self.errors: asyncio.Queue[Exception] = asyncio.Queue()
        self._logger = logger or setup_module_logger(
            "log_source", "log_source.log", module_folder="Log_Source_Logs"
        )
        self._closed = False
        self._reader = asyncio.create_task(self._read_loop(), name=f"log_reader:{subscription_id}")

    async def _read_loop(self) -> None:
        try:
            async for raw_message in self._ws:
                try:
                    message = json.loads(raw_message)
                except json.JSONDecodeError as e:
                    self._logger.warning("Invalid JSON message: %s", e)
                    continue

                if not isinstance(message, dict):
                    self._logger.warning("Ignoring non-object message: %.100s", raw_message)
                    continue
                if message.get("method") != "eth_subscription":
                    continue
                params = message.get("params")
                if not isinstance(params, dict):
                    self._logger.warning("Ignoring notification without params object")
                    continue
                if params.get("subscription") != self.subscription_id:
                    continue

                log_data = params.get("result")
                if not log_data:
                    continue
                try:
                    raw_log = parse_rpc_log(log_data)
                except (KeyError, ValueError, TypeError) as e:
                    self._logger.warning("Unparsable log notification: %s", e)
                    continue
                await self.logs.put(raw_log)

            # Iterator ends on a clean close
            if not self._closed:
                self.errors.put_nowait(SubscriptionError("WebSocket connection closed by node"))
        except asyncio.CancelledError:
            raise
        except websockets.exceptions.ConnectionClosed as e:
            if not self._closed:
                self._logger.warning("Connection closed: %s", e)
                self.errors.put_nowait(SubscriptionError(f"WebSocket connection closed: {e}"))
        except Exception as e:
            self._logger.error("Reader failed: %s", e)
            self.errors.put_nowait(SubscriptionError(f"Log reader failed: {e}"))

    async def unsubscribe(self) -> None:
        """Stop reading, cancel the node-side subscription and close the socket."""
        if self._closed:
            return
        self._closed = True

        self._reader.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._reader

        try:
            await self._ws.send(
                json.dumps(
                    {
                        "jsonrpc": "2.0",
                        "id": next(_request_ids),
                        "method": "eth_unsubscribe",
                        "params": [self.subscription_id],
                    }
                )
            )
        except Exception as e:
            self._logger.debug("eth_unsubscribe not sent: %s", e)
        await self._ws.close()
        self._logger.info("Unsubscribed %s", self.subscription_id)


# ============================================================================
# SOURCE
# ============================================================================


class WebSocketLogSource:
    """Opens log subscriptions against a node's WebSocket endpoint."""

    def __init__(self, ws_url: str) -> None:
        self._ws_url = ws_url

        ws_cfg = get_config().get_websocket_config()
        conn_cfg = ws_cfg.get("connection", {})
        timeout_cfg = ws_cfg.get("timeouts", {})

        self._open_timeout: float = conn_cfg.get("open_timeout_seconds", 10)
        self._ping_interval: float = conn_cfg.get("ping_interval_seconds", 20)
        self._ping_timeout: float = conn_cfg.get("ping_timeout_seconds", 30)
        self._close_timeout: float = conn_cfg.get("close_timeout_seconds", 10)
        self._max_size: int = conn_cfg.get("max_message_bytes", 10 * 1024 * 1024)
        self._queue_size: int = conn_cfg.get("queue_size", 1024)
        self._subscription_timeout: float = timeout_cfg.get(
            "subscription_response_timeout_seconds", 15.0
        )

        self._logger = setup_module_logger(
            "log_source", "log_source.log", module_folder="Log_Source_Logs"
        )

    async def subscribe(self, address: str, topics: list[str]) -> WebSocketSubscription:
        """
        Open a connection and subscribe to the contract's logs.

        Raises:
            SubscriptionError: if the connection, request, or confirmation fails.
        """
        self._logger.info("Connecting to %s...", self._ws_url)
        try:
            ws = await asyncio.wait_for(
                websockets.connect(
                    self._ws_url,
                    open_timeout=self._open_timeout,
                    ping_interval=self._ping_interval,
                    ping_timeout=self._ping_timeout,
                    close_timeout=self._close_timeout,
                    max_size=self._max_size,
                ),
                timeout=self._open_timeout,
            )
        except asyncio.TimeoutError as e:
            raise SubscriptionError(f"Connection to {self._ws_url} timed out") from e
        except (OSError, websockets.exceptions.WebSocketException) as e:
            raise SubscriptionError(f"Connection to {self._ws_url} failed: {e}") from e

        try:
            subscription_id = await self._request_subscription(ws, address, topics)
        except BaseException:
            with contextlib.suppress(Exception):
                await ws.close()
            raise

        self._logger.info(
            "Subscribed. Subscription ID: %s", subscription_id, extra={"subscription_id": subscription_id}
        )
        return WebSocketSubscription(
            ws, subscription_id, queue_size=self._queue_size, logger=self._logger
        )

    async def _request_subscription(self, ws: Any, address: str, topics: list[str]) -> str:
        request_id = next(_request_ids)
        request = build_subscription_request(address, topics, request_id)
        try:
            await ws.send(json.dumps(request))
            # Skip anything that is not the reply to our request
            while True:
                response = await asyncio.wait_for(ws.recv(), timeout=self._subscription_timeout)
                response_data = json.loads(response)
                if response_data.get("id") == request_id:
                    break
        except asyncio.TimeoutError as e:
            raise SubscriptionError("Subscription response timed out") from e
        except json.JSONDecodeError as e:
            raise SubscriptionError(f"Invalid subscription response: {e}") from e
        except websockets.exceptions.WebSocketException as e:
            raise SubscriptionError(f"Subscription request failed: {e}") from e

        if "error" in response_data:
            raise SubscriptionError(f"Subscription rejected: {response_data['error']}")
        subscription_id = response_data.get("result")
        if not subscription_id:
            raise SubscriptionError(f"Subscription response has no id: {response_data}")
        return str(subscription_id)
