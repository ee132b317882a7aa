"""
Contract Event Indexer - Main Entrypoint.

Single-process asyncio runner: subscribes to one contract's logs over a
WebSocket node endpoint, decodes Transfer / Approval events and stores them
through an idempotent SQL sink.

Exit status:
    0 - clean shutdown (SIGINT / SIGTERM)
    1 - configuration error, storage unavailable, or resubscription exhausted

Usage:
    RPC_URL=wss://... CONTRACT_ADDRESS=0x... DB_CONN_STR=postgresql://... python main.py
"""

from __future__ import annotations

import asyncio
import signal
import sys

from dotenv import load_dotenv

from config.loader import load_settings
from config.validate import ConfigValidationError, validate_all_configs
from indexer_logging.logger_manager import create_module_log_directories, setup_module_logger

_logger = setup_module_logger("main", "main.log", module_folder="Main_Logs")


# ---------------------------------------------------------------------------
# Startup banner
# ---------------------------------------------------------------------------


def _log_banner(rpc_url: str, contract_address: str, topics: list[str]) -> None:
    """Log a concise startup summary."""
    _logger.info("=" * 60)
    _logger.info("Contract event indexer starting")
    _logger.info("=" * 60)
    _logger.info(
        "  rpc             : %s...%s", rpc_url[:25], rpc_url[-6:] if len(rpc_url) > 31 else ""
    )
    _logger.info("  contract        : %s", contract_address)
    for topic in topics:
        _logger.info("  topic           : %s", topic)
    _logger.info("=" * 60)


# ---------------------------------------------------------------------------
# Main async entry
# ---------------------------------------------------------------------------


async def _run() -> int:
    """Wire the pipeline and run the subscription loop until stop or failure."""
    # ------------------------------------------------------------------
    # 1. Load environment and validate configuration
    # ------------------------------------------------------------------
    load_dotenv()

    try:
        settings = load_settings()
        validate_all_configs(settings)
    except ConfigValidationError as exc:
        _logger.critical("Config validation failed:\n%s", exc)
        return 1

    from core.registry import REGISTRY
    from core.subscription import ResubscriptionExhaustedError, SubscriptionLoop
    from data.log_source import WebSocketLogSource
    from storage.event_store import EventStoreError, SqlEventStore

    _log_banner(settings.rpc_url, settings.contract_address, REGISTRY.topic_hashes())

    # ------------------------------------------------------------------
    # 2. Initialize collaborators
    # ------------------------------------------------------------------
    try:
        event_store = SqlEventStore(settings.db_conn_str)
    except EventStoreError as exc:
        _logger.critical("Cannot open event store: %s", exc)
        return 1

    log_source = WebSocketLogSource(settings.rpc_url)
    subscription_loop = SubscriptionLoop(log_source, event_store, settings.contract_address)

    # ------------------------------------------------------------------
    # 3. Signal handling for graceful shutdown
    # ------------------------------------------------------------------
    loop = asyncio.get_running_loop()

    def _handle_signal(sig: signal.Signals) -> None:
        _logger.info("Received %s - initiating graceful shutdown", sig.name)
        subscription_loop.stop()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _handle_signal, sig)

    # ------------------------------------------------------------------
    # 4. Run until stopped or failed
    # ------------------------------------------------------------------
    try:
        await subscription_loop.run()
    except ResubscriptionExhaustedError as exc:
        _logger.critical("Log subscription permanently failed: %s", exc)
        return 1
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)
        event_store.close()
        _logger.info("Shutdown complete")

    return 0


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------


def main() -> int:
    """Synchronous entry point."""
    create_module_log_directories()
    try:
        return asyncio.run(_run())
    except KeyboardInterrupt:
        _logger.info("Interrupted by user")
        return 0


if __name__ == "__main__":
    sys.exit(main())
