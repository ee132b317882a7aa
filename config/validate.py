"""
Configuration validation for the contract event indexer.

Validates that the JSON config files contain required keys and that the
deployment settings are usable. Run at startup to fail fast on
misconfiguration.
"""

from typing import TYPE_CHECKING, Any
from urllib.parse import urlparse

from web3 import Web3

from config.loader import get_config

if TYPE_CHECKING:
    from config.loader import IndexerSettings


class ConfigValidationError(ValueError):
    """Raised when a required config value is missing or invalid."""

    pass


def _check_keys(config: dict[str, Any], required_keys: list[str]) -> list[str]:
    """Check that all required keys exist in a config dict. Returns list of missing keys."""
    missing = []
    for key in required_keys:
        parts = key.split(".")
        current = config
        for part in parts:
            if not isinstance(current, dict) or part not in current:
                missing.append(key)
                break
            current = current[part]
    return missing


def validate_websocket_config(config: dict[str, Any]) -> list[str]:
    """Validate websocket.json has required fields."""
    return _check_keys(
        config,
        [
            "connection.open_timeout_seconds",
            "connection.ping_interval_seconds",
            "connection.ping_timeout_seconds",
            "timeouts.subscription_response_timeout_seconds",
            "reconnection.max_attempts",
            "reconnection.base_delay_seconds",
            "reconnection.max_delay_seconds",
        ],
    )


def validate_storage_config(config: dict[str, Any]) -> list[str]:
    """Validate storage.json has required fields."""
    return _check_keys(config, ["table_name"])


def validate_settings(settings: "IndexerSettings") -> list[str]:
    """Check the deployment settings beyond presence. Returns list of problems."""
    problems = []
    scheme = urlparse(settings.rpc_url).scheme.lower()
    if scheme not in ("ws", "wss"):
        problems.append(
            f"RPC_URL must be a ws:// or wss:// endpoint for log subscriptions (got {scheme or 'no scheme'})"
        )
    if not Web3.is_address(settings.contract_address):
        problems.append(f"CONTRACT_ADDRESS is not a valid address: {settings.contract_address}")
    return problems


def validate_all_configs(settings: "IndexerSettings | None" = None) -> None:
    """
    Validate all config files and, if given, the deployment settings.

    Raises ConfigValidationError with details if anything is missing or invalid.
    """
    loader = get_config()
    all_errors: dict[str, list[str]] = {}

    validators = {
        "websocket.json": (loader.get_websocket_config, validate_websocket_config),
        "storage.json": (loader.get_storage_config, validate_storage_config),
    }

    for config_name, (loader_fn, validator_fn) in validators.items():
        config = loader_fn()
        if not config:
            all_errors[config_name] = ["Config file is empty or not found"]
            continue
        errors = validator_fn(config)
        if errors:
            all_errors[config_name] = [f"missing: {error}" for error in errors]

    if settings is not None:
        problems = validate_settings(settings)
        if problems:
            all_errors["environment"] = problems

    if all_errors:
        lines = ["Configuration validation failed:"]
        for config_name, errors in all_errors.items():
            lines.append(f"\n  {config_name}:")
            for error in errors:
                lines.append(f"    - {error}")
        raise ConfigValidationError("\n".join(lines))
