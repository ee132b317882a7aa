"""
Configuration loader for the contract event indexer.

Tunables (timeouts, reconnection policy, table name, logging) live in JSON
files next to this module; deployment values (node endpoint, contract,
database) come from the environment, optionally via a .env file.
INDEXER_CONFIG_DIR points the loader at another directory of JSON files.

Usage:
    from config.loader import get_config, load_settings

    reconnection = get_config().get_websocket_config()["reconnection"]
    settings = load_settings()
"""

import json
import os
import sys
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

load_dotenv()

_DEFAULT_CONFIG_DIR = Path(__file__).parent

REQUIRED_ENV_VARS = ("RPC_URL", "CONTRACT_ADDRESS", "DB_CONN_STR")
MISSING_SETTINGS_MESSAGE = "RPC_URL, CONTRACT_ADDRESS, or DB_CONN_STR is not set in the .env file"


def _read_json(path: Path) -> Dict[str, Any]:
    """Parse one JSON file; a missing or broken file yields {} and a stderr note."""
    # Logging is configured from these files, so problems go to stderr directly
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError:
        print(f"[CONFIG_WARN] {path.name} not found in {path.parent}", file=sys.stderr)
    except json.JSONDecodeError as e:
        print(f"[CONFIG_ERROR] {path.name} is not valid JSON: {e}", file=sys.stderr)
    return {}


def get_env_var(var_name: str, default_value: Any, var_type: type) -> Any:
    """Read an environment variable as var_type, falling back to default_value."""
    raw = os.environ.get(var_name)
    if raw is None:
        return default_value
    if var_type is bool:
        return raw.strip().lower() in ("true", "1", "yes")
    try:
        return var_type(raw)
    except (ValueError, TypeError):
        return default_value


# ============================================================================
# DEPLOYMENT SETTINGS
# ============================================================================


@dataclass(frozen=True)
class IndexerSettings:
    """Deployment values required before any subscription is attempted."""

    rpc_url: str
    contract_address: str
    db_conn_str: str


def load_settings() -> IndexerSettings:
    """
    Read the node endpoint, contract address and storage connection string.

    Raises:
        ConfigValidationError: if any of the three values is missing or empty.
    """
    from config.validate import ConfigValidationError

    values = [get_env_var(name, "", str).strip() for name in REQUIRED_ENV_VARS]
    if not all(values):
        raise ConfigValidationError(MISSING_SETTINGS_MESSAGE)

    rpc_url, contract_address, db_conn_str = values
    return IndexerSettings(
        rpc_url=rpc_url,
        contract_address=contract_address,
        db_conn_str=db_conn_str,
    )


# ============================================================================
# JSON CONFIG FILES
# ============================================================================


class ConfigLoader:
    """
    Process-wide access to the JSON config files.

    Each file is read once; clear_cache() forces a re-read.
    """

    _instance: Optional["ConfigLoader"] = None

    def __init__(self, config_dir: Optional[Path] = None):
        override = get_env_var("INDEXER_CONFIG_DIR", "", str)
        self._config_dir = Path(config_dir or override or _DEFAULT_CONFIG_DIR)

    @classmethod
    def get_instance(cls) -> "ConfigLoader":
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @property
    def config_dir(self) -> Path:
        return self._config_dir

    @lru_cache(maxsize=16)
    def get_config_file(self, config_name: str) -> Dict[str, Any]:
        """Load <config_name>.json from the config directory."""
        return _read_json(self._config_dir / f"{config_name}.json")

    def get_app_config(self) -> Dict[str, Any]:
        """Logging settings."""
        return self.get_config_file("app")

    def get_websocket_config(self) -> Dict[str, Any]:
        """Connection, subscription-timeout and reconnection settings."""
        return self.get_config_file("websocket")

    def get_storage_config(self) -> Dict[str, Any]:
        """Event table name and connection-pool settings."""
        return self.get_config_file("storage")

    def clear_cache(self) -> None:
        self.get_config_file.cache_clear()


def get_config() -> ConfigLoader:
    """Get the singleton ConfigLoader instance."""
    return ConfigLoader.get_instance()
