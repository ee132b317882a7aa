"""
Logging setup for the contract event indexer.

Every component (main, subscription loop, log source, event store) writes to
its own rotating file under logs/<Module_Folder>/ and, unless disabled in
app.json, mirrors to stdout. Files can be switched to one-JSON-object-per-line
output for log shippers.

Usage:
    from indexer_logging.logger_manager import setup_module_logger

    logger = setup_module_logger("subscription", "subscription.log", module_folder="Subscription_Logs")
"""

import json
import logging
import logging.handlers
import os
import sys
from datetime import datetime, timezone
from pathlib import Path

from config.loader import get_config, get_env_var

_PROJECT_ROOT = Path(__file__).parent.parent

_logging_config = get_config().get_app_config().get("logging", {})

_LOG_DIR = str(_PROJECT_ROOT / _logging_config.get("log_dir", "logs"))
_CONSOLE_ENABLED: bool = _logging_config.get("console", True)
_JSON_FILES: bool = _logging_config.get("json_format", False)
_MAX_BYTES: int = _logging_config.get("max_bytes", 10 * 1024 * 1024)
_BACKUP_COUNT: int = _logging_config.get("backup_count", 5)
# LOG_LEVEL in the environment wins over app.json
_LEVEL_NAME: str = get_env_var("LOG_LEVEL", _logging_config.get("level", "INFO"), str).upper()
_MODULE_FOLDERS: dict[str, str] = _logging_config.get(
    "module_folders",
    {
        "main": "Main_Logs",
        "subscription": "Subscription_Logs",
        "log_source": "Log_Source_Logs",
        "event_store": "Event_Store_Logs",
    },
)

# Record attributes passed through `extra=` that are copied into JSON output
_EVENT_FIELDS = ("block_number", "tx_hash", "event_type", "subscription_id", "attempt")


def _resolve_level(level_name: str) -> int:
    level = logging.getLevelName(level_name)
    return level if isinstance(level, int) else logging.INFO


_DEFAULT_LEVEL = _resolve_level(_LEVEL_NAME)


# ============================================================================
# FORMATTERS
# ============================================================================


class JSONFormatter(logging.Formatter):
    """One JSON object per record, UTC timestamps."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "component": record.name,
            "msg": record.getMessage(),
            "where": f"{record.module}:{record.lineno}",
        }
        entry.update(
            {field: getattr(record, field) for field in _EVENT_FIELDS if hasattr(record, field)}
        )
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class HumanReadableFormatter(logging.Formatter):
    """Column-aligned text for the console and plain log files."""

    FORMAT = "%(asctime)s | %(levelname)-8s | %(name)-12s | %(message)s"
    DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

    def __init__(self) -> None:
        super().__init__(fmt=self.FORMAT, datefmt=self.DATE_FORMAT)


# ============================================================================
# LOGGER FACTORY
# ============================================================================

_logger_cache: dict[str, logging.Logger] = {}


def create_module_log_directories() -> dict[str, str]:
    """Create logs/ and one subfolder per component. Returns key -> path."""
    os.makedirs(_LOG_DIR, exist_ok=True)
    paths = {key: os.path.join(_LOG_DIR, folder) for key, folder in _MODULE_FOLDERS.items()}
    for path in paths.values():
        os.makedirs(path, exist_ok=True)
    return paths


def _file_handler(log_path: str, level: int, use_json: bool) -> logging.Handler:
    os.makedirs(os.path.dirname(log_path), exist_ok=True)
    handler = logging.handlers.RotatingFileHandler(
        log_path, maxBytes=_MAX_BYTES, backupCount=_BACKUP_COUNT, encoding="utf-8"
    )
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter() if use_json else HumanReadableFormatter())
    return handler


def setup_module_logger(
    name: str,
    log_file: str,
    level: int | None = None,
    module_folder: str | None = None,
    use_json_formatter: bool | None = None,
) -> logging.Logger:
    """
    Return the component logger, creating its handlers on first use.

    Args:
        name: Component name, also the logging.Logger name.
        log_file: File name inside logs/ (or inside module_folder).
        level: Explicit level; defaults to LOG_LEVEL / app.json.
        module_folder: Subfolder of logs/, e.g. 'Subscription_Logs'.
        use_json_formatter: Force JSON (True) or text (False) file output;
            None follows app.json "json_format".
    """
    cache_key = f"{name}:{module_folder}:{log_file}"
    cached = _logger_cache.get(cache_key)
    if cached is not None:
        return cached

    level = _DEFAULT_LEVEL if level is None else level
    use_json = _JSON_FILES if use_json_formatter is None else use_json_formatter

    logger = logging.getLogger(name)
    logger.setLevel(level)

    if not logger.handlers:
        folder = os.path.join(_LOG_DIR, module_folder) if module_folder else _LOG_DIR
        logger.addHandler(_file_handler(os.path.join(folder, log_file), level, use_json))

        if _CONSOLE_ENABLED:
            console = logging.StreamHandler(sys.stdout)
            console.setLevel(level)
            console.setFormatter(HumanReadableFormatter())
            logger.addHandler(console)

        # Component logs stay out of the root logger
        logger.propagate = False

    _logger_cache[cache_key] = logger
    return logger
