"""
Logging setup with categories and sync ID support.

Provides:
- 5 log categories: system, adapter, realtime, ledger, perf
- Automatic module → category routing
- Sync ID correlation in all logs
- One JSON file per category and session run
- Console output (for the CLI, or verbose mode)
- Configurable timezone for log timestamps

Categories:
- system: Startup, shutdown, config, CLI
- adapter: Statement providers, HTTP calls, provider errors
- realtime: Socket connection state, rooms, heartbeat, live events
- ledger: Aggregation, merge, re-validation, reconciliation corrections
- perf: Timing, latency, performance diagnostics
"""

from __future__ import annotations

import logging
import logging.handlers
import sys
import os
import re
import json
from queue import Queue
from pathlib import Path
from typing import Optional, Dict, List
from datetime import datetime
from zoneinfo import ZoneInfo

from .trace_context import get_sync_id

# =============================================================================
# GLOBAL STATE
# =============================================================================

LOGGER_PREFIX = "ledger_sync"

# Global run number for this session (determined at startup)
_session_run_number: Optional[int] = None

# Global timezone setting for log timestamps (None = local time)
_log_timezone: Optional[ZoneInfo] = None

# Global verbose flag (set via --verbose CLI flag)
_verbose_mode: bool = False

# Global log level override
_log_level_override: Optional[str] = None

# Configured category loggers
_category_loggers: Dict[str, logging.Logger] = {}

# Queue listeners for async file logging (one per category)
_queue_listeners: List[logging.handlers.QueueListener] = []

# =============================================================================
# LOG CATEGORIES AND ROUTING
# =============================================================================

CATEGORIES = ["system", "adapter", "realtime", "ledger", "perf"]

CATEGORY_SUFFIXES = {
    "system": "sys",
    "adapter": "adp",
    "realtime": "rtm",
    "ledger": "ldg",
    "perf": "prf",
}

# Module path → category routing
# More specific paths should come first
MODULE_ROUTING: List[tuple[str, str]] = [
    ("src.infrastructure.adapters", "adapter"),
    ("src.infrastructure.realtime", "realtime"),
    ("src.utils.perf_logger", "perf"),
    ("src.application.statement_aggregator", "ledger"),
    ("src.application.reconciliation_merger", "ledger"),
    ("src.application.scheduler", "ledger"),
    ("src.application", "system"),
    ("src.models", "ledger"),
    ("src", "system"),
]


def get_category_for_module(module_name: str) -> str:
    """
    Determine the log category for a given module name.

    Args:
        module_name: Full module path (e.g., "src.infrastructure.realtime.channel").

    Returns:
        Category name (system, adapter, realtime, ledger, or perf).
    """
    for prefix, category in MODULE_ROUTING:
        if module_name.startswith(prefix):
            return category
    return "system"


# =============================================================================
# TIMEZONE SUPPORT
# =============================================================================

def set_log_timezone(tz: Optional[str] = None) -> None:
    """
    Set the timezone for log timestamps.

    Args:
        tz: Timezone name (e.g., "America/Sao_Paulo", "UTC").
            If None, uses local system time.
    """
    global _log_timezone
    _log_timezone = ZoneInfo(tz) if tz else None


def get_current_timestamp() -> str:
    """ISO timestamp in the configured log timezone."""
    if _log_timezone is not None:
        return datetime.now(_log_timezone).isoformat()
    return datetime.now().isoformat()


# =============================================================================
# GLOBAL CONFIGURATION
# =============================================================================

def set_verbose_mode(enabled: bool) -> None:
    """Enable or disable verbose mode (DEBUG level logging)."""
    global _verbose_mode
    _verbose_mode = enabled


def set_log_level_override(level: Optional[str]) -> None:
    global _log_level_override
    _log_level_override = level.upper() if level else None


def get_effective_log_level() -> str:
    """Get the effective log level (considering verbose mode and overrides)."""
    if _verbose_mode:
        return "DEBUG"
    if _log_level_override:
        return _log_level_override
    return "INFO"


# =============================================================================
# JSON FORMATTER WITH SYNC ID
# =============================================================================

class JSONFormatter(logging.Formatter):
    """
    JSON formatter for structured logging with sync ID support.

    Formats log records as single-line JSON with:
    - Timestamp (with timezone)
    - Level
    - Category (derived from logger name)
    - Sync ID (for correlation)
    - Message
    - Extra data
    """

    def format(self, record: logging.LogRecord) -> str:
        msg = record.getMessage()

        # Messages from StructuredLogger are already JSON; normalize field names
        if msg.startswith('{') and msg.endswith('}'):
            try:
                log_entry = json.loads(msg)
                if "timestamp" in log_entry:
                    log_entry["ts"] = log_entry.pop("timestamp")
                if "category" in log_entry:
                    log_entry["cat"] = log_entry.pop("category").lower()
                if "message" in log_entry:
                    log_entry["msg"] = log_entry.pop("message")
                if "sync_id" in log_entry:
                    log_entry["sync"] = log_entry.pop("sync_id")
                else:
                    log_entry["sync"] = get_sync_id()
                return json.dumps(log_entry)
            except json.JSONDecodeError:
                pass

        log_entry = {
            "ts": get_current_timestamp(),
            "level": record.levelname,
            "cat": self._get_category(record.name),
            "sync": get_sync_id(),
            "msg": msg,
        }

        if hasattr(record, "data") and record.data:
            log_entry["data"] = record.data

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)

    def _get_category(self, logger_name: str) -> str:
        parts = logger_name.split(".")
        if len(parts) >= 2 and parts[0] == LOGGER_PREFIX and parts[1] in CATEGORIES:
            return parts[1]
        return "system"


class ConsoleFormatter(logging.Formatter):
    """
    Console formatter with sync ID and color support.

    Format: [LEVEL] [sync] message
    """

    COLORS = {
        "DEBUG": "\033[36m",     # Cyan
        "INFO": "\033[32m",      # Green
        "WARNING": "\033[33m",   # Yellow
        "ERROR": "\033[31m",     # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors

    def format(self, record: logging.LogRecord) -> str:
        sync_id = get_sync_id()
        level = record.levelname

        if self.use_colors:
            color = self.COLORS.get(level, "")
            return f"{color}[{level:7}]{self.RESET} [{sync_id}] {record.getMessage()}"
        return f"[{level:7}] [{sync_id}] {record.getMessage()}"


# =============================================================================
# LOGGER FACTORY
# =============================================================================

def get_logger(module_name: str) -> logging.Logger:
    """
    Get a logger for the given module, automatically routed to the correct category.

    Args:
        module_name: Module name (typically __name__).

    Returns:
        The category logger ("ledger_sync.<category>").

    Example:
        from src.utils.logging_setup import get_logger
        logger = get_logger(__name__)
        logger.info("Processing...")
    """
    category = get_category_for_module(module_name)
    category_logger_name = f"{LOGGER_PREFIX}.{category}"

    logger = logging.getLogger(category_logger_name)

    # Temporary level until setup_category_logging runs
    if not logger.handlers and category not in _category_loggers:
        logger.setLevel(logging.DEBUG)

    return logger


# =============================================================================
# RUN NUMBER MANAGEMENT
# =============================================================================

def _get_next_run_number(log_dir: str, env: str, date_str: str) -> int:
    """Find the next available run number for today's date."""
    log_path = Path(log_dir) / date_str
    if not log_path.exists():
        return 1

    suffixes = "|".join(CATEGORY_SUFFIXES.values())
    pattern = re.compile(
        rf'^ledger_sync_{re.escape(env)}_(?:{suffixes})_{re.escape(date_str)}_(\d+)\.log$'
    )

    max_num = 0
    for filename in os.listdir(log_path):
        match = pattern.match(filename)
        if match:
            max_num = max(max_num, int(match.group(1)))

    return max_num + 1


def _get_session_run_number(log_dir: str, env: str) -> int:
    global _session_run_number

    if _session_run_number is None:
        date_str = datetime.now().strftime('%Y-%m-%d')
        _session_run_number = _get_next_run_number(log_dir, env, date_str)

    return _session_run_number


# =============================================================================
# CATEGORY LOGGING SETUP
# =============================================================================

def setup_category_logging(
    env: str,
    log_dir: str = "./logs",
    level: str = "INFO",
    console: bool = False,
    verbose: bool = False,
) -> Dict[str, logging.Logger]:
    """
    Set up separate log files for each category.

    Creates log files in a date-specific subdirectory:
    - logs/{date}/ledger_sync_{env}_sys_{date}_{run}.log - System events
    - logs/{date}/ledger_sync_{env}_adp_{date}_{run}.log - Provider adapters
    - logs/{date}/ledger_sync_{env}_rtm_{date}_{run}.log - Realtime channel
    - logs/{date}/ledger_sync_{env}_ldg_{date}_{run}.log - Aggregation and merge
    - logs/{date}/ledger_sync_{env}_prf_{date}_{run}.log - Performance events

    Args:
        env: Environment name (dev/prod).
        log_dir: Base directory for log files.
        level: Default logging level.
        console: Enable console output.
        verbose: Enable verbose (DEBUG) mode.

    Returns:
        Dict mapping category name to logger.
    """
    global _category_loggers, _queue_listeners

    # Release previous handlers and listeners before reconfiguring
    for listener in _queue_listeners:
        listener.stop()
    _queue_listeners.clear()

    for category in CATEGORIES:
        logger = logging.getLogger(f"{LOGGER_PREFIX}.{category}")
        for handler in logger.handlers[:]:
            handler.close()
            logger.removeHandler(handler)

    set_verbose_mode(verbose)
    if not verbose:
        set_log_level_override(level)

    date_str = datetime.now().strftime('%Y-%m-%d')
    log_path = Path(log_dir) / date_str
    log_path.mkdir(parents=True, exist_ok=True)

    run_number = _get_session_run_number(log_dir, env)
    effective_level = getattr(logging, get_effective_log_level(), logging.INFO)

    for category in CATEGORIES:
        suffix = CATEGORY_SUFFIXES[category]
        filename = f"ledger_sync_{env}_{suffix}_{date_str}_{run_number}.log"

        logger = logging.getLogger(f"{LOGGER_PREFIX}.{category}")
        logger.setLevel(effective_level)
        logger.propagate = False

        file_handler = logging.FileHandler(
            filename=str(log_path / filename),
            mode='a',
            encoding='utf-8'
        )
        file_handler.setFormatter(JSONFormatter())
        file_handler.setLevel(effective_level)

        # QueueHandler keeps disk writes off the event loop
        log_queue: Queue = Queue(-1)
        logger.addHandler(logging.handlers.QueueHandler(log_queue))

        listener = logging.handlers.QueueListener(
            log_queue, file_handler, respect_handler_level=True
        )
        listener.start()
        _queue_listeners.append(listener)

        if console:
            console_handler = logging.StreamHandler(sys.stderr)
            console_handler.setFormatter(ConsoleFormatter(use_colors=sys.stderr.isatty()))
            console_handler.setLevel(logging.DEBUG if verbose else logging.WARNING)
            logger.addHandler(console_handler)

        _category_loggers[category] = logger

    return _category_loggers


def shutdown_logging() -> None:
    """Stop all queue listeners, flushing pending records (call at shutdown)."""
    for listener in _queue_listeners:
        listener.stop()
    _queue_listeners.clear()
