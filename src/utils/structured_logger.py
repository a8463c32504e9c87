"""
Structured JSON logger with log categories.

Provides structured logging with:
- JSON output format
- Log categories (SYSTEM, STATEMENT, REALTIME, RECONCILIATION)
- Standard schema for log entries
"""

from __future__ import annotations
import json
import logging
from typing import Dict, Any
from enum import Enum

from .timezone import now_utc
from .trace_context import get_sync_id


class LogCategory(Enum):
    """Log entry categories."""
    SYSTEM = "SYSTEM"  # Startup, shutdown, configuration
    STATEMENT = "STATEMENT"  # Page loads and provider failures
    REALTIME = "REALTIME"  # Channel state transitions
    RECONCILIATION = "RECONCILIATION"  # Optimistic entries corrected by polled data


class StructuredLogger:
    """
    Structured JSON logger.

    Outputs logs in JSON format with standard schema:
    {
        "timestamp": "2024-03-15T10:30:45.123+00:00",
        "level": "WARNING",
        "category": "RECONCILIATION",
        "sync_id": "a7f3b2",
        "message": "Live movement corrected by statement",
        "data": {...}
    }
    """

    def __init__(self, logger: logging.Logger):
        """
        Initialize structured logger.

        Args:
            logger: Python logger instance.
        """
        self.logger = logger

    def log(
        self,
        level: str,
        category: LogCategory,
        message: str,
        data: Dict[str, Any] | None = None,
    ) -> None:
        """
        Log a structured message.

        Args:
            level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
            category: Log category enum.
            message: Log message.
            data: Optional additional data dict (non-JSON values are stringified).
        """
        log_entry = {
            "timestamp": now_utc().isoformat(),
            "level": level.upper(),
            "category": category.value,
            "sync_id": get_sync_id(),
            "message": message,
        }

        if data:
            log_entry["data"] = data

        json_str = json.dumps(log_entry, default=str)

        log_func = getattr(self.logger, level.lower(), self.logger.info)
        log_func(json_str)

    def info(self, category: LogCategory, message: str, data: Dict[str, Any] | None = None) -> None:
        self.log("INFO", category, message, data)

    def warning(self, category: LogCategory, message: str, data: Dict[str, Any] | None = None) -> None:
        self.log("WARNING", category, message, data)

    def error(self, category: LogCategory, message: str, data: Dict[str, Any] | None = None) -> None:
        self.log("ERROR", category, message, data)

    def debug(self, category: LogCategory, message: str, data: Dict[str, Any] | None = None) -> None:
        self.log("DEBUG", category, message, data)
