"""Utility modules."""

from .logging_setup import (
    setup_category_logging,
    shutdown_logging,
    set_log_timezone,
    get_current_timestamp,
    get_logger,
    set_verbose_mode,
)
from .structured_logger import StructuredLogger, LogCategory
from .trace_context import (
    get_sync_id,
    new_sync,
    generate_sync_id,
)
from .perf_logger import (
    log_timing_async,
    log_page_fetch_timing,
)

__all__ = [
    # Logging setup
    "StructuredLogger",
    "LogCategory",
    "setup_category_logging",
    "shutdown_logging",
    "set_log_timezone",
    "get_current_timestamp",
    "get_logger",
    "set_verbose_mode",
    # Trace context
    "get_sync_id",
    "new_sync",
    "generate_sync_id",
    # Performance logging
    "log_timing_async",
    "log_page_fetch_timing",
]
