"""
Performance logging for statement fetches.

Timing context managers that log to the perf category. All timing logs
include the current sync ID for correlation.

Usage:
    async with log_page_fetch_timing("bitso") as ctx:
        page = await provider.fetch_page(...)
        ctx["items"] = len(page)

Threshold guidelines:
- Page fetches: warn=3000ms, error=15000ms
- Head refresh (re-validation): warn=2000ms, error=10000ms

Do not time per-event hot paths (individual live pushes, heartbeat pongs).
"""

from __future__ import annotations

import time
import logging
from contextlib import asynccontextmanager
from typing import Optional, AsyncGenerator

from .trace_context import get_sync_id

_perf_logger: Optional[logging.Logger] = None


def get_perf_logger() -> logging.Logger:
    """Get or create the performance logger."""
    global _perf_logger
    if _perf_logger is None:
        _perf_logger = logging.getLogger("ledger_sync.perf")
    return _perf_logger


def _emit(
    operation: str,
    duration_ms: float,
    warn_threshold_ms: float,
    error_threshold_ms: float,
    context: dict,
) -> None:
    logger = get_perf_logger()
    sync_id = get_sync_id()
    log_data = {
        "sync": sync_id,
        "operation": operation,
        "duration_ms": round(duration_ms, 2),
        **context,
    }

    if duration_ms >= error_threshold_ms:
        logger.error(f"[{sync_id}] SLOW {operation}: {duration_ms:.1f}ms", extra={"data": log_data})
    elif duration_ms >= warn_threshold_ms:
        logger.warning(f"[{sync_id}] {operation}: {duration_ms:.1f}ms (slow)", extra={"data": log_data})
    else:
        logger.debug(f"[{sync_id}] {operation}: {duration_ms:.1f}ms", extra={"data": log_data})


@asynccontextmanager
async def log_timing_async(
    operation: str,
    warn_threshold_ms: float = 500.0,
    error_threshold_ms: float = 2000.0,
    extra: Optional[dict] = None,
) -> AsyncGenerator[dict, None]:
    """
    Log how long the wrapped block took, escalating by threshold.

    Args:
        operation: Name of the operation being timed.
        warn_threshold_ms: Duration above which to log as WARNING.
        error_threshold_ms: Duration above which to log as ERROR.
        extra: Additional data to include in the log.

    Yields:
        Dict that can be updated with additional context during execution.
    """
    context = extra.copy() if extra else {}
    start_time = time.perf_counter()
    try:
        yield context
    finally:
        duration_ms = (time.perf_counter() - start_time) * 1000
        _emit(operation, duration_ms, warn_threshold_ms, error_threshold_ms, context)


def log_page_fetch_timing(provider: str, head: bool = False):
    """Pre-configured timing for statement page fetches."""
    if head:
        return log_timing_async(
            "head_refresh", warn_threshold_ms=2000, error_threshold_ms=10000,
            extra={"provider": provider},
        )
    return log_timing_async(
        "page_fetch", warn_threshold_ms=3000, error_threshold_ms=15000,
        extra={"provider": provider},
    )
