"""
Trace context for correlating logs across a single sync operation.

Provides:
- Unique sync IDs (6-char hex) for each page load or re-validation
- Context propagation via contextvars (async-safe)
- Easy access to current sync ID from any module

Usage:
    # In the aggregator (around one page load)
    with new_sync():
        page = await provider.fetch_page(...)

    # In any module
    from src.utils.trace_context import get_sync_id
    logger.info(f"[{get_sync_id()}] Processing...")
"""

from __future__ import annotations

import secrets
from contextvars import ContextVar
from contextlib import contextmanager
from typing import Optional, Generator

# Context variable for the current sync ID (async-safe)
_sync_id: ContextVar[Optional[str]] = ContextVar("sync_id", default=None)


def generate_sync_id() -> str:
    """Generate a new 6-character hex sync ID."""
    return secrets.token_hex(3)


def get_sync_id() -> str:
    """
    Get the current sync ID.

    Returns:
        Current sync ID, or "------" if no sync is active.
    """
    sync_id = _sync_id.get()
    return sync_id if sync_id else "------"


@contextmanager
def new_sync() -> Generator[str, None, None]:
    """
    Context manager to run an operation under a fresh sync ID.

    Nested contexts get their own ID and restore the outer one on exit.

    Yields:
        The new sync ID.
    """
    sync_id = generate_sync_id()
    token = _sync_id.set(sync_id)

    try:
        yield sync_id
    finally:
        _sync_id.reset(token)
