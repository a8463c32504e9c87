"""Event types published by the ledger sync components."""

from __future__ import annotations

from enum import Enum


class EventType(Enum):
    """Ledger sync event types."""

    # Realtime channel
    CONNECTION_STATE_CHANGED = "connection_state_changed"
    ROOM_JOINED = "room_joined"
    PONG_RECEIVED = "pong_received"
    MOVEMENT_RECEIVED = "movement_received"
    BALANCE_UPDATED = "balance_updated"

    # Statement aggregation
    PAGE_LOADED = "page_loaded"
    FETCH_FAILED = "fetch_failed"

    # Merged feed
    FEED_UPDATED = "feed_updated"
    RECONCILIATION_MISMATCH = "reconciliation_mismatch"
    REVALIDATION_FAILED = "revalidation_failed"
