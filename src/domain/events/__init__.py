"""Domain events module."""

from .event_types import EventType
from .domain_events import (
    DomainEvent,
    ConnectionStateChanged,
    RoomJoined,
    PongReceived,
    PageLoaded,
    FetchFailed,
    FeedUpdated,
    ReconciliationMismatch,
    RevalidationFailed,
)

__all__ = [
    "EventType",
    "DomainEvent",
    "ConnectionStateChanged",
    "RoomJoined",
    "PongReceived",
    "PageLoaded",
    "FetchFailed",
    "FeedUpdated",
    "ReconciliationMismatch",
    "RevalidationFailed",
]
