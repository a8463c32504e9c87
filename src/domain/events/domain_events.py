"""
Typed event payloads for the ledger sync event bus.

Usage:
    from src.domain.events.domain_events import PageLoaded

    event_bus.publish(EventType.PAGE_LOADED, PageLoaded(provider=Provider.BMP, ...))
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Tuple

from ...models.movement import MergeKey, Movement, Provider
from ...models.subscription import ConnectionState
from ...utils.timezone import now_utc


@dataclass(frozen=True)
class DomainEvent:
    """Base class for published payloads."""

    timestamp: datetime = field(default_factory=now_utc, kw_only=True)


@dataclass(frozen=True)
class ConnectionStateChanged(DomainEvent):
    previous: ConnectionState
    current: ConnectionState
    reason: Optional[str] = None


@dataclass(frozen=True)
class RoomJoined(DomainEvent):
    room: str


@dataclass(frozen=True)
class PongReceived(DomainEvent):
    server_timestamp: Optional[str] = None


@dataclass(frozen=True)
class PageLoaded(DomainEvent):
    provider: Provider
    item_count: int
    has_more: bool
    head_refresh: bool = False


@dataclass(frozen=True)
class FetchFailed(DomainEvent):
    provider: Provider
    error: str


@dataclass(frozen=True)
class FeedUpdated(DomainEvent):
    size: int
    unconfirmed: int


@dataclass(frozen=True)
class ReconciliationMismatch(DomainEvent):
    """
    Polled data disagreed with an optimistic push.

    Not an error: the polled record replaced the pushed one.
    """

    key: MergeKey
    pushed: Movement
    polled: Movement
    fields: Tuple[str, ...]


@dataclass(frozen=True)
class RevalidationFailed(DomainEvent):
    key: MergeKey
    attempt: int
    error: str
