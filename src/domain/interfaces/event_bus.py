"""
Event bus interface shared by the aggregators, the merger and the channel.

Payload per event type:
    CONNECTION_STATE_CHANGED  ConnectionStateChanged
    ROOM_JOINED               RoomJoined
    PONG_RECEIVED             PongReceived
    MOVEMENT_RECEIVED         LiveMovement
    BALANCE_UPDATED           BalanceSnapshot
    PAGE_LOADED               PageLoaded
    FETCH_FAILED              FetchFailed
    FEED_UPDATED              FeedUpdated
    RECONCILIATION_MISMATCH   ReconciliationMismatch
    REVALIDATION_FAILED       RevalidationFailed
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Callable, Any

from ..events.event_types import EventType


class EventBus(ABC):
    """Synchronous publish/subscribe between ledger components."""

    @abstractmethod
    def publish(self, event_type: EventType, payload: Any) -> None:
        """
        Deliver `payload` to every subscriber of `event_type`.

        Implementations must isolate subscribers: one failing callback
        cannot prevent delivery to the rest or propagate to the publisher.
        """

    @abstractmethod
    def subscribe(self, event_type: EventType, callback: Callable[[Any], None]) -> None:
        """Register `callback` for `event_type`."""

    @abstractmethod
    def unsubscribe(self, event_type: EventType, callback: Callable[[Any], None]) -> None:
        """Remove `callback`; unknown callbacks are ignored."""
