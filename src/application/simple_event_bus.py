"""Simple in-memory event bus implementation."""

from __future__ import annotations
from typing import Callable, Any, Dict, List

from ..domain.interfaces.event_bus import EventBus, EventType
from ..utils.logging_setup import get_logger


logger = get_logger(__name__)


class SimpleEventBus(EventBus):
    """
    Simple in-memory event bus implementation.

    Callbacks run synchronously on the publishing task. A failing subscriber
    is logged and does not prevent delivery to the others.
    """

    def __init__(self, name: str = "bus"):
        self.name = name
        self._subscribers: Dict[EventType, List[Callable[[Any], None]]] = {}

    def publish(self, event_type: EventType, payload: Any) -> None:
        """
        Publish an event to all subscribers.

        Args:
            event_type: Type of event being published.
            payload: Event data (DomainEvent, Movement, BalanceSnapshot).
        """
        logger.debug(f"[{self.name}] Publishing event: {event_type.value}")

        # Snapshot so callbacks may (un)subscribe while being notified
        for callback in list(self._subscribers.get(event_type, [])):
            try:
                callback(payload)
            except Exception as e:
                logger.error(
                    f"[{self.name}] Error in {event_type.value} subscriber: {e}",
                    exc_info=True,
                )

    def subscribe(self, event_type: EventType, callback: Callable[[Any], None]) -> None:
        """
        Subscribe to an event type.

        Args:
            event_type: Event type to listen for.
            callback: Function to call when event is published.
        """
        self._subscribers.setdefault(event_type, []).append(callback)
        logger.debug(f"[{self.name}] Subscribed to {event_type.value}")

    def unsubscribe(self, event_type: EventType, callback: Callable[[Any], None]) -> None:
        """Unsubscribe a callback from an event type (no-op if absent)."""
        try:
            self._subscribers.get(event_type, []).remove(callback)
            logger.debug(f"[{self.name}] Unsubscribed from {event_type.value}")
        except ValueError:
            logger.warning(f"[{self.name}] Callback not found for {event_type.value}")

    def subscriber_count(self, event_type: EventType) -> int:
        return len(self._subscribers.get(event_type, []))

    def clear(self) -> None:
        """Drop every subscription."""
        self._subscribers.clear()
