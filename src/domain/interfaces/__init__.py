"""Domain interfaces for dependency injection."""

from .event_bus import EventBus, EventType
from .socket_transport import SocketTransport
from .statement_provider import StatementProvider

__all__ = [
    "EventBus",
    "EventType",
    "SocketTransport",
    "StatementProvider",
]
