"""Realtime push channel (Socket.IO)."""

from .channel import RealtimeChannel
from .delivery import should_deliver, subscription_rooms
from .events import LiveMovement, balance_to_snapshot, to_live_movement
from .transport import SocketIOTransport

__all__ = [
    "RealtimeChannel",
    "SocketIOTransport",
    "LiveMovement",
    "should_deliver",
    "subscription_rooms",
    "balance_to_snapshot",
    "to_live_movement",
]
