"""Socket transport interface used by the realtime channel."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional, Sequence


class SocketTransport(ABC):
    """
    Persistent bidirectional event socket.

    The transport only moves events; connection state, room membership and
    reconnection are owned by RealtimeChannel. Implementations must not
    reconnect on their own.

    Lifecycle events the transport reports through registered handlers:
    - "disconnect" with an optional reason string
    - "connect_error" with an optional error payload
    All other event names are passed through with the server payload.
    """

    @abstractmethod
    async def connect(
        self,
        url: str,
        namespace: str = "/",
        auth: Optional[Dict[str, Any]] = None,
        transports: Sequence[str] = ("websocket", "polling"),
        timeout: float = 20.0,
    ) -> None:
        """
        Open the connection and wait for the server handshake.

        Raises:
            Exception: Any failure to connect; the channel wraps it in
                ChannelError.
        """
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the connection."""
        pass

    @abstractmethod
    async def emit(self, event: str, data: Any = None) -> None:
        """Send an event to the server."""
        pass

    @abstractmethod
    def on(self, event: str, handler: Callable[..., Any]) -> None:
        """Register a handler for an inbound event (sync or async)."""
        pass

    @abstractmethod
    def remove_all_listeners(self) -> None:
        """Drop every registered handler."""
        pass

    @property
    @abstractmethod
    def connected(self) -> bool:
        """Whether the transport currently holds an open connection."""
        pass
