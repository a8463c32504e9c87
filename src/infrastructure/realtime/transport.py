"""Socket.IO transport built on python-socketio's AsyncClient."""

from __future__ import annotations

import inspect
from typing import Any, Callable, Dict, Optional, Sequence

import socketio

from ...domain.interfaces.socket_transport import SocketTransport
from ...utils.logging_setup import get_logger


logger = get_logger(__name__)


class SocketIOTransport(SocketTransport):
    """
    SocketTransport over socketio.AsyncClient.

    The client's built-in reconnection is disabled: RealtimeChannel owns the
    state machine and the backoff. A fresh AsyncClient is created for every
    connect() so no state leaks between attempts.
    """

    def __init__(self, client_factory: Optional[Callable[[], socketio.AsyncClient]] = None):
        self._client_factory = client_factory or self._default_client
        self._client: Optional[socketio.AsyncClient] = None
        self._namespace = "/"
        self._handlers: Dict[str, Callable[..., Any]] = {}

    @staticmethod
    def _default_client() -> socketio.AsyncClient:
        return socketio.AsyncClient(reconnection=False, logger=False, engineio_logger=False)

    @property
    def connected(self) -> bool:
        return bool(self._client is not None and self._client.connected)

    async def connect(
        self,
        url: str,
        namespace: str = "/",
        auth: Optional[Dict[str, Any]] = None,
        transports: Sequence[str] = ("websocket", "polling"),
        timeout: float = 20.0,
    ) -> None:
        if self._client is not None and self._client.connected:
            await self._client.disconnect()

        self._namespace = namespace
        self._client = self._client_factory()
        for event, handler in self._handlers.items():
            self._register(event, handler)

        logger.debug(f"Connecting to {url}{namespace} via {list(transports)}")
        await self._client.connect(
            url,
            namespaces=[namespace],
            transports=list(transports),
            auth=auth,
            wait_timeout=timeout,
        )

    async def disconnect(self) -> None:
        if self._client is not None:
            await self._client.disconnect()

    async def emit(self, event: str, data: Any = None) -> None:
        if self._client is None:
            raise ConnectionError(f"cannot emit {event!r}: transport never connected")
        await self._client.emit(event, data, namespace=self._namespace)

    def on(self, event: str, handler: Callable[..., Any]) -> None:
        self._handlers[event] = handler
        if self._client is not None:
            self._register(event, handler)

    def remove_all_listeners(self) -> None:
        self._handlers.clear()
        if self._client is not None:
            self._client.handlers.pop(self._namespace, None)

    def _register(self, event: str, handler: Callable[..., Any]) -> None:
        async def dispatch(*args: Any) -> None:
            result = handler(*args)
            if inspect.isawaitable(result):
                await result

        self._client.on(event, dispatch, namespace=self._namespace)
