"""Pytest configuration and fixtures."""

import asyncio
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

import pytest

from src.domain.interfaces.socket_transport import SocketTransport
from src.domain.interfaces.statement_provider import StatementProvider
from src.models.movement import Counterparty, Direction, Movement, MovementOrigin, Provider
from src.models.page import MovementPage, OpaqueCursor, StatementFilters


class FakeTransport(SocketTransport):
    """In-memory SocketTransport: records calls, lets tests fire server events."""

    def __init__(self):
        self.handlers: Dict[str, Callable[..., Any]] = {}
        self.emitted: List[tuple] = []
        self.connect_calls: List[dict] = []
        self.disconnect_calls = 0
        self.fail_connects = 0
        self.removed_listeners = False
        self._connected = False

    @property
    def connected(self) -> bool:
        return self._connected

    async def connect(self, url, namespace="/", auth=None, transports=("websocket", "polling"), timeout=20.0):
        self.connect_calls.append({
            "url": url, "namespace": namespace, "auth": auth,
            "transports": tuple(transports), "timeout": timeout,
        })
        if self.fail_connects > 0:
            self.fail_connects -= 1
            raise ConnectionError("connection refused")
        self._connected = True

    async def disconnect(self):
        self.disconnect_calls += 1
        self._connected = False

    async def emit(self, event, data=None):
        self.emitted.append((event, data))

    def on(self, event, handler):
        self.handlers[event] = handler

    def remove_all_listeners(self):
        self.handlers.clear()
        self.removed_listeners = True

    # Test helpers

    def fire(self, event: str, *args: Any) -> None:
        handler = self.handlers.get(event)
        if handler is not None:
            handler(*args)

    def drop(self, reason: str = "transport close") -> None:
        self._connected = False
        self.fire("disconnect", reason)

    def joined(self) -> List[str]:
        return [data for event, data in self.emitted if event == "join_room"]

    def pings(self) -> List[Any]:
        return [data for event, data in self.emitted if event == "ping"]


class FakeStatementProvider(StatementProvider):
    """
    Scripted statement provider.

    `script` maps a cursor (None for the first page) to a MovementPage, an
    exception, or a list of those consumed in order (the last one repeats).
    Set `gate` to an asyncio.Event to hold fetches until it is set.
    """

    def __init__(self, provider: Provider = Provider.BMP, script: Optional[Dict[Any, Any]] = None):
        self.PROVIDER = provider
        self.script: Dict[Any, Any] = dict(script or {})
        self.calls: List[tuple] = []
        self.gate: Optional[asyncio.Event] = None
        self.delay: float = 0.0

    async def fetch_page(self, filters, cursor, page_size):
        self.calls.append((filters, cursor, page_size))
        if self.gate is not None:
            await self.gate.wait()
        if self.delay:
            await asyncio.sleep(self.delay)

        entry = self.script.get(cursor, MovementPage())
        if isinstance(entry, list):
            entry = entry.pop(0) if len(entry) > 1 else entry[0]
        if isinstance(entry, BaseException):
            raise entry
        return entry

    def normalize(self, raw, received_at=None):
        raise NotImplementedError

    @property
    def cursors(self) -> List[Any]:
        return [cursor for _, cursor, _ in self.calls]


def _movement(
    id: str = "m1",
    provider: Provider = Provider.BMP,
    at: Optional[datetime] = None,
    amount: str = "10.00",
    direction: Direction = Direction.CREDIT,
    e2e: Optional[str] = None,
    status: Optional[str] = "completed",
    origin: MovementOrigin = MovementOrigin.POLL,
    name: Optional[str] = None,
) -> Movement:
    return Movement(
        id=id,
        provider=provider,
        occurred_at=at or datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc),
        direction=direction,
        amount=Decimal(amount),
        counterparty=Counterparty(name=name) if name else None,
        end_to_end_id=e2e,
        status=status,
        origin=origin,
    )


@pytest.fixture
def make_movement() -> Callable[..., Movement]:
    """Factory for canonical movements with sensible defaults."""
    return _movement


@pytest.fixture
def fake_transport() -> FakeTransport:
    """Fresh in-memory socket transport."""
    return FakeTransport()


@pytest.fixture
def fake_provider_cls():
    """FakeStatementProvider class (instantiate with a provider and script)."""
    return FakeStatementProvider


@pytest.fixture
def opaque() -> Callable[[str], OpaqueCursor]:
    """Build a BMP OpaqueCursor from a token."""
    return lambda token, provider=Provider.BMP: OpaqueCursor(provider, token)


@pytest.fixture
def march_filters() -> StatementFilters:
    from datetime import date
    return StatementFilters(date_from=date(2024, 3, 1), date_to=date(2024, 3, 15))


@pytest.fixture
def wait_until():
    """Poll a predicate on the running loop until it holds (or fail)."""

    async def _wait(predicate: Callable[[], bool], timeout: float = 2.0, interval: float = 0.005) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met before timeout")
            await asyncio.sleep(interval)

    return _wait
