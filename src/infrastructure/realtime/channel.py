"""
Realtime channel: a persistent Socket.IO connection delivering live movement
and balance events to subscribed consumers.

State machine (only this class writes ConnectionState):

    DISCONNECTED --start()--> CONNECTING --ack--> CONNECTED
    CONNECTED --drop/error--> RECONNECTING --backoff--> CONNECTING
    any state --close()--> DISCONNECTED

On every transition into CONNECTED the channel first emits `join_room` for
each room of each current subscription, and only then publishes CONNECTED
and starts delivering domain events. Domain events received in any other
state are dropped.
"""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Deque, Dict, List, Optional, Sequence, Set

from config.models import BackoffConfig, ContextsConfig

from ...application.simple_event_bus import SimpleEventBus
from ...domain.events.domain_events import ConnectionStateChanged, PongReceived, RoomJoined
from ...domain.events.event_types import EventType
from ...domain.exceptions import ChannelError
from ...domain.interfaces.socket_transport import SocketTransport
from ...models.balance import BalanceSnapshot
from ...models.subscription import PLATFORM_ROOM, ConnectionState, Subscription
from ...utils.logging_setup import get_logger
from ...utils.timezone import now_utc
from .delivery import should_deliver, subscription_rooms
from .events import (
    BALANCE_EVENT,
    MOVEMENT_CONVERTERS,
    LiveMovement,
    balance_to_snapshot,
    to_live_movement,
    unwrap,
)


logger = get_logger(__name__)

SERVER_DISCONNECT = "io server disconnect"

MovementCallback = Callable[[LiveMovement], None]
BalanceCallback = Callable[[BalanceSnapshot], None]


@dataclass(eq=False)
class _Listener:
    subscription: Subscription
    on_movement: Optional[MovementCallback] = None
    on_balance: Optional[BalanceCallback] = None


class RealtimeChannel:
    """
    Owns one socket transport, its connection state and its listeners.

    Usage:
        channel = RealtimeChannel(SocketIOTransport(), url="https://api.example")
        unsubscribe = channel.subscribe(
            Subscription(SubscriptionContext.TCR, tenant_id=2),
            on_movement=merger.ingest_live,
        )
        await channel.start()
        ...
        await channel.close()
    """

    def __init__(
        self,
        transport: SocketTransport,
        url: str,
        namespace: str = "/realtime",
        token: Optional[str] = None,
        transports: Sequence[str] = ("websocket", "polling"),
        connect_timeout_sec: float = 20.0,
        backoff: Optional[BackoffConfig] = None,
        heartbeat_interval_sec: float = 30.0,
        contexts: Optional[ContextsConfig] = None,
        event_bus: Optional[SimpleEventBus] = None,
    ):
        self._transport = transport
        self._url = url
        self._namespace = namespace
        self._token = token
        self._transports = tuple(transports)
        self._connect_timeout = connect_timeout_sec
        self._backoff = backoff or BackoffConfig()
        self._heartbeat_interval = heartbeat_interval_sec
        self._contexts = contexts or ContextsConfig()
        self.event_bus = event_bus or SimpleEventBus(name="realtime")

        self._state = ConnectionState.DISCONNECTED
        self._listeners: List[_Listener] = []
        self._requested_rooms: Set[str] = set()
        self._joined_rooms: Set[str] = set()

        self._running = False
        self._closing = False
        self._run_task: Optional[asyncio.Task] = None
        self._heartbeat_task: Optional[asyncio.Task] = None
        self._join_tasks: Set[asyncio.Task] = set()
        self._dropped: Optional[asyncio.Event] = None

        self.last_pong: Optional[datetime] = None
        self.last_balance: Optional[BalanceSnapshot] = None

        # Statistics
        self._connect_count = 0
        self._reconnect_count = 0
        self._events_delivered = 0
        self._events_dropped = 0
        self._backoff_history: Deque[float] = deque(maxlen=50)

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def joined_rooms(self) -> Set[str]:
        """Rooms the server acknowledged on the current connection."""
        return set(self._joined_rooms)

    @property
    def requested_rooms(self) -> Set[str]:
        """Rooms join_room was emitted for on the current connection."""
        return set(self._requested_rooms)

    @property
    def stats(self) -> Dict[str, Any]:
        return {
            "state": self._state.value,
            "connects": self._connect_count,
            "reconnects": self._reconnect_count,
            "events_delivered": self._events_delivered,
            "events_dropped": self._events_dropped,
            "listeners": len(self._listeners),
            "last_pong": self.last_pong.isoformat() if self.last_pong else None,
            "backoff_history": list(self._backoff_history),
        }

    def subscribe(
        self,
        subscription: Subscription,
        on_movement: Optional[MovementCallback] = None,
        on_balance: Optional[BalanceCallback] = None,
    ) -> Callable[[], None]:
        """
        Register a consumer.

        Movement events pass through should_deliver for the subscription;
        balance events carry no tenant and reach every listener with
        on_balance set. If the channel is already connected, the new rooms
        are joined immediately.

        Returns:
            Function that removes this listener.
        """
        listener = _Listener(subscription, on_movement, on_balance)
        self._listeners.append(listener)
        rooms = subscription_rooms(subscription, self._contexts)
        logger.info(f"Subscribed {subscription.context.value} listener (rooms={rooms})")

        if self.is_connected:
            missing = [room for room in rooms if room not in self._requested_rooms]
            if missing:
                task = asyncio.get_running_loop().create_task(self._join_rooms(missing))
                self._join_tasks.add(task)
                task.add_done_callback(self._join_tasks.discard)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)
                logger.info(f"Unsubscribed {subscription.context.value} listener")

        return unsubscribe

    async def start(self) -> None:
        """Start the connect loop in the background."""
        if self._running:
            logger.warning("RealtimeChannel already running")
            return

        self._running = True
        self._closing = False
        self._register_handlers()
        self._run_task = asyncio.create_task(self._connect_loop())
        logger.info(f"RealtimeChannel started ({self._url}{self._namespace})")

    async def close(self) -> None:
        """
        Tear down: stop heartbeat, backoff and connect loop, remove every
        transport listener and close the transport. Ends in DISCONNECTED.
        """
        self._closing = True
        self._running = False

        await self._stop_heartbeat()
        for task in list(self._join_tasks):
            task.cancel()
        if self._run_task:
            self._run_task.cancel()
            try:
                await self._run_task
            except asyncio.CancelledError:
                pass
            self._run_task = None

        self._transport.remove_all_listeners()
        try:
            await self._transport.disconnect()
        except Exception as e:
            logger.warning(f"Error while closing realtime transport: {e}")

        self._requested_rooms.clear()
        self._joined_rooms.clear()
        self._set_state(ConnectionState.DISCONNECTED, "closed")
        logger.info(
            f"RealtimeChannel closed (connects={self._connect_count}, "
            f"reconnects={self._reconnect_count}, delivered={self._events_delivered})"
        )

    # -------------------------------------------------------------------------
    # Internal: Connect Loop with Backoff
    # -------------------------------------------------------------------------

    async def _connect_loop(self) -> None:
        """Connect, wait for a drop, back off, repeat until closed."""
        delay = self._backoff.initial

        while self._running:
            try:
                self._set_state(ConnectionState.CONNECTING)
                self._requested_rooms.clear()
                self._joined_rooms.clear()
                self._dropped = asyncio.Event()

                await self._connect_once()
                self._connect_count += 1
                await self._join_rooms(self._all_rooms())

                if self._dropped.is_set():
                    raise ChannelError("connection dropped while joining rooms")

                # Reset delay on successful connection
                delay = self._backoff.initial
                self._set_state(ConnectionState.CONNECTED)
                self._start_heartbeat()

                await self._dropped.wait()
                raise ChannelError("connection lost")

            except asyncio.CancelledError:
                logger.debug("RealtimeChannel connect loop cancelled")
                raise

            except Exception as e:
                await self._stop_heartbeat()
                if not self._running:
                    break
                self._reconnect_count += 1
                self._set_state(ConnectionState.RECONNECTING, str(e))
                logger.warning(
                    f"Realtime connection unavailable: {e}, "
                    f"reconnecting in {delay:.1f}s (attempt #{self._reconnect_count})"
                )
                self._backoff_history.append(delay)
                await asyncio.sleep(delay)
                delay = min(delay * self._backoff.factor, self._backoff.max)

    async def _connect_once(self) -> None:
        auth = {"token": self._token} if self._token else None
        try:
            await self._transport.connect(
                self._url,
                namespace=self._namespace,
                auth=auth,
                transports=self._transports,
                timeout=self._connect_timeout,
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise ChannelError(f"connect failed: {e}") from e

    def _all_rooms(self) -> List[str]:
        """Union of subscription rooms, platform first, in stable order."""
        rooms: List[str] = []
        for listener in self._listeners:
            for room in subscription_rooms(listener.subscription, self._contexts):
                if room not in rooms:
                    rooms.append(room)
        rooms.sort(key=lambda room: (room != PLATFORM_ROOM, room))
        return rooms

    async def _join_rooms(self, rooms: Sequence[str]) -> None:
        for room in rooms:
            try:
                await self._transport.emit("join_room", room)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                raise ChannelError(f"join_room {room!r} failed: {e}") from e
            self._requested_rooms.add(room)
            logger.debug(f"join_room {room}")

    def _set_state(self, new_state: ConnectionState, reason: Optional[str] = None) -> None:
        previous = self._state
        if previous is new_state:
            return
        self._state = new_state
        logger.info(
            f"Realtime state {previous.value} -> {new_state.value}"
            + (f" ({reason})" if reason else "")
        )
        self.event_bus.publish(
            EventType.CONNECTION_STATE_CHANGED,
            ConnectionStateChanged(previous=previous, current=new_state, reason=reason),
        )

    # -------------------------------------------------------------------------
    # Internal: Heartbeat
    # -------------------------------------------------------------------------

    def _start_heartbeat(self) -> None:
        if self._heartbeat_task is None or self._heartbeat_task.done():
            self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())

    async def _stop_heartbeat(self) -> None:
        task, self._heartbeat_task = self._heartbeat_task, None
        if task is None or task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _heartbeat_loop(self) -> None:
        """Emit ping while connected. Never drives reconnection."""
        while True:
            await asyncio.sleep(self._heartbeat_interval)
            if not self.is_connected:
                continue
            try:
                await self._transport.emit("ping", {"timestamp": now_utc().isoformat()})
            except Exception as e:
                logger.debug(f"Heartbeat ping failed: {e}")

    # -------------------------------------------------------------------------
    # Internal: Transport Handlers
    # -------------------------------------------------------------------------

    def _register_handlers(self) -> None:
        self._transport.on("disconnect", self._on_disconnect)
        self._transport.on("connect_error", self._on_connect_error)
        self._transport.on("joined_room", self._on_joined_room)
        self._transport.on("pong", self._on_pong)
        for event in MOVEMENT_CONVERTERS:
            self._transport.on(event, self._movement_handler(event))
        self._transport.on(BALANCE_EVENT, self._on_balance)

    def _on_disconnect(self, reason: Any = None) -> None:
        if self._closing:
            return
        reason_text = str(reason) if reason else "transport closed"
        if reason_text == SERVER_DISCONNECT:
            logger.warning("Server forced disconnect; reconnecting")
        else:
            logger.warning(f"Realtime disconnected: {reason_text}")

        if self._state is ConnectionState.CONNECTED:
            self._set_state(ConnectionState.RECONNECTING, reason_text)
        if self._dropped is not None:
            self._dropped.set()

    def _on_connect_error(self, error: Any = None) -> None:
        logger.warning(f"Realtime connect_error: {error}")

    def _on_joined_room(self, payload: Any = None) -> None:
        room = payload.get("room") if isinstance(payload, dict) else payload
        if not room:
            return
        self._joined_rooms.add(str(room))
        logger.debug(f"Joined room {room}")
        self.event_bus.publish(EventType.ROOM_JOINED, RoomJoined(room=str(room)))

    def _on_pong(self, payload: Any = None) -> None:
        self.last_pong = now_utc()
        server_ts = payload.get("timestamp") if isinstance(payload, dict) else None
        self.event_bus.publish(
            EventType.PONG_RECEIVED,
            PongReceived(server_timestamp=str(server_ts) if server_ts is not None else None),
        )

    def _movement_handler(self, event: str) -> Callable[[Any], None]:
        def handle(payload: Any = None) -> None:
            self._on_movement_event(event, payload)
        return handle

    def _on_movement_event(self, event: str, payload: Any) -> None:
        if not self.is_connected:
            self._events_dropped += 1
            logger.debug(f"Dropping {event}: channel is {self._state.value}")
            return

        try:
            data, _ = unwrap(payload)
            live = to_live_movement(event, payload)
        except (ValueError, TypeError, KeyError) as e:
            self._events_dropped += 1
            logger.warning(f"Malformed {event} payload: {e}")
            return

        delivered = 0
        for listener in list(self._listeners):
            if listener.on_movement is None:
                continue
            if not should_deliver(data, listener.subscription, self._contexts):
                continue
            delivered += 1
            try:
                listener.on_movement(live)
            except Exception as e:
                logger.error(f"Error in {event} listener: {e}", exc_info=True)

        if delivered:
            self._events_delivered += 1
            self.event_bus.publish(EventType.MOVEMENT_RECEIVED, live)
        else:
            logger.debug(f"{event} {live.movement.merge_key} not in scope of any listener")

    def _on_balance(self, payload: Any = None) -> None:
        if not self.is_connected:
            self._events_dropped += 1
            return

        try:
            snapshot = balance_to_snapshot(payload)
        except (ValueError, TypeError) as e:
            self._events_dropped += 1
            logger.warning(f"Malformed {BALANCE_EVENT} payload: {e}")
            return

        self.last_balance = snapshot
        for listener in list(self._listeners):
            if listener.on_balance is None:
                continue
            try:
                listener.on_balance(snapshot)
            except Exception as e:
                logger.error(f"Error in {BALANCE_EVENT} listener: {e}", exc_info=True)
        self.event_bus.publish(EventType.BALANCE_UPDATED, snapshot)
