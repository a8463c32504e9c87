"""Tests for RealtimeChannel state machine, rooms, delivery and teardown."""

import asyncio
from decimal import Decimal

import pytest

from config.models import BackoffConfig, ContextsConfig
from src.domain.events.event_types import EventType
from src.infrastructure.realtime.channel import RealtimeChannel
from src.models.movement import Direction, MovementOrigin
from src.models.subscription import ConnectionState, Subscription, SubscriptionContext


FAST_BACKOFF = BackoffConfig(initial=0.01, max=0.04, factor=2.0)


def transaction_payload(tx_id="tx1", tenant_id=2, account_id=None, amount="150.00", e2e="E2E1"):
    data = {
        "id": tx_id,
        "type": "funding",
        "amount": amount,
        "currency": "brl",
        "endToEndId": e2e,
        "tenantId": tenant_id,
        "payerName": "Ana Souza",
        "payerTaxId": "12345678900",
        "status": "COMPLETE",
        "createdAt": "2024-03-15T12:00:00Z",
    }
    if account_id is not None:
        data["accountId"] = account_id
    return {"timestamp": "2024-03-15T12:00:01Z", "data": data}


@pytest.fixture
def make_channel(fake_transport):
    channels = []

    def _make(**kwargs):
        kwargs.setdefault("backoff", FAST_BACKOFF)
        kwargs.setdefault("heartbeat_interval_sec", 30.0)
        channel = RealtimeChannel(fake_transport, url="http://api.test", **kwargs)
        channels.append(channel)
        return channel

    return _make


def record_states(channel):
    states = []
    channel.event_bus.subscribe(
        EventType.CONNECTION_STATE_CHANGED, lambda payload: states.append(payload.current)
    )
    return states


class TestConnect:
    """Initial connection and room joins."""

    @pytest.mark.asyncio
    async def test_connects_and_joins_rooms(self, make_channel, fake_transport, wait_until) -> None:
        """Rooms are joined (platform first) before CONNECTED is published."""
        channel = make_channel(token="secret")
        channel.subscribe(Subscription(SubscriptionContext.TCR, tenant_id=2))
        states = record_states(channel)
        joined_at_connect = []
        channel.event_bus.subscribe(
            EventType.CONNECTION_STATE_CHANGED,
            lambda p: joined_at_connect.append(list(fake_transport.joined()))
            if p.current is ConnectionState.CONNECTED else None,
        )
        try:
            await channel.start()
            await wait_until(lambda: channel.is_connected)

            call = fake_transport.connect_calls[0]
            assert call["url"] == "http://api.test"
            assert call["namespace"] == "/realtime"
            assert call["auth"] == {"token": "secret"}
            assert fake_transport.joined() == ["platform", "tenant:2"]
            assert joined_at_connect == [["platform", "tenant:2"]]
            assert states == [ConnectionState.CONNECTING, ConnectionState.CONNECTED]
            assert channel.requested_rooms == {"platform", "tenant:2"}
        finally:
            await channel.close()

    @pytest.mark.asyncio
    async def test_union_of_rooms_joined_once(self, make_channel, fake_transport, wait_until) -> None:
        """Overlapping subscriptions join each room once."""
        channel = make_channel()
        channel.subscribe(Subscription(SubscriptionContext.API))
        channel.subscribe(Subscription(SubscriptionContext.TCR, tenant_id=2))
        channel.subscribe(Subscription(SubscriptionContext.OTC, tenant_id=3, account_id=27))
        try:
            await channel.start()
            await wait_until(lambda: channel.is_connected)

            assert fake_transport.joined() == ["platform", "tenant:2", "tenant:3"]
        finally:
            await channel.close()

    @pytest.mark.asyncio
    async def test_context_without_tenant_joins_configured_tenant_room(
        self, make_channel, fake_transport, wait_until,
    ) -> None:
        """TCR/OTC subscriptions without a tenant join the configured tenant room."""
        channel = make_channel(contexts=ContextsConfig(otc_tenant_id="3", tcr_tenant_id="2"))
        channel.subscribe(Subscription(SubscriptionContext.TCR))
        channel.subscribe(Subscription(SubscriptionContext.OTC))
        try:
            await channel.start()
            await wait_until(lambda: channel.is_connected)

            assert fake_transport.joined() == ["platform", "tenant:2", "tenant:3"]
        finally:
            await channel.close()

    @pytest.mark.asyncio
    async def test_subscribe_while_connected_joins_new_rooms(
        self, make_channel, fake_transport, wait_until,
    ) -> None:
        """A late subscription joins only the rooms not yet requested."""
        channel = make_channel()
        channel.subscribe(Subscription(SubscriptionContext.API))
        try:
            await channel.start()
            await wait_until(lambda: channel.is_connected)

            channel.subscribe(Subscription(SubscriptionContext.TCR, tenant_id=5))
            await wait_until(lambda: "tenant:5" in fake_transport.joined())

            assert fake_transport.joined() == ["platform", "tenant:5"]
        finally:
            await channel.close()

    @pytest.mark.asyncio
    async def test_joined_room_and_pong_tracked(self, make_channel, fake_transport, wait_until) -> None:
        """Server acknowledgements update joined rooms and last pong."""
        channel = make_channel()
        channel.subscribe(Subscription(SubscriptionContext.API))
        pongs = []
        channel.event_bus.subscribe(EventType.PONG_RECEIVED, pongs.append)
        try:
            await channel.start()
            await wait_until(lambda: channel.is_connected)

            fake_transport.fire("joined_room", {"room": "platform"})
            fake_transport.fire("pong", {"timestamp": 1710504000000})

            assert channel.joined_rooms == {"platform"}
            assert channel.last_pong is not None
            assert pongs[0].server_timestamp == "1710504000000"
        finally:
            await channel.close()


class TestReconnect:
    """Drops, backoff and resubscription."""

    @pytest.mark.asyncio
    async def test_rejoins_rooms_after_drop(self, make_channel, fake_transport, wait_until) -> None:
        """Every reconnect re-emits join_room for all current subscriptions."""
        channel = make_channel()
        channel.subscribe(Subscription(SubscriptionContext.TCR, tenant_id=2))
        states = record_states(channel)
        try:
            await channel.start()
            await wait_until(lambda: channel.is_connected)

            fake_transport.drop("transport close")
            assert channel.state is ConnectionState.RECONNECTING

            await wait_until(lambda: channel.is_connected and len(fake_transport.connect_calls) == 2)

            assert fake_transport.joined() == ["platform", "tenant:2", "platform", "tenant:2"]
            assert states == [
                ConnectionState.CONNECTING,
                ConnectionState.CONNECTED,
                ConnectionState.RECONNECTING,
                ConnectionState.CONNECTING,
                ConnectionState.CONNECTED,
            ]
        finally:
            await channel.close()

    @pytest.mark.asyncio
    async def test_server_disconnect_reconnects(self, make_channel, fake_transport, wait_until) -> None:
        """A server-initiated disconnect is recovered like any other drop."""
        channel = make_channel()
        channel.subscribe(Subscription(SubscriptionContext.API))
        try:
            await channel.start()
            await wait_until(lambda: channel.is_connected)

            fake_transport.drop("io server disconnect")
            await wait_until(lambda: channel.is_connected and len(fake_transport.connect_calls) == 2)

            assert channel.stats["reconnects"] == 1
        finally:
            await channel.close()

    @pytest.mark.asyncio
    async def test_backoff_grows_and_resets(self, make_channel, fake_transport, wait_until) -> None:
        """Failed connects back off exponentially up to the cap; success resets."""
        fake_transport.fail_connects = 4
        channel = make_channel()
        channel.subscribe(Subscription(SubscriptionContext.API))
        try:
            await channel.start()
            await wait_until(lambda: channel.is_connected)

            assert channel.stats["backoff_history"] == pytest.approx([0.01, 0.02, 0.04, 0.04])
            assert len(fake_transport.connect_calls) == 5

            fake_transport.drop()
            await wait_until(lambda: channel.is_connected and len(fake_transport.connect_calls) == 6)
            assert channel.stats["backoff_history"][-1] == pytest.approx(0.01)
        finally:
            await channel.close()

    @pytest.mark.asyncio
    async def test_failed_connect_enters_reconnecting(self, make_channel, fake_transport, wait_until) -> None:
        """A rejected connect never reaches CONNECTED and schedules a retry."""
        fake_transport.fail_connects = 100
        channel = make_channel(backoff=BackoffConfig(initial=10.0, max=10.0, factor=2.0))
        channel.subscribe(Subscription(SubscriptionContext.API))
        states = record_states(channel)
        try:
            await channel.start()
            await wait_until(lambda: channel.state is ConnectionState.RECONNECTING)

            assert ConnectionState.CONNECTED not in states
            assert fake_transport.joined() == []
        finally:
            await channel.close()

        assert channel.state is ConnectionState.DISCONNECTED


class TestDelivery:
    """Live domain events reach the right consumers."""

    @pytest.mark.asyncio
    async def test_context_scoping(self, make_channel, fake_transport, wait_until) -> None:
        """A tenant 2 transaction reaches TCR(2) and API, not OTC."""
        channel = make_channel()
        received = {"api": [], "tcr": [], "otc": []}
        channel.subscribe(Subscription(SubscriptionContext.API), on_movement=received["api"].append)
        channel.subscribe(Subscription(SubscriptionContext.TCR, tenant_id=2), on_movement=received["tcr"].append)
        channel.subscribe(
            Subscription(SubscriptionContext.OTC, tenant_id=3, account_id=27),
            on_movement=received["otc"].append,
        )
        try:
            await channel.start()
            await wait_until(lambda: channel.is_connected)

            fake_transport.fire("bitso:transaction", transaction_payload(tenant_id=2))

            assert len(received["api"]) == 1
            assert len(received["tcr"]) == 1
            assert received["otc"] == []

            live = received["tcr"][0]
            assert live.kind == "transaction"
            assert live.movement.origin is MovementOrigin.PUSH
            assert live.movement.direction is Direction.CREDIT
            assert live.movement.amount == Decimal("150.00")
            assert live.movement.end_to_end_id == "E2E1"
            assert live.movement.counterparty.name == "Ana Souza"
        finally:
            await channel.close()

    @pytest.mark.asyncio
    async def test_otc_pair_delivery(self, make_channel, fake_transport, wait_until) -> None:
        """OTC receives only its (tenant, account) pair."""
        channel = make_channel()
        otc = []
        channel.subscribe(Subscription(SubscriptionContext.OTC, tenant_id=3, account_id=27), on_movement=otc.append)
        try:
            await channel.start()
            await wait_until(lambda: channel.is_connected)

            fake_transport.fire("bitso:transaction", transaction_payload("a", tenant_id=3, account_id=27, e2e="E-a"))
            fake_transport.fire("bitso:transaction", transaction_payload("b", tenant_id=3, account_id=28, e2e="E-b"))

            assert [live.movement.id for live in otc] == ["a"]
        finally:
            await channel.close()

    @pytest.mark.asyncio
    async def test_events_dropped_when_not_connected(self, make_channel, fake_transport, wait_until) -> None:
        """Domain events outside CONNECTED are dropped."""
        channel = make_channel()
        received = []
        channel.subscribe(Subscription(SubscriptionContext.API), on_movement=received.append)
        try:
            await channel.start()
            await wait_until(lambda: channel.is_connected)
            fake_transport.drop()

            fake_transport.fire("bitso:transaction", transaction_payload())

            assert received == []
            assert channel.stats["events_dropped"] == 1
        finally:
            await channel.close()

    @pytest.mark.asyncio
    async def test_movement_received_published_once(self, make_channel, fake_transport, wait_until) -> None:
        """One MOVEMENT_RECEIVED per event regardless of listener count."""
        channel = make_channel()
        channel.subscribe(Subscription(SubscriptionContext.API), on_movement=lambda live: None)
        channel.subscribe(Subscription(SubscriptionContext.TCR, tenant_id=2), on_movement=lambda live: None)
        published = []
        channel.event_bus.subscribe(EventType.MOVEMENT_RECEIVED, published.append)
        try:
            await channel.start()
            await wait_until(lambda: channel.is_connected)

            fake_transport.fire("bitso:deposit:processed", {
                "timestamp": "2024-03-15T12:00:00Z",
                "data": {"transaction_id": "dep1", "amount": "50", "tenant_id": 2, "status": "processed"},
            })

            assert len(published) == 1
            assert published[0].kind == "deposit"
        finally:
            await channel.close()

    @pytest.mark.asyncio
    async def test_malformed_payload_dropped(self, make_channel, fake_transport, wait_until) -> None:
        """A payload that cannot be converted is logged and dropped."""
        channel = make_channel()
        received = []
        channel.subscribe(Subscription(SubscriptionContext.API), on_movement=received.append)
        try:
            await channel.start()
            await wait_until(lambda: channel.is_connected)

            fake_transport.fire("bitso:transaction", {"data": {"id": "x", "amount": "not money"}})
            fake_transport.fire("bitso:transaction", "garbage")

            assert received == []
            assert channel.stats["events_dropped"] == 2
        finally:
            await channel.close()

    @pytest.mark.asyncio
    async def test_balance_reaches_every_balance_listener(self, make_channel, fake_transport, wait_until) -> None:
        """Balance events carry no tenant and bypass context scoping."""
        channel = make_channel()
        snapshots = []
        channel.subscribe(Subscription(SubscriptionContext.OTC, tenant_id=3, account_id=27), on_balance=snapshots.append)
        try:
            await channel.start()
            await wait_until(lambda: channel.is_connected)

            fake_transport.fire("bitso:balance", {
                "timestamp": "2024-03-15T12:00:00Z",
                "data": {"balances": [
                    {"currency": "brl", "available": "10.50", "total": "12.00", "locked": "1.50"},
                ]},
            })

            assert len(snapshots) == 1
            brl = snapshots[0].for_currency("BRL")
            assert brl.available == Decimal("10.50")
            assert brl.locked == Decimal("1.50")
            assert channel.last_balance is snapshots[0]
        finally:
            await channel.close()

    @pytest.mark.asyncio
    async def test_unsubscribe_stops_delivery(self, make_channel, fake_transport, wait_until) -> None:
        """After unsubscribe the listener receives nothing."""
        channel = make_channel()
        received = []
        unsubscribe = channel.subscribe(Subscription(SubscriptionContext.API), on_movement=received.append)
        try:
            await channel.start()
            await wait_until(lambda: channel.is_connected)

            unsubscribe()
            fake_transport.fire("bitso:transaction", transaction_payload())

            assert received == []
        finally:
            await channel.close()


class TestHeartbeatAndTeardown:
    """Heartbeat emission and close()."""

    @pytest.mark.asyncio
    async def test_heartbeat_pings_while_connected(self, make_channel, fake_transport, wait_until) -> None:
        """ping is emitted periodically with a timestamp."""
        channel = make_channel(heartbeat_interval_sec=0.01)
        channel.subscribe(Subscription(SubscriptionContext.API))
        try:
            await channel.start()
            await wait_until(lambda: len(fake_transport.pings()) >= 2)

            assert "timestamp" in fake_transport.pings()[0]
        finally:
            await channel.close()

    @pytest.mark.asyncio
    async def test_close_stops_everything(self, make_channel, fake_transport, wait_until) -> None:
        """close() cancels the heartbeat, removes listeners and disconnects."""
        channel = make_channel(heartbeat_interval_sec=0.01)
        channel.subscribe(Subscription(SubscriptionContext.API))
        await channel.start()
        await wait_until(lambda: len(fake_transport.pings()) >= 1)

        await channel.close()
        pings_at_close = len(fake_transport.pings())
        await asyncio.sleep(0.05)

        assert channel.state is ConnectionState.DISCONNECTED
        assert fake_transport.removed_listeners is True
        assert fake_transport.disconnect_calls >= 1
        assert len(fake_transport.pings()) == pings_at_close
        assert channel.requested_rooms == set()

    @pytest.mark.asyncio
    async def test_disconnect_during_close_ignored(self, make_channel, fake_transport, wait_until) -> None:
        """The disconnect event caused by close() does not trigger a reconnect."""
        channel = make_channel()
        channel.subscribe(Subscription(SubscriptionContext.API))
        await channel.start()
        await wait_until(lambda: channel.is_connected)

        await channel.close()
        fake_transport.fire("disconnect", "io client disconnect")
        await asyncio.sleep(0.05)

        assert channel.state is ConnectionState.DISCONNECTED
        assert len(fake_transport.connect_calls) == 1
