"""Tests for ReconciliationMerger: optimistic pushes, re-validation and polled merges."""

import asyncio
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from config.models import ReconciliationConfig
from src.application.reconciliation_merger import ReconciliationMerger
from src.application.statement_aggregator import StatementAggregator
from src.domain.events.domain_events import FeedUpdated, ReconciliationMismatch, RevalidationFailed
from src.domain.events.event_types import EventType
from src.domain.exceptions import NetworkError, ProviderError
from src.infrastructure.realtime.events import LiveMovement
from src.models.movement import MovementOrigin, Provider
from src.models.page import MovementPage, StatementFilters
from src.models.subscription import Subscription, SubscriptionContext


BASE = datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)

FAST = ReconciliationConfig(
    revalidation_delays_sec={"transaction": 0.01, "deposit": 0.01, "withdrawal": 0.01, "default": 0.01},
    revalidation_retries=1,
)


def published(bus, event_type):
    return [call[0][1] for call in bus.publish.call_args_list if call[0][0] == event_type]


@pytest.fixture
def bus():
    return MagicMock()


@pytest.fixture
def bitso(fake_provider_cls):
    return fake_provider_cls(Provider.BITSO)


@pytest.fixture
def merger(bitso, bus):
    m = ReconciliationMerger([StatementAggregator(bitso)], reconciliation=FAST, event_bus=bus)
    yield m


def push(make_movement, id="tx1", e2e="E2E1", amount="150.00", minutes_ago=0, status="completed"):
    movement = make_movement(
        id=id, provider=Provider.BITSO, e2e=e2e, amount=amount, status=status,
        at=BASE - timedelta(minutes=minutes_ago), origin=MovementOrigin.PUSH,
    )
    return LiveMovement(movement=movement, kind="transaction", event="bitso:transaction")


class TestOptimisticPush:
    """Live movements appear at once and are re-validated."""

    @pytest.mark.asyncio
    async def test_push_inserted_at_head(self, merger, bitso, make_movement) -> None:
        """A new push is shown immediately, newest first, unconfirmed."""
        merger.ingest_polled([make_movement(id="old", provider=Provider.BITSO, at=BASE - timedelta(hours=1))])

        merger.ingest_live(push(make_movement))

        feed = merger.feed
        assert [m.id for m in feed] == ["tx1", "old"]
        assert feed[0].is_confirmed is False
        assert merger.unconfirmed_count == 1
        assert merger.pending_revalidations == 1
        await merger.close()

    @pytest.mark.asyncio
    async def test_scenario_b_correction(self, merger, bitso, bus, make_movement) -> None:
        """The polled record replaces a mismatching push and a mismatch is reported."""
        bitso.script[None] = MovementPage([
            make_movement(id="bitso-99", provider=Provider.BITSO, e2e="E2E1", amount="149.50", at=BASE),
        ])

        merger.ingest_live(push(make_movement, amount="150.00"))
        await merger.wait_revalidations()

        feed = merger.feed
        assert len(feed) == 1
        assert feed[0].is_confirmed is True
        assert feed[0].amount == Decimal("149.50")
        assert merger.unconfirmed_count == 0
        assert merger.mismatch_count == 1

        mismatches = published(bus, EventType.RECONCILIATION_MISMATCH)
        assert len(mismatches) == 1
        assert isinstance(mismatches[0], ReconciliationMismatch)
        assert mismatches[0].fields == ("amount",)
        assert mismatches[0].key == ("e2e", "E2E1")
        assert mismatches[0].pushed.amount == Decimal("150.00")

    @pytest.mark.asyncio
    async def test_matching_poll_confirms_without_mismatch(self, merger, bitso, bus, make_movement) -> None:
        """A polled record that agrees simply confirms the entry."""
        bitso.script[None] = MovementPage([
            make_movement(id="bitso-1", provider=Provider.BITSO, e2e="E2E1", amount="150.00", at=BASE),
        ])

        merger.ingest_live(push(make_movement))
        await merger.wait_revalidations()

        assert merger.feed[0].is_confirmed is True
        assert published(bus, EventType.RECONCILIATION_MISMATCH) == []

    @pytest.mark.asyncio
    async def test_push_after_poll_keeps_polled(self, merger, make_movement) -> None:
        """A push never overwrites a polled entry for the same event."""
        merger.ingest_polled([
            make_movement(id="bitso-1", provider=Provider.BITSO, e2e="E2E1", amount="149.50", at=BASE),
        ])

        merger.ingest_live(push(make_movement, amount="150.00"))

        assert len(merger.feed) == 1
        assert merger.feed[0].amount == Decimal("149.50")
        assert merger.feed[0].is_confirmed is True
        assert merger.pending_revalidations == 0

    @pytest.mark.asyncio
    async def test_repeated_push_replaces_and_reschedules(self, merger, make_movement) -> None:
        """A second push for the same key replaces the first and its pending check."""
        merger.ingest_live(push(make_movement, amount="150.00"))
        merger.ingest_live(push(make_movement, amount="151.00"))

        assert len(merger.feed) == 1
        assert merger.feed[0].amount == Decimal("151.00")
        assert merger.pending_revalidations == 1
        await merger.close()

    @pytest.mark.asyncio
    async def test_poll_cancels_pending_revalidation(self, bitso, make_movement) -> None:
        """A polled record arriving first cancels the scheduled re-validation."""
        slow = ReconciliationConfig(revalidation_delays_sec={"default": 5.0}, revalidation_retries=1)
        merger = ReconciliationMerger([StatementAggregator(bitso)], reconciliation=slow)
        merger.ingest_live(push(make_movement))
        assert merger.pending_revalidations == 1

        merger.ingest_polled([make_movement(id="bitso-1", provider=Provider.BITSO, e2e="E2E1", amount="150.00")])

        assert merger.pending_revalidations == 0
        assert bitso.calls == []

    @pytest.mark.asyncio
    async def test_push_missing_from_head_stays_unconfirmed(self, merger, bitso, make_movement) -> None:
        """If the first page does not have the record yet, the entry stays optimistic."""
        bitso.script[None] = MovementPage([])

        merger.ingest_live(push(make_movement))
        await merger.wait_revalidations()

        assert merger.unconfirmed_count == 1
        assert len(bitso.calls) == 1


class TestRevalidationFailures:
    """Failed re-validation fetches."""

    @pytest.mark.asyncio
    async def test_retry_once_then_confirm(self, merger, bitso, make_movement) -> None:
        """A failed re-validation is retried once."""
        bitso.script[None] = [
            NetworkError("reset"),
            MovementPage([make_movement(id="b1", provider=Provider.BITSO, e2e="E2E1", amount="150.00")]),
        ]

        merger.ingest_live(push(make_movement))
        await merger.wait_revalidations()

        assert len(bitso.calls) == 2
        assert merger.unconfirmed_count == 0

    @pytest.mark.asyncio
    async def test_second_failure_keeps_entry_unconfirmed(self, merger, bitso, bus, make_movement) -> None:
        """After the retry fails the optimistic entry stays and a failure is published."""
        bitso.script[None] = NetworkError("down")

        merger.ingest_live(push(make_movement))
        await merger.wait_revalidations()

        assert len(bitso.calls) == 2
        assert merger.unconfirmed_count == 1
        assert merger.feed[0].amount == Decimal("150.00")

        failures = published(bus, EventType.REVALIDATION_FAILED)
        assert len(failures) == 1
        assert isinstance(failures[0], RevalidationFailed)
        assert failures[0].attempt == 2

    @pytest.mark.asyncio
    async def test_no_aggregator_for_provider(self, fake_provider_cls, make_movement) -> None:
        """Pushes for a provider without an aggregator stay unconfirmed."""
        merger = ReconciliationMerger([StatementAggregator(fake_provider_cls(Provider.BMP))], reconciliation=FAST)

        merger.ingest_live(push(make_movement))
        await merger.wait_revalidations()

        assert merger.unconfirmed_count == 1


class TestLoadMore:
    """Polled pages across providers."""

    @pytest.mark.asyncio
    async def test_loads_providers_concurrently(self, fake_provider_cls, make_movement, wait_until) -> None:
        """Both providers are fetched at the same time and merged sorted."""
        bmp = fake_provider_cls(Provider.BMP, {None: MovementPage([make_movement(id="b1", at=BASE - timedelta(minutes=2))])})
        bitso = fake_provider_cls(Provider.BITSO, {
            None: MovementPage([make_movement(id="x1", provider=Provider.BITSO, at=BASE - timedelta(minutes=1))]),
        })
        gate = asyncio.Event()
        bmp.gate = gate
        bitso.gate = gate
        merger = ReconciliationMerger([StatementAggregator(bmp), StatementAggregator(bitso)])

        task = asyncio.create_task(merger.load_more())
        await wait_until(lambda: len(bmp.calls) == 1 and len(bitso.calls) == 1)
        gate.set()
        count = await task

        assert count == 2
        assert [m.id for m in merger.feed] == ["x1", "b1"]
        assert merger.has_more is False

    @pytest.mark.asyncio
    async def test_one_provider_failure_isolated(self, fake_provider_cls, make_movement) -> None:
        """A failing provider raises after the healthy page is merged."""
        bmp = fake_provider_cls(Provider.BMP, {None: [ProviderError("bad gateway", "bmp", 502), MovementPage([make_movement(id="b1")])]})
        bitso = fake_provider_cls(Provider.BITSO, {None: MovementPage([make_movement(id="x1", provider=Provider.BITSO)])})
        merger = ReconciliationMerger([StatementAggregator(bmp), StatementAggregator(bitso)])

        with pytest.raises(ProviderError):
            await merger.load_more()

        assert [m.id for m in merger.feed] == ["x1"]
        assert merger.stale is True

        await merger.load_more()
        assert len(bitso.calls) == 1
        assert len(bmp.calls) == 2
        assert merger.stale is False
        assert {m.id for m in merger.feed} == {"x1", "b1"}

    @pytest.mark.asyncio
    async def test_cross_provider_duplicate_kept_once(self, fake_provider_cls, make_movement) -> None:
        """The same end-to-end id from two providers yields one entry."""
        bmp = fake_provider_cls(Provider.BMP, {None: MovementPage([make_movement(id="b1", e2e="E9")])})
        bitso = fake_provider_cls(Provider.BITSO, {None: MovementPage([make_movement(id="x1", provider=Provider.BITSO, e2e="E9")])})
        merger = ReconciliationMerger([StatementAggregator(bmp), StatementAggregator(bitso)])

        await merger.load_more()

        assert len(merger.feed) == 1

    @pytest.mark.asyncio
    async def test_feed_updated_published(self, fake_provider_cls, make_movement, bus) -> None:
        """Each merge publishes the new feed size."""
        provider = fake_provider_cls(Provider.BMP, {None: MovementPage([make_movement()])})
        merger = ReconciliationMerger([StatementAggregator(provider)], event_bus=bus)

        await merger.load_more()

        updates = published(bus, EventType.FEED_UPDATED)
        assert isinstance(updates[-1], FeedUpdated)
        assert updates[-1].size == 1
        assert updates[-1].unconfirmed == 0


class TestLifecycle:
    """Filters, channel binding and close."""

    @pytest.mark.asyncio
    async def test_set_filters_clears_feed(self, merger, make_movement) -> None:
        """New filters reset aggregators, the feed and pending re-validations."""
        merger.ingest_live(push(make_movement))

        changed = merger.set_filters(StatementFilters(date_from=date(2024, 3, 1)))

        assert changed is True
        assert merger.feed == []
        assert merger.pending_revalidations == 0
        assert merger.has_more is True

    @pytest.mark.asyncio
    async def test_attach_and_close(self, bitso, make_movement) -> None:
        """The merger subscribes to the channel and detaches on close."""
        channel = MagicMock()
        channel.is_connected = True
        unsubscribe = MagicMock()
        channel.subscribe.return_value = unsubscribe
        subscription = Subscription(SubscriptionContext.TCR, tenant_id=2)

        merger = ReconciliationMerger(
            [StatementAggregator(bitso)], channel=channel, subscription=subscription, reconciliation=FAST,
        )
        assert merger.realtime is True
        channel.subscribe.assert_called_once_with(subscription, on_movement=merger.ingest_live)

        merger.ingest_live(push(make_movement))
        await merger.close()

        unsubscribe.assert_called_once()
        assert merger.realtime is False
        assert merger.pending_revalidations == 0
        assert bitso.calls == []
