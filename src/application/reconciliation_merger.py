"""
Reconciliation merger - one feed from polled statements and live pushes.

Polled pages are authoritative. Live pushes are shown at once as
unconfirmed entries, then re-validated against the provider's first
statement page after a short, event-dependent delay. When the polled
record disagrees with the optimistic one, the polled record wins and the
correction is logged as a ReconciliationMismatch.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Dict, Iterable, List, Optional

from config.models import ReconciliationConfig

from ..domain.events.domain_events import FeedUpdated, ReconciliationMismatch, RevalidationFailed
from ..domain.events.event_types import EventType
from ..domain.interfaces.event_bus import EventBus
from ..domain.services.movement_index import MovementIndex
from ..infrastructure.realtime.channel import RealtimeChannel
from ..infrastructure.realtime.events import LiveMovement
from ..models.movement import MergeKey, Movement, MovementOrigin, Provider
from ..models.page import StatementFilters
from ..models.subscription import Subscription
from ..utils.logging_setup import get_logger
from ..utils.structured_logger import LogCategory, StructuredLogger
from ..utils.trace_context import new_sync
from .scheduler import TaskScheduler
from .statement_aggregator import StatementAggregator


logger = get_logger(__name__)


class ReconciliationMerger:
    """
    Owns the merged feed. Nothing else mutates it.

    Usage:
        merger = ReconciliationMerger({Provider.BITSO: aggregator})
        merger.attach(channel, Subscription(SubscriptionContext.API))
        await merger.load_more()
        for movement in merger.feed:
            ...
    """

    def __init__(
        self,
        aggregators: Dict[Provider, StatementAggregator] | Iterable[StatementAggregator],
        channel: Optional[RealtimeChannel] = None,
        subscription: Optional[Subscription] = None,
        reconciliation: Optional[ReconciliationConfig] = None,
        event_bus: Optional[EventBus] = None,
        structured_logger: Optional[StructuredLogger] = None,
    ):
        if isinstance(aggregators, dict):
            self._aggregators: Dict[Provider, StatementAggregator] = dict(aggregators)
        else:
            self._aggregators = {agg.provider_tag: agg for agg in aggregators}

        self._config = reconciliation or ReconciliationConfig()
        self._event_bus = event_bus
        self._structured = structured_logger or StructuredLogger(logger)

        self._feed = MovementIndex()
        self._scheduler = TaskScheduler(name="revalidate")
        self._mismatches = 0

        self._channel: Optional[RealtimeChannel] = None
        self._unsubscribe: Optional[Callable[[], None]] = None
        if channel is not None and subscription is not None:
            self.attach(channel, subscription)

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def aggregators(self) -> Dict[Provider, StatementAggregator]:
        return dict(self._aggregators)

    @property
    def feed(self) -> List[Movement]:
        """Merged movements, newest first (copy)."""
        return self._feed.sorted_desc()

    @property
    def stale(self) -> bool:
        """True when the last page load of any provider failed."""
        return any(agg.stale for agg in self._aggregators.values())

    @property
    def has_more(self) -> bool:
        return any(agg.has_more for agg in self._aggregators.values())

    @property
    def realtime(self) -> bool:
        return self._channel is not None and self._channel.is_connected

    @property
    def unconfirmed_count(self) -> int:
        return sum(1 for movement in self._feed if not movement.is_confirmed)

    @property
    def pending_revalidations(self) -> int:
        return len(self._scheduler.pending_keys)

    @property
    def mismatch_count(self) -> int:
        return self._mismatches

    # -------------------------------------------------------------------------
    # Channel binding
    # -------------------------------------------------------------------------

    def attach(self, channel: RealtimeChannel, subscription: Subscription) -> None:
        """Receive live movements from `channel` for `subscription`."""
        self.detach()
        self._channel = channel
        self._unsubscribe = channel.subscribe(subscription, on_movement=self.ingest_live)
        logger.info(f"Merger attached to realtime channel ({subscription.context.value})")

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
        self._unsubscribe = None
        self._channel = None

    # -------------------------------------------------------------------------
    # Polled data
    # -------------------------------------------------------------------------

    async def load_more(self) -> int:
        """
        Load the next page of every provider that still has more, concurrently.

        Pages that succeeded are merged even when another provider failed.

        Returns:
            Number of movements ingested.

        Raises:
            The first provider error, after merging the successful pages.
        """
        targets = [agg for agg in self._aggregators.values() if agg.has_more]
        if not targets:
            return 0

        generations = [agg.generation for agg in targets]
        results = await asyncio.gather(
            *(agg.load_next() for agg in targets), return_exceptions=True,
        )

        ingested = 0
        errors: List[BaseException] = []
        for agg, generation, result in zip(targets, generations, results):
            if isinstance(result, BaseException):
                errors.append(result)
                logger.warning(f"{agg.provider_tag.value}: load failed, feed is stale: {result}")
                continue
            if agg.generation != generation:
                logger.debug(f"{agg.provider_tag.value}: ignoring page from superseded filters")
                continue
            ingested += self._ingest_polled_items(result.items)

        self._publish_feed()
        if errors:
            raise errors[0]
        return ingested

    def ingest_polled(self, movements: Iterable[Movement]) -> int:
        """Merge polled movements; each replaces any entry for the same event."""
        count = self._ingest_polled_items(movements)
        self._publish_feed()
        return count

    def _ingest_polled_items(self, movements: Iterable[Movement]) -> int:
        count = 0
        for movement in movements:
            if movement.origin is not MovementOrigin.POLL:
                movement = movement.with_origin(MovementOrigin.POLL)
            existing = self._feed.find(movement)
            if existing is not None and not existing.is_confirmed:
                self._scheduler.cancel(existing.merge_key)
                fields = existing.differs_from(movement)
                if fields:
                    self._record_mismatch(existing, movement, fields)
                else:
                    logger.debug(f"Live entry {existing.merge_key} confirmed by statement")
            self._feed.upsert(movement)
            count += 1
        return count

    def _record_mismatch(self, pushed: Movement, polled: Movement, fields: tuple) -> None:
        self._mismatches += 1
        mismatch = ReconciliationMismatch(
            key=pushed.merge_key, pushed=pushed, polled=polled, fields=fields,
        )
        self._structured.warning(
            LogCategory.RECONCILIATION,
            "Live movement corrected by statement",
            {
                "key": list(mismatch.key),
                "fields": list(fields),
                "pushed": {name: getattr(pushed, name) for name in fields},
                "polled": {name: getattr(polled, name) for name in fields},
            },
        )
        self._publish(EventType.RECONCILIATION_MISMATCH, mismatch)

    # -------------------------------------------------------------------------
    # Live data
    # -------------------------------------------------------------------------

    def ingest_live(self, live: LiveMovement) -> None:
        """
        Show a pushed movement at once and schedule its re-validation.

        A polled entry for the same event is never overwritten by a push.
        """
        movement = live.movement
        if movement.origin is not MovementOrigin.PUSH:
            movement = movement.with_origin(MovementOrigin.PUSH)

        existing = self._feed.find(movement)
        if existing is not None and existing.is_confirmed:
            logger.debug(f"Push for {existing.merge_key} already confirmed, ignoring")
            return

        self._feed.upsert(movement)
        key = movement.merge_key
        self._schedule_revalidation(key, movement.provider, self._config.delay_for(live.kind), attempt=1)
        logger.info(
            f"Live {live.kind} {key}: {movement.direction.value} {movement.amount} "
            f"{movement.currency} (unconfirmed)"
        )
        self._publish_feed()

    def _schedule_revalidation(self, key: MergeKey, provider: Provider, delay: float, attempt: int) -> None:
        async def run() -> None:
            await self._revalidate(key, provider, delay, attempt)

        self._scheduler.schedule(key, delay, run)

    async def _revalidate(self, key: MergeKey, provider: Provider, delay: float, attempt: int) -> None:
        aggregator = self._aggregators.get(provider)
        if aggregator is None:
            logger.warning(f"No statement aggregator for {provider.value}; {key} stays unconfirmed")
            return

        generation = aggregator.generation
        with new_sync():
            try:
                page = await aggregator.refresh_head()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if attempt <= self._config.revalidation_retries:
                    logger.warning(f"Re-validation of {key} failed (attempt {attempt}), retrying: {e}")
                    self._schedule_revalidation(key, provider, delay, attempt + 1)
                    return
                logger.error(f"Re-validation of {key} failed after {attempt} attempts, entry stays unconfirmed: {e}")
                self._publish(EventType.REVALIDATION_FAILED, RevalidationFailed(
                    key=key, attempt=attempt, error=str(e),
                ))
                return

            if aggregator.generation != generation:
                return
            self._ingest_polled_items(page.items)
            current = self._feed.get(key)
            if current is not None and not current.is_confirmed:
                logger.debug(f"{key} not on the first statement page yet, stays unconfirmed")
            self._publish_feed()

    async def wait_revalidations(self) -> None:
        """Wait until every scheduled re-validation has run."""
        await self._scheduler.join()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def set_filters(self, filters: StatementFilters) -> bool:
        """
        Apply a new date range to every provider, clearing the feed.

        Returns:
            True if any aggregator was reset.
        """
        changed = [agg.set_filters(filters) for agg in self._aggregators.values()]
        if not any(changed):
            return False
        self._scheduler.cancel_all()
        self._feed.clear()
        for agg in self._aggregators.values():
            self._ingest_polled_items(agg.items)
        self._publish_feed()
        return True

    async def close(self) -> None:
        """Cancel pending re-validations and stop receiving pushes."""
        cancelled = self._scheduler.cancel_all()
        self.detach()
        await self._scheduler.join()
        logger.info(f"Merger closed ({cancelled} re-validations cancelled, {len(self._feed)} movements)")

    def _publish_feed(self) -> None:
        self._publish(EventType.FEED_UPDATED, FeedUpdated(
            size=len(self._feed), unconfirmed=self.unconfirmed_count,
        ))

    def _publish(self, event_type: EventType, payload: Any) -> None:
        if self._event_bus is not None:
            self._event_bus.publish(event_type, payload)

    def __repr__(self) -> str:
        return (
            f"ReconciliationMerger(providers={[p.value for p in self._aggregators]}, "
            f"feed={len(self._feed)}, unconfirmed={self.unconfirmed_count})"
        )
