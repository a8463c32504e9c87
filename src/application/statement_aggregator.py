"""
Statement aggregator - drives pagination for one (provider, filters) key.

Responsibilities:
- Follow the provider's cursor chain one page per load_next() call
- Share a single in-flight fetch between concurrent callers
- Accumulate a deduplicated list of movements
- Restart from the first page when the filters or the provider change,
  ignoring results of fetches started under the previous key
- Keep cursor and items untouched when a fetch fails, so a retry re-issues
  the same cursor
"""

from __future__ import annotations

import asyncio
from typing import Any, List, Optional, Set

from ..domain.events.domain_events import FetchFailed, PageLoaded
from ..domain.events.event_types import EventType
from ..domain.exceptions import FetchTimeoutError
from ..domain.interfaces.event_bus import EventBus
from ..domain.interfaces.statement_provider import StatementProvider
from ..domain.services.movement_index import MovementIndex
from ..models.movement import Movement, Provider
from ..models.page import MovementPage, PageCursor, StatementFilters
from ..utils.logging_setup import get_logger
from ..utils.perf_logger import log_page_fetch_timing
from ..utils.trace_context import new_sync


logger = get_logger(__name__)


class StatementAggregator:
    """
    Paginated statement loader for a single provider.

    Usage:
        aggregator = StatementAggregator(BitsoStatementAdapter(http), filters)
        page = await aggregator.load_next()
        while aggregator.has_more:
            page = await aggregator.load_next()
        all_items = aggregator.items
    """

    def __init__(
        self,
        provider: StatementProvider,
        filters: Optional[StatementFilters] = None,
        page_size: int = 50,
        fetch_timeout_sec: float = 30.0,
        max_empty_pages: int = 5,
        event_bus: Optional[EventBus] = None,
    ):
        """
        Args:
            provider: Statement adapter for one provider.
            filters: Initial date range (defaults to unfiltered).
            page_size: Requested page size.
            fetch_timeout_sec: Upper bound for a single page fetch.
            max_empty_pages: Extra pages followed per load_next() when the
                provider's client-side date filter empties a page.
            event_bus: Receives PAGE_LOADED / FETCH_FAILED.
        """
        self._provider = provider
        self._filters = filters or StatementFilters()
        self._page_size = page_size
        self._fetch_timeout = fetch_timeout_sec
        self._max_empty_pages = max_empty_pages
        self._event_bus = event_bus

        self._lock = asyncio.Lock()
        self._inflight: Optional[asyncio.Task] = None
        self._head_inflight: Optional[asyncio.Task] = None

        self._generation = 0
        self._index = MovementIndex()
        self._cursor: Optional[PageCursor] = None
        self._consumed: Set[PageCursor] = set()
        self._has_more = True
        self._stale = False
        self._last_error: Optional[BaseException] = None
        self._pages_loaded = 0

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def provider(self) -> StatementProvider:
        return self._provider

    @property
    def provider_tag(self) -> Provider:
        return self._provider.PROVIDER

    @property
    def filters(self) -> StatementFilters:
        return self._filters

    @property
    def generation(self) -> int:
        """Incremented on every reset; results from older generations are ignored."""
        return self._generation

    @property
    def has_more(self) -> bool:
        return self._has_more

    @property
    def cursor(self) -> Optional[PageCursor]:
        return self._cursor

    @property
    def items(self) -> List[Movement]:
        """Accumulated movements, newest first, one per event."""
        return self._index.sorted_desc()

    @property
    def stale(self) -> bool:
        """True when the last page load failed; load_next() retries it."""
        return self._stale

    @property
    def last_error(self) -> Optional[BaseException]:
        return self._last_error

    @property
    def is_loading(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    @property
    def pages_loaded(self) -> int:
        return self._pages_loaded

    # -------------------------------------------------------------------------
    # Key changes
    # -------------------------------------------------------------------------

    def set_filters(self, filters: StatementFilters) -> bool:
        """
        Change the date range and restart from the first page.

        Returns:
            True if the filters changed (and state was reset).
        """
        if filters == self._filters:
            return False
        self._filters = filters
        self.reset()
        return True

    def set_provider(self, provider: StatementProvider) -> None:
        """Switch adapter and restart from the first page."""
        self._provider = provider
        self.reset()

    def reset(self) -> None:
        """Drop the cursor chain and accumulated items; in-flight results are ignored."""
        self._generation += 1
        self._index.clear()
        self._cursor = None
        self._consumed.clear()
        self._has_more = True
        self._stale = False
        self._last_error = None
        self._pages_loaded = 0
        self._inflight = None
        self._head_inflight = None
        logger.info(
            f"{self.provider_tag.value}: reset (generation={self._generation}, "
            f"filters={self._filters.date_from}..{self._filters.date_to})"
        )

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------

    async def load_next(self) -> MovementPage:
        """
        Fetch the next page.

        Concurrent callers share the in-flight fetch. Once the chain is
        exhausted an empty final page is returned without any I/O.

        Raises:
            ProviderError, NetworkError, FetchTimeoutError: from the adapter;
                cursor, items and has_more are left untouched.
        """
        if self._inflight is not None and not self._inflight.done():
            return await asyncio.shield(self._inflight)

        if not self._has_more:
            return MovementPage(items=[], has_more=False, next_cursor=None)

        task = asyncio.create_task(self._load_next(self._generation))
        self._inflight = task
        task.add_done_callback(self._clear_inflight)
        return await asyncio.shield(task)

    def _clear_inflight(self, task: asyncio.Task) -> None:
        if self._inflight is task:
            self._inflight = None
        if not task.cancelled():
            # Mark retrieved; callers already received the exception
            task.exception()

    async def _load_next(self, generation: int) -> MovementPage:
        async with self._lock:
            if generation != self._generation:
                return MovementPage(items=[], has_more=self._has_more, next_cursor=self._cursor)

            with new_sync():
                collected: List[Movement] = []
                empty_pages = 0
                while True:
                    cursor = self._cursor
                    page = await self._fetch(cursor)

                    if generation != self._generation:
                        logger.info(
                            f"{self.provider_tag.value}: discarding page fetched under "
                            f"generation {generation} (now {self._generation})"
                        )
                        return page

                    self._advance(cursor, page)
                    self._accumulate(page.items)
                    collected.extend(page.items)
                    self._pages_loaded += 1
                    self._stale = False
                    self._last_error = None

                    if page.items or not self._has_more or empty_pages >= self._max_empty_pages:
                        break
                    empty_pages += 1
                    logger.debug(
                        f"{self.provider_tag.value}: empty filtered page, following cursor "
                        f"({empty_pages}/{self._max_empty_pages})"
                    )

                result = MovementPage(
                    items=sorted(collected, key=lambda m: m.occurred_at, reverse=True),
                    has_more=self._has_more,
                    next_cursor=self._cursor,
                )
                logger.info(
                    f"{self.provider_tag.value}: page {self._pages_loaded} loaded "
                    f"({len(result)} items, total={len(self._index)}, has_more={self._has_more})"
                )
                self._publish(EventType.PAGE_LOADED, PageLoaded(
                    provider=self.provider_tag,
                    item_count=len(result),
                    has_more=self._has_more,
                ))
                return result

    def _advance(self, cursor: Optional[PageCursor], page: MovementPage) -> None:
        """Move the chain forward, ending it on a repeated or missing cursor."""
        if cursor is not None:
            self._consumed.add(cursor)

        next_cursor = page.next_cursor
        has_more = page.has_more
        if has_more and next_cursor is None:
            logger.warning(f"{self.provider_tag.value}: has_more without a next cursor, ending chain")
            has_more = False
        elif has_more and (next_cursor in self._consumed or next_cursor == cursor):
            logger.warning(
                f"{self.provider_tag.value}: provider repeated cursor {next_cursor}, ending chain"
            )
            has_more = False
            next_cursor = None

        self._cursor = next_cursor if has_more else None
        self._has_more = has_more

    def _accumulate(self, movements: List[Movement]) -> int:
        """Upsert movements; returns how many were new."""
        added = 0
        for movement in movements:
            if self._index.upsert(movement) is None:
                added += 1
        return added

    async def refresh_head(self) -> MovementPage:
        """
        Fetch the first page under the current filters without touching the
        cursor chain, upserting its items. Concurrent calls share one fetch.
        """
        if self._head_inflight is not None and not self._head_inflight.done():
            return await asyncio.shield(self._head_inflight)

        task = asyncio.create_task(self._refresh_head(self._generation))
        self._head_inflight = task
        task.add_done_callback(self._clear_head_inflight)
        return await asyncio.shield(task)

    def _clear_head_inflight(self, task: asyncio.Task) -> None:
        if self._head_inflight is task:
            self._head_inflight = None
        if not task.cancelled():
            task.exception()

    async def _refresh_head(self, generation: int) -> MovementPage:
        async with self._lock:
            with new_sync():
                page = await self._fetch(None, head=True)
                if generation != self._generation:
                    return page
                added = self._accumulate(page.items)
                logger.debug(
                    f"{self.provider_tag.value}: head refreshed ({len(page)} items, {added} new)"
                )
                self._publish(EventType.PAGE_LOADED, PageLoaded(
                    provider=self.provider_tag,
                    item_count=len(page),
                    has_more=self._has_more,
                    head_refresh=True,
                ))
                return page

    async def _fetch(self, cursor: Optional[PageCursor], head: bool = False) -> MovementPage:
        """One bounded provider call; failures are recorded and re-raised."""
        tag = self.provider_tag.value
        try:
            async with log_page_fetch_timing(tag, head=head) as ctx:
                try:
                    page = await asyncio.wait_for(
                        self._provider.fetch_page(self._filters, cursor, self._page_size),
                        timeout=self._fetch_timeout,
                    )
                except asyncio.TimeoutError as e:
                    if isinstance(e, FetchTimeoutError):
                        raise
                    raise FetchTimeoutError(
                        f"{tag} page fetch exceeded {self._fetch_timeout:.0f}s"
                    ) from e
                ctx["items"] = len(page)
            return page
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._last_error = e
            if not head:
                self._stale = True
            logger.warning(f"{tag}: {'head refresh' if head else 'page fetch'} failed: {e}")
            self._publish(EventType.FETCH_FAILED, FetchFailed(provider=self.provider_tag, error=str(e)))
            raise

    def _publish(self, event_type: EventType, payload: Any) -> None:
        if self._event_bus is not None:
            self._event_bus.publish(event_type, payload)
