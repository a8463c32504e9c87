"""
Application Bootstrap - Composition Root for the ledger sync session.

LedgerSyncSession builds every component from AppConfig and owns their
lifecycle, making the initialization and teardown order explicit and
testable.

Usage:
    session = LedgerSyncSession(config, providers=[Provider.BITSO],
                                subscription=Subscription(SubscriptionContext.API))
    await session.start(pages=1)
    feed = session.merger.feed
    # ... run application ...
    await session.stop()
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from config.models import AppConfig

from ..domain.interfaces.socket_transport import SocketTransport
from ..domain.interfaces.statement_provider import StatementProvider
from ..infrastructure.adapters.http_client import ApiHttpClient
from ..infrastructure.adapters.statements import build_statement_provider
from ..infrastructure.realtime.channel import RealtimeChannel
from ..infrastructure.realtime.transport import SocketIOTransport
from ..models.movement import Provider
from ..models.page import StatementFilters
from ..models.subscription import Subscription
from ..utils.logging_setup import get_logger
from ..utils.structured_logger import LogCategory, StructuredLogger
from .reconciliation_merger import ReconciliationMerger
from .simple_event_bus import SimpleEventBus
from .statement_aggregator import StatementAggregator


logger = get_logger(__name__)


@dataclass
class LedgerSyncSession:
    """
    Composition root for one dashboard session.

    Attributes:
        config: Application configuration.
        providers: Providers to load; defaults to config.statements.providers.
        subscription: Live event scope; None disables the realtime channel.
        filters: Initial date range.
        transport: Socket transport override (tests).
        adapter_factory: Statement adapter override (tests).
    """

    config: AppConfig
    providers: Optional[List[Provider]] = None
    subscription: Optional[Subscription] = None
    filters: StatementFilters = field(default_factory=StatementFilters)
    transport: Optional[SocketTransport] = None
    adapter_factory: Optional[Callable[[Provider], StatementProvider]] = None

    # Created during build
    event_bus: Optional[SimpleEventBus] = field(default=None, init=False)
    http: Optional[ApiHttpClient] = field(default=None, init=False)
    aggregators: Dict[Provider, StatementAggregator] = field(default_factory=dict, init=False)
    channel: Optional[RealtimeChannel] = field(default=None, init=False)
    merger: Optional[ReconciliationMerger] = field(default=None, init=False)

    _structured: Optional[StructuredLogger] = field(default=None, init=False)
    _started: bool = field(default=False, init=False)

    def __post_init__(self) -> None:
        if self.providers is None:
            self.providers = [Provider.parse(tag) for tag in self.config.statements.providers]
        self._structured = StructuredLogger(logger)
        self._build()

    def _log(self, message: str, extra: Optional[Dict[str, Any]] = None) -> None:
        self._structured.info(LogCategory.SYSTEM, message, extra or {})

    # -------------------------------------------------------------------------
    # Wiring
    # -------------------------------------------------------------------------

    def _build(self) -> None:
        """Create components in dependency order."""
        self.event_bus = SimpleEventBus(name="ledger")
        self._create_http_client()
        self._create_aggregators()
        self._create_channel()
        self._create_merger()
        self._log("Ledger sync session built", {
            "env": self.config.env,
            "providers": [p.value for p in self.providers],
            "realtime": self.channel is not None,
        })

    def _create_http_client(self) -> None:
        api = self.config.api
        self.http = ApiHttpClient(api.base_url, token=api.token, timeout_sec=api.timeout_sec)

    def _create_aggregators(self) -> None:
        statements = self.config.statements
        for provider in self.providers:
            if self.adapter_factory is not None:
                adapter = self.adapter_factory(provider)
            else:
                adapter = build_statement_provider(
                    provider,
                    self.http,
                    bmp_531_account=self.config.bmp_531_account,
                    timeout_sec=statements.fetch_timeout_sec,
                )
            self.aggregators[provider] = StatementAggregator(
                adapter,
                filters=self.filters,
                page_size=statements.page_size,
                fetch_timeout_sec=statements.fetch_timeout_sec,
                max_empty_pages=statements.max_empty_pages,
                event_bus=self.event_bus,
            )

    def _create_channel(self) -> None:
        realtime = self.config.realtime
        if self.subscription is None or not realtime.enabled:
            return
        self.channel = RealtimeChannel(
            self.transport or SocketIOTransport(),
            url=realtime.url,
            namespace=realtime.namespace,
            token=self.config.api.token,
            transports=realtime.transports,
            connect_timeout_sec=realtime.connect_timeout_sec,
            backoff=realtime.reconnect_backoff_sec,
            heartbeat_interval_sec=realtime.heartbeat_interval_sec,
            contexts=self.config.contexts,
        )

    def _create_merger(self) -> None:
        self.merger = ReconciliationMerger(
            self.aggregators,
            reconciliation=self.config.reconciliation,
            event_bus=self.event_bus,
        )

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self, pages: int = 1) -> None:
        """
        Start the channel, subscribe the merger and load the first pages.

        Args:
            pages: Pages to load per provider (stops early when exhausted).

        Raises:
            Provider errors from the first page loads; the channel keeps
            running and the feed is marked stale.
        """
        if self._started:
            raise RuntimeError("LedgerSyncSession already started")
        self._started = True

        if self.channel is not None:
            self.merger.attach(self.channel, self.subscription)
            await self.channel.start()
            self._log("Realtime channel started", {"url": self.config.realtime.url})

        for _ in range(max(0, pages)):
            if not self.merger.has_more:
                break
            await self.merger.load_more()

        self._log("Initial pages loaded", {
            "movements": len(self.merger.feed),
            "has_more": self.merger.has_more,
        })

    async def stop(self) -> None:
        """Tear down in reverse order: merger, channel, HTTP client."""
        if self.merger is not None:
            await self.merger.close()
        if self.channel is not None:
            await self.channel.close()
        if self.http is not None:
            self.http.close()
        self._started = False
        self._log("Ledger sync session stopped")

    async def __aenter__(self) -> "LedgerSyncSession":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.stop()
