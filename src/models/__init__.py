"""Data models for the ledger sync engine."""

from .movement import (
    Provider,
    Direction,
    MovementOrigin,
    MergeKey,
    Counterparty,
    Movement,
    stable_id,
)
from .page import StatementFilters, OpaqueCursor, MarkerPairCursor, PageCursor, MovementPage
from .balance import CurrencyBalance, BalanceSnapshot
from .subscription import (
    PLATFORM_ROOM,
    ConnectionState,
    SubscriptionContext,
    Subscription,
    tenant_room,
)

__all__ = [
    "Provider",
    "Direction",
    "MovementOrigin",
    "MergeKey",
    "Counterparty",
    "Movement",
    "stable_id",
    "StatementFilters",
    "OpaqueCursor",
    "MarkerPairCursor",
    "PageCursor",
    "MovementPage",
    "CurrencyBalance",
    "BalanceSnapshot",
    "PLATFORM_ROOM",
    "ConnectionState",
    "SubscriptionContext",
    "Subscription",
    "tenant_room",
]
