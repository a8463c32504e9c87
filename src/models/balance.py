"""Balance snapshot pushed by the realtime channel."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional, Tuple

from .movement import Provider


@dataclass(frozen=True)
class CurrencyBalance:
    """Balance for a single currency."""

    currency: str
    available: Decimal
    total: Decimal
    locked: Decimal
    pending_deposit: Optional[Decimal] = None
    pending_withdrawal: Optional[Decimal] = None


@dataclass(frozen=True)
class BalanceSnapshot:
    """Per-currency balances as reported at `received_at`."""

    provider: Provider
    balances: Tuple[CurrencyBalance, ...]
    received_at: datetime

    def for_currency(self, currency: str) -> Optional[CurrencyBalance]:
        """Look up the balance of one currency (case-insensitive)."""
        wanted = currency.lower()
        for balance in self.balances:
            if balance.currency.lower() == wanted:
                return balance
        return None
