"""Pagination models: filters, provider-tagged cursors and pages."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional, Union

from .movement import Movement, Provider


@dataclass(frozen=True)
class StatementFilters:
    """Date range applied to a statement query (inclusive on both ends)."""

    date_from: Optional[date] = None
    date_to: Optional[date] = None

    def __post_init__(self):
        if self.date_from and self.date_to and self.date_from > self.date_to:
            raise ValueError(
                f"date_from ({self.date_from}) is after date_to ({self.date_to})"
            )

    @property
    def is_empty(self) -> bool:
        return self.date_from is None and self.date_to is None


@dataclass(frozen=True)
class OpaqueCursor:
    """Single continuation token (BMP 274, BMP 531)."""

    provider: Provider
    token: str


@dataclass(frozen=True)
class MarkerPairCursor:
    """Independent pay-in and pay-out markers (Bitso)."""

    provider: Provider
    pay_ins_marker: Optional[str] = None
    pay_outs_marker: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not self.pay_ins_marker and not self.pay_outs_marker


PageCursor = Union[OpaqueCursor, MarkerPairCursor]


@dataclass
class MovementPage:
    """One normalized page returned by a statement provider."""

    items: List[Movement] = field(default_factory=list)
    has_more: bool = False
    next_cursor: Optional[PageCursor] = None

    def __len__(self) -> int:
        return len(self.items)
