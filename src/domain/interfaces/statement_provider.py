"""Statement provider interface for paginated movement retrieval."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Mapping, Optional

from ...models.movement import Movement, Provider
from ...models.page import MovementPage, PageCursor, StatementFilters


class StatementProvider(ABC):
    """
    Interface for upstream statement providers (BMP 274, BMP 531, Bitso).

    Each implementation owns its provider's pagination contract, request
    parameters and field quirks. Implementations are selected by their
    PROVIDER tag, never by the shape of a response.
    """

    PROVIDER: Provider

    @abstractmethod
    async def fetch_page(
        self,
        filters: StatementFilters,
        cursor: Optional[PageCursor],
        page_size: int,
    ) -> MovementPage:
        """
        Fetch one page of movements.

        Args:
            filters: Date range for the query.
            cursor: Continuation token issued by this provider, or None for
                the most recent page.
            page_size: Requested page size.

        Returns:
            MovementPage sorted by occurred_at descending. Empty results
            produce an empty page, never an exception.

        Raises:
            ProviderError: Non-2xx status or malformed response.
            NetworkError: Transport failure.
            FetchTimeoutError: Request exceeded its timeout.
        """
        pass

    @abstractmethod
    def normalize(
        self,
        raw: Mapping[str, Any],
        received_at: Optional[datetime] = None,
    ) -> Movement:
        """
        Convert one raw record into a canonical Movement.

        Pure function; tolerates missing or alternate field names.

        Args:
            raw: Untransformed provider record.
            received_at: Fallback timestamp for records that carry none.
        """
        pass
