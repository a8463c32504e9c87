"""Shared behaviour for HTTP statement adapters."""

from __future__ import annotations

from datetime import datetime
from decimal import InvalidOperation
from typing import Any, Iterable, List, Mapping, Optional, Type

from ....domain.exceptions import ProviderError
from ....domain.interfaces.statement_provider import StatementProvider
from ....models.movement import Movement
from ....models.page import PageCursor
from ....utils.logging_setup import get_logger
from ....utils.timezone import now_utc
from ..http_client import ApiHttpClient


logger = get_logger(__name__)


class HttpStatementAdapter(StatementProvider):
    """
    Base class for statement adapters backed by ApiHttpClient.

    Subclasses set PROVIDER, ENDPOINT and CURSOR_TYPE and implement
    fetch_page/normalize. This class provides cursor validation, tolerant
    page normalization and sorting.
    """

    ENDPOINT: str = ""
    CURSOR_TYPE: Type = object

    def __init__(self, http: ApiHttpClient, timeout_sec: Optional[float] = None):
        self.http = http
        self.timeout_sec = timeout_sec

        # Stats
        self._pages_fetched = 0
        self._records_skipped = 0

    @property
    def name(self) -> str:
        return self.PROVIDER.value

    def _check_cursor(self, cursor: Optional[PageCursor]) -> None:
        """Reject cursors issued by another provider or of the wrong variant."""
        if cursor is None:
            return
        if not isinstance(cursor, self.CURSOR_TYPE) or cursor.provider is not self.PROVIDER:
            raise ValueError(
                f"{self.name} cannot continue from a cursor issued by "
                f"{getattr(cursor, 'provider', cursor)!s}"
            )

    async def _get(self, params: Mapping[str, Any]) -> Mapping[str, Any]:
        body = await self.http.get_json(
            self.ENDPOINT, params=params, provider=self.name, timeout=self.timeout_sec
        )
        if not isinstance(body, Mapping):
            raise ProviderError(
                f"unexpected response type {type(body).__name__}", provider=self.name
            )
        self._pages_fetched += 1
        return body

    def _normalize_all(
        self,
        records: Iterable[Any],
        received_at: Optional[datetime] = None,
    ) -> List[Movement]:
        """
        Normalize a page of raw records, skipping the unusable ones.

        Returns:
            Movements sorted by occurred_at descending.
        """
        received_at = received_at or now_utc()
        movements: List[Movement] = []
        for raw in records:
            if not isinstance(raw, Mapping):
                self._records_skipped += 1
                logger.warning(f"{self.name}: skipping non-object record {raw!r:.80}")
                continue
            try:
                movements.append(self.normalize(raw, received_at))
            except (ValueError, TypeError, KeyError, InvalidOperation) as e:
                self._records_skipped += 1
                logger.warning(f"{self.name}: skipping unnormalizable record: {e}")
        return sort_desc(movements)

    def get_stats(self) -> dict:
        return {
            "provider": self.name,
            "pages_fetched": self._pages_fetched,
            "records_skipped": self._records_skipped,
        }


def sort_desc(movements: List[Movement]) -> List[Movement]:
    """Stable sort by occurred_at, newest first."""
    return sorted(movements, key=lambda m: m.occurred_at, reverse=True)
