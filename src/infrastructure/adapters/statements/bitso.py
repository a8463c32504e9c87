"""
Bitso PIX statement adapter.

Endpoint: GET /api/bitso/pix/extrato/conta
Pagination: independent pay-in/pay-out markers; response
    {sucesso, data: {transacoes, hasMore, nextMarkers}}
with transacoes/hasMore/nextMarkers also accepted at the root.

The server may ignore the date range, so it is always re-applied locally
(00:00:00 of date_from to 23:59:59 of date_to, America/Sao_Paulo). Records
without a timestamp are kept.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Tuple

from ....domain.exceptions import ProviderError
from ....models.movement import Direction, Movement, Provider, stable_id
from ....models.page import MarkerPairCursor, MovementPage, StatementFilters
from ....utils.logging_setup import get_logger
from ....utils.timezone import (
    SAO_PAULO,
    end_of_day_utc,
    now_utc,
    parse_timestamp,
    start_of_day_utc,
)
from .base import HttpStatementAdapter
from .converters import (
    clean_str,
    counterparty_from,
    direction_from_code,
    direction_from_sign,
    first_present,
    lower_or_none,
    to_decimal,
)


logger = get_logger(__name__)

MAX_PAGE_SIZE = 1000

_ORIGIN_DIRECTION = {
    "pay-in": Direction.CREDIT,
    "payin": Direction.CREDIT,
    "pay-out": Direction.DEBIT,
    "payout": Direction.DEBIT,
}


class BitsoStatementAdapter(HttpStatementAdapter):
    """Bitso PIX statements (marker-pair pagination)."""

    PROVIDER = Provider.BITSO
    ENDPOINT = "/api/bitso/pix/extrato/conta"
    CURSOR_TYPE = MarkerPairCursor

    def build_params(
        self,
        filters: StatementFilters,
        cursor: Optional[MarkerPairCursor],
        page_size: int,
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "limit": min(page_size, MAX_PAGE_SIZE),
            "order": "desc",
            "sort": "timestamp",
        }
        if filters.date_from:
            params["start_date"] = filters.date_from.isoformat()
        if filters.date_to:
            params["end_date"] = filters.date_to.isoformat()
        if cursor is not None:
            params["payInsMarker"] = cursor.pay_ins_marker
            params["payOutsMarker"] = cursor.pay_outs_marker
        return params

    async def fetch_page(
        self,
        filters: StatementFilters,
        cursor: Optional[MarkerPairCursor],
        page_size: int,
    ) -> MovementPage:
        self._check_cursor(cursor)
        body = await self._get(self.build_params(filters, cursor, page_size))
        received_at = now_utc()

        records, has_more, markers = self._unwrap(body)
        kept = self.filter_by_date(records, filters)
        if len(kept) != len(records):
            logger.debug(f"{self.name}: date filter dropped {len(records) - len(kept)} records")
        items = self._normalize_all(kept, received_at)

        next_cursor = None
        if has_more and markers is not None:
            candidate = MarkerPairCursor(
                self.PROVIDER,
                pay_ins_marker=clean_str(markers.get("payInsMarker")),
                pay_outs_marker=clean_str(markers.get("payOutsMarker")),
            )
            if not candidate.is_empty:
                next_cursor = candidate

        return MovementPage(items=items, has_more=has_more, next_cursor=next_cursor)

    def _unwrap(
        self, body: Mapping[str, Any]
    ) -> Tuple[List[Any], bool, Optional[Mapping[str, Any]]]:
        """Extract (records, has_more, nextMarkers) from nested or flat shapes."""
        if body.get("sucesso") is False:
            message = first_present(body, "mensagem", "message", "erro") or "request not successful"
            raise ProviderError(str(message), provider=self.name)

        data = body.get("data") if isinstance(body.get("data"), Mapping) else {}
        records = data.get("transacoes")
        if not isinstance(records, list):
            records = body.get("transacoes")
        if not isinstance(records, list):
            raise ProviderError(
                "invalid response format, transactions not found", provider=self.name
            )

        has_more = bool(
            first_present(data, "hasMore", "hasNextPage")
            or first_present(body, "hasMore", "hasNextPage")
        )
        markers = data.get("nextMarkers") or body.get("nextMarkers")
        if not isinstance(markers, Mapping):
            markers = None
        return records, has_more, markers

    @staticmethod
    def filter_by_date(records: List[Any], filters: StatementFilters) -> List[Any]:
        """Re-apply the date range locally; undated records pass."""
        if filters.is_empty:
            return list(records)

        lower = start_of_day_utc(filters.date_from, SAO_PAULO) if filters.date_from else None
        upper = end_of_day_utc(filters.date_to, SAO_PAULO) if filters.date_to else None

        kept = []
        for raw in records:
            occurred = parse_timestamp(raw.get("data"), SAO_PAULO) if isinstance(raw, Mapping) else None
            if occurred is not None:
                if lower and occurred < lower:
                    continue
                if upper and occurred > upper:
                    continue
            kept.append(raw)
        return kept

    def normalize(
        self,
        raw: Mapping[str, Any],
        received_at: Optional[datetime] = None,
    ) -> Movement:
        signed = to_decimal(first_present(raw, "valor", "amount"))
        if signed is None:
            raise ValueError("record has no parseable amount")

        direction = self.direction_of(raw, signed)
        party = raw.get("pagador") if direction is Direction.CREDIT else raw.get("destinatario")
        party = party if isinstance(party, Mapping) else {}
        metadata = raw.get("metadados") if isinstance(raw.get("metadados"), Mapping) else {}

        return Movement(
            id=clean_str(raw.get("id")) or stable_id(raw),
            provider=self.PROVIDER,
            occurred_at=parse_timestamp(raw.get("data"), SAO_PAULO) or received_at or now_utc(),
            direction=direction,
            amount=abs(signed),
            currency=(clean_str(first_present(raw, "moeda", "currency"))
                      or clean_str(metadata.get("currency")) or "BRL").upper(),
            counterparty=counterparty_from(party.get("nome"), party.get("documento")),
            end_to_end_id=clean_str(first_present(raw, "endToEndId", "end_to_end_id")),
            status=lower_or_none(first_present(raw, "status", "situacao")),
            description=clean_str(raw.get("descricao")),
            raw=dict(raw),
        )

    @staticmethod
    def direction_of(raw: Mapping[str, Any], signed=None) -> Direction:
        """`tipo`, then `origem` (pay-in/pay-out), then sign, then DEBIT."""
        if signed is None:
            signed = to_decimal(first_present(raw, "valor", "amount"))
        origin = (clean_str(raw.get("origem")) or "").lower()
        return (
            direction_from_code(raw.get("tipo"))
            or _ORIGIN_DIRECTION.get(origin)
            or direction_from_sign(signed)
            or Direction.DEBIT
        )
