"""
BMP 274 statement adapter.

Endpoint: GET /internal/account/extrato
Pagination: opaque cursor; response {items, hasMore, cursor}.
Legacy response {movimentos: [...]} is accepted as a single final page.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Tuple

from ....domain.exceptions import ProviderError
from ....models.movement import Direction, Movement, Provider, stable_id
from ....models.page import MovementPage, OpaqueCursor, StatementFilters
from ....utils.logging_setup import get_logger
from ....utils.timezone import SAO_PAULO, now_utc, parse_timestamp
from .base import HttpStatementAdapter
from .converters import (
    clean_str,
    counterparty_from,
    direction_from_code,
    direction_from_keywords,
    direction_from_sign,
    first_present,
    lower_or_none,
    to_decimal,
)


logger = get_logger(__name__)


class BmpStatementAdapter(HttpStatementAdapter):
    """BMP 274 statements (cursor pagination)."""

    PROVIDER = Provider.BMP
    ENDPOINT = "/internal/account/extrato"
    CURSOR_TYPE = OpaqueCursor

    # Field carrying the C/D code
    DIRECTION_FIELD = "tipoLancamento"

    # ------------------------------------------------------------------
    # Request
    # ------------------------------------------------------------------

    def build_params(
        self,
        filters: StatementFilters,
        cursor: Optional[OpaqueCursor],
        page_size: int,
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "limit": page_size,
            "order": "desc",
            "sort_by": "data_movimento",
        }
        if filters.date_from:
            params["data_inicio"] = filters.date_from.isoformat()
        if filters.date_to:
            params["data_fim"] = filters.date_to.isoformat()
        if cursor is not None:
            params["cursor"] = cursor.token
        return params

    async def fetch_page(
        self,
        filters: StatementFilters,
        cursor: Optional[OpaqueCursor],
        page_size: int,
    ) -> MovementPage:
        self._check_cursor(cursor)
        body = await self._get(self.build_params(filters, cursor, page_size))
        received_at = now_utc()

        records, has_more, token = self._unwrap(body)
        items = self._normalize_all(records, received_at)

        next_cursor = OpaqueCursor(self.PROVIDER, token) if has_more and token else None
        logger.debug(
            f"{self.name}: {len(items)} items, has_more={has_more}, "
            f"cursor={'set' if next_cursor else 'none'}"
        )
        return MovementPage(items=items, has_more=has_more, next_cursor=next_cursor)

    def _unwrap(self, body: Mapping[str, Any]) -> Tuple[List[Any], bool, Optional[str]]:
        """Extract (records, has_more, next token) from either response shape."""
        if isinstance(body.get("items"), list):
            token = clean_str(first_present(body, "cursor", "next_cursor", "nextCursor"))
            has_more = bool(first_present(body, "hasMore", "has_more"))
            return body["items"], has_more, token

        if isinstance(body.get("movimentos"), list):
            # Legacy shape carries no continuation
            return body["movimentos"], False, None

        raise ProviderError(
            "invalid response format, expected {items: [...]} or {movimentos: [...]}",
            provider=self.name,
        )

    # ------------------------------------------------------------------
    # Normalization
    # ------------------------------------------------------------------

    def normalize(
        self,
        raw: Mapping[str, Any],
        received_at: Optional[datetime] = None,
    ) -> Movement:
        signed = to_decimal(first_present(raw, "vlrMovimento", "valor"))
        amount = abs(signed) if signed is not None else None
        if amount is None:
            raise ValueError("record has no parseable amount")

        occurred_at = parse_timestamp(
            first_present(raw, "dtMovimento", "dtLancamento", "dataHora"),
            source_tz=SAO_PAULO,
        ) or received_at or now_utc()

        record_id = clean_str(first_present(raw, "id", "codigo", "codigoTransacao", "identificadorOperacao"))

        return Movement(
            id=record_id or stable_id(raw),
            provider=self.PROVIDER,
            occurred_at=occurred_at,
            direction=self.direction_of(raw, signed),
            amount=amount,
            currency=clean_str(raw.get("moeda")) or "BRL",
            counterparty=counterparty_from(
                first_present(raw, "nome", "nomeCliente", "descCliente") or self._name_from_complement(raw),
                first_present(raw, "documentoFederal", "documento"),
            ),
            end_to_end_id=clean_str(first_present(raw, "endToEndId", "endToEnd")),
            status=lower_or_none(first_present(raw, "status", "situacao")),
            description=clean_str(first_present(raw, "descricaoOperacao", "descricao", "complemento")),
            raw=dict(raw),
        )

    def direction_of(self, raw: Mapping[str, Any], signed=None) -> Direction:
        """C/D code, then amount sign, then description keywords, then DEBIT."""
        if signed is None:
            signed = to_decimal(first_present(raw, "vlrMovimento", "valor"))
        return (
            direction_from_code(raw.get(self.DIRECTION_FIELD))
            or direction_from_sign(signed)
            or direction_from_keywords(
                (raw.get("descricao"), raw.get("complemento"), raw.get("descricaoOperacao"))
            )
            or Direction.DEBIT
        )

    @staticmethod
    def _name_from_complement(raw: Mapping[str, Any]) -> Optional[str]:
        """`complemento` is often "<operation> - <name>"."""
        complement = clean_str(raw.get("complemento"))
        if not complement:
            return None
        if " - " in complement:
            return clean_str(complement.split(" - ", 1)[1])
        return complement
