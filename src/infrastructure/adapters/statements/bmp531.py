"""
BMP 531 statement adapter.

Same contract as BMP 274 on GET /bmp-531/account/extrato, plus account
identification parameters, and the C/D code lives in `tipoMovimento`.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from config.models import BmpAccountConfig

from ....models.movement import Provider
from ....models.page import OpaqueCursor, StatementFilters
from ..http_client import ApiHttpClient
from .bmp import BmpStatementAdapter


class Bmp531StatementAdapter(BmpStatementAdapter):
    """BMP 531 statements (cursor pagination plus account params)."""

    PROVIDER = Provider.BMP_531
    ENDPOINT = "/bmp-531/account/extrato"
    DIRECTION_FIELD = "tipoMovimento"

    def __init__(
        self,
        http: ApiHttpClient,
        account: Optional[BmpAccountConfig] = None,
        timeout_sec: Optional[float] = None,
    ):
        super().__init__(http, timeout_sec=timeout_sec)
        self.account = account or BmpAccountConfig()

    def build_params(
        self,
        filters: StatementFilters,
        cursor: Optional[OpaqueCursor],
        page_size: int,
    ) -> Dict[str, Any]:
        params = super().build_params(filters, cursor, page_size)
        params.update(self.account.to_params())
        return params
