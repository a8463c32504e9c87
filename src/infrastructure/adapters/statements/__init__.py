"""Statement provider adapters, selected by Provider tag."""

from __future__ import annotations

from typing import Optional

from config.models import BmpAccountConfig

from ....domain.interfaces.statement_provider import StatementProvider
from ....models.movement import Provider
from ..http_client import ApiHttpClient
from .bitso import BitsoStatementAdapter
from .bmp import BmpStatementAdapter
from .bmp531 import Bmp531StatementAdapter


def build_statement_provider(
    provider: Provider,
    http: ApiHttpClient,
    bmp_531_account: Optional[BmpAccountConfig] = None,
    timeout_sec: Optional[float] = None,
) -> StatementProvider:
    """
    Build the adapter for a provider tag.

    Raises:
        ValueError: Unknown provider.
    """
    if provider is Provider.BMP:
        return BmpStatementAdapter(http, timeout_sec=timeout_sec)
    if provider is Provider.BMP_531:
        return Bmp531StatementAdapter(http, account=bmp_531_account, timeout_sec=timeout_sec)
    if provider is Provider.BITSO:
        return BitsoStatementAdapter(http, timeout_sec=timeout_sec)
    raise ValueError(f"No statement adapter for provider {provider!r}")


__all__ = [
    "BitsoStatementAdapter",
    "BmpStatementAdapter",
    "Bmp531StatementAdapter",
    "build_statement_provider",
]
