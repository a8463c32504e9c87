"""Infrastructure adapters for external systems."""

from .http_client import ApiHttpClient
from .statements import (
    BitsoStatementAdapter,
    BmpStatementAdapter,
    Bmp531StatementAdapter,
    build_statement_provider,
)

__all__ = [
    "ApiHttpClient",
    "BitsoStatementAdapter",
    "BmpStatementAdapter",
    "Bmp531StatementAdapter",
    "build_statement_provider",
]
