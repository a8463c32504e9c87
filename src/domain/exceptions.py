"""
Domain exceptions for the ledger sync engine.

Implements a hierarchy distinguishing between recoverable runtime errors
(provider glitches, network drops, socket failures) and fatal errors
(configuration issues) that require operator intervention.
"""

from __future__ import annotations

from typing import Optional


class LedgerSyncError(Exception):
    """Base class for all ledger sync exceptions."""
    pass


class RecoverableError(LedgerSyncError):
    """
    Errors the engine can recover from without restarting.

    Examples:
    - Statement provider returned a malformed page
    - Temporary network disconnection
    - Realtime socket rejected or dropped the connection
    """
    pass


class FatalError(LedgerSyncError):
    """
    Critical errors requiring operator intervention.

    Examples:
    - Invalid configuration
    - Unknown provider tag
    """
    pass


class ProviderError(RecoverableError):
    """
    Statement provider answered with a non-2xx status or an unexpected shape.

    Not retried automatically. Already loaded pages are never touched.
    """

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        self.provider = provider
        self.status_code = status_code
        prefix = f"{provider.upper()} API Error" if provider else "Provider error"
        if status_code is not None:
            prefix = f"{prefix} ({status_code})"
        super().__init__(f"{prefix}: {message}")
        self.message = message


class NetworkError(RecoverableError):
    """Transport-level failure on a page fetch. Eligible for a caller retry."""
    pass


class FetchTimeoutError(NetworkError, TimeoutError):
    """Page fetch exceeded its timeout."""
    pass


class ChannelError(RecoverableError):
    """Realtime connect failure or auth rejection. Absorbed by the channel."""
    pass


class ConfigurationError(FatalError):
    """Invalid system configuration."""
    pass
