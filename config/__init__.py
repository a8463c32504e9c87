"""Layered YAML configuration for the ledger sync engine."""

from .config_manager import ConfigManager, TOKEN_ENV_VAR
from .models import (
    AppConfig,
    BackoffConfig,
    BmpAccountConfig,
    ContextsConfig,
    ReconciliationConfig,
)

__all__ = [
    "ConfigManager",
    "TOKEN_ENV_VAR",
    "AppConfig",
    "BackoffConfig",
    "BmpAccountConfig",
    "ContextsConfig",
    "ReconciliationConfig",
]
