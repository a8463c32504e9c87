"""Configuration data models."""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional


@dataclass
class ApiConfig:
    """Backend HTTP API configuration."""
    base_url: str
    token: Optional[str] = None
    timeout_sec: float = 30.0


@dataclass
class StatementConfig:
    """Statement pagination configuration."""
    providers: List[str]
    page_size: int = 50
    fetch_timeout_sec: float = 30.0
    max_empty_pages: int = 5  # Consecutive empty filtered pages followed per load


@dataclass
class BmpAccountConfig:
    """BMP 531 account identification, sent with every statement request."""
    agencia: Optional[str] = None
    agencia_digito: Optional[str] = None
    conta: Optional[str] = None
    conta_digito: Optional[str] = None
    conta_pgto: Optional[str] = None
    tipo_conta: Optional[str] = None
    modelo_conta: Optional[str] = None
    numero_banco: Optional[str] = None

    def to_params(self) -> Dict[str, str]:
        """Query parameters for the configured fields only."""
        return {
            name: str(value)
            for name, value in self.__dict__.items()
            if value is not None and value != ""
        }


@dataclass
class BackoffConfig:
    """Exponential reconnect backoff."""
    initial: float = 1.0
    max: float = 10.0
    factor: float = 2.0


@dataclass
class RealtimeConfig:
    """Socket.IO realtime channel configuration."""
    url: str
    namespace: str = "/realtime"
    transports: List[str] = field(default_factory=lambda: ["websocket", "polling"])
    connect_timeout_sec: float = 20.0
    reconnect_backoff_sec: BackoffConfig = field(default_factory=BackoffConfig)
    heartbeat_interval_sec: float = 30.0
    enabled: bool = True


@dataclass
class ContextsConfig:
    """Tenant/account scoping for each dashboard context."""
    otc_tenant_id: str = "3"
    otc_account_id: str = "27"
    tcr_tenant_id: str = "2"


@dataclass
class ReconciliationConfig:
    """Re-validation of optimistic live entries."""
    revalidation_delays_sec: Dict[str, float] = field(default_factory=lambda: {
        "transaction": 2.0,
        "deposit": 0.5,
        "withdrawal": 1.0,
        "default": 1.0,
    })
    revalidation_retries: int = 1

    def delay_for(self, event_kind: Optional[str]) -> float:
        """Delay before re-validating a live entry of the given kind."""
        delays = self.revalidation_delays_sec
        if event_kind and event_kind in delays:
            return float(delays[event_kind])
        return float(delays.get("default", 1.0))


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    log_dir: str = "./logs"
    console: bool = True
    timezone: str = "local"  # Timezone for log timestamps ("America/Sao_Paulo", "UTC", or "local")


@dataclass
class AppConfig:
    """Complete application configuration."""
    env: str
    api: ApiConfig
    statements: StatementConfig
    bmp_531_account: BmpAccountConfig
    realtime: RealtimeConfig
    contexts: ContextsConfig
    reconciliation: ReconciliationConfig
    logging: LoggingConfig
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)
