"""
Configuration manager with environment-based loading.

Supports:
- Base configuration (base.yaml)
- Environment-specific overrides (dev.yaml, prod.yaml)
- Secrets loading (secrets.yaml - gitignored)
- LEDGER_API_TOKEN environment variable for the bearer credential
"""

from __future__ import annotations
import os
from pathlib import Path
from typing import Dict, Any, Mapping, Optional
import yaml
import logging

from src.domain.exceptions import ConfigurationError
from src.models.movement import Provider

from .models import (
    AppConfig,
    ApiConfig,
    StatementConfig,
    BmpAccountConfig,
    BackoffConfig,
    RealtimeConfig,
    ContextsConfig,
    ReconciliationConfig,
    LoggingConfig,
)


logger = logging.getLogger(__name__)

TOKEN_ENV_VAR = "LEDGER_API_TOKEN"


class ConfigManager:
    """
    Configuration manager with environment support.

    Loads configuration in this order:
    1. base.yaml (default config)
    2. {env}.yaml (environment-specific, e.g., dev.yaml)
    3. secrets.yaml (if exists, gitignored)
    4. LEDGER_API_TOKEN environment variable

    Later sources override earlier ones.
    """

    def __init__(
        self,
        config_dir: str | Path = "config",
        env: str = "dev",
        environ: Optional[Mapping[str, str]] = None,
    ):
        """
        Initialize config manager.

        Args:
            config_dir: Directory containing config files.
            env: Environment name (dev, prod, etc).
            environ: Environment variables (defaults to os.environ).
        """
        self.config_dir = Path(config_dir)
        self.env = env
        self.environ = os.environ if environ is None else environ
        self.config: Dict[str, Any] = {}

    def load(self) -> AppConfig:
        """
        Load configuration from YAML files.

        Returns:
            AppConfig object.

        Raises:
            FileNotFoundError: If base config not found.
            ConfigurationError: If config is invalid.
        """
        base_path = self.config_dir / "base.yaml"
        if not base_path.exists():
            raise FileNotFoundError(f"Base config not found: {base_path}")

        self.config = self._load_yaml(base_path)
        logger.info(f"Loaded base config from {base_path}")

        env_path = self.config_dir / f"{self.env}.yaml"
        if env_path.exists():
            self.config = self._merge_dicts(self.config, self._load_yaml(env_path))
            logger.info(f"Loaded {self.env} config from {env_path}")

        secrets_path = self.config_dir / "secrets.yaml"
        if secrets_path.exists():
            self.config = self._merge_dicts(self.config, self._load_yaml(secrets_path))
            logger.info("Loaded secrets")

        token = self.environ.get(TOKEN_ENV_VAR)
        if token:
            self.config = self._merge_dicts(self.config, {"api": {"token": token}})
            logger.info(f"API token taken from {TOKEN_ENV_VAR}")

        return self._parse_config()

    def _load_yaml(self, path: Path) -> Dict[str, Any]:
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"Top level of {path} must be a mapping")
        return data

    def _merge_dicts(self, base: Dict, override: Dict) -> Dict:
        """Deep merge two dicts (override wins)."""
        result = base.copy()
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_dicts(result[key], value)
            else:
                result[key] = value
        return result

    def _parse_config(self) -> AppConfig:
        """Parse raw dict into AppConfig."""
        try:
            api_raw = self.config.get("api") or {}
            api = ApiConfig(
                base_url=str(api_raw.get("base_url", "")).rstrip("/"),
                token=api_raw.get("token") or None,
                timeout_sec=float(api_raw.get("timeout_sec", 30.0)),
            )

            statements_raw = self.config.get("statements") or {}
            statements = StatementConfig(
                providers=list(statements_raw.get("providers", [p.value for p in Provider])),
                page_size=int(statements_raw.get("page_size", 50)),
                fetch_timeout_sec=float(statements_raw.get("fetch_timeout_sec", 30.0)),
                max_empty_pages=int(statements_raw.get("max_empty_pages", 5)),
            )

            account_raw = self.config.get("bmp_531_account") or {}
            bmp_531_account = BmpAccountConfig(
                **{
                    name: (str(value) if value is not None else None)
                    for name, value in account_raw.items()
                }
            )

            realtime_raw = self.config.get("realtime") or {}
            backoff_raw = realtime_raw.get("reconnect_backoff_sec") or {}
            realtime = RealtimeConfig(
                url=str(realtime_raw.get("url", api.base_url)).rstrip("/"),
                namespace=realtime_raw.get("namespace", "/realtime"),
                transports=list(realtime_raw.get("transports", ["websocket", "polling"])),
                connect_timeout_sec=float(realtime_raw.get("connect_timeout_sec", 20.0)),
                reconnect_backoff_sec=BackoffConfig(
                    initial=float(backoff_raw.get("initial", 1.0)),
                    max=float(backoff_raw.get("max", 10.0)),
                    factor=float(backoff_raw.get("factor", 2.0)),
                ),
                heartbeat_interval_sec=float(realtime_raw.get("heartbeat_interval_sec", 30.0)),
                enabled=bool(realtime_raw.get("enabled", True)),
            )

            contexts_raw = self.config.get("contexts") or {}
            otc_raw = contexts_raw.get("otc") or {}
            tcr_raw = contexts_raw.get("tcr") or {}
            contexts = ContextsConfig(
                otc_tenant_id=str(otc_raw.get("tenant_id", 3)),
                otc_account_id=str(otc_raw.get("account_id", 27)),
                tcr_tenant_id=str(tcr_raw.get("tenant_id", 2)),
            )

            recon_raw = self.config.get("reconciliation") or {}
            reconciliation = ReconciliationConfig(
                revalidation_retries=int(recon_raw.get("revalidation_retries", 1)),
            )
            reconciliation.revalidation_delays_sec.update(
                {k: float(v) for k, v in (recon_raw.get("revalidation_delays_sec") or {}).items()}
            )

            logging_raw = self.config.get("logging") or {}
            logging_config = LoggingConfig(
                level=str(logging_raw.get("level", "INFO")).upper(),
                log_dir=logging_raw.get("log_dir", "./logs"),
                console=bool(logging_raw.get("console", True)),
                timezone=logging_raw.get("timezone", "local"),
            )
        except ConfigurationError:
            raise
        except (TypeError, ValueError, AttributeError) as e:
            raise ConfigurationError(f"Failed to parse config: {e}") from e

        app_config = AppConfig(
            env=self.env,
            api=api,
            statements=statements,
            bmp_531_account=bmp_531_account,
            realtime=realtime,
            contexts=contexts,
            reconciliation=reconciliation,
            logging=logging_config,
            raw=self.config,
        )
        self._validate(app_config)
        return app_config

    def _validate(self, config: AppConfig) -> None:
        """Reject values the engine cannot run with."""
        if not config.api.base_url:
            raise ConfigurationError("api.base_url is required")
        if config.statements.page_size <= 0:
            raise ConfigurationError("statements.page_size must be positive")
        if config.statements.fetch_timeout_sec <= 0:
            raise ConfigurationError("statements.fetch_timeout_sec must be positive")
        if config.statements.max_empty_pages < 0:
            raise ConfigurationError("statements.max_empty_pages must not be negative")
        for tag in config.statements.providers:
            try:
                Provider.parse(tag)
            except ValueError as e:
                raise ConfigurationError(f"statements.providers: {e}") from e

        backoff = config.realtime.reconnect_backoff_sec
        if backoff.initial <= 0 or backoff.max < backoff.initial or backoff.factor < 1:
            raise ConfigurationError(
                "realtime.reconnect_backoff_sec requires initial > 0, max >= initial, factor >= 1"
            )
        if config.realtime.heartbeat_interval_sec <= 0:
            raise ConfigurationError("realtime.heartbeat_interval_sec must be positive")
        if config.reconciliation.revalidation_retries < 0:
            raise ConfigurationError("reconciliation.revalidation_retries must not be negative")
        if any(delay < 0 for delay in config.reconciliation.revalidation_delays_sec.values()):
            raise ConfigurationError("reconciliation.revalidation_delays_sec must not be negative")
