"""Environment-driven settings for the price tracker.

Each concern (database, Redis, market data feed, SMTP, alerting, timers)
is its own settings group so it can be built and validated on its own.
Values come from the process environment first, then `.env`.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"

DEFAULT_MARKET_DATA_URL = "https://deep-index.moralis.io/api/v2.2/market-data/global/market-cap"


class DatabaseSettings(BaseSettings):
    """Database connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str = Field(
        alias="DATABASE_URL",
        description="PostgreSQL (or SQLite, for local runs) connection string",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate database URL format."""
        if not v.startswith(("postgresql://", "postgresql+asyncpg://", "sqlite+aiosqlite://")):
            raise ValueError("DATABASE_URL must be a PostgreSQL or sqlite+aiosqlite connection string")
        return v


class RedisSettings(BaseSettings):
    """Redis connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str = Field(
        default="redis://localhost:6379",
        alias="REDIS_URL",
        description="Redis connection string (alert claims)",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate Redis URL format."""
        if not v.startswith("redis://"):
            raise ValueError("REDIS_URL must start with redis://")
        return v


class MarketDataSettings(BaseSettings):
    """External market-data feed settings."""

    model_config = SettingsConfigDict(env_prefix="MARKET_DATA_", extra="ignore")

    url: str = Field(
        default=DEFAULT_MARKET_DATA_URL,
        alias="MARKET_DATA_URL",
        description="Feed endpoint returning an array of market entries",
    )
    api_key: SecretStr | None = Field(
        default=None,
        alias="MARKET_DATA_API_KEY",
        description="API key sent in the X-API-Key header",
    )
    tracked_symbols_raw: str = Field(
        default="eth,matic",
        alias="MARKET_DATA_TRACKED_SYMBOLS",
        description="Comma-separated symbols to persist (case-insensitive)",
    )
    timeout_seconds: float = Field(
        default=30.0,
        alias="MARKET_DATA_TIMEOUT_SECONDS",
        gt=0.0,
        le=300.0,
        description="Timeout for a single feed request",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("MARKET_DATA_URL must be an HTTP(S) endpoint")
        return v

    @field_validator("tracked_symbols_raw")
    @classmethod
    def validate_tracked_symbols(cls, v: str) -> str:
        if not [p for p in v.split(",") if p.strip()]:
            raise ValueError("MARKET_DATA_TRACKED_SYMBOLS must name at least one symbol")
        return v

    @property
    def tracked_symbols(self) -> tuple[str, ...]:
        """Tracked symbols, lowercased."""
        return tuple(p.strip().lower() for p in self.tracked_symbols_raw.split(",") if p.strip())


class SmtpSettings(BaseSettings):
    """SMTP transport settings for email notifications."""

    model_config = SettingsConfigDict(env_prefix="SMTP_", extra="ignore")

    host: str = Field(
        default="localhost",
        alias="SMTP_HOST",
        description="SMTP server host",
    )
    port: int = Field(
        default=587,
        alias="SMTP_PORT",
        ge=1,
        le=65535,
        description="SMTP server port",
    )
    username: str | None = Field(
        default=None,
        alias="SMTP_USERNAME",
        description="SMTP login user",
    )
    password: SecretStr | None = Field(
        default=None,
        alias="SMTP_PASSWORD",
        description="SMTP login password",
    )
    from_address: str = Field(
        default="alerts@localhost",
        alias="SMTP_FROM_ADDRESS",
        description="Fixed sender address for all notifications",
    )
    use_tls: bool = Field(
        default=True,
        alias="SMTP_USE_TLS",
        description="Upgrade the connection with STARTTLS",
    )
    timeout_seconds: float = Field(
        default=10.0,
        alias="SMTP_TIMEOUT_SECONDS",
        gt=0.0,
        le=120.0,
        description="Socket timeout for SMTP delivery",
    )


class AlertSettings(BaseSettings):
    """Alert evaluation settings."""

    model_config = SettingsConfigDict(env_prefix="ALERT_", extra="ignore")

    operator_email: str = Field(
        default="operator@localhost",
        alias="ALERT_OPERATOR_EMAIL",
        description="Fixed recipient of price-increase (trend) alerts",
    )
    trend_threshold_pct: Decimal = Field(
        default=Decimal("3"),
        alias="ALERT_TREND_THRESHOLD_PCT",
        description="Percentage increase over the trend window that triggers a trend alert",
    )
    trend_window_minutes: int = Field(
        default=60,
        alias="ALERT_TREND_WINDOW_MINUTES",
        ge=1,
        le=24 * 60,
        description="Lookback window for the trend comparison",
    )
    claim_ttl_seconds: int = Field(
        default=300,
        alias="ALERT_CLAIM_TTL_SECONDS",
        ge=5,
        le=24 * 3600,
        description="Expiry of a single-flight claim on an alert id",
    )

    @field_validator("trend_threshold_pct")
    @classmethod
    def validate_trend_threshold_pct(cls, v: Decimal) -> Decimal:
        if v < 0:
            raise ValueError("ALERT_TREND_THRESHOLD_PCT must be >= 0")
        return v


class SchedulerSettings(BaseSettings):
    """Periodic job cadence settings."""

    model_config = SettingsConfigDict(env_prefix="SCHEDULER_", extra="ignore")

    fetch_interval_seconds: int = Field(
        default=300,
        alias="SCHEDULER_FETCH_INTERVAL_SECONDS",
        ge=5,
        le=24 * 3600,
        description="How often to fetch prices and check threshold alerts",
    )
    check_interval_seconds: int = Field(
        default=60,
        alias="SCHEDULER_CHECK_INTERVAL_SECONDS",
        ge=5,
        le=24 * 3600,
        description="How often to check for price increases",
    )
    run_immediately: bool = Field(
        default=False,
        alias="SCHEDULER_RUN_IMMEDIATELY",
        description="Run each job once at startup instead of waiting a full interval",
    )


class Settings(BaseSettings):
    """All settings groups plus the process-wide switches.

    Example:
        ```python
        from chain_price_tracker.config import get_settings

        settings = get_settings()
        print(settings.database.url)
        print(settings.market_data.tracked_symbols)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding=_ENV_FILE_ENCODING,
        extra="ignore",
    )

    # Nested groups read `.env` only when handed the file explicitly.
    database: DatabaseSettings = Field(
        default_factory=lambda: DatabaseSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    redis: RedisSettings = Field(
        default_factory=lambda: RedisSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    market_data: MarketDataSettings = Field(
        default_factory=lambda: MarketDataSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    smtp: SmtpSettings = Field(
        default_factory=lambda: SmtpSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    alerts: AlertSettings = Field(
        default_factory=lambda: AlertSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    scheduler: SchedulerSettings = Field(
        default_factory=lambda: SchedulerSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )

    # Application settings
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
    )
    dry_run: bool = Field(
        default=False,
        alias="DRY_RUN",
        description="Run without sending actual notifications",
    )

    def get_logging_level(self) -> int:
        """Get the numeric logging level."""
        level: int = getattr(logging, self.log_level)
        return level

    def redacted_summary(self) -> dict[str, str | dict[str, str]]:
        """Get a summary of settings with secrets redacted.

        Returns:
            Dictionary of settings with sensitive values masked.
        """
        return {
            "database_url": self._redact_url(self.database.url),
            "redis_url": self._redact_url(self.redis.url),
            "market_data": {
                "url": self.market_data.url,
                "api_key": "(set)" if self.market_data.api_key else "(not set)",
                "tracked_symbols": ",".join(self.market_data.tracked_symbols),
            },
            "smtp": {
                "host": self.smtp.host,
                "port": str(self.smtp.port),
                "username": self.smtp.username or "(not set)",
                "password": "(set)" if self.smtp.password else "(not set)",
                "from_address": self.smtp.from_address,
            },
            "alerts": {
                "operator_email": self.alerts.operator_email,
                "trend_threshold_pct": str(self.alerts.trend_threshold_pct),
                "trend_window_minutes": str(self.alerts.trend_window_minutes),
            },
            "scheduler": {
                "fetch_interval_seconds": str(self.scheduler.fetch_interval_seconds),
                "check_interval_seconds": str(self.scheduler.check_interval_seconds),
            },
            "log_level": self.log_level,
            "dry_run": str(self.dry_run),
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact password from URL if present."""
        if "@" in url and "://" in url:
            # URL has credentials - redact the password
            protocol_end = url.index("://") + 3
            at_pos = url.index("@")
            creds_part = url[protocol_end:at_pos]
            if ":" in creds_part:
                username = creds_part.split(":")[0]
                return f"{url[:protocol_end]}{username}:***@{url[at_pos + 1 :]}"
        return url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings once per process.

    Raises:
        ValidationError: If `DATABASE_URL` is missing or any value fails validation.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Forget the cached settings so the next `get_settings()` re-reads the environment."""
    get_settings.cache_clear()
