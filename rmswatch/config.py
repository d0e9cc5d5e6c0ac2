"""
rmswatch Configuration.

Pydantic Settings v2 — loads from .env, environment variables.
"""

from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Application ──────────────────────────────────────────────────────
    app_name: str = "rmswatch"
    app_version: str = "1.0.0"
    environment: str = Field(default="development", alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="DEBUG")

    # ── API ───────────────────────────────────────────────────────────────
    api_host: str = Field(default="0.0.0.0", alias="API_HOST")
    api_port: int = Field(default=8000, alias="API_PORT")
    allowed_origins: List[str] = Field(
        default=["http://localhost:3000"],
        alias="CORS_ORIGINS",
    )

    # ── Database ─────────────────────────────────────────────────────────
    database_url: str = Field(
        default="sqlite+aiosqlite:///./rmswatch.db",
        alias="DATABASE_URL",
    )
    db_pool_size: int = Field(default=5, alias="DB_POOL_SIZE")
    db_max_overflow: int = Field(default=10, alias="DB_MAX_OVERFLOW")
    db_pool_recycle: int = Field(default=3600, alias="DB_POOL_RECYCLE")

    # ── Current RMS ──────────────────────────────────────────────────────
    current_rms_subdomain: str = Field(default="", alias="CURRENT_RMS_SUBDOMAIN")
    current_rms_api_key: str = Field(default="", alias="CURRENT_RMS_API_KEY")
    current_rms_base_url: str = Field(
        default="https://api.current-rms.com/api/v1",
        alias="CURRENT_RMS_BASE_URL",
    )
    current_rms_timeout_seconds: float = Field(default=30.0, alias="CURRENT_RMS_TIMEOUT_SECONDS")
    current_rms_page_delay_seconds: float = Field(default=0.2, alias="CURRENT_RMS_PAGE_DELAY_SECONDS")

    # ── Risk Scoring ─────────────────────────────────────────────────────
    risk_settings_cache_ttl_seconds: float = Field(
        default=300.0, alias="RISK_SETTINGS_CACHE_TTL_SECONDS",
        description="How long loaded risk factors / thresholds are reused",
    )

    # ── Forecast ─────────────────────────────────────────────────────────
    forecast_default_lookback_days: int = Field(default=30, alias="FORECAST_DEFAULT_LOOKBACK_DAYS")
    forecast_weekly_max_days: int = Field(
        default=89, alias="FORECAST_WEEKLY_MAX_DAYS",
        description="Date ranges up to this many days are bucketed by ISO week",
    )

    # ── Events ───────────────────────────────────────────────────────────
    events_default_limit: int = Field(default=50, alias="EVENTS_DEFAULT_LIMIT")

    # ── Operational ────────────────────────────────────────────────────────
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: str = Field(default="json", alias="LOG_FORMAT")
    health_check_timeout_seconds: int = Field(default=5, alias="HEALTH_CHECK_TIMEOUT_SECONDS")

    @property
    def async_database_url(self) -> str:
        """Ensure the database URL uses an async driver."""
        url = self.database_url
        if url.startswith("postgresql://"):
            url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        elif url.startswith("postgres://"):
            url = url.replace("postgres://", "postgresql+asyncpg://", 1)
        return url

    @property
    def is_sqlite(self) -> bool:
        return self.async_database_url.startswith("sqlite")

    @property
    def current_rms_configured(self) -> bool:
        """Both subdomain and API key are needed to talk to Current RMS."""
        return bool(self.current_rms_subdomain and self.current_rms_api_key)


settings = Settings()
