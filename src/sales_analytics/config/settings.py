"""
Tenant Sales Analytics
Centralized Configuration Management

This module provides configuration management using Pydantic settings with
environment variable support, validation, and type safety.

The aggregation engine itself never reads these settings: timezone, reporting
period and attribution mode are passed explicitly to every engine call. The
values here are only defaults used at the orchestration boundary (transformer,
pipeline, workflow).
"""

from functools import lru_cache
from typing import List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """PostgreSQL Database Configuration"""

    model_config = SettingsConfigDict(env_prefix="POSTGRES_")

    host: str = Field(default="localhost", description="Database host")
    port: int = Field(default=5432, description="Database port")
    db: str = Field(default="sales_analytics", description="Database name")
    user: str = Field(default="analytics", description="Database user")
    password: SecretStr = Field(default="secure_password", description="Database password")
    echo: bool = Field(default=False, description="Echo SQL queries")
    url: Optional[str] = Field(default=None, description="Full async URL (overrides host/port)")

    @property
    def async_url(self) -> str:
        """Async database URL for asyncpg"""
        if self.url:
            return self.url
        return f"postgresql+asyncpg://{self.user}:{self.password.get_secret_value()}@{self.host}:{self.port}/{self.db}"


class SalesSettings(BaseSettings):
    """Sales aggregation defaults"""

    model_config = SettingsConfigDict(env_prefix="SALES_")

    timezone: str = Field(default="Europe/Stockholm", description="Store-local IANA timezone")
    date_basis: str = Field(default="created_at", description="Event dating: created_at or processed_at")
    modes: List[str] = Field(default=["shopify", "legacy"], description="Attribution modes to compute")
    reconciliation_tolerance_pct: float = Field(
        default=1.0,
        description="Accepted net sales discrepancy against the platform report, in percent",
    )
    upsert_batch_size: int = Field(default=500, description="Rows per upsert statement")

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        """Validate the timezone is a known IANA name"""
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown timezone: {v}")
        return v

    @field_validator("date_basis")
    @classmethod
    def validate_date_basis(cls, v: str) -> str:
        """Validate event date basis"""
        allowed = ["created_at", "processed_at"]
        if v.lower() not in allowed:
            raise ValueError(f"Date basis must be one of: {allowed}")
        return v.lower()

    @field_validator("modes")
    @classmethod
    def validate_modes(cls, v: List[str]) -> List[str]:
        """Validate attribution modes"""
        allowed = ["shopify", "legacy"]
        modes = [m.lower() for m in v]
        unknown = [m for m in modes if m not in allowed]
        if unknown:
            raise ValueError(f"Unknown attribution modes {unknown}, allowed: {allowed}")
        return modes


class DataLakeSettings(BaseSettings):
    """Raw export locations"""

    model_config = SettingsConfigDict(env_prefix="DATA_")

    raw_path: str = Field(default="./data/raw", description="Raw order exports")
    reports_path: str = Field(default="./data/reports", description="Platform analytics exports")


class MonitoringSettings(BaseSettings):
    """Logging Configuration"""

    model_config = SettingsConfigDict(env_prefix="")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL", description="Logging level")
    log_format: str = Field(default="json", description="Log format: json or text")


class Settings(BaseSettings):
    """
    Main Application Settings

    Aggregates all configuration sections and provides a single entry point
    for accessing application configuration.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Application
    app_name: str = Field(default="tenant-sales-analytics", alias="APP_NAME", description="Application name")
    app_env: str = Field(default="development", alias="APP_ENV", description="Environment")
    debug: bool = Field(default=False, alias="DEBUG", description="Debug mode")

    # Version
    version: str = Field(default="1.0.0", description="Application version")

    # Subsystem configurations
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    sales: SalesSettings = Field(default_factory=SalesSettings)
    data_lake: DataLakeSettings = Field(default_factory=DataLakeSettings)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)

    @field_validator("app_env")
    @classmethod
    def validate_env(cls, v: str) -> str:
        """Validate environment value"""
        allowed = ["development", "staging", "production", "testing"]
        if v.lower() not in allowed:
            raise ValueError(f"Environment must be one of: {allowed}")
        return v.lower()

    @property
    def is_production(self) -> bool:
        """Check if running in production"""
        return self.app_env == "production"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached application settings.

    Uses LRU cache to ensure settings are only loaded once.

    Returns:
        Settings: Application settings instance
    """
    return Settings()
