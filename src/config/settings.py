"""
E-Commerce Back-Office
Centralized Configuration Management

Pydantic settings with environment variable support, validation, and type safety.
Each subsystem reads its own prefixed section; `get_settings()` returns the
cached aggregate.
"""

from functools import lru_cache
from typing import Optional, List
from pydantic import Field, field_validator, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """Primary record store (PostgreSQL)"""

    model_config = SettingsConfigDict(env_prefix="POSTGRES_")

    host: str = Field(default="localhost", description="Database host")
    port: int = Field(default=5432, description="Database port")
    db: str = Field(default="ecommerce_backoffice", description="Database name")
    user: str = Field(default="backoffice", description="Database user")
    password: SecretStr = Field(default="changeme", description="Database password")
    echo: bool = Field(default=False, description="Echo SQL queries")

    @property
    def async_url(self) -> str:
        """Async database URL for asyncpg"""
        return f"postgresql+asyncpg://{self.user}:{self.password.get_secret_value()}@{self.host}:{self.port}/{self.db}"


class RedisSettings(BaseSettings):
    """Redis cache used in front of the metrics aggregator"""

    model_config = SettingsConfigDict(env_prefix="REDIS_")

    host: str = Field(default="localhost", description="Redis host")
    port: int = Field(default=6379, description="Redis port")
    password: Optional[SecretStr] = Field(default=None, description="Redis password")
    db: int = Field(default=0, description="Redis database number")
    max_connections: int = Field(default=50, description="Max connections")
    socket_timeout: int = Field(default=2, description="Socket timeout in seconds")
    url: Optional[str] = Field(default=None, alias="REDIS_URL", description="Redis URL (overrides host/port)")

    def get_url(self) -> str:
        """Redis connection URL - uses REDIS_URL if set, otherwise builds from host/port"""
        if self.url:
            return self.url
        if self.password:
            return f"redis://:{self.password.get_secret_value()}@{self.host}:{self.port}/{self.db}"
        return f"redis://{self.host}:{self.port}/{self.db}"


class MirrorSettings(BaseSettings):
    """Spreadsheet-backed mirror store (secondary source)"""

    model_config = SettingsConfigDict(env_prefix="MIRROR_")

    enabled: bool = Field(default=False, description="Use the mirror as fallback source")
    path: str = Field(default="./data/mirror", description="Directory holding the sheet exports")
    file_format: str = Field(default="csv", description="Sheet export format: csv or parquet")

    @field_validator("file_format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        if v.lower() not in ("csv", "parquet"):
            raise ValueError("Mirror file format must be csv or parquet")
        return v.lower()


class GatewaySettings(BaseSettings):
    """Per-source timeouts for the dual-source fallback"""

    model_config = SettingsConfigDict(env_prefix="GATEWAY_")

    primary_timeout_seconds: float = Field(default=5.0, gt=0, description="Primary source timeout")
    secondary_timeout_seconds: float = Field(default=20.0, gt=0, description="Secondary source timeout")


class AnalyticsSettings(BaseSettings):
    """Metrics aggregation configuration"""

    model_config = SettingsConfigDict(env_prefix="ANALYTICS_")

    default_days: int = Field(default=30, gt=0, description="Default lookback in days")
    max_days: int = Field(default=365, gt=0, description="Longest accepted lookback")
    high_value_threshold: float = Field(default=50000.0, description="Order amount flagged as suspicious")
    metrics_timeout_seconds: Optional[float] = Field(default=None, description="Whole-call timeout for metrics")
    cache_enabled: bool = Field(default=True, description="Cache fresh metrics in Redis")
    cache_ttl_seconds: int = Field(default=120, gt=0, description="Upper bound on cached metric staleness")
    counter_mode: str = Field(default="recompute", description="recompute or increment")
    anomaly_z_threshold: float = Field(default=3.0, gt=0, description="Z-score flagged as a sales anomaly")
    anomaly_pct_change_threshold: float = Field(default=50.0, gt=0, description="Day-over-day change flagged (%)")
    top_customers_limit: int = Field(default=10, gt=0, description="Customers listed in order analytics")

    @field_validator("counter_mode")
    @classmethod
    def validate_counter_mode(cls, v: str) -> str:
        if v.lower() not in ("recompute", "increment"):
            raise ValueError("Counter mode must be recompute or increment")
        return v.lower()


class BulkSettings(BaseSettings):
    """Bulk batch executor configuration"""

    model_config = SettingsConfigDict(env_prefix="BULK_")

    max_workers: int = Field(default=8, gt=0, description="Concurrent items per batch")
    max_batch_size: int = Field(default=500, gt=0, description="Largest accepted id list")
    audit_failed_items: bool = Field(default=True, description="Write audit entries for failed items")


class SecuritySettings(BaseSettings):
    """Security and request-limiting configuration"""

    model_config = SettingsConfigDict(env_prefix="")

    # Rate limiting
    rate_limit_requests: int = Field(default=100, alias="RATE_LIMIT_REQUESTS", description="Rate limit requests")
    rate_limit_window_seconds: int = Field(default=60, alias="RATE_LIMIT_WINDOW_SECONDS", description="Rate limit window")
    bulk_rate_limit_requests: int = Field(default=5, alias="BULK_RATE_LIMIT_REQUESTS", description="Bulk endpoint limit")

    # CORS
    cors_origins: List[str] = Field(
        default=["http://localhost:3000"],
        description="Allowed CORS origins"
    )


class MonitoringSettings(BaseSettings):
    """Logging configuration"""

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
    )

    # Application
    app_name: str = Field(default="ecommerce-backoffice", alias="APP_NAME", description="Application name")
    app_env: str = Field(default="development", alias="APP_ENV", description="Environment")
    debug: bool = Field(default=False, alias="DEBUG", description="Debug mode")

    # API Server
    api_host: str = Field(default="0.0.0.0", alias="API_HOST", description="API host")
    api_port: int = Field(default=8000, alias="API_PORT", description="API port")

    version: str = Field(default="1.0.0", description="Application version")

    # Subsystem configurations
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    mirror: MirrorSettings = Field(default_factory=MirrorSettings)
    gateway: GatewaySettings = Field(default_factory=GatewaySettings)
    analytics: AnalyticsSettings = Field(default_factory=AnalyticsSettings)
    bulk: BulkSettings = Field(default_factory=BulkSettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)
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
        return self.app_env == "production"

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached application settings.

    Returns:
        Settings: Application settings instance
    """
    return Settings()
