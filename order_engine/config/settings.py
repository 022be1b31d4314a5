"""
Storefront Order Engine
Centralized Configuration Management

Pydantic settings with environment variable support, validation, and type safety.
Every collaborator of the webhook pipeline (database, cache, storefront API,
fulfillment policy, accounting defaults) reads its knobs from here.
"""

from functools import lru_cache
from typing import Optional, List
from pydantic import Field, field_validator, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """Relational store configuration (PostgreSQL in production)"""

    model_config = SettingsConfigDict(env_prefix="POSTGRES_")

    host: str = Field(default="localhost", description="Database host")
    port: int = Field(default=5432, description="Database port")
    db: str = Field(default="order_engine", alias="database", description="Database name")
    user: str = Field(default="order_engine", description="Database user")
    password: SecretStr = Field(default="secure_password", description="Database password")
    pool_size: int = Field(default=20, description="Connection pool size")
    max_overflow: int = Field(default=10, description="Max overflow connections")
    pool_timeout: int = Field(default=30, description="Pool timeout in seconds")
    echo: bool = Field(default=False, description="Echo SQL queries")
    url: Optional[str] = Field(default=None, alias="DATABASE_URL", description="Full async URL (overrides host/port)")
    create_tables: bool = Field(default=False, description="Create missing tables on startup")

    @property
    def async_url(self) -> str:
        """Async database URL - uses DATABASE_URL if set, otherwise asyncpg from host/port"""
        if self.url:
            return self.url
        return f"postgresql+asyncpg://{self.user}:{self.password.get_secret_value()}@{self.host}:{self.port}/{self.db}"


class RedisSettings(BaseSettings):
    """Redis Cache Configuration"""

    model_config = SettingsConfigDict(env_prefix="REDIS_")

    enabled: bool = Field(default=True, description="Use Redis for read caching")
    host: str = Field(default="localhost", description="Redis host")
    port: int = Field(default=6379, description="Redis port")
    password: Optional[SecretStr] = Field(default=None, description="Redis password")
    db: int = Field(default=0, description="Redis database number")
    max_connections: int = Field(default=50, description="Max connections")
    socket_timeout: int = Field(default=5, description="Socket timeout in seconds")
    decode_responses: bool = Field(default=True, description="Decode responses to strings")
    url: Optional[str] = Field(default=None, alias="REDIS_URL", description="Redis URL (overrides host/port)")

    def get_url(self) -> str:
        """Redis connection URL - uses REDIS_URL if set, otherwise builds from host/port"""
        if self.url:
            return self.url
        if self.password:
            return f"redis://:{self.password.get_secret_value()}@{self.host}:{self.port}/{self.db}"
        return f"redis://{self.host}:{self.port}/{self.db}"


class StorefrontSettings(BaseSettings):
    """Storefront platform (Nuvemshop) integration"""

    model_config = SettingsConfigDict(env_prefix="STOREFRONT_")

    api_base: str = Field(default="https://api.nuvemshop.com.br/v1", description="Storefront REST API base URL")
    store_id: Optional[str] = Field(default=None, description="Storefront store identifier")
    access_token: Optional[SecretStr] = Field(default=None, description="Storefront API access token")
    user_agent: str = Field(default="Order Engine (ops@example.com)", description="User-Agent sent to the storefront API")
    webhook_secret: Optional[SecretStr] = Field(default=None, description="Shared secret expected on inbound webhooks")
    webhook_secret_header: str = Field(default="x-webhook-secret", description="Header carrying the shared secret")
    sync_enabled: bool = Field(default=True, description="Push stock levels back after processing")
    sync_timeout_seconds: float = Field(default=15.0, description="Timeout for one stock push call")

    @property
    def has_credentials(self) -> bool:
        """True when the storefront API can be called"""
        return bool(self.store_id and self.access_token)


class FulfillmentSettings(BaseSettings):
    """Fulfillment policy knobs"""

    model_config = SettingsConfigDict(env_prefix="FULFILLMENT_")

    owned_ship_days: int = Field(default=3, description="Ship estimate when every item is in owned stock")
    dropship_ship_days: int = Field(default=7, description="Ship estimate when any item is drop-shipped")
    fuzzy_token_count: int = Field(default=3, description="Name tokens used by the fuzzy matcher")
    listing_base_days: int = Field(default=3, description="Base delivery days advertised on the storefront")
    listing_virtual_extra_days: int = Field(default=5, description="Extra days when only supplier stock backs a listing")


class AccountingSettings(BaseSettings):
    """Accounting defaults used when no rate row is configured"""

    model_config = SettingsConfigDict(env_prefix="ACCOUNTING_")

    default_tax_rate: float = Field(default=6.0, description="Fallback tax provision rate (percent)")
    default_card_fee_rate: float = Field(default=0.0, description="Fallback card fee rate (percent)")
    cost_center: str = Field(default="Loja", description="Cost center stamped on revenue transactions")
    default_category: str = Field(default="ecommerce", description="Rate category when no item category is known")
    source: str = Field(default="nuvemshop", description="Source tag for revenue transactions")
    default_payment_method: str = Field(default="pix", description="Payment method when the payload has none")


class SecuritySettings(BaseSettings):
    """Security and Rate Limiting Configuration"""

    model_config = SettingsConfigDict(env_prefix="")

    # Rate limiting
    rate_limit_requests: int = Field(default=300, alias="RATE_LIMIT_REQUESTS", description="Rate limit requests")
    rate_limit_window_seconds: int = Field(default=60, alias="RATE_LIMIT_WINDOW_SECONDS", description="Rate limit window")

    # CORS
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:5173"],
        description="Allowed CORS origins"
    )


class MonitoringSettings(BaseSettings):
    """Monitoring and Observability Configuration"""

    model_config = SettingsConfigDict(env_prefix="")

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL", description="Logging level")
    log_format: str = Field(default="json", alias="LOG_FORMAT", description="Log format: json or text")


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
    app_name: str = Field(default="order-engine", alias="APP_NAME", description="Application name")
    app_env: str = Field(default="development", alias="APP_ENV", description="Environment")
    debug: bool = Field(default=False, alias="DEBUG", description="Debug mode")

    # API Server
    api_host: str = Field(default="0.0.0.0", alias="API_HOST", description="API host")
    api_port: int = Field(default=8000, alias="API_PORT", description="API port")
    api_workers: int = Field(default=4, alias="API_WORKERS", description="API workers")

    # Version
    version: str = Field(default="1.0.0", description="Application version")

    # Subsystem configurations
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    storefront: StorefrontSettings = Field(default_factory=StorefrontSettings)
    fulfillment: FulfillmentSettings = Field(default_factory=FulfillmentSettings)
    accounting: AccountingSettings = Field(default_factory=AccountingSettings)
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
        """Check if running in production"""
        return self.app_env == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development"""
        return self.app_env == "development"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached application settings.

    Uses LRU cache to ensure settings are only loaded once.

    Returns:
        Settings: Application settings instance
    """
    return Settings()
