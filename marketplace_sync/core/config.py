"""
Configuration management using Pydantic Settings.

Loads configuration from environment variables with validation and type safety.
"""

from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings are loaded from .env file or environment variables.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="marketplace-invoice-sync", description="Application name")
    app_env: Literal["development", "staging", "production"] = Field(
        default="production", description="Environment"
    )
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: Literal["json", "text"] = Field(default="json", description="Log format")
    timezone: str = Field(default="Europe/Warsaw", description="Timezone")
    locale: str = Field(default="pl_PL", description="Locale for dates and amounts")
    base_currency: str = Field(default="PLN", description="Base currency ISO 4217")
    debug: bool = Field(default=False, description="Debug mode")

    # Database
    database_url: str = Field(
        default="sqlite:///./data/marketplace_sync.db",
        description="Database connection URL",
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size")
    db_max_overflow: int = Field(default=10, description="Database max overflow connections")
    db_pool_timeout: int = Field(default=30, description="Database pool timeout in seconds")
    db_pool_recycle: int = Field(default=3600, description="Database pool recycle time")

    # Cache
    redis_url: Optional[str] = Field(
        default="redis://localhost:6379/0", description="Redis URL for idempotency cache"
    )
    idempotency_backend: Literal["redis", "memory"] = Field(
        default="redis", description="Idempotency cache backend"
    )
    idempotency_ttl_hours: int = Field(
        default=24, description="Time-to-live of processed-order cache keys"
    )

    # Marketplace OAuth / API
    marketplace_provider: str = Field(
        default="allegro", description="Provider name used in cache keys, SKUs and notes"
    )
    marketplace_client_id: str = Field(default="", description="OAuth2 client ID")
    marketplace_client_secret: str = Field(default="", description="OAuth2 client secret")
    marketplace_redirect_uri: str = Field(default="", description="OAuth2 redirect URI")
    marketplace_api_base_url: str = Field(
        default="https://api.allegro.pl", description="Marketplace REST API base URL"
    )
    marketplace_auth_base_url: str = Field(
        default="https://allegro.pl/auth/oauth", description="Marketplace OAuth base URL"
    )
    marketplace_api_timeout: int = Field(
        default=10, description="Token exchange and order fetch timeout in seconds"
    )
    marketplace_rate_limit: int = Field(
        default=10, description="Marketplace API rate limit (requests per second)"
    )

    # Encryption
    encryption_key: str = Field(
        default="",
        description="Fernet key (urlsafe base64, 32 bytes) for stored OAuth tokens",
    )

    # Sync
    sync_batch_size: int = Field(default=100, description="Orders fetched per sync pass")
    default_payment_terms: int = Field(
        default=14, description="Default payment terms in days"
    )
    scheduler_poll_seconds: int = Field(
        default=60, description="How often the scheduler looks for due integrations"
    )

    # GDPR/Privacy
    mask_customer_data_in_logs: bool = Field(
        default=True, description="Mask customer data in logs"
    )

    # API Server
    api_host: str = Field(default="0.0.0.0", description="API server host")
    api_port: int = Field(default=8000, description="API server port")
    enable_api_docs: bool = Field(default=True, description="Enable API documentation")

    # Security
    allowed_origins: str = Field(
        default="http://localhost:3000,http://localhost:8000",
        description="Allowed CORS origins (comma-separated)",
    )

    @field_validator("allowed_origins")
    @classmethod
    def parse_allowed_origins(cls, v: str) -> list[str]:
        """Parse comma-separated origins into list."""
        return [origin.strip() for origin in v.split(",") if origin.strip()]

    @field_validator("marketplace_api_base_url", "marketplace_auth_base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @property
    def marketplace_token_url(self) -> str:
        """OAuth token endpoint."""
        return f"{self.marketplace_auth_base_url}/token"

    @property
    def marketplace_authorize_url(self) -> str:
        """OAuth authorization endpoint."""
        return f"{self.marketplace_auth_base_url}/authorize"

    @property
    def is_development(self) -> bool:
        """Check if running in development."""
        return self.app_env == "development"


# Global settings instance
settings = Settings()
