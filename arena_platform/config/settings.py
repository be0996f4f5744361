"""Application settings using Pydantic for environment-based configuration."""
from functools import lru_cache
from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Payment Gateway Configuration
    gateway_base_url: str = Field(
        default="https://api-sandbox.clickpesa.com", description="Payment gateway base URL"
    )
    gateway_client_id: str = Field(default="", description="Payment gateway client id")
    gateway_api_key: str = Field(default="", description="Payment gateway API key")
    gateway_checksum_key: str = Field(
        ..., description="Shared secret used for payload checksums and webhook signatures"
    )
    gateway_timeout_seconds: float = Field(default=30.0, description="Gateway HTTP timeout")
    gateway_token_ttl_seconds: int = Field(
        default=55 * 60, description="How long a gateway auth token is reused"
    )

    # Database Configuration
    database_url: str = Field(..., description="PostgreSQL connection URL")
    database_pool_size: int = Field(default=20, description="Database connection pool size")
    database_max_overflow: int = Field(default=50, description="Max database connection overflow")
    database_echo: bool = Field(default=False, description="Echo SQL queries (debug)")

    # Encryption
    encryption_secret: str = Field(..., description="Secret used to derive the field encryption key")
    encryption_salt: str = Field(
        default="arena-platform-salt", description="Fixed salt for key derivation"
    )

    # Currency
    default_currency: str = Field(default="TZS", description="Wallet currency for new users")
    supported_currencies: str = Field(
        default="TZS,USD", description="Accepted request currencies (comma-separated)"
    )
    currency_excluded_paths: str = Field(
        default="/health,/metrics,/docs,/redoc,/openapi.json,/webhooks",
        description="Path prefixes that never get a response currency (comma-separated)",
    )

    # Application Configuration
    app_name: str = Field(default="arena-platform", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/production)")
    log_level: str = Field(default="INFO", description="Logging level")
    quiet_loggers: str = Field(
        default="httpx,httpcore,sqlalchemy.engine,uvicorn.access",
        description="Loggers held at WARNING (comma-separated)",
    )
    debug: bool = Field(default=False, description="Debug mode")

    # API Configuration
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=8000, description="API port")
    api_workers: int = Field(default=4, description="Number of API workers")
    allowed_origins: str = Field(
        default="http://localhost:3000,http://localhost:8000",
        description="CORS allowed origins (comma-separated)",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v.upper()

    @field_validator("default_currency")
    @classmethod
    def validate_default_currency(cls, v: str) -> str:
        """Currency codes are three letters, stored upper-case."""
        if len(v.strip()) != 3:
            raise ValueError("Currency must be 3-letter code")
        return v.strip().upper()

    @staticmethod
    def _split(value: str) -> List[str]:
        return [item.strip() for item in value.split(",") if item.strip()]

    def get_allowed_origins_list(self) -> List[str]:
        """Parse allowed origins from comma-separated string."""
        return self._split(self.allowed_origins)

    def get_supported_currencies(self) -> List[str]:
        """Supported currency codes, upper-cased."""
        return [code.upper() for code in self._split(self.supported_currencies)]

    def get_currency_excluded_paths(self) -> List[str]:
        """Path prefixes excluded from response currency normalization."""
        return self._split(self.currency_excluded_paths)

    def get_quiet_loggers(self) -> List[str]:
        return self._split(self.quiet_loggers)


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()
