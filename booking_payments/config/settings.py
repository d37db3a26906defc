"""Application settings using Pydantic for environment-based configuration."""
from decimal import Decimal
from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Stripe Configuration
    stripe_secret_key: str = Field(..., description="Stripe secret API key (sk_test_...)")
    stripe_webhook_secret: str = Field(..., description="Stripe webhook signing secret")
    stripe_api_version: str = Field(default="2023-10-16", description="Stripe API version")
    currency: str = Field(default="usd", description="Checkout currency code")

    # Client redirects
    client_url: str = Field(
        default="http://localhost:5173", description="Client base URL for checkout redirects"
    )

    # Database Configuration
    database_url: str = Field(..., description="Database connection URL")
    database_pool_size: int = Field(default=20, description="Database connection pool size")
    database_max_overflow: int = Field(default=50, description="Max database connection overflow")
    database_echo: bool = Field(default=False, description="Echo SQL queries (debug)")
    store_timeout_seconds: float = Field(
        default=5.0, description="Upper bound for a single store call (seconds)"
    )

    # Redis Configuration
    redis_url: Optional[str] = Field(
        default=None, description="Redis connection URL for the idempotency cache"
    )

    # Application Configuration
    app_name: str = Field(default="booking-payments", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/production)")
    log_level: str = Field(default="INFO", description="Logging level")
    debug: bool = Field(default=False, description="Debug mode")

    # API Configuration
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=3000, description="API port")
    api_workers: int = Field(default=4, description="Number of API workers")
    allowed_origins: str = Field(
        default="http://localhost:5173,http://localhost:3000",
        description="CORS allowed origins (comma-separated)",
    )

    # Webhook verification
    webhook_tolerance_seconds: int = Field(
        default=300, description="Accepted age of a webhook signature timestamp (seconds)"
    )

    # Reconciliation
    booking_update_max_attempts: int = Field(
        default=5, description="Attempts to mark a booking paid before recording an anomaly"
    )
    booking_update_base_delay: float = Field(
        default=0.5, description="Base delay for booking update backoff (seconds)"
    )
    booking_update_max_delay: float = Field(
        default=8.0, description="Max delay between booking update attempts (seconds)"
    )
    amount_tolerance: Decimal = Field(
        default=Decimal("0.01"),
        description="Accepted difference between paid amount and booking price",
    )
    tracking_prefix: str = Field(default="TRK-", description="Payment tracking code prefix")

    # Sweep worker
    processed_event_retention_days: int = Field(
        default=30, description="Days to keep processed webhook event markers"
    )
    sweep_interval_seconds: int = Field(
        default=300, description="Seconds between reconciliation sweeps"
    )
    sweep_batch_size: int = Field(
        default=500, description="Max bookings repaired per sweep"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("stripe_secret_key")
    @classmethod
    def validate_stripe_key(cls, v: str) -> str:
        """Validate that Stripe secret key is a test or live secret key."""
        if not v.startswith("sk_test_") and not v.startswith("sk_live_"):
            raise ValueError(
                "Invalid Stripe secret key format. Must start with 'sk_test_' or 'sk_live_'"
            )
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v.upper()

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, v: str) -> str:
        """Validate currency format."""
        if len(v) != 3:
            raise ValueError("Currency must be a 3-letter code")
        return v.lower()

    @field_validator("client_url")
    @classmethod
    def strip_client_url(cls, v: str) -> str:
        return v.rstrip("/")

    def get_allowed_origins_list(self) -> List[str]:
        """Parse allowed origins from comma-separated string."""
        return [origin.strip() for origin in self.allowed_origins.split(",")]

    @property
    def is_test_mode(self) -> bool:
        """Check if using Stripe test mode."""
        return self.stripe_secret_key.startswith("sk_test_")


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()
