"""Application settings using Pydantic for environment-based configuration."""
from functools import lru_cache
from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Stripe Configuration
    stripe_secret_key: str = Field(..., description="Stripe secret API key (sk_test_...)")
    stripe_webhook_secret: str = Field(..., description="Stripe webhook signing secret")
    stripe_api_version: str = Field(default="2024-11-20.acacia", description="Stripe API version")
    stripe_verification_flow_id: str = Field(
        default="", description="Pre-declared Stripe Identity verification flow"
    )

    # Database Configuration
    database_url: str = Field(..., description="Database connection URL")
    database_pool_size: int = Field(default=10, description="Database connection pool size")
    database_max_overflow: int = Field(default=20, description="Max database connection overflow")
    database_echo: bool = Field(default=False, description="Echo SQL queries (debug)")

    # Redis Configuration
    redis_url: str = Field(..., description="Redis connection URL")
    cache_prefix: str = Field(default="rentals", description="Prefix for every cache key")
    cache_default_ttl: int = Field(default=300, description="Default cache TTL (seconds)")
    cache_ttl_jitter: float = Field(default=0.1, description="Relative TTL jitter (0.1 = ±10%)")

    # Application Configuration
    app_name: str = Field(default="rental-booking", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/production)")
    log_level: str = Field(default="INFO", description="Logging level")
    debug: bool = Field(default=False, description="Debug mode")
    business_timezone: str = Field(default="UTC", description="Timezone used for 'today'")

    # API Configuration
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=8000, description="API port")
    api_workers: int = Field(default=4, description="Number of API workers")
    allowed_origins: str = Field(
        default="http://localhost:5173,http://localhost:5174",
        description="CORS allowed origins (comma-separated)",
    )
    customer_portal_url: str = Field(
        default="http://localhost:5173", description="Base URL for checkout redirects"
    )
    internal_api_key: str = Field(default="", description="Shared key for internal callers")

    # Notifications
    notification_api_key: str = Field(default="", description="Resend API key")
    notification_api_url: str = Field(
        default="https://api.resend.com/emails", description="Resend email endpoint"
    )
    notification_sender: str = Field(
        default="Rentals <bookings@example.com>", description="From address for emails"
    )
    notification_timeout: float = Field(default=10.0, description="Notification HTTP timeout")

    # Booking rules
    checkout_session_ttl_minutes: int = Field(
        default=30, description="Expiry of Stripe checkout sessions (minutes)"
    )
    max_additional_drivers: int = Field(default=3, description="Additional drivers per booking")
    max_extensions: int = Field(default=5, description="Online extensions per booking")
    min_charge_cents: int = Field(default=50, description="Minimum Stripe charge (cents)")
    currency: str = Field(default="usd", description="Charge currency")

    # POS
    pos_max_amount_cents: int = Field(default=5_000_000, description="POS amount ceiling")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("stripe_secret_key")
    @classmethod
    def validate_stripe_key(cls, v: str) -> str:
        """Validate that the Stripe secret key is a test or live key."""
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

    @field_validator("cache_ttl_jitter")
    @classmethod
    def validate_jitter(cls, v: float) -> float:
        """Jitter must leave the TTL positive."""
        if not 0 <= v < 1:
            raise ValueError("cache_ttl_jitter must be in [0, 1)")
        return v

    def get_allowed_origins_list(self) -> List[str]:
        """Parse allowed origins from comma-separated string."""
        return [origin.strip() for origin in self.allowed_origins.split(",")]

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env.lower() == "production"

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
