"""
Application configuration using environment variables.
"""
import os
from functools import lru_cache
from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    app_name: str = "CampaignHQ API"
    debug: bool = False
    environment: str = "development"

    # Database
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./campaignhq.db")

    # CORS
    cors_origins: List[str] = [
        "http://localhost:5173",
        "http://localhost:3000",
    ]

    # Delivery provider (Resend batch API)
    resend_api_key: str = ""
    resend_api_url: str = "https://api.resend.com"
    from_email: str = "CampaignHQ <hello@example.com>"
    provider_timeout_seconds: float = 30.0

    # Tracking and unsubscribe links
    tracking_base_url: str = "http://localhost:8000"
    utm_source: str = "campaignhq_email"
    unsubscribe_secret: str = ""
    provider_webhook_secret: str = ""

    # Batch sending
    batch_size: int = 100
    batch_delay_seconds: float = 1.0
    max_retries: int = 3
    base_retry_delay_seconds: float = 1.0

    # Scheduling
    dispatcher_enabled: bool = False
    dispatcher_interval_seconds: int = 300  # 5 minutes
    min_schedule_lead_minutes: int = 15

    # Template cache
    template_cache_ttl_seconds: int = 60

    # Rate limiting
    send_rate_limit: str = "10/minute"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Validate unsubscribe secret on startup
settings = get_settings()
if settings.environment == "production" and not settings.unsubscribe_secret:
    raise ValueError(
        "UNSUBSCRIBE_SECRET must be set in production! "
        "Generate one with: python -c \"import secrets; print(secrets.token_urlsafe(32))\""
    )
