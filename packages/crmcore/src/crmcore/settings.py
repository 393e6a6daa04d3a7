"""
Settings for crmcore.

All configuration is read from the environment (and an optional .env file).
"""

import functools

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

    # Database
    DATABASE_URL: str = Field(default="sqlite:///./dispatch.db", description="SQLAlchemy database URL")

    # Logging
    LOG_LEVEL: str = Field(default="INFO", description="Root log level")

    # Channel credentials
    ENCRYPTION_KEY: str | None = Field(default=None, description="Fernet key for stored provider credentials")
    EVOLUTION_API_URL: str = Field(default="", description="Fallback Evolution API base URL")
    EVOLUTION_API_KEY: str = Field(default="", description="Fallback Evolution API key")
    EVOLUTION_WEBHOOK_KEY: str | None = Field(default=None, description="Key required on inbound webhooks")
    PROVIDER_TIMEOUT: float = Field(default=30.0, description="Provider HTTP timeout (seconds)")

    # Blob storage
    STORAGE_URL: str | None = Field(default=None, description="Storage service base URL (stub when unset)")
    STORAGE_KEY: str | None = Field(default=None, description="Storage service key")
    STORAGE_BUCKET: str = Field(default="media", description="Storage bucket")
    MAX_ATTACHMENT_BYTES: int = Field(default=50 * 1024 * 1024, description="Attachment size ceiling")

    # Billing
    CREDITS_PER_TEXT: int = Field(default=1, description="Credits charged per text message")
    CREDITS_PER_ATTACHMENT: int = Field(default=2, description="Credits charged per attachment message")
    BILLING_SERVICE_TYPE: str = Field(default="whatsapp_send", description="Service type for send charges")

    # Best-effort cleanup
    COMPENSATION_ATTEMPTS: int = Field(default=3, description="Attempts for detached cleanup tasks")


@functools.lru_cache()
def get_settings() -> Settings:
    """Get settings (cached)."""
    return Settings()
