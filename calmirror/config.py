"""Application configuration management."""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    database_path: str = "./data/calmirror.db"

    # Credential store
    token_store_dir: str = "./secure_tokens"
    token_store_secret: Optional[str] = None

    # Google OAuth client used to refresh stored credentials
    google_client_id: Optional[str] = None
    google_client_secret: Optional[str] = None
    google_token_uri: str = "https://oauth2.googleapis.com/token"

    # Server
    log_level: str = "info"
    host: str = "0.0.0.0"
    port: int = 3000
    admin_api_token: Optional[str] = None

    # Scheduling
    enable_scheduler: bool = True
    sync_interval_minutes: int = 15
    job_lock_timeout_minutes: int = 30

    # Reconciliation
    backfill_past_days: int = 30
    backfill_future_days: int = 365
    dedup_only_matching: bool = False
    subscription_timeout_seconds: float = 600
    page_size: int = 2500

    # Retention settings (days)
    audit_log_retention_days: int = 90
    retention_cleanup_hour: int = 3

    # Google Calendar
    calendar_sync_tag: str = "calmirror"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
