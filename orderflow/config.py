"""
Application configuration using pydantic-settings.
Loads from environment variables with .env file support.
"""

from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Database
    database_url: str = "sqlite+aiosqlite:///./orderflow.db"
    sqlite_busy_timeout_ms: int = 5000

    # Token verification (tokens are issued by the authentication service)
    secret_key: str = "change-this-in-production-minimum-32-characters-long"
    algorithm: str = "HS256"

    # Application
    debug: bool = False
    environment: str = "development"
    log_level: str = "INFO"  # DEBUG, INFO, WARNING, ERROR

    # API Settings
    api_v1_prefix: str = "/api/v1"
    project_name: str = "Order Lifecycle Engine"
    version: str = "1.0.0"

    # Lifecycle engine
    number_allocation_retries: int = 5  # savepoint retries on duplicate revision/version number
    default_page_size: int = 20
    max_page_size: int = 100

    # Real-time broker
    realtime_queue_size: int = 256  # per live session; overflow is dropped
    realtime_ping_interval_seconds: float = 25.0

    # Deadline reminders
    deadline_reminders_enabled: bool = True
    deadline_reminder_interval_seconds: float = 3600.0


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
