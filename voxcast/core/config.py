"""Application configuration management using Pydantic Settings."""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables.

    All settings can be overridden via environment variables.
    Required settings will raise validation errors if not provided.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="voxcast", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/staging/production)")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # Supabase
    supabase_url: str = Field(..., description="Supabase project URL")
    supabase_key: str = Field(..., description="Supabase anon/publishable key used by chat clients")
    supabase_jwt_secret: str = Field(default="", description="Secret used to verify Supabase access tokens (HS256)")
    jwt_audience: str = Field(default="authenticated", description="Expected audience claim of access tokens")
    realtime_schema: str = Field(default="public", description="Postgres schema watched by the realtime feed")

    # Messaging
    history_page_size: int = Field(default=50, description="Max messages loaded per history fetch")
    poll_interval_seconds: float = Field(
        default=8.0,
        description="Seconds between history refreshes while a conversation is open (0 disables)",
    )
    pending_match_window_seconds: float = Field(
        default=120.0,
        description="How long a pending send may be matched against a confirmed insert by content",
    )

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env == "production"

    @property
    def polling_enabled(self) -> bool:
        """Check if the history polling fallback is enabled."""
        return self.poll_interval_seconds > 0


@lru_cache
def get_settings() -> Settings:
    """Get cached settings singleton.

    Returns:
        Settings: Application settings instance.

    Note:
        Settings are cached using lru_cache for performance.
        Call get_settings.cache_clear() to reload settings.
    """
    return Settings()
