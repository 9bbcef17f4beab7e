"""Application configuration using pydantic-settings."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # FPL API
    fpl_api_base_url: str = "https://fantasy.premierleague.com/api"
    fpl_requests_per_second: float = 10.0
    fpl_max_concurrent: int = 10

    # Database
    database_url: str = ""
    supabase_db_url: str = ""
    db_pool_min_size: int = 1
    db_pool_max_size: int = 10
    db_command_timeout_seconds: float = 30.0

    # Trigger authentication
    admin_token: str = ""
    cron_secret: str = ""

    # CORS - comma-separated list of allowed origins
    cors_origins: str = "http://localhost:5173,http://localhost:3000"

    # Logging
    log_level: str = "INFO"

    # FDR recalculation
    fdr_freshness_minutes: int = 60  # Skip recalculation inside this window

    # Stats sync tiers
    recent_sync_gameweeks: int = 3  # Current GW + previous 2
    sync_batch_size: int = 10
    quick_sync_delay_seconds: float = 0.1  # Per player, applied between batches
    full_sync_delay_seconds: float = 0.05
    quick_sync_budget_seconds: int = 60
    full_sync_budget_seconds: int = 300
    live_sync_delay_seconds: float = 0.1
    live_sync_budget_seconds: int = 60
    backfill_sync_delay_seconds: float = 0.05  # One gameweek, no time budget

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def db_connection_string(self) -> str:
        """Database URL, preferring DATABASE_URL over the Supabase connection string."""
        return self.database_url or self.supabase_db_url


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
