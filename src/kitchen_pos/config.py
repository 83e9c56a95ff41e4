"""Configuration and environment loading for Kitchen POS."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Supabase
    supabase_url: str
    supabase_key: str
    supabase_service_role_key: str | None = None  # Provisioning only
    profiles_table: str = "users"

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = False

    # Timeouts (seconds)
    session_fetch_timeout: float = 4.0
    profile_fetch_timeout: float = 4.0
    sign_out_timeout: float = 4.0
    guard_max_loading_seconds: float = 10.0

    # Local profile cache
    profile_cache_path: str = ".kitchen_pos/session.json"
    profile_cache_key: str = "user"
    profile_cache_ttl_seconds: int = 12 * 60 * 60

    # Routes
    sign_in_route: str = "/login"
    unauthorized_route: str = "/unauthorized"
    admin_landing_route: str = "/super-admin"
    default_landing_route: str = "/dashboard"
    setup_route: str = "/setup"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
