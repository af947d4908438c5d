"""Application configuration loaded from environment variables."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All configuration is loaded from environment variables (or .env file)."""

    # --- App ---
    app_name: str = "Health Sync"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"
    environment: str = "development"  # development | staging | production

    # --- Remote platform ---
    platform_base_url: str = "http://localhost:8080/v2"
    platform_api_key: str = ""  # sent as x-api-key; server-side only
    provider: str = "apple_health_kit"
    upload_timeout_seconds: float = 30.0

    # --- Sync ---
    default_time_zone: str = "UTC"
    device_name: str = "apple_health_export"
    token_store_path: str = "data/change_tokens.json"

    # --- CORS ---
    cors_origins: list[str] = ["http://localhost:3000"]

    # --- Uploads ---
    max_upload_size_bytes: int = 200 * 1024 * 1024  # 200 MB; full exports are large

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


@lru_cache
def get_settings() -> Settings:
    return Settings()
