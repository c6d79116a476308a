"""Configuration management using pydantic-settings."""
from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Engine settings loaded from environment variables."""

    # Document endpoint: <base_url>/<resource>-<token>.json
    tokensync_base_url: str = "https://minecraftservers.ru/web"
    tokensync_resource: str = "json"

    # Persistent cache
    tokensync_cache_path: Path = Path("./cache/tokensync.db")
    tokensync_storage_prefix: str = "msrv"

    # Freshness
    tokensync_default_ttl_ms: int = 60 * 1000
    tokensync_swr: bool = False

    # Network
    tokensync_timeout_ms: int = 7000
    tokensync_max_retries: int = 1
    tokensync_backoff_base_ms: int = 300

    tokensync_log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
