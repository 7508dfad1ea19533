from functools import lru_cache
from typing import ClassVar

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables / .env file."""

    # Thread API (an empty token makes ingestion fail with ConfigError)
    threads_api_base_url: str = "https://chatbot.example.com/api"
    threads_api_token: str = ""
    environment: str = "staging"  # staging | production; also scopes the cache

    # Fetch behaviour
    request_timeout_seconds: float = 60.0
    fetch_limit: int = 10000
    inter_chunk_delay_seconds: float = 0.1
    fetch_max_attempts: int = 1  # 1 = no retries
    fetch_backoff_seconds: str = ""  # comma-separated, e.g. "1,5,15"

    # Daily chunk profile: hours at which a new window starts
    chunk_boundary_hours: str = "0,12,17,19,21"

    # Range cache (empty path = in-memory, lost on exit)
    cache_db_path: str = ""
    cache_ttl_minutes: int = 30
    cache_max_entries: int = 10

    # Tool latency sanity bound
    max_latency_seconds: float = 300.0

    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Lazily load and cache settings. Fails at first call, not at import time."""
    return Settings()
