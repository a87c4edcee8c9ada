"""
crawlgate configuration.
All secrets/tunables come from environment variables.
"""

from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # --- App ---
    app_name: str = "crawlgate"
    debug: bool = False

    # --- Rule / telemetry service ---
    api_key: str = ""  # bearer token for both endpoints
    api_url: str = "https://bbloker.com"
    http_timeout_seconds: float = 10.0

    # --- Rule sync ---
    sync_interval_seconds: float = 300.0  # 5 min

    # --- Telemetry ---
    telemetry_enabled: bool = True
    flush_interval_seconds: float = 10.0
    buffer_size: int = 100  # force flush at this many fingerprints

    # --- Rate limiting (per client IP) ---
    rate_limit: int = 60
    rate_limit_window_seconds: float = 60.0
    rate_limit_cleanup_seconds: float = 60.0

    model_config = {"env_prefix": "CRAWLGATE_", "env_file": ".env"}

    @property
    def base_url(self) -> str:
        return self.api_url.rstrip("/")


@lru_cache
def get_settings() -> Settings:
    return Settings()
