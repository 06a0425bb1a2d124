"""
Configuration from environment variables.

A ``.env`` file in the working directory is loaded first (existing
environment variables win).

Usage:
    from backstream.config import get_settings

    settings = get_settings()
    print(settings.upstream_base_url, settings.flush_interval)
"""

from functools import lru_cache
from typing import Optional
import os

from dotenv import load_dotenv


class Settings:
    """Engine and server configuration loaded from environment variables."""

    def __init__(self) -> None:
        # Upstream
        self.shared_api_key: Optional[str] = os.getenv("OPENROUTER_API_KEY")
        self.upstream_base_url: str = os.getenv(
            "OPENROUTER_BASE_URL", "https://openrouter.ai/api/v1"
        ).rstrip("/")
        self.site_url: str = os.getenv("BACKSTREAM_SITE_URL", "https://osschat.io")
        self.app_title: str = os.getenv("BACKSTREAM_APP_TITLE", "OSSChat")

        # Shared/free tier metering
        self.shared_provider: str = os.getenv("BACKSTREAM_SHARED_PROVIDER", "osschat")
        self.daily_limit_cents: float = float(
            os.getenv("BACKSTREAM_DAILY_LIMIT_CENTS", "10")
        )

        # Job execution
        self.flush_interval: int = int(os.getenv("BACKSTREAM_FLUSH_INTERVAL", "5"))
        self.stream_timeout_seconds: float = float(
            os.getenv("BACKSTREAM_STREAM_TIMEOUT_SECONDS", "300")
        )
        self.stale_after_seconds: float = float(
            os.getenv("BACKSTREAM_STALE_AFTER_SECONDS", "300")
        )
        self.max_concurrent_streams: int = int(
            os.getenv("BACKSTREAM_MAX_CONCURRENT_STREAMS", "32")
        )

        # Server
        self.host: str = os.getenv("BACKSTREAM_HOST", "0.0.0.0")
        self.port: int = int(os.getenv("BACKSTREAM_PORT", "8000"))
        self.api_key: Optional[str] = os.getenv("BACKSTREAM_API_KEY")

    @property
    def auth_required(self) -> bool:
        """Authentication is required if BACKSTREAM_API_KEY is set."""
        return self.api_key is not None


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    load_dotenv()
    return Settings()


def reset_settings() -> None:
    """Clear settings cache. For testing only."""
    get_settings.cache_clear()
