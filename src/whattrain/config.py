"""
Configuration management using Pydantic Settings
"""
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

from .gtfs_loader import MTA_GTFS_URL


class Settings(BaseSettings):
    """Application settings loaded from WHATTRAIN_* environment variables"""

    model_config = SettingsConfigDict(env_prefix="WHATTRAIN_", env_file=".env", extra="ignore")

    # Static schedule: a local extracted feed, or download from gtfs_url
    gtfs_data_dir: Optional[str] = None
    gtfs_url: str = MTA_GTFS_URL

    # Real-time feeds
    mta_api_key: Optional[str] = None
    feed_timeout_seconds: float = 10.0
    cache_ttl_seconds: float = 30.0
    rate_limit_seconds: float = 1.0

    # Matching
    default_radius_meters: float = 500.0

    # Server
    cors_origins: str = "*"  # Comma-separated list
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse comma-separated CORS origins into a list"""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]
