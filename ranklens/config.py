"""
Configuration management for RankLens
"""
from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import List, Optional


DEFAULT_RANK_QUERY_ENDPOINT = "http://localhost:8080/api/query"


class Settings(BaseSettings):
    """Application settings"""

    # Application
    app_name: str = "RankLens Rank Tracker"
    environment: str = "development"
    debug: bool = False
    log_level: str = "INFO"
    log_dir: str = "logs"

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Database (project store)
    database_url: str = "sqlite:///./ranklens.db"

    # Cache backend; empty redis_url selects the in-process memory store
    redis_url: str = ""
    cache_prefix: str = "ranklens"
    memory_cache_max_entries: int = 500

    # Upstream ranking query service
    rank_query_api: Optional[str] = None
    gsc_db_endpoint: Optional[str] = None
    upstream_timeout_seconds: int = 30

    # TTLs (seconds)
    page_metrics_ttl_seconds: int = 24 * 60 * 60
    keyword_ranks_ttl_seconds: int = 4 * 60 * 60
    projects_ttl_seconds: int = 4 * 60 * 60

    # Cache refresh / warming
    cache_refresh_secret: str = ""
    warm_windows: str = "7,30,90"
    warm_schedule: str = "0 3 * * *"
    enable_cache_warming: bool = False

    class Config:
        env_file = ".env"
        case_sensitive = False

    @property
    def upstream_endpoint(self) -> str:
        """Upstream query URL, always ending in /api/query"""
        if self.rank_query_api and self.rank_query_api.strip():
            return self.rank_query_api.strip()
        return normalise_endpoint(self.gsc_db_endpoint)

    @property
    def warm_window_days(self) -> List[int]:
        days = []
        for part in self.warm_windows.split(","):
            part = part.strip()
            if part.isdigit() and int(part) > 0:
                days.append(int(part))
        return days or [7, 30, 90]


def normalise_endpoint(value: Optional[str]) -> str:
    """Append /api/query to a bare upstream base URL"""
    if not value or not value.strip():
        return DEFAULT_RANK_QUERY_ENDPOINT
    trimmed = value.strip().rstrip("/")
    if trimmed.lower().endswith("/api/query"):
        return trimmed
    return f"{trimmed}/api/query"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
