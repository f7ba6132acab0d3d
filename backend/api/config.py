"""
Application Configuration
Loads settings from environment variables with sensible defaults.
"""

from pydantic_settings import BaseSettings
from typing import List
from pathlib import Path


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database Configuration
    database_url: str = "sqlite:///./data/portfolio.db"

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_debug: bool = False

    # CORS Configuration
    cors_origins: List[str] = ["*"]  # Allow all origins for development

    # Scraper Configuration
    scraper_timeout: float = 30.0
    scraper_max_retries: int = 3
    scraper_retry_delay: float = 2.0
    scraper_headless: bool = True
    persist_batch_size: int = 10  # Companies saved concurrently per batch

    # Proxy Pool Configuration
    proxy_enabled: bool = False
    proxy_min_pool_size: int = 10
    proxy_cache_ttl: int = 300  # Seconds before the in-memory list is re-read
    proxy_ttl_hours: int = 24
    proxy_sources: List[str] = [
        "https://api.proxyscrape.com/v2/?request=getproxies&protocol=http&timeout=10000&country=all",
        "https://www.proxy-list.download/api/v1/get?type=http",
        "https://proxy.webshare.io/api/v2/proxy/list/download/",
    ]
    proxy_probe_url: str = "https://api.ipify.org"
    proxy_probe_timeout: float = 5.0
    proxy_fallback_timeout: float = 1.0

    # Geocoding Configuration (Nominatim)
    geocode_url: str = "https://nominatim.openstreetmap.org/search"
    geocode_min_interval: float = 1.0  # Nominatim usage policy: max 1 request/second
    geocode_max_attempts: int = 5
    geocode_timeout: float = 2.0
    geocode_app_name: str = "Geo Location"
    geocode_contact: str = "admin@example.com"

    # Logging Configuration
    log_level: str = "INFO"
    log_format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    # Paths
    @property
    def log_dir(self) -> Path:
        """Get the log directory path."""
        return Path(__file__).parent.parent.parent / "logs"

    @property
    def log_file(self) -> Path:
        """Get the log file path."""
        return self.log_dir / "backend.log"

    @property
    def data_dir(self) -> Path:
        """Get the data directory path."""
        return Path(__file__).parent.parent / "data"

    class Config:
        # Only load .env if it exists to avoid permission errors
        env_file = ".env" if __import__("pathlib").Path(".env").exists() else None
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"  # Ignore extra environment variables


# Global settings instance
settings = Settings()
