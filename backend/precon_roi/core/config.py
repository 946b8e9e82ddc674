"""
Application configuration settings.

All configuration is loaded from environment variables with sensible defaults.
"""
import json
from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import field_validator
from pydantic_settings import BaseSettings

PACKAGE_DATA_DIR = Path(__file__).resolve().parent.parent / "data"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    app_name: str = "Precon ROI"
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_debug: bool = True
    cors_origins: list[str] = ["http://localhost:3000"]
    user_agent: str = "MTG-Commander-ROI/1.0"

    # Scryfall API
    # Scryfall asks for 50-100ms between requests; stay at the upper bound
    scryfall_base_url: str = "https://api.scryfall.com"
    scryfall_rate_limit_ms: int = 100
    scryfall_max_retries: int = 4
    scryfall_collection_max_retries: int = 3
    scryfall_collection_batch_size: int = 75
    scryfall_client_rate_limit: int = 50
    scryfall_client_window_seconds: float = 60.0

    # JustTCG (condition pricing, free tier)
    justtcg_base_url: str = "https://api.justtcg.com"
    justtcg_api_key: str = ""  # set via JUSTTCG_API_KEY env var
    justtcg_rate_limit: int = 10
    justtcg_window_seconds: float = 60.0
    justtcg_max_retries: int = 3

    # Shared request policy
    request_timeout_seconds: float = 30.0
    backoff_factor: float = 2.0
    max_backoff_seconds: float = 60.0
    rate_limit_max_wait_attempts: int = 3

    # In-flight request deduplication
    dedup_warn_threshold: int = 100
    dedup_hard_limit: int = 500

    # Live lookup session cache
    session_cache_max_entries: int = 5000

    # Deck price cache
    price_cache_backend: str = "memory"  # memory, file, redis, none
    price_cache_prefix: str = "deck-prices-"
    price_cache_stale_days: float = 7.0
    price_cache_file: str = ".cache/deck-prices.json"
    redis_url: str = "redis://localhost:6379/0"

    # Printing selection
    serialized_collector_threshold: int = 900

    # Valuation
    top_cards_count: int = 5
    default_distro_discount: float = 0.40

    # Static data
    data_dir: str = str(PACKAGE_DATA_DIR)
    snapshot_url: str | None = None
    snapshot_path: str | None = None
    lowest_listings_url: str | None = None
    lowest_listings_path: str | None = None

    # Batch refresh
    bulk_data_type: str = "default_cards"
    bulk_download_timeout_seconds: float = 30.0

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v: Any) -> list[str]:
        """Parse CORS origins from JSON string or list."""
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                return [v]
        return v

    @property
    def precons_path(self) -> Path:
        return Path(self.data_dir) / "precons.json"

    @property
    def decklists_path(self) -> Path:
        return Path(self.data_dir) / "decklists.json"

    @property
    def snapshot_path_computed(self) -> Path:
        """Snapshot location on disk, defaulting to the data directory."""
        if self.snapshot_path:
            return Path(self.snapshot_path)
        return Path(self.data_dir) / "prices.json"

    @property
    def lowest_listings_path_computed(self) -> Path:
        if self.lowest_listings_path:
            return Path(self.lowest_listings_path)
        return Path(self.data_dir) / "lowest-listings.json"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
