"""Application configuration using pydantic-settings."""

from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="MUSICSCAN_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    debug: bool = False

    # Database
    database_url: str = "sqlite+aiosqlite:///./data/musicscan.db"

    # Paths
    data_dir: Path = Path("./data")

    # Batch processing
    default_batch_size: int = 10
    max_batch_size: int = 50
    max_attempts: int = 3
    lease_seconds: int = 300  # processing rows older than this are reclaimed
    inter_item_delay: float = 1.0  # seconds between items of one batch
    overfetch_factor: int = 2  # fetch more candidates to account for duplicates

    # Upstream throttling (fixed delays, no exponential backoff)
    rate_limit_sleep: float = 60.0  # sleep after an HTTP 429
    rate_limit_retries: int = 3
    page_delay: float = 1.0  # between paginated upstream calls
    http_timeout: float = 60.0

    # Sibling functions (AI generation, image storage, product creation)
    functions_base_url: str = "http://localhost:54321/functions/v1"
    service_role_key: str = ""

    # Discogs marketplace
    discogs_api_url: str = "https://api.discogs.com"
    discogs_token: str = ""
    discogs_user_agent: str = "MusicScan/1.0"
    discogs_import_delay: float = 30.0  # product creation is OpenAI-heavy
    art_product_price: float = 49.95

    # Social queue recycling
    social_min_pending: int = 5
    social_recycle_batch: int = 10
    social_recycle_after_days: int = 30
    social_slot_minutes: int = 30

    # Scheduling
    embedded_worker: bool = False
    worker_poll_interval: float = 30.0
    system_user_id: str = "00000000-0000-0000-0000-000000000000"

    # Rate limiting
    rate_limit_enabled: bool = True
    rate_limit_requests: int = 100  # requests per window
    rate_limit_window: int = 60  # seconds
    functions_rate_limit_requests: int = 20  # batch endpoints cost API credits
    functions_rate_limit_window: int = 60

    # CORS - batch endpoints are called from the admin UI and the scheduler
    cors_origins: list[str] = ["*"]

    @field_validator("max_batch_size")
    @classmethod
    def validate_max_batch_size(cls, v: int) -> int:
        """Keep the per-invocation cap positive."""
        if v < 1:
            raise ValueError("max_batch_size must be at least 1")
        return v

    @field_validator("max_attempts")
    @classmethod
    def validate_max_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_attempts must be at least 1")
        return v

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        # Ensure directories exist
        self.data_dir.mkdir(parents=True, exist_ok=True)


settings = Settings()
