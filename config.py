"""Application settings for NAS Gallery."""
import os
from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings read from the environment (or a local .env file)."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Source tree
    image_root: Path = Field(
        default=Path("/mnt/nas/photos"), description="Root of the photo tree"
    )

    # Thumbnails
    cache_directory: Path = Field(default=Path(".cache/thumbs"))
    thumbnail_width: int = Field(default=320, gt=0)
    thumbnail_quality: int = Field(default=80, ge=1, le=95)
    lock_max_wait: float = Field(
        default=10.0, gt=0, description="Seconds before a held lock is considered stale"
    )
    lock_poll_interval: float = Field(default=0.05, gt=0)

    # Output sanity policy (tuned empirically, see placeholder log)
    min_output_bytes: int = Field(
        default=512,
        ge=0,
        description="Smallest plausible color thumbnail; grayscale output needs a third",
    )
    tiny_source_pixels: int = Field(default=4096, ge=0)
    placeholder_log_path: Path = Field(default=Path("data/placeholders.log"))

    # Metadata index
    database_path: Path = Field(default=Path("data/meta.db"))
    scan_concurrency: int = Field(default_factory=lambda: os.cpu_count() or 4, gt=0)

    # Auth
    basic_user: str = "viewer"
    basic_pass_hash: str = ""

    log_level: str = "INFO"


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide settings instance."""
    return Settings()
