"""
deepshield.config – runtime settings read from the environment.

Every variable is prefixed with ``DEEPSHIELD_`` (e.g. ``DEEPSHIELD_GEMINI_API_KEY``)
and may also be placed in a ``.env`` file in the working directory.
"""
from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings from environment variables."""

    # Remote forensic service
    gemini_api_key: str = ""
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    analysis_model: str = "gemini-3-pro-preview"
    live_model: str = "gemini-3-flash-preview"
    request_timeout_s: float = Field(default=45.0, gt=0)

    # Invoker
    retry_budget: int = Field(default=2, ge=0)
    backoff_base_s: float = Field(default=1.0, ge=0)
    fingerprint_prefix_bytes: int = Field(default=2048, gt=0)

    # Live sampling cadence
    live_interval_s: float = Field(default=2.0, gt=0)
    alert_interval_s: float = Field(default=4.0, gt=0)
    not_ready_delay_s: float = Field(default=1.0, gt=0)
    cooldown_s: float = Field(default=30.0, gt=0)

    # Storage / uploads
    max_reports: int = Field(default=10_000, gt=0)
    max_upload_mb: int = Field(default=50, gt=0)

    # Logging
    log_level: str = "INFO"
    log_format: str = (
        "%(levelname)s %(asctime)s [%(name)s:%(lineno)d] "
        "session=%(session_id)s task=%(task_id)s %(message)s"
    )

    model_config = SettingsConfigDict(
        env_prefix="DEEPSHIELD_", env_file=".env", case_sensitive=False, extra="ignore"
    )

    @property
    def max_upload_bytes(self) -> int:
        """Convert MB to bytes"""
        return self.max_upload_mb * 1024 * 1024


@lru_cache()
def get_settings() -> Settings:
    """Cached settings instance"""
    return Settings()
