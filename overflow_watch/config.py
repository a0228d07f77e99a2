"""Application configuration loaded from environment variables."""

from __future__ import annotations

from datetime import timedelta
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings

from overflow_watch.domain.sources import DEFAULT_SOURCES, SourceConfig


class Settings(BaseSettings):
    app_name: str = "overflow-watch"
    debug: bool = False
    log_level: str = "INFO"
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Threshold queue
    min_duration_minutes: int = Field(default=600, ge=0)
    retention_days: int = Field(default=7, gt=0)

    # Timers
    poll_interval_seconds: int = Field(default=60, gt=0)
    publish_interval_minutes: int = Field(default=90, gt=0)
    max_publishes_per_day: int = Field(default=16, gt=0)
    publish_on_start: bool = True

    # Event tracking
    store_path: str = "storm_overflow_events.json"
    publish_ledger_path: str = "publish_ledger.json"
    # CSV of 2023 spill statistics per site (empty = no history)
    site_history_path: str = ""
    recovery_window_hours: int = Field(default=24, gt=0)
    max_start_age_days: int = Field(default=30, gt=0)
    clock_skew_tolerance_seconds: int = Field(default=300, ge=0)

    # Sources (empty = every default source)
    enabled_sources: list[str] = Field(default_factory=list)

    # ArcGIS fetcher
    request_timeout_seconds: float = Field(default=30.0, gt=0)
    page_size: int = Field(default=2000, gt=0)
    max_pages: int = Field(default=50, gt=0)

    # Static site output
    site_dir: str = "website"
    site_base_url: str = ""

    # Gemini summaries
    gemini_model: str = "gemini-2.0-flash"
    gemini_temperature: float = 0.3
    gemini_max_output_tokens: int = 512

    # X (Twitter) posting, disabled unless all three are set
    x_client_id: Optional[str] = None
    x_client_secret: Optional[str] = None
    x_refresh_token: Optional[str] = None

    model_config = {"env_prefix": "OVERFLOW_", "env_file": ".env", "extra": "ignore"}

    @property
    def sources(self) -> list[SourceConfig]:
        if not self.enabled_sources:
            return list(DEFAULT_SOURCES)
        wanted = set(self.enabled_sources)
        return [s for s in DEFAULT_SOURCES if s.source_id in wanted]

    @property
    def retention(self) -> timedelta:
        return timedelta(days=self.retention_days)

    @property
    def social_enabled(self) -> bool:
        return bool(self.x_client_id and self.x_client_secret and self.x_refresh_token)


settings = Settings()
