"""Application configuration models."""

from __future__ import annotations

from datetime import time
from functools import lru_cache
from typing import Literal

from pydantic import Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_COLLECTION_PREFIX = "AI Recommendations: "


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="Recollect", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=8096, alias="PORT")

    scoring_service_url: HttpUrl | None = Field(
        default=None, alias="SCORING_SERVICE_URL"
    )
    scoring_api_key: str | None = Field(default=None, alias="SCORING_API_KEY")
    http_timeout_seconds: int = Field(
        default=30, alias="HTTP_TIMEOUT_SECONDS", ge=1, le=300
    )

    event_bus_url: HttpUrl | None = Field(default=None, alias="EVENT_BUS_URL")
    event_bus_topic: str = Field(
        default="media-recommendation-events", alias="EVENT_BUS_TOPIC"
    )
    enable_bus_events: bool = Field(default=True, alias="ENABLE_BUS_EVENTS")

    recommendation_fetch_count: int = Field(
        default=50, alias="RECOMMENDATION_FETCH_COUNT", ge=1, le=500
    )
    home_screen_limit: int = Field(
        default=20, alias="HOME_SCREEN_LIMIT", ge=1, le=100
    )
    max_recommendation_collections: int = Field(
        default=5, alias="MAX_RECOMMENDATION_COLLECTIONS", ge=1, le=50
    )
    collection_prefix: str = Field(
        default=DEFAULT_COLLECTION_PREFIX, alias="COLLECTION_PREFIX"
    )
    auto_create_collections: bool = Field(
        default=True, alias="AUTO_CREATE_COLLECTIONS"
    )
    use_fallback_only: bool = Field(default=False, alias="USE_FALLBACK_ONLY")

    sync_history_limit: int = Field(
        default=500, alias="SYNC_HISTORY_LIMIT", ge=1, le=10_000
    )
    max_concurrency: int = Field(default=4, alias="MAX_CONCURRENCY", ge=1, le=32)

    enable_scheduler: bool = Field(default=True, alias="ENABLE_SCHEDULER")
    daily_run_time: time = Field(default=time(3, 0), alias="DAILY_RUN_TIME")
    startup_delay_seconds: int = Field(
        default=30, alias="STARTUP_DELAY_SECONDS", ge=0
    )
    progress_event_interval_seconds: int = Field(
        default=30, alias="PROGRESS_EVENT_INTERVAL_SECONDS", ge=1
    )

    database_url: str = Field(
        default="sqlite+aiosqlite:///./recollect.db", alias="DATABASE_URL"
    )
    enable_debug_logging: bool = Field(default=False, alias="ENABLE_DEBUG_LOGGING")

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator("daily_run_time", mode="before")
    @classmethod
    def _parse_daily_run_time(cls, value: object) -> object:
        """Accept ``HH:MM`` strings for the daily trigger."""

        if value is None or value == "":
            return time(3, 0)
        if isinstance(value, str):
            parts = value.strip().split(":")
            if len(parts) != 2:
                raise ValueError("DAILY_RUN_TIME must use the HH:MM format")
            try:
                hour, minute = (int(part) for part in parts)
            except ValueError as exc:
                raise ValueError("DAILY_RUN_TIME must use the HH:MM format") from exc
            return time(hour, minute)
        return value

    @field_validator("collection_prefix")
    @classmethod
    def _require_prefix(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("COLLECTION_PREFIX must not be blank")
        return value

    @field_validator("scoring_api_key", mode="before")
    @classmethod
    def _strip_blank(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip() or None
        return value

    @property
    def bus_enabled(self) -> bool:
        """Return whether events should be published to the message bus."""

        return self.enable_bus_events and self.event_bus_url is not None

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]
