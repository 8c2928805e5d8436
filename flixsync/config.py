"""Application configuration models."""

from __future__ import annotations

from functools import lru_cache
from typing import Iterable, Literal

from pydantic import Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_USER_AGENTS: tuple[str, ...] = (
    "TiviMate/4.7.0 (Linux; Android 11)",
    "IPTVSmartersPro/1.1.1",
    "okhttp/3.12.1",
    (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
)
DEFAULT_RETRY_STATUS_CODES: tuple[int, ...] = (401, 403, 429, 502, 504, 512, 513, 520)
DEFAULT_OVERLOAD_STATUS_CODES: tuple[int, ...] = (429, 502, 503, 504, 512, 513, 520)


def _split_values(value: object, name: str) -> list[str]:
    if isinstance(value, str):
        return [part.strip() for part in value.split(",")]
    if isinstance(value, Iterable):
        return [str(part).strip() for part in value]
    raise TypeError(f"{name} must be a string or iterable")


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="flixsync", alias="APP_NAME")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", alias="LOG_LEVEL"
    )

    database_url: str = Field(
        default="sqlite+aiosqlite:///./flixsync.db", alias="DATABASE_URL"
    )

    tmdb_api_key: str | None = Field(default=None, alias="TMDB_API_KEY")
    tmdb_access_token: str | None = Field(default=None, alias="TMDB_ACCESS_TOKEN")
    tmdb_api_url: HttpUrl = Field(
        default="https://api.themoviedb.org/3", alias="TMDB_API_URL"
    )
    omdb_api_key: str | None = Field(default=None, alias="OMDB_API_KEY")
    omdb_api_url: HttpUrl = Field(
        default="https://www.omdbapi.com/", alias="OMDB_API_URL"
    )

    http_timeout_seconds: float = Field(default=180.0, alias="HTTP_TIMEOUT", gt=0)
    http_connect_timeout_seconds: float = Field(
        default=15.0, alias="HTTP_CONNECT_TIMEOUT", gt=0
    )
    http_retry_backoff_seconds: float = Field(
        default=1.0, alias="HTTP_RETRY_BACKOFF", ge=0
    )
    user_agents: tuple[str, ...] = Field(
        default=DEFAULT_USER_AGENTS, alias="USER_AGENTS"
    )
    retry_status_codes: tuple[int, ...] = Field(
        default=DEFAULT_RETRY_STATUS_CODES, alias="RETRY_STATUS_CODES"
    )
    overload_status_codes: tuple[int, ...] = Field(
        default=DEFAULT_OVERLOAD_STATUS_CODES, alias="OVERLOAD_STATUS_CODES"
    )

    sync_freshness_seconds: int = Field(
        default=43_200, alias="SYNC_FRESHNESS_SECONDS", ge=0
    )
    sync_batch_size: int = Field(default=500, alias="SYNC_BATCH_SIZE", ge=1, le=2_000)
    category_delay_seconds: float = Field(
        default=0.5, alias="CATEGORY_DELAY_SECONDS", ge=0
    )
    sync_series_episodes: bool = Field(default=False, alias="SYNC_SERIES_EPISODES")

    enrichment_concurrency: int = Field(
        default=10, alias="ENRICHMENT_CONCURRENCY", ge=1, le=50
    )
    enrichment_timeout_seconds: float = Field(
        default=20.0, alias="ENRICHMENT_TIMEOUT_SECONDS", gt=0
    )
    enrichment_batch_size: int = Field(
        default=50, alias="ENRICHMENT_BATCH_SIZE", ge=1
    )
    enrichment_candidate_limit: int = Field(
        default=2_000, alias="ENRICHMENT_CANDIDATE_LIMIT", ge=1
    )
    enrichment_retry_seconds: int = Field(
        default=86_400, alias="ENRICHMENT_RETRY_SECONDS", ge=0
    )

    epg_refresh_seconds: int = Field(default=1_800, alias="EPG_REFRESH_SECONDS", ge=0)
    epg_limit: int = Field(default=12, alias="EPG_LIMIT", ge=1, le=100)
    epg_retention_hours: int = Field(default=4, alias="EPG_RETENTION_HOURS", ge=0)

    status_clear_seconds: float = Field(default=4.0, alias="STATUS_CLEAR_SECONDS", ge=0)

    @field_validator("user_agents", mode="before")
    @classmethod
    def _parse_user_agents(cls, value: object) -> tuple[str, ...]:
        """Normalise the user-agent rotation list; the order is significant."""

        if value is None:
            return DEFAULT_USER_AGENTS
        cleaned: list[str] = []
        for agent in _split_values(value, "USER_AGENTS"):
            if agent and agent not in cleaned:
                cleaned.append(agent)
        if not cleaned:
            return DEFAULT_USER_AGENTS
        return tuple(cleaned)

    @field_validator("retry_status_codes", "overload_status_codes", mode="before")
    @classmethod
    def _parse_status_codes(cls, value: object) -> tuple[int, ...]:
        """Parse comma separated HTTP status code lists."""

        if value is None:
            return ()
        codes: list[int] = []
        for entry in _split_values(value, "status code list"):
            if not entry:
                continue
            try:
                code = int(entry)
            except ValueError as exc:
                raise ValueError(f"Invalid HTTP status code: {entry!r}") from exc
            if not 100 <= code <= 999:
                raise ValueError(f"Invalid HTTP status code: {entry!r}")
            if code not in codes:
                codes.append(code)
        return tuple(codes)

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", populate_by_name=True
    )


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]
