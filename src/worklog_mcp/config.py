"""Configuration management for Worklog MCP."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class WorklogSettings(BaseSettings):
    """Runtime configuration sourced from environment variables and optional .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    api_base_url: str = Field(
        default="http://localhost:3001/api", validation_alias="WORKLOG_API_BASE_URL"
    )
    api_token: str | None = Field(default=None, validation_alias="WORKLOG_API_TOKEN")
    api_timeout_seconds: float = Field(default=10.0, validation_alias="WORKLOG_API_TIMEOUT")
    chroma_persist_path: Path = Field(
        default=Path("./storage/chroma"), validation_alias="CHROMA_PERSIST_PATH"
    )
    log_level: str = Field(default="INFO", validation_alias="WORKLOG_LOG_LEVEL")
    refresh_interval_seconds: float = Field(
        default=1.0, validation_alias="WORKLOG_REFRESH_INTERVAL"
    )
    default_title: str = Field(default="Untitled task", validation_alias="WORKLOG_DEFAULT_TITLE")
    successor_offset_days: int = Field(
        default=1, validation_alias="WORKLOG_SUCCESSOR_OFFSET_DAYS"
    )

    @field_validator("api_base_url")
    @classmethod
    def _normalize_base_url(cls, value: str) -> str:
        normalized = value.strip().rstrip("/")
        if not normalized.startswith(("http://", "https://")):
            raise ValueError("WORKLOG_API_BASE_URL must be an http(s) URL")
        return normalized

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "WORKLOG_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator("api_timeout_seconds", "refresh_interval_seconds")
    @classmethod
    def _validate_positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("Timeouts and refresh intervals must be > 0 seconds")
        return value

    @field_validator("default_title")
    @classmethod
    def _validate_default_title(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("WORKLOG_DEFAULT_TITLE must not be empty")
        return normalized

    @field_validator("successor_offset_days")
    @classmethod
    def _validate_successor_offset(cls, value: int) -> int:
        if value < 0:
            raise ValueError("WORKLOG_SUCCESSOR_OFFSET_DAYS must be >= 0")
        return value


@lru_cache(maxsize=1)
def get_settings() -> WorklogSettings:
    """Return cached settings instance."""

    settings = WorklogSettings()
    settings.chroma_persist_path = settings.chroma_persist_path.expanduser().resolve()
    return settings


__all__ = ["WorklogSettings", "get_settings"]
