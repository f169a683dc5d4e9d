"""Configuration management for the collab MCP server."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Annotated
import os

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class CollabSettings(BaseSettings):
    """Runtime configuration sourced from environment variables and optional .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    database_url: str = Field(
        default="sqlite:///./storage/collab.db", validation_alias="COLLAB_DATABASE_URL"
    )
    chroma_persist_path: Path = Field(
        default=Path("./storage/chroma"), validation_alias="CHROMA_PERSIST_PATH"
    )
    audit_enabled: bool = Field(default=True, validation_alias="COLLAB_AUDIT_ENABLED")
    policy_paths: Annotated[tuple[Path, ...], NoDecode] = Field(
        default=(Path("policies"),), validation_alias="COLLAB_POLICY_PATHS"
    )
    log_level: str = Field(default="INFO", validation_alias="COLLAB_LOG_LEVEL")
    stale_session_minutes: int = Field(
        default=30, validation_alias="COLLAB_STALE_SESSION_MINUTES"
    )
    reaper_interval_seconds: int = Field(
        default=300, validation_alias="COLLAB_REAPER_INTERVAL_SECONDS"
    )
    audit_retention_days: int = Field(default=7, validation_alias="COLLAB_AUDIT_RETENTION_DAYS")
    force_release_requires_opt_in: bool = Field(
        default=False, validation_alias="COLLAB_FORCE_REQUIRES_OPT_IN"
    )

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "COLLAB_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator("policy_paths", mode="before")
    @classmethod
    def _parse_policy_paths(cls, value):
        if value is None or value == "":
            return (Path("policies"),)
        if isinstance(value, (list, tuple)):
            return tuple(Path(str(item)) for item in value)
        if isinstance(value, str):
            parts = [part.strip() for part in value.split(os.pathsep) if part.strip()]
            return tuple(Path(part) for part in parts) or (Path("policies"),)
        raise TypeError("COLLAB_POLICY_PATHS must be a list of paths or a path-separated string")

    @field_validator("database_url")
    @classmethod
    def _validate_database_url(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("COLLAB_DATABASE_URL must not be empty")
        return normalized

    @field_validator("stale_session_minutes", "audit_retention_days")
    @classmethod
    def _validate_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("stale session minutes and audit retention days must be >= 1")
        return value

    @field_validator("reaper_interval_seconds")
    @classmethod
    def _validate_reaper_interval(cls, value: int) -> int:
        if value < 0:
            raise ValueError("COLLAB_REAPER_INTERVAL_SECONDS must be >= 0 (0 disables the reaper)")
        return value


@lru_cache(maxsize=1)
def get_settings() -> CollabSettings:
    """Return cached settings instance."""

    settings = CollabSettings()
    settings.chroma_persist_path = settings.chroma_persist_path.expanduser().resolve()
    settings.policy_paths = tuple(path.expanduser().resolve() for path in settings.policy_paths)
    return settings


__all__ = ["CollabSettings", "get_settings"]
