from __future__ import annotations

import os
import secrets
from enum import Enum
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from todos.logging import get_logger

logger = get_logger(__name__)


class Mode(str, Enum):
    """Server run modes."""

    DEBUG = "debug"
    RELEASE = "release"
    TEST = "test"


class Dialect(str, Enum):
    """Datastore backends selectable through DATABASE_URL."""

    POSTGRES = "postgres"
    MEMORY = "memory"


_POSTGRES_SCHEMES = ("postgres://", "postgresql://")


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Server settings loaded from the environment (and an optional .env)."""

    mode: Mode = env_field(Mode.DEBUG, "MODE")
    bind: str = env_field("127.0.0.1", "BIND")
    port: int = env_field(8080, "PORT", ge=1, le=65535)
    use_tls: bool = env_field(False, "USE_TLS")
    domain: str = env_field("localhost", "DOMAIN")
    secret_key: str | None = env_field(None, "SECRET_KEY")
    database_url: str | None = env_field(None, "DATABASE_URL")
    use_memory_store: bool = env_field(False, "USE_MEMORY_STORE")
    token_cleanup: bool = env_field(
        True,
        "TOKEN_CLEANUP",
        description="Run the background job that deletes unrefreshable tokens",
    )
    token_cleanup_interval_seconds: int = env_field(
        3600, "TOKEN_CLEANUP_INTERVAL", ge=1
    )
    access_token_minutes: int = env_field(4 * 60, "ACCESS_TOKEN_MINUTES", ge=1)
    refresh_token_minutes: int = env_field(12 * 60, "REFRESH_TOKEN_MINUTES", ge=1)
    refresh_overlap_seconds: int = env_field(60, "REFRESH_OVERLAP_SECONDS", ge=0)
    dk_time_cost: int = env_field(1, "DK_TIME_COST", ge=1)
    dk_memory_cost: int = env_field(64 * 1024, "DK_MEMORY_COST", ge=8)
    dk_parallelism: int = env_field(2, "DK_PARALLELISM", ge=1, le=255)

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @field_validator("mode", mode="before")
    @classmethod
    def _normalize_mode(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("database_url")
    @classmethod
    def _blank_database_url(cls, value: str | None) -> str | None:
        if value is not None and not value.strip():
            return None
        return value

    @model_validator(mode="after")
    def _ensure_secret_key(self) -> "Settings":
        if self.secret_key:
            return self
        if self.mode == Mode.RELEASE:
            raise ValueError("SECRET_KEY is required in release mode")
        # Tokens signed with a generated key do not survive a restart
        self.secret_key = secrets.token_urlsafe(64)
        logger.warning("secret_key_generated", mode=self.mode.value)
        return self

    @model_validator(mode="after")
    def _check_token_durations(self) -> "Settings":
        if self.refresh_token_minutes <= self.access_token_minutes:
            raise ValueError("refresh tokens must outlive access tokens")
        if self.refresh_overlap_seconds >= self.access_token_minutes * 60:
            raise ValueError("refresh overlap must be shorter than the access token lifetime")
        return self

    @property
    def addr(self) -> str:
        """The host:port pair the server binds to."""
        return f"{self.bind}:{self.port}"

    @property
    def endpoint(self) -> str:
        """Base URL clients should use to reach this server."""
        scheme = "https" if self.use_tls else "http"
        return f"{scheme}://{self.domain}:{self.port}/"

    @property
    def cookie_domain(self) -> str | None:
        # Browsers reject explicit cookie domains for local hosts
        if self.domain in {"localhost", "127.0.0.1", ""}:
            return None
        return self.domain

    def db_dialect(self) -> Dialect:
        if self.use_memory_store or not self.database_url:
            return Dialect.MEMORY
        if self.database_url.startswith(_POSTGRES_SCHEMES):
            return Dialect.POSTGRES
        raise ValueError(f"unhandled database dialect in DATABASE_URL: {self.database_url.split(':', 1)[0]}")


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
