from __future__ import annotations

from pathlib import Path
from typing import Self

from dotenv import load_dotenv
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from src.constants import DB_SCHEMA

# Load .env once at module import; every BaseSettings subclass sees the env vars
load_dotenv()

_SUPPORTED_DRIVERS = {"postgresql+asyncpg", "sqlite+aiosqlite"}
_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR"}


class DatabaseSettings(BaseSettings):
    """Database connection settings. Env vars prefixed with DATABASE_.

    PostgreSQL (asyncpg) in production; SQLite (aiosqlite) for local
    development and the unit test suite.
    """

    model_config = SettingsConfigDict(env_prefix="DATABASE_")

    driver: str = "postgresql+asyncpg"
    host: str = "localhost"
    port: int = 5432
    user: str = "postgres"
    password: str = ""
    name: str = "engagements"
    schema_: str = Field(DB_SCHEMA, validation_alias="DATABASE_SCHEMA")
    sqlite_path: Path = Path("data/engagements.db")
    pool_size: int = Field(5, gt=0)
    max_overflow: int = Field(10, ge=0)

    @field_validator("driver")
    @classmethod
    def _validate_driver(cls, v: str) -> str:
        if v not in _SUPPORTED_DRIVERS:
            msg = f"DATABASE_DRIVER must be one of {sorted(_SUPPORTED_DRIVERS)} (got '{v}')"
            raise ValueError(msg)
        return v

    @field_validator("schema_")
    @classmethod
    def _validate_schema(cls, v: str) -> str:
        if v != DB_SCHEMA:
            msg = f"DATABASE_SCHEMA must be '{DB_SCHEMA}' (got '{v}')"
            raise ValueError(msg)
        return v

    @property
    def is_sqlite(self) -> bool:
        return self.driver.startswith("sqlite")

    @property
    def url(self) -> str:
        if self.is_sqlite:
            return f"{self.driver}:///{self.sqlite_path.absolute()}"
        return (
            f"{self.driver}://{self.user}:{self.password}"
            f"@{self.host}:{self.port}/{self.name}"
        )


class ProgressSettings(BaseSettings):
    """Progress orchestration and ledger read settings. Env vars prefixed with PROGRESS_."""

    model_config = SettingsConfigDict(env_prefix="PROGRESS_")

    history_default_limit: int = Field(50, gt=0)
    history_max_limit: int = Field(500, gt=0)
    note_max_length: int = Field(500, gt=0)
    # Whole-unit-of-work retries on a ledger seq conflict
    max_commit_attempts: int = Field(3, ge=1, le=10)
    commit_timeout_s: float = Field(10.0, gt=0)

    @model_validator(mode="after")
    def _validate(self) -> Self:
        if self.history_default_limit > self.history_max_limit:
            raise ValueError(
                f"history_default_limit ({self.history_default_limit}) must not exceed "
                f"history_max_limit ({self.history_max_limit})"
            )
        return self


class StallSettings(BaseSettings):
    """Stalled-engagement sweep settings. Env vars prefixed with STALL_."""

    model_config = SettingsConfigDict(env_prefix="STALL_")

    threshold_days: int = Field(7, gt=0)


class LoggingSettings(BaseSettings):
    """Env vars prefixed with LOG_."""

    model_config = SettingsConfigDict(env_prefix="LOG_")

    json_output: bool = True
    level: str = "INFO"

    @field_validator("level")
    @classmethod
    def _validate_level(cls, v: str) -> str:
        normalized = v.upper()
        if normalized not in _LOG_LEVELS:
            msg = f"LOG_LEVEL must be one of {sorted(_LOG_LEVELS)} (got '{v}')"
            raise ValueError(msg)
        return normalized


class Settings(BaseSettings):
    """Root settings composing all sub-configurations."""

    model_config = SettingsConfigDict(extra="ignore")

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    progress: ProgressSettings = Field(default_factory=ProgressSettings)
    stall: StallSettings = Field(default_factory=StallSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


def get_settings() -> Settings:
    """Load and validate settings. Raises ValidationError on invalid values."""
    return Settings()
