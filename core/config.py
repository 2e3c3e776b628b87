"""Runtime configuration powered by :mod:`pydantic_settings`.

Everything is read from environment variables once, at startup. main.py calls
load_dotenv() before building Settings(), so a local .env file works the same
as exported variables.
"""

import pathlib
from typing import Annotated

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

DEFAULT_GITHUB_API_BASE = "https://api.github.com"
DEFAULT_NARRATOR_MODEL = "google/gemini-2.0-flash-001"


class Settings(BaseSettings):
    """Typed view of the service configuration.

    Attributes:
        webhook_secret: GITHUB_WEBHOOK_SECRET. Empty means signatures are
            not verified (a warning is logged per request).
        github_token: GITHUB_TOKEN used to download job logs. Empty disables
            log archival.
        github_api_base: GitHub REST API root.
        log_storage_dir: Directory archived job logs are written under.
        archive_timeout_seconds: Per-attempt timeout for one archival call.
        archive_max_attempts: Upper bound on archival attempts per job.
        archive_backoff_seconds: Linear backoff step between attempts.
        sampling_interval_seconds: Runner sampling period, used to estimate
            job duration from the sample count.
        trusted_owners: Repository owners treated as installed at startup.
        allowed_origins: CORS origins for the dashboard frontend.
        openrouter_api_key: Enables the LLM narrator when set.
        narrator_model: OpenRouter model id for the narrator.
        log_level: Root logger level name.
        log_file: Rotating log file path.
    """

    model_config = SettingsConfigDict(
        case_sensitive=False,
        extra="ignore",
        frozen=True,
        populate_by_name=True,
    )

    webhook_secret: str = Field(default="", alias="GITHUB_WEBHOOK_SECRET")
    github_token: str = Field(default="", alias="GITHUB_TOKEN")
    github_api_base: str = Field(default=DEFAULT_GITHUB_API_BASE, alias="GITHUB_API_BASE")
    log_storage_dir: pathlib.Path = Field(default=pathlib.Path("data"), alias="LOG_STORAGE_DIR")
    archive_timeout_seconds: float = Field(default=30.0, alias="ARCHIVE_TIMEOUT_SECONDS", gt=0)
    archive_max_attempts: int = Field(default=3, alias="ARCHIVE_MAX_ATTEMPTS", ge=1)
    archive_backoff_seconds: float = Field(default=2.0, alias="ARCHIVE_BACKOFF_SECONDS", ge=0)
    sampling_interval_seconds: int = Field(default=15, alias="SAMPLING_INTERVAL_SECONDS", ge=1)
    trusted_owners: Annotated[tuple[str, ...], NoDecode] = Field(default=(), alias="TRUSTED_OWNERS")
    allowed_origins: Annotated[tuple[str, ...], NoDecode] = Field(
        default=("http://localhost:3000",),
        alias="ALLOWED_ORIGINS",
    )
    openrouter_api_key: str = Field(default="", alias="OPENROUTER_API_KEY")
    narrator_model: str = Field(default=DEFAULT_NARRATOR_MODEL, alias="NARRATOR_MODEL")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_file: pathlib.Path = Field(default=pathlib.Path("runner_pulse.log"), alias="LOG_FILE")

    @field_validator("trusted_owners", "allowed_origins", mode="before")
    @classmethod
    def _split_csv(cls, value: str | tuple[str, ...] | list[str]) -> tuple[str, ...]:
        if isinstance(value, str):
            return tuple(part.strip() for part in value.split(",") if part.strip())
        return tuple(value)

    @field_validator("github_api_base")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        return value.upper()
