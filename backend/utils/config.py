"""
Rewatch Configuration Module.

Centralizes all configuration settings using Pydantic Settings.
Requires Python 3.11+.
"""

from functools import lru_cache
from typing import Annotated

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

# Load .env from the current working directory into os.environ at import
# time so the nested BaseSettings classes can read the values
load_dotenv()


def _split_names(v: str | list[str]) -> list[str]:
    """Parse a comma-separated string or list into a list of names."""
    if isinstance(v, str):
        return [p.strip() for p in v.split(",") if p.strip()]
    return v


class WatcherSettings(BaseSettings):
    """Directory tree watcher settings."""

    model_config = SettingsConfigDict(env_prefix="WATCHER_")

    exclude_names: Annotated[list[str], NoDecode] = Field(
        default=[".git", "Godep"],
        description="Directory names that are never descended into",
    )
    observer_timeout: float = Field(default=1.0, ge=0.1, le=10.0)

    @field_validator("exclude_names", mode="before")
    @classmethod
    def parse_exclude_names(cls, v: str | list[str]) -> list[str]:
        """Parse excluded names from comma-separated string or list."""
        return _split_names(v)


class RunnerSettings(BaseSettings):
    """Command runner settings."""

    model_config = SettingsConfigDict(env_prefix="RUNNER_")

    chunk_size: int = Field(
        default=1024,
        ge=1,
        le=1024,
        description="Largest single write sent to the sink",
    )
    read_size: int = Field(default=4096, ge=1, description="Pipe read size")


class SinkSettings(BaseSettings):
    """Display sink settings."""

    model_config = SettingsConfigDict(env_prefix="SINK_")

    kind: str = Field(default="terminal")
    title_suffix: str = Field(default="+watch")
    tag_text: str = Field(default="Get ")
    trigger_text: str = Field(default="Get", description="Re-runs the command")
    delete_text: str = Field(default="Del", description="Deletes the sink")


class LoggingSettings(BaseSettings):
    """Logging configuration settings."""

    model_config = SettingsConfigDict(env_prefix="LOG_")

    level: str = Field(default="WARNING")
    format: str = Field(default="console")  # "json" or "console"


class Settings(BaseSettings):
    """Main application settings aggregating all sub-settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application metadata
    app_name: str = Field(default="rewatch")
    app_version: str = Field(default="0.1.0")

    # Sub-settings
    watcher: WatcherSettings = Field(default_factory=WatcherSettings)
    runner: RunnerSettings = Field(default_factory=RunnerSettings)
    sink: SinkSettings = Field(default_factory=SinkSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Get cached application settings.

    Returns singleton instance of Settings.
    """
    return Settings()
