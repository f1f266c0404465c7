"""
Conductor configuration settings using Pydantic.

This module provides type-safe runtime defaults with validation and
environment variable support. Per-run overrides live in RunConfig; these
settings only supply the values used when nothing more specific is given.
"""

from __future__ import annotations

from enum import Enum
from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class BacklogPolicy(str, Enum):
    """What the pool does when its backlog is full."""

    BLOCK = "block"    # Wait for a slot
    REJECT = "reject"  # Raise PoolSaturated


class RunnerSettings(BaseModel):
    """Turn loop defaults."""

    max_turns: int = Field(
        default=10,
        ge=1,
        le=1000,
        description="Maximum model round-trips per run when neither run nor agent overrides it",
    )
    timeout: float | None = Field(
        default=None,
        gt=0,
        description="Default whole-run timeout in seconds (None disables it)",
    )


class ToolExecutionSettings(BaseModel):
    """Defaults for the tool execution interceptor."""

    enable_validation: bool = Field(
        default=True,
        description="Validate required and typed parameters before invoking tools",
    )
    enable_logging: bool = Field(
        default=True,
        description="Log tool start, end and failure events",
    )
    enable_metadata: bool = Field(
        default=True,
        description="Merge execution metadata into mapping results",
    )
    log_arguments: bool = Field(
        default=True,
        description="Include tool arguments in start events",
    )
    truncate_logs: int = Field(
        default=100,
        ge=10,
        le=100_000,
        description="Maximum characters of a logged argument value",
    )


class PoolSettings(BaseModel):
    """Worker pool sizing."""

    workers: int = Field(
        default=10,
        ge=1,
        le=512,
        description="Number of worker threads running sessions",
    )
    backlog: int = Field(
        default=100,
        ge=0,
        le=100_000,
        description="Queued sessions allowed beyond the running ones",
    )
    on_full: BacklogPolicy = Field(
        default=BacklogPolicy.BLOCK,
        description="Block or reject submissions when the backlog is full",
    )


class RetrySettings(BaseModel):
    """Provider retry policy (exponential backoff with jitter)."""

    max_attempts: int = Field(default=5, ge=1, le=20)
    base_delay: float = Field(default=1.0, ge=0.0, le=60.0)
    max_delay: float = Field(default=60.0, ge=0.0, le=600.0)
    multiplier: float = Field(default=2.0, ge=1.0, le=10.0)
    jitter: float = Field(
        default=0.1,
        ge=0.0,
        le=1.0,
        description="Fraction of the delay added or removed at random",
    )

    @model_validator(mode="after")
    def check_delays(self) -> RetrySettings:
        if self.base_delay > self.max_delay:
            raise ValueError("base_delay must not exceed max_delay")
        return self


class LoggingSettings(BaseModel):
    """Structured logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Minimum log level",
    )
    json_output: bool = Field(
        default=False,
        description="Render JSON lines instead of console output",
    )


class ConductorSettings(BaseSettings):
    """
    Main Conductor configuration.

    Settings are loaded from environment variables with the CONDUCTOR_
    prefix, or from a .env file in the current directory. Nested values use
    a double underscore, e.g. ``CONDUCTOR_POOL__WORKERS=4``.
    """

    model_config = SettingsConfigDict(
        env_prefix="CONDUCTOR_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    default_model: str = Field(
        default="default",
        description="Model id used by agents that do not name one",
    )

    runner: RunnerSettings = Field(default_factory=RunnerSettings)
    tool_execution: ToolExecutionSettings = Field(default_factory=ToolExecutionSettings)
    pool: PoolSettings = Field(default_factory=PoolSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


@lru_cache(maxsize=1)
def get_settings() -> ConductorSettings:
    """Get the process-wide settings, loading them on first use."""
    return ConductorSettings()


def reset_settings() -> None:
    """Forget cached settings so the next access reloads the environment."""
    get_settings.cache_clear()
