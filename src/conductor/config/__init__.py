"""
Conductor configuration module.

Runtime defaults (pydantic-settings) and structlog setup.
"""

from conductor.config.logging import bound_run_context, setup_logging
from conductor.config.settings import (
    BacklogPolicy,
    ConductorSettings,
    LoggingSettings,
    PoolSettings,
    RetrySettings,
    RunnerSettings,
    ToolExecutionSettings,
    get_settings,
    reset_settings,
)

__all__ = [
    "BacklogPolicy",
    "ConductorSettings",
    "LoggingSettings",
    "PoolSettings",
    "RetrySettings",
    "RunnerSettings",
    "ToolExecutionSettings",
    "bound_run_context",
    "get_settings",
    "reset_settings",
    "setup_logging",
]
