"""
Tool execution interceptor.

ToolExecutor resolves a tool on the active agent and invokes it. Unless the
tool is already wrapped, it also validates arguments, logs start and end
events, times the call and merges execution metadata into mapping results.

The executor keeps no mutable state between calls: everything a single
execution needs lives in locals, so one executor (and one agent) can be
shared by concurrently running sessions.
"""

from __future__ import annotations

import time
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import BaseModel, ConfigDict, Field

from conductor.config.settings import ConductorSettings, get_settings
from conductor.errors import ToolNotFound
from conductor.tools.base import Tool
from conductor.tools.validation import validate_arguments

if TYPE_CHECKING:
    from conductor.agent import Agent

logger = structlog.get_logger(__name__)

METADATA_KEY = "_execution_metadata"


class ToolExecutionConfig(BaseModel):
    """Execution conveniences applied to tools that are not already wrapped."""

    model_config = ConfigDict(frozen=True)

    enable_validation: bool = Field(default=True, description="Validate arguments before calling")
    enable_logging: bool = Field(default=True, description="Log start/end/failure events")
    enable_metadata: bool = Field(default=True, description="Merge metadata into mapping results")
    log_arguments: bool = Field(default=True, description="Include arguments in start events")
    truncate_logs: int = Field(default=100, ge=1, description="Max characters per logged value")

    @classmethod
    def from_settings(cls, settings: ConductorSettings | None = None) -> ToolExecutionConfig:
        """Build the default config from runtime settings."""
        settings = settings or get_settings()
        return cls(**settings.tool_execution.model_dump())

    def merge(self, **overrides: Any) -> ToolExecutionConfig:
        """Return a copy with the given fields replaced."""
        return self.model_copy(update=overrides)


@dataclass(frozen=True)
class ExecutionMetadata:
    """Timing and provenance of a single tool execution."""

    duration_ms: float
    tool_name: str
    agent_name: str
    timestamp: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "duration_ms": self.duration_ms,
            "tool_name": self.tool_name,
            "agent_name": self.agent_name,
            "timestamp": self.timestamp,
        }


def truncate(value: Any, limit: int) -> str:
    """Render a value for logging, cut to ``limit`` characters."""
    text = value if isinstance(value, str) else repr(value)
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


def merge_metadata(result: Mapping[str, Any], metadata: ExecutionMetadata) -> dict[str, Any]:
    """
    Return a shallow copy of ``result`` with execution metadata added.

    An existing metadata key is left alone; the tool's own value wins.
    """
    merged = dict(result)
    merged.setdefault(METADATA_KEY, metadata.to_dict())
    return merged


def intercepts(tool: Tool) -> bool:
    """Whether execution conveniences apply to ``tool``."""
    return not tool.already_wrapped


class ToolExecutor:
    """
    Executes tools on behalf of one agent.

    Usage:
        executor = ToolExecutor(agent)
        result = await executor.execute("search", {"query": "weather"})
    """

    def __init__(self, agent: Agent, config: ToolExecutionConfig | None = None) -> None:
        self.agent = agent
        self.config = config or agent.tool_execution or ToolExecutionConfig()

    def find_tool(self, tool_name: str) -> Tool:
        """Find a tool on the agent by name (first match in declared order)."""
        for tool in self.agent.tools:
            if tool.name == tool_name:
                return tool
        raise ToolNotFound(
            tool_name,
            agent_name=self.agent.name,
            available=[tool.name for tool in self.agent.tools],
        )

    async def execute(
        self,
        tool_name: str,
        arguments: Mapping[str, Any] | None = None,
    ) -> Any:
        """
        Execute a tool by name.

        Args:
            tool_name: Name of a tool registered on the agent.
            arguments: Keyword arguments for the tool.

        Returns:
            The tool's result; mapping results carry execution metadata
            when enabled.

        Raises:
            ToolNotFound: If the agent has no such tool.
            ToolArgumentError: If validation is enabled and arguments are invalid.
            Exception: Whatever the tool itself raises, unchanged.
        """
        tool = self.find_tool(tool_name)
        kwargs = dict(arguments or {})

        if tool.already_wrapped:
            return await tool.call(**kwargs)

        return await self._execute_intercepted(tool, kwargs)

    async def _execute_intercepted(self, tool: Tool, kwargs: dict[str, Any]) -> Any:
        config = self.config

        if config.enable_validation:
            validate_arguments(tool.parameters, kwargs, tool_name=tool.name)

        if config.enable_logging:
            log_args: dict[str, Any] = {}
            if config.log_arguments:
                log_args["arguments"] = {
                    key: truncate(value, config.truncate_logs) for key, value in kwargs.items()
                }
            logger.info(
                "tool_execution_start",
                tool=tool.name,
                agent=self.agent.name,
                **log_args,
            )

        start = time.perf_counter()
        try:
            result = await tool.call(**kwargs)
        except Exception as e:
            duration_ms = (time.perf_counter() - start) * 1000
            if config.enable_logging:
                logger.error(
                    "tool_execution_failed",
                    tool=tool.name,
                    agent=self.agent.name,
                    duration_ms=round(duration_ms, 2),
                    error_type=type(e).__name__,
                    error=str(e),
                )
            raise

        duration_ms = (time.perf_counter() - start) * 1000

        if config.enable_logging:
            logger.info(
                "tool_execution_end",
                tool=tool.name,
                agent=self.agent.name,
                duration_ms=round(duration_ms, 2),
                result_type=type(result).__name__,
            )

        if config.enable_metadata and isinstance(result, Mapping):
            metadata = ExecutionMetadata(
                duration_ms=duration_ms,
                tool_name=tool.name,
                agent_name=self.agent.name,
                timestamp=datetime.now(UTC).isoformat(),
            )
            return merge_metadata(result, metadata)

        return result
