"""
Metrics collection for Conductor runs.

MetricsHooks is a RunHooks listener that aggregates tool usage, model
round-trips, handoffs and errors. It is safe to share across pool workers.
"""

from __future__ import annotations

import threading
from collections import Counter
from dataclasses import dataclass
from typing import Any

import structlog

from conductor.hooks import (
    ErrorEvent,
    HandoffEvent,
    LLMEndEvent,
    RunEndEvent,
    RunHooks,
    RunStartEvent,
    ToolEndEvent,
    ToolStartEvent,
)

logger = structlog.get_logger(__name__)


@dataclass
class ToolMetrics:
    """Metrics for a single tool."""

    name: str
    call_count: int = 0
    success_count: int = 0
    error_count: int = 0
    total_duration_ms: float = 0.0

    @property
    def success_rate(self) -> float:
        """Calculate success rate."""
        if self.call_count == 0:
            return 0.0
        return (self.success_count / self.call_count) * 100

    @property
    def avg_duration_ms(self) -> float:
        """Average duration of successful calls."""
        if self.success_count == 0:
            return 0.0
        return self.total_duration_ms / self.success_count

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "call_count": self.call_count,
            "success_count": self.success_count,
            "error_count": self.error_count,
            "total_duration_ms": self.total_duration_ms,
            "success_rate": self.success_rate,
            "avg_duration_ms": self.avg_duration_ms,
        }


class MetricsHooks(RunHooks):
    """
    Hook listener collecting run metrics.

    Usage:
        metrics = MetricsHooks()
        runner = Runner(provider, hooks=metrics)
        await runner.run("hello", agent)
        print(metrics.get_summary())
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.reset()

    def reset(self) -> None:
        with self._lock:
            self.tools: dict[str, ToolMetrics] = {}
            self.runs_started = 0
            self.runs_completed = 0
            self.runs_failed = 0
            self.llm_calls = 0
            self.input_tokens = 0
            self.output_tokens = 0
            self.turns = 0
            self.handoffs: Counter[str] = Counter()
            self.errors: Counter[str] = Counter()
            self._pending_tool: dict[str, str] = {}

    def _tool(self, name: str) -> ToolMetrics:
        if name not in self.tools:
            self.tools[name] = ToolMetrics(name=name)
        return self.tools[name]

    @staticmethod
    def _run_key(context: Any) -> str:
        return getattr(context, "run_id", "") or ""

    async def on_start(self, event: RunStartEvent) -> None:
        with self._lock:
            self.runs_started += 1

    async def on_llm_end(self, event: LLMEndEvent) -> None:
        usage = getattr(event.response, "usage", None)
        with self._lock:
            self.llm_calls += 1
            if usage is not None:
                self.input_tokens += usage.input_tokens
                self.output_tokens += usage.output_tokens

    async def on_tool_start(self, event: ToolStartEvent) -> None:
        with self._lock:
            self._tool(event.tool_name).call_count += 1
            self._pending_tool[self._run_key(event.context)] = event.tool_name

    async def on_tool_end(self, event: ToolEndEvent) -> None:
        with self._lock:
            metrics = self._tool(event.tool_name)
            metrics.success_count += 1
            metrics.total_duration_ms += event.duration_ms or 0.0
            self._pending_tool.pop(self._run_key(event.context), None)

    async def on_handoff(self, event: HandoffEvent) -> None:
        key = f"{getattr(event.from_agent, 'name', '?')}->{getattr(event.to_agent, 'name', '?')}"
        with self._lock:
            self.handoffs[key] += 1

    async def on_error(self, event: ErrorEvent) -> None:
        with self._lock:
            self.runs_failed += 1
            self.errors[type(event.error).__name__] += 1
            tool_name = self._pending_tool.pop(self._run_key(event.context), None)
            if tool_name is not None:
                self._tool(tool_name).error_count += 1
            self.turns += getattr(event.context, "turn", 0)

    async def on_end(self, event: RunEndEvent) -> None:
        with self._lock:
            self.runs_completed += 1
            self.turns += getattr(event.result, "turns", 0)

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def get_summary(self) -> dict[str, Any]:
        """Get a summary of all metrics."""
        with self._lock:
            total_calls = sum(m.call_count for m in self.tools.values())
            total_success = sum(m.success_count for m in self.tools.values())
            return {
                "runs_started": self.runs_started,
                "runs_completed": self.runs_completed,
                "runs_failed": self.runs_failed,
                "turns": self.turns,
                "llm_calls": self.llm_calls,
                "input_tokens": self.input_tokens,
                "output_tokens": self.output_tokens,
                "total_tokens": self.input_tokens + self.output_tokens,
                "total_tool_calls": total_calls,
                "tool_success_rate": total_success / total_calls if total_calls > 0 else 0,
                "tools_used": list(self.tools),
                "by_tool": {name: m.to_dict() for name, m in self.tools.items()},
                "handoffs": dict(self.handoffs),
                "errors": dict(self.errors),
            }
