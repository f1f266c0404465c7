"""
Per-run configuration.

RunConfig and ModelSettings are immutable values. The runner reads them and
never mutates them; ``with_overrides`` returns a modified copy.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any

from conductor.guardrails import Guardrail, GuardrailFunction


@dataclass(frozen=True)
class ModelSettings:
    """Settings passed through to the provider."""

    model: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    tool_choice: str | None = None

    def resolve(self, override: ModelSettings | None) -> ModelSettings:
        """Produce a new ModelSettings with non-None values from override taking precedence."""
        if override is None:
            return self
        return ModelSettings(
            model=override.model if override.model is not None else self.model,
            temperature=override.temperature if override.temperature is not None else self.temperature,
            max_tokens=override.max_tokens if override.max_tokens is not None else self.max_tokens,
            tool_choice=override.tool_choice if override.tool_choice is not None else self.tool_choice,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            key: value
            for key, value in {
                "model": self.model,
                "temperature": self.temperature,
                "max_tokens": self.max_tokens,
                "tool_choice": self.tool_choice,
            }.items()
            if value is not None
        }


@dataclass(frozen=True)
class RunConfig:
    """Configuration for a single run."""

    max_turns: int | None = None
    """Maximum model round-trips. Falls back to the agent, then to settings."""

    timeout: float | None = None
    """Whole-run timeout in seconds."""

    trace_id: str | None = None
    """Trace ID for observability (generated if not provided)."""

    group_id: str | None = None
    """Group ID linking related runs."""

    workflow_name: str = "Agent workflow"
    """Name of the workflow for tracing."""

    context: Any = None
    """User context object handed to hooks, guardrails and handoff callbacks."""

    metadata: dict[str, Any] = field(default_factory=dict)
    """Additional metadata carried on the run context."""

    input_guardrails: tuple[Guardrail | GuardrailFunction, ...] = ()
    """Run-level input guardrails, checked after the agent's own."""

    output_guardrails: tuple[Guardrail | GuardrailFunction, ...] = ()
    """Run-level output guardrails, checked after the agent's own."""

    model_settings: ModelSettings | None = None
    """Model settings overriding the agent's."""

    stream: bool = False
    """Use the provider's streaming variant and fire on_stream_chunk."""

    def __post_init__(self) -> None:
        if self.max_turns is not None and self.max_turns < 1:
            raise ValueError("max_turns must be at least 1")
        if self.timeout is not None and self.timeout <= 0:
            raise ValueError("timeout must be positive")
        object.__setattr__(self, "input_guardrails", tuple(self.input_guardrails))
        object.__setattr__(self, "output_guardrails", tuple(self.output_guardrails))

    def with_overrides(self, **overrides: Any) -> RunConfig:
        """Return a copy with the given fields replaced."""
        return replace(self, **overrides)
