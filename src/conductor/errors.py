"""
Exception taxonomy for Conductor.

Every error the runner can surface derives from ConductorError. Provider
errors are raised by model backends and propagate through the runner
unmodified; tool, guardrail, handoff and turn-limit errors are raised by
the runner itself. Hook listener failures never appear here because the
dispatcher recovers from them locally.
"""

from __future__ import annotations

from typing import Any


class ConductorError(Exception):
    """Base exception for runner errors."""

    pass


# =============================================================================
# PROVIDER ERRORS
# =============================================================================

class ProviderError(ConductorError):
    """Raised by a Provider when a completion request fails."""

    retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        provider: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.provider = provider


class AuthenticationError(ProviderError):
    """Raised when the provider rejects the credentials."""

    retryable = False


class RateLimitError(ProviderError):
    """Raised when the provider throttles requests."""

    retryable = True

    def __init__(
        self,
        message: str,
        *,
        retry_after: float | None = None,
        status_code: int | None = 429,
        provider: str | None = None,
    ) -> None:
        super().__init__(message, status_code=status_code, provider=provider)
        self.retry_after = retry_after


class ServerError(ProviderError):
    """Raised for server-side failures (5xx)."""

    retryable = True


class NetworkError(ProviderError):
    """Raised when the provider cannot be reached."""

    retryable = True


class InvalidRequestError(ProviderError):
    """Raised when the provider rejects a malformed request."""

    retryable = False


# =============================================================================
# TOOL ERRORS
# =============================================================================

class ToolNotFound(ConductorError):
    """Raised when a tool is not registered on the active agent."""

    def __init__(
        self,
        tool_name: str,
        agent_name: str | None = None,
        available: list[str] | None = None,
    ) -> None:
        self.tool_name = tool_name
        self.agent_name = agent_name
        self.available = list(available or [])
        owner = f" on agent '{agent_name}'" if agent_name else ""
        super().__init__(f"Tool '{tool_name}' not found{owner}")


class ToolExecutionError(ConductorError):
    """Raised when a tool cannot be executed."""

    def __init__(self, message: str, *, tool_name: str | None = None) -> None:
        super().__init__(message)
        self.tool_name = tool_name


class ToolArgumentError(ToolExecutionError, ValueError):
    """Raised when tool arguments fail schema validation."""

    pass


# =============================================================================
# GUARDRAIL ERRORS
# =============================================================================

class GuardrailTripwireTriggered(ConductorError):
    """Raised when a guardrail blocks the run."""

    stage = "guardrail"

    def __init__(
        self,
        reason: str,
        *,
        guardrail_name: str | None = None,
        data: dict[str, Any] | None = None,
    ) -> None:
        self.reason = reason
        self.guardrail_name = guardrail_name
        self.data = dict(data or {})
        super().__init__(reason)


class InputGuardrailTripwireTriggered(GuardrailTripwireTriggered):
    """Raised when an input guardrail blocks the run."""

    stage = "input"


class OutputGuardrailTripwireTriggered(GuardrailTripwireTriggered):
    """Raised when an output guardrail blocks the final output."""

    stage = "output"


# =============================================================================
# RUN CONTROL ERRORS
# =============================================================================

class MaxTurnsExceeded(ConductorError):
    """Raised when max turns is exceeded."""

    def __init__(self, max_turns: int) -> None:
        self.max_turns = max_turns
        super().__init__(f"Maximum turns ({max_turns}) exceeded")


class UnknownHandoffTarget(ConductorError):
    """Raised when an agent requests a handoff it does not declare."""

    def __init__(
        self,
        target: str,
        agent_name: str,
        available: list[str] | None = None,
    ) -> None:
        self.target = target
        self.agent_name = agent_name
        self.available = list(available or [])
        listed = ", ".join(self.available) or "none"
        super().__init__(
            f"Handoff target '{target}' not available from agent '{agent_name}'. "
            f"Available targets: {listed}"
        )


class RunTimeout(ConductorError):
    """Raised when a run exceeds its configured timeout."""

    def __init__(self, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(f"Run exceeded timeout of {timeout}s")


class RunCancelled(ConductorError):
    """Raised when a run is stopped before completion."""

    pass


# =============================================================================
# POOL ERRORS
# =============================================================================

class PoolSaturated(ConductorError):
    """Raised when the pool backlog is full and the pool rejects new work."""

    def __init__(self, capacity: int) -> None:
        self.capacity = capacity
        super().__init__(f"Agent pool is saturated ({capacity} tasks in flight)")


class PoolClosed(ConductorError):
    """Raised when work is submitted to a pool that has been shut down."""

    pass


__all__ = [
    "ConductorError",
    "ProviderError",
    "AuthenticationError",
    "RateLimitError",
    "ServerError",
    "NetworkError",
    "InvalidRequestError",
    "ToolNotFound",
    "ToolExecutionError",
    "ToolArgumentError",
    "GuardrailTripwireTriggered",
    "InputGuardrailTripwireTriggered",
    "OutputGuardrailTripwireTriggered",
    "MaxTurnsExceeded",
    "UnknownHandoffTarget",
    "RunTimeout",
    "RunCancelled",
    "PoolSaturated",
    "PoolClosed",
]
