"""
Conductor: an execution runtime for tool-using, multi-agent conversations.

This package drives the turn loop between a model provider and agents'
tools, with handoffs between agents, input/output guardrails, lifecycle
hooks, and pooled or asyncio concurrency for running many sessions.
"""

from importlib.metadata import version

from conductor.agent import Agent, AgentGraph
from conductor.context import RunContext
from conductor.errors import (
    ConductorError,
    GuardrailTripwireTriggered,
    InputGuardrailTripwireTriggered,
    MaxTurnsExceeded,
    OutputGuardrailTripwireTriggered,
    ProviderError,
    RunCancelled,
    RunTimeout,
    ToolExecutionError,
    ToolNotFound,
    UnknownHandoffTarget,
)
from conductor.guardrails import Guardrail, GuardrailPipeline, GuardrailResult, guardrail
from conductor.handoffs import Handoff, HandoffController, handoff
from conductor.hooks import HookDispatcher, HookEvent, RunHooks
from conductor.items import Message, ModelResponse, Role, ToolCall, Usage
from conductor.pool import AgentPool, RunHandle, run_concurrently
from conductor.providers import Provider, RetryingProvider, ScriptedProvider
from conductor.result import RunResult
from conductor.run_config import ModelSettings, RunConfig
from conductor.runner import Runner
from conductor.session import StreamingSession
from conductor.tools import FunctionTool, Tool, ToolExecutionConfig, ToolExecutor, function_tool

__version__ = version("conductor")

__all__ = [
    "__version__",
    "Agent",
    "AgentGraph",
    "AgentPool",
    "ConductorError",
    "FunctionTool",
    "Guardrail",
    "GuardrailPipeline",
    "GuardrailResult",
    "GuardrailTripwireTriggered",
    "Handoff",
    "HandoffController",
    "HookDispatcher",
    "HookEvent",
    "InputGuardrailTripwireTriggered",
    "MaxTurnsExceeded",
    "Message",
    "ModelResponse",
    "ModelSettings",
    "OutputGuardrailTripwireTriggered",
    "Provider",
    "ProviderError",
    "RetryingProvider",
    "Role",
    "RunCancelled",
    "RunConfig",
    "RunContext",
    "RunHandle",
    "RunHooks",
    "RunResult",
    "RunTimeout",
    "Runner",
    "ScriptedProvider",
    "StreamingSession",
    "Tool",
    "ToolCall",
    "ToolExecutionConfig",
    "ToolExecutionError",
    "ToolExecutor",
    "ToolNotFound",
    "UnknownHandoffTarget",
    "Usage",
    "function_tool",
    "guardrail",
    "handoff",
    "run_concurrently",
]
