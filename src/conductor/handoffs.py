"""
Handoffs between agents.

An agent declares the agents it may transfer control to. Each declared
target is exposed to the model as a synthetic tool named
``transfer_to_<target>``; when the model calls one, the HandoffController
resolves the target in the agent graph and the runner switches the active
agent while keeping the conversation history.
"""

from __future__ import annotations

import inspect
import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Union

import structlog

from conductor.errors import UnknownHandoffTarget
from conductor.items import ToolCall
from conductor.tools.base import ToolDefinition

if TYPE_CHECKING:
    from conductor.agent import Agent, AgentGraph

logger = structlog.get_logger(__name__)

HANDOFF_PREFIX = "transfer_to_"


def snake_case(name: str) -> str:
    """
    Convert a display name to snake_case.

    Acronyms stay together: ``"HTTPServer"`` becomes ``"http_server"`` and
    ``"Billing Agent"`` becomes ``"billing_agent"``.
    """
    text = re.sub(r"([A-Z]+)([A-Z][a-z])", r"\1_\2", name)
    text = re.sub(r"([a-z\d])([A-Z])", r"\1_\2", text)
    text = re.sub(r"[^a-z0-9]+", "_", text.lower())
    return text.strip("_")


def handoff_tool_name(agent_name: str) -> str:
    """Synthetic tool name for a handoff to ``agent_name``."""
    return f"{HANDOFF_PREFIX}{snake_case(agent_name)}"


@dataclass(frozen=True)
class Handoff:
    """A declared transfer of control to another agent."""

    target: Union[Agent, str]
    tool_name: str | None = None
    description: str | None = None
    on_handoff: Callable[[dict[str, Any], Any], Any] | None = None

    @property
    def target_name(self) -> str:
        return self.target if isinstance(self.target, str) else self.target.name

    @property
    def resolved_tool_name(self) -> str:
        return self.tool_name or handoff_tool_name(self.target_name)

    def describe(self, graph: AgentGraph | None = None) -> str:
        if self.description:
            return self.description
        text = f"Handoff to the {self.target_name} agent to handle the request."
        target = self.target
        if isinstance(target, str) and graph is not None and target in graph:
            target = graph.get(target)
        extra = getattr(target, "handoff_description", None)
        return f"{text} {extra}" if extra else text


def handoff(
    agent: Union[Agent, str],
    *,
    tool_name: str | None = None,
    description: str | None = None,
    on_handoff: Callable[[dict[str, Any], Any], Any] | None = None,
) -> Handoff:
    """
    Declare a handoff to an agent (or an agent name).

    Args:
        agent: Target agent, or its name when the agent is declared later.
        tool_name: Override the synthetic tool name.
        description: Override the tool description shown to the model.
        on_handoff: Callback ``fn(arguments, context)`` run on transfer.
    """
    return Handoff(
        target=agent,
        tool_name=tool_name,
        description=description,
        on_handoff=on_handoff,
    )


def as_handoff(item: Union[Agent, Handoff, str]) -> Handoff:
    if isinstance(item, Handoff):
        return item
    return Handoff(target=item)


class HandoffController:
    """Resolves handoff tool calls against an agent graph."""

    def __init__(self, graph: AgentGraph) -> None:
        self.graph = graph

    def handoffs_for(self, agent: Agent) -> list[Handoff]:
        return [as_handoff(item) for item in agent.handoffs]

    def tools_for(self, agent: Agent) -> list[ToolDefinition]:
        """Synthetic tool definitions for the agent's declared handoffs."""
        return [
            ToolDefinition(
                name=h.resolved_tool_name,
                description=h.describe(self.graph),
                parameters={"type": "object", "properties": {}},
            )
            for h in self.handoffs_for(agent)
        ]

    def is_handoff(self, tool_call: ToolCall, agent: Agent) -> bool:
        """
        Whether the call should be routed as a handoff.

        Declared handoff names and any ``transfer_to_`` call that is not a
        regular tool of the agent count; the latter fails in resolve().
        """
        if any(h.resolved_tool_name == tool_call.name for h in self.handoffs_for(agent)):
            return True
        if any(tool.name == tool_call.name for tool in agent.tools):
            return False
        return tool_call.name.startswith(HANDOFF_PREFIX)

    def find(self, tool_call: ToolCall, agent: Agent) -> Handoff:
        for h in self.handoffs_for(agent):
            if h.resolved_tool_name == tool_call.name:
                return h
        raise UnknownHandoffTarget(
            tool_call.name,
            agent.name,
            available=[h.resolved_tool_name for h in self.handoffs_for(agent)],
        )

    def resolve(self, tool_call: ToolCall, current_agent: Agent) -> Agent:
        """
        Resolve the target agent of a handoff call.

        Raises:
            UnknownHandoffTarget: If the agent does not declare the handoff.
        """
        return self.graph.get(self.find(tool_call, current_agent).target_name)

    async def transfer(self, tool_call: ToolCall, current_agent: Agent, context: Any = None) -> Agent:
        """Resolve the target and run the handoff's callback."""
        declared = self.find(tool_call, current_agent)
        target = self.graph.get(declared.target_name)

        if declared.on_handoff is not None:
            outcome = declared.on_handoff(dict(tool_call.arguments), context)
            if inspect.isawaitable(outcome):
                await outcome

        logger.info(
            "handoff_resolved",
            from_agent=current_agent.name,
            to_agent=target.name,
            tool=tool_call.name,
        )
        return target
