"""
Agents and agent graphs.

An Agent is an immutable definition: instructions, tools, handoff targets,
guardrails and optional overrides. Agents may name handoff targets by
string so that mutually referencing agents can be declared; an AgentGraph
collects every reachable agent and resolves those names.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass, field, replace
from typing import Any, Union

import structlog

from conductor.guardrails import Guardrail, GuardrailFunction
from conductor.handoffs import Handoff, as_handoff
from conductor.run_config import ModelSettings
from conductor.tools.base import Tool
from conductor.tools.executor import ToolExecutionConfig

logger = structlog.get_logger(__name__)


HandoffTarget = Union["Agent", Handoff, str]


@dataclass(frozen=True, eq=False)
class Agent:
    """
    An agent that can use tools and hand off to other agents.

    Agents compare by identity. Use ``clone`` to derive a modified copy.
    """

    name: str
    instructions: str | Callable[[Any, Agent], str] | None = None
    model: str | None = None
    tools: tuple[Tool, ...] = ()
    handoffs: tuple[HandoffTarget, ...] = ()
    handoff_description: str | None = None
    input_guardrails: tuple[Guardrail | GuardrailFunction, ...] = ()
    output_guardrails: tuple[Guardrail | GuardrailFunction, ...] = ()
    max_turns: int | None = None
    tool_execution: ToolExecutionConfig | None = None
    model_settings: ModelSettings | None = None
    hooks: Any = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Agent name must not be empty")
        if self.max_turns is not None and self.max_turns < 1:
            raise ValueError("max_turns must be at least 1")

        for attr in ("tools", "handoffs", "input_guardrails", "output_guardrails"):
            object.__setattr__(self, attr, tuple(getattr(self, attr)))

        names = [tool.name for tool in self.tools]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"Agent '{self.name}' has duplicate tool names: {duplicates}")

    def clone(self, **overrides: Any) -> Agent:
        """Create a copy of this agent with modifications."""
        return replace(self, **overrides)

    def get_instructions(self, context: Any = None) -> str:
        """Resolve instructions, calling them when they are a function."""
        if self.instructions is None:
            return ""
        if callable(self.instructions):
            return self.instructions(context, self)
        return self.instructions

    @property
    def tool_names(self) -> list[str]:
        return [tool.name for tool in self.tools]

    @property
    def handoff_names(self) -> list[str]:
        """Names of declared handoff target agents."""
        return [as_handoff(item).target_name for item in self.handoffs]

    def get_tool(self, name: str) -> Tool | None:
        for tool in self.tools:
            if tool.name == name:
                return tool
        return None

    def __repr__(self) -> str:
        return f"Agent(name={self.name!r}, tools={self.tool_names}, handoffs={self.handoff_names})"


class AgentGraph:
    """
    The set of agents a run may visit.

    Built from an entry agent plus any extra agents. Every agent reachable
    through handoff edges is collected breadth-first (cycles are fine).
    Agents without their own ToolExecutionConfig receive the graph default
    as a clone; the originals are left untouched.

    Usage:
        triage = Agent(name="Triage", handoffs=("Billing",))
        billing = Agent(name="Billing", handoffs=(triage,))
        graph = AgentGraph(triage, billing)
        graph.get("Billing")
    """

    def __init__(
        self,
        entry: Agent,
        *agents: Agent,
        default_tool_execution: ToolExecutionConfig | None = None,
    ) -> None:
        self.default_tool_execution = default_tool_execution
        collected = self._collect(entry, agents)
        self._agents: dict[str, Agent] = {
            name: self._apply_defaults(agent) for name, agent in collected.items()
        }
        self._entry_name = entry.name
        self._check_targets()

        logger.debug(
            "agent_graph_built",
            entry=entry.name,
            agents=list(self._agents),
        )

    @classmethod
    def coerce(cls, agents: Agent | AgentGraph) -> AgentGraph:
        if isinstance(agents, AgentGraph):
            return agents
        return cls(agents)

    @staticmethod
    def _collect(entry: Agent, extra: Iterable[Agent]) -> dict[str, Agent]:
        found: dict[str, Agent] = {}
        queue: deque[Agent] = deque([entry, *extra])
        while queue:
            agent = queue.popleft()
            existing = found.get(agent.name)
            if existing is agent:
                continue
            if existing is not None:
                raise ValueError(f"Duplicate agent name in graph: '{agent.name}'")
            found[agent.name] = agent
            for item in agent.handoffs:
                target = as_handoff(item).target
                if isinstance(target, Agent):
                    queue.append(target)
        return found

    def _apply_defaults(self, agent: Agent) -> Agent:
        if self.default_tool_execution is None or agent.tool_execution is not None:
            return agent
        return agent.clone(tool_execution=self.default_tool_execution)

    def _check_targets(self) -> None:
        for agent in self._agents.values():
            for name in agent.handoff_names:
                if name not in self._agents:
                    raise ValueError(
                        f"Handoff target '{name}' of agent '{agent.name}' is not in the graph"
                    )

    @property
    def entry(self) -> Agent:
        return self._agents[self._entry_name]

    @property
    def agents(self) -> list[Agent]:
        return list(self._agents.values())

    def get(self, name: str) -> Agent:
        """Look up an agent by name (KeyError if absent)."""
        try:
            return self._agents[name]
        except KeyError:
            raise KeyError(f"Agent '{name}' is not in the graph") from None

    def __contains__(self, name: object) -> bool:
        return name in self._agents

    def __len__(self) -> int:
        return len(self._agents)

    def __iter__(self) -> Iterator[Agent]:
        return iter(self._agents.values())
