"""Unit tests for Agent definitions and AgentGraph construction."""

import pytest

from conductor.agent import Agent, AgentGraph
from conductor.tools.executor import ToolExecutionConfig
from conductor.tools.function import function_tool


@function_tool
def lookup(key: str) -> str:
    """Look up a key."""
    return key


class TestAgent:
    """Test Agent validation and helpers."""

    def test_sequences_become_tuples(self):
        agent = Agent(name="A", tools=[lookup], handoffs=["B"])
        assert agent.tools == (lookup,)
        assert agent.handoffs == ("B",)

    def test_empty_name_rejected(self):
        with pytest.raises(ValueError, match="name"):
            Agent(name="")

    def test_invalid_max_turns(self):
        with pytest.raises(ValueError, match="max_turns"):
            Agent(name="A", max_turns=0)

    def test_duplicate_tool_names_rejected(self):
        with pytest.raises(ValueError, match="duplicate tool names: \\['lookup'\\]"):
            Agent(name="A", tools=[lookup, lookup])

    def test_dynamic_instructions(self):
        agent = Agent(name="Greeter", instructions=lambda ctx, a: f"{a.name} greets {ctx['user']}")
        assert agent.get_instructions({"user": "Sam"}) == "Greeter greets Sam"
        assert Agent(name="Plain").get_instructions() == ""

    def test_clone_is_independent(self):
        agent = Agent(name="A", instructions="one")
        copy = agent.clone(instructions="two")
        assert agent.instructions == "one"
        assert copy.instructions == "two"
        assert copy != agent

    def test_lookup_helpers(self):
        agent = Agent(name="A", tools=[lookup], handoffs=[Agent(name="B"), "C"])
        assert agent.tool_names == ["lookup"]
        assert agent.handoff_names == ["B", "C"]
        assert agent.get_tool("lookup") is lookup
        assert agent.get_tool("missing") is None


class TestAgentGraph:
    """Test agent collection and target checks."""

    def test_collects_reachable_agents(self):
        leaf = Agent(name="Leaf")
        middle = Agent(name="Middle", handoffs=[leaf])
        entry = Agent(name="Entry", handoffs=[middle])
        graph = AgentGraph(entry)
        assert [a.name for a in graph] == ["Entry", "Middle", "Leaf"]
        assert graph.entry is entry
        assert "Leaf" in graph

    def test_cycles_by_name(self):
        triage = Agent(name="Triage", handoffs=["Billing"])
        billing = Agent(name="Billing", handoffs=[triage])
        graph = AgentGraph(triage, billing)
        assert len(graph) == 2
        assert graph.get("Billing") is billing

    def test_unknown_string_target(self):
        with pytest.raises(ValueError, match="Handoff target 'Legal' of agent 'Triage'"):
            AgentGraph(Agent(name="Triage", handoffs=["Legal"]))

    def test_duplicate_names(self):
        with pytest.raises(ValueError, match="Duplicate agent name"):
            AgentGraph(Agent(name="A", handoffs=[Agent(name="B")]), Agent(name="B"))

    def test_same_agent_twice_is_fine(self):
        shared = Agent(name="Shared")
        graph = AgentGraph(Agent(name="A", handoffs=[shared]), shared)
        assert len(graph) == 2

    def test_missing_agent(self):
        with pytest.raises(KeyError, match="Nobody"):
            AgentGraph(Agent(name="A")).get("Nobody")

    def test_default_tool_execution_applies_to_unconfigured_agents(self):
        own = ToolExecutionConfig(enable_logging=False)
        default = ToolExecutionConfig(enable_metadata=False)
        configured = Agent(name="Configured", tool_execution=own)
        bare = Agent(name="Bare", handoffs=[configured])

        graph = AgentGraph(bare, default_tool_execution=default)

        assert graph.get("Bare").tool_execution is default
        assert graph.get("Configured").tool_execution is own
        assert bare.tool_execution is None

    def test_coerce(self):
        agent = Agent(name="A")
        graph = AgentGraph(agent)
        assert AgentGraph.coerce(graph) is graph
        assert AgentGraph.coerce(agent).entry is agent
