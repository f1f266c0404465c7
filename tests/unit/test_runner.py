"""Unit tests for the Runner turn loop."""

import json

import pytest

from conductor.agent import Agent
from conductor.config.settings import ConductorSettings
from conductor.errors import (
    InputGuardrailTripwireTriggered,
    MaxTurnsExceeded,
    OutputGuardrailTripwireTriggered,
    RunCancelled,
    RunTimeout,
    ServerError,
    ToolNotFound,
    UnknownHandoffTarget,
)
from conductor.guardrails import KeywordGuardrail, guardrail
from conductor.hooks import HookDispatcher, HookEvent, RunHooks
from conductor.items import Message, Role, ToolCall, Usage
from conductor.providers.scripted import ScriptedProvider, text_response, tool_call_response
from conductor.run_config import ModelSettings, RunConfig
from conductor.runner import Runner, RunState, serialize_result
from conductor.tools.executor import METADATA_KEY
from conductor.tools.function import function_tool


class EventLog(RunHooks):
    """Records hook event names, plus a few details."""

    def __init__(self):
        self.names = []
        self.errors = []
        self.deltas = []

    def _record(self, event):
        self.names.append(event.event.value)

    async def on_start(self, event):
        self._record(event)

    async def on_agent_start(self, event):
        self._record(event)

    async def on_llm_start(self, event):
        self._record(event)

    async def on_llm_end(self, event):
        self._record(event)

    async def on_tool_start(self, event):
        self._record(event)

    async def on_tool_end(self, event):
        self._record(event)

    async def on_handoff(self, event):
        self._record(event)

    async def on_stream_chunk(self, event):
        self.deltas.append(event.delta)

    async def on_error(self, event):
        self._record(event)
        self.errors.append((type(event.error).__name__, event.stage))

    async def on_end(self, event):
        self._record(event)


@pytest.fixture
def events():
    return EventLog()


class TestFinalOutput:
    """Test runs that end with a plain answer."""

    @pytest.mark.asyncio
    async def test_single_turn(self, math_agent, scripted_provider):
        provider = scripted_provider(
            text_response("Hello!", usage=Usage(input_tokens=7, output_tokens=3, total_tokens=10))
        )

        result = await Runner(provider).run("hi", math_agent)

        assert result.final_output == "Hello!"
        assert result.last_agent is math_agent
        assert result.turns == 1
        assert result.usage.to_dict() == {
            "requests": 1,
            "input_tokens": 7,
            "output_tokens": 3,
            "total_tokens": 10,
        }
        assert [m.role for m in result.messages] == [Role.USER, Role.ASSISTANT]
        assert result.messages[1].agent_name == "Math"
        assert result.run_id.startswith("run_")
        assert result.trace_id.startswith("trace_")

    @pytest.mark.asyncio
    async def test_system_prompt_and_tools_sent(self, math_agent, scripted_provider):
        provider = scripted_provider("done")
        result = await Runner(provider).run("hi", math_agent)

        request = provider.requests[0]
        assert request.system_prompt == "You solve arithmetic with the calculator tool."
        assert request.tool_names == ("calculator",)
        assert all(m.role is not Role.SYSTEM for m in result.messages)

    @pytest.mark.asyncio
    async def test_model_settings_resolution(self, scripted_provider, settings):
        provider = scripted_provider("ok")
        agent = Agent(
            name="A",
            model="small",
            model_settings=ModelSettings(temperature=0.2, max_tokens=100),
        )
        config = RunConfig(model_settings=ModelSettings(temperature=0.7))

        await Runner(provider, settings=settings).run("hi", agent, config)

        assert provider.requests[0].settings == ModelSettings(
            model="small", temperature=0.7, max_tokens=100
        )

    @pytest.mark.asyncio
    async def test_default_model_from_settings(self, scripted_provider):
        provider = scripted_provider("ok")
        settings = ConductorSettings(_env_file=None, default_model="house-model")
        await Runner(provider, settings=settings).run("hi", Agent(name="A"))
        assert provider.requests[0].settings.model == "house-model"

    @pytest.mark.asyncio
    async def test_continue_transcript(self, scripted_provider):
        provider = scripted_provider("second answer")
        history = [Message.user("first"), Message.assistant("first answer"), Message.user("again")]

        result = await Runner(provider).run(history, Agent(name="A"))

        assert list(result.messages[:3]) == history
        assert [m.content for m in result.new_messages] == ["second answer"]

    @pytest.mark.asyncio
    async def test_dynamic_instructions_see_context(self, scripted_provider):
        provider = scripted_provider("ok")
        agent = Agent(name="A", instructions=lambda ctx, a: f"Help {ctx['user']}")
        await Runner(provider).run("hi", agent, RunConfig(context={"user": "Ada"}))
        assert provider.requests[0].system_prompt == "Help Ada"

    def test_run_sync(self, scripted_provider):
        result = Runner(scripted_provider("sync")).run_sync("hi", Agent(name="A"))
        assert result.final_output == "sync"


class TestToolCalls:
    """Test tool dispatch inside the loop."""

    @pytest.mark.asyncio
    async def test_tool_result_appended(self, math_agent, scripted_provider):
        provider = scripted_provider(
            tool_call_response(ToolCall(name="calculator", arguments={"expression": "6*7"}, id="call_1")),
            text_response("42"),
        )

        result = await Runner(provider).run("What is 6*7?", math_agent)

        assert result.final_output == "42"
        assert result.turns == 2
        roles = [m.role for m in result.messages]
        assert roles == [Role.USER, Role.ASSISTANT, Role.TOOL, Role.ASSISTANT]
        tool_message = result.messages[2]
        assert tool_message.tool_call_id == "call_1"
        payload = json.loads(tool_message.content)
        assert payload["result"] == 42
        assert payload[METADATA_KEY]["tool_name"] == "calculator"
        # The model saw the tool result on its second round-trip
        assert provider.requests[1].messages[-1].tool_call_id == "call_1"

    @pytest.mark.asyncio
    async def test_calls_run_in_order(self, scripted_provider):
        order = []

        @function_tool
        def step(n: int) -> str:
            order.append(n)
            return f"step {n}"

        provider = scripted_provider(
            tool_call_response(("step", {"n": 1}), ("step", {"n": 2}), ("step", {"n": 3})),
            "done",
        )
        result = await Runner(provider).run("go", Agent(name="A", tools=[step]))

        assert order == [1, 2, 3]
        assert [m.content for m in result.messages if m.role is Role.TOOL] == ["step 1", "step 2", "step 3"]

    @pytest.mark.asyncio
    async def test_max_turns_exceeded(self, math_agent, scripted_provider):
        provider = scripted_provider(
            tool_call_response(("calculator", {"expression": "(5+3)*2"})),
            tool_call_response(("calculator", {"expression": "16+10"})),
            text_response("26"),
        )

        with pytest.raises(MaxTurnsExceeded, match=r"Maximum turns \(2\) exceeded"):
            await Runner(provider).run("what is (5+3)*2 plus 10?", math_agent, RunConfig(max_turns=2))

        assert provider.call_count == 2

    @pytest.mark.asyncio
    async def test_max_turns_falls_back_to_agent_then_settings(self, calculator_tool, scripted_provider):
        looping = tool_call_response(("calculator", {"expression": "1+1"}))

        provider = scripted_provider(looping, looping, looping)
        agent = Agent(name="A", tools=[calculator_tool], max_turns=1)
        with pytest.raises(MaxTurnsExceeded) as exc_info:
            await Runner(provider).run("loop", agent)
        assert exc_info.value.max_turns == 1

        provider = scripted_provider(looping, looping, looping, looping)
        settings = ConductorSettings(_env_file=None, runner={"max_turns": 3})
        with pytest.raises(MaxTurnsExceeded) as exc_info:
            await Runner(provider, settings=settings).run("loop", agent.clone(max_turns=None))
        assert exc_info.value.max_turns == 3
        assert provider.call_count == 3

    @pytest.mark.asyncio
    async def test_unknown_tool(self, math_agent, scripted_provider, events):
        provider = scripted_provider(tool_call_response(("missing", {})))
        with pytest.raises(ToolNotFound, match="Tool 'missing' not found on agent 'Math'"):
            await Runner(provider, hooks=events).run("hi", math_agent)
        assert events.errors == [("ToolNotFound", RunState.TOOL_DISPATCH.value)]

    @pytest.mark.asyncio
    async def test_tool_error_propagates_and_fires_on_error_once(self, scripted_provider, events):
        @function_tool
        def explode() -> str:
            raise LookupError("no such record")

        provider = scripted_provider(tool_call_response(("explode", {})), "unreachable")
        runner = Runner(provider, hooks=events)

        with pytest.raises(LookupError, match="no such record"):
            await runner.run("hi", Agent(name="A", tools=[explode]))

        assert events.errors == [("LookupError", "tool_dispatch")]
        assert events.names.count("on_error") == 1
        assert "on_end" not in events.names
        assert runner.state is RunState.TOOL_DISPATCH

    @pytest.mark.asyncio
    async def test_invalid_arguments_propagate(self, math_agent, scripted_provider):
        provider = scripted_provider(tool_call_response(("calculator", {})))
        with pytest.raises(ValueError, match="Missing required parameter: expression"):
            await Runner(provider).run("hi", math_agent)

    def test_serialize_result(self):
        assert serialize_result("plain") == "plain"
        assert serialize_result({"a": 1}) == '{"a": 1}'
        assert json.loads(serialize_result({"when": object()}))["when"].startswith("<object")


class TestHandoffsInLoop:
    """Test handoff routing within a single run."""

    @pytest.mark.asyncio
    async def test_first_handoff_wins(self, scripted_provider, events):
        billing = Agent(name="Billing", instructions="Billing desk")
        legal = Agent(name="Legal")
        triage = Agent(name="Triage", handoffs=[billing, legal])
        provider = scripted_provider(
            tool_call_response(
                ToolCall(name="transfer_to_billing", id="call_a"),
                ToolCall(name="transfer_to_legal", id="call_b"),
            ),
            "Billing here",
        )

        result = await Runner(provider, hooks=events).run("invoice problem", triage)

        assert result.last_agent is billing
        tool_messages = [m for m in result.messages if m.role is Role.TOOL]
        assert json.loads(tool_messages[0].content) == {"assistant": "Billing"}
        assert tool_messages[1].content == "Skipped: control was transferred to Billing"
        assert provider.requests[1].system_prompt == "Billing desk"
        assert events.names.count("on_handoff") == 1
        assert events.names.count("on_agent_start") == 2

    @pytest.mark.asyncio
    async def test_handoff_tools_offered(self, scripted_provider):
        provider = scripted_provider("no handoff needed")
        triage = Agent(name="Triage", handoffs=[Agent(name="Billing Desk")])
        await Runner(provider).run("hi", triage)
        assert provider.requests[0].tool_names == ("transfer_to_billing_desk",)

    @pytest.mark.asyncio
    async def test_undeclared_handoff(self, scripted_provider):
        provider = scripted_provider(tool_call_response(("transfer_to_legal", {})))
        with pytest.raises(UnknownHandoffTarget):
            await Runner(provider).run("hi", Agent(name="Triage", handoffs=[Agent(name="Billing")]))


class TestGuardrailsInLoop:
    """Test guardrail placement in the loop."""

    @pytest.mark.asyncio
    async def test_input_tripwire_skips_provider(self, scripted_provider, events):
        provider = scripted_provider("never")
        agent = Agent(name="A", input_guardrails=[KeywordGuardrail(["password"])])

        with pytest.raises(InputGuardrailTripwireTriggered) as exc_info:
            await Runner(provider, hooks=events).run("my password is hunter2", agent)

        assert exc_info.value.reason == "Blocked term detected: password"
        assert provider.call_count == 0
        assert events.errors == [("InputGuardrailTripwireTriggered", "init")]

    @pytest.mark.asyncio
    async def test_input_guardrail_runs_once(self, calculator_tool, scripted_provider):
        calls = []

        @guardrail
        def count(value, context):
            calls.append(value)
            return True

        provider = scripted_provider(tool_call_response(("calculator", {"expression": "1+1"})), "2")
        agent = Agent(name="A", tools=[calculator_tool], input_guardrails=[count])
        await Runner(provider).run("add", agent)

        assert calls == ["add"]

    @pytest.mark.asyncio
    async def test_output_tripwire(self, scripted_provider):
        provider = scripted_provider("here is the secret sauce")
        config = RunConfig(output_guardrails=[KeywordGuardrail(["secret"], name="leak")])

        with pytest.raises(OutputGuardrailTripwireTriggered) as exc_info:
            await Runner(provider).run("tell me", Agent(name="A"), config)

        assert exc_info.value.guardrail_name == "leak"
        assert provider.call_count == 1

    @pytest.mark.asyncio
    async def test_guardrail_sees_run_context(self, scripted_provider):
        seen = []

        @guardrail
        def capture(value, context):
            seen.append(context.context)
            return True

        await Runner(scripted_provider("ok")).run(
            "hi", Agent(name="A"), RunConfig(context="user-ctx", input_guardrails=[capture])
        )
        assert seen == ["user-ctx"]


class TestFailures:
    """Test provider errors, timeouts and cancellation."""

    @pytest.mark.asyncio
    async def test_provider_error_propagates_unchanged(self, scripted_provider, events):
        error = ServerError("upstream down", status_code=503)
        provider = scripted_provider(error)

        with pytest.raises(ServerError) as exc_info:
            await Runner(provider, hooks=events).run("hi", Agent(name="A"))

        assert exc_info.value is error
        assert events.errors == [("ServerError", "awaiting_model")]

    @pytest.mark.asyncio
    async def test_timeout(self, scripted_provider, events):
        provider = scripted_provider("slow", delay=1.0)

        with pytest.raises(RunTimeout) as exc_info:
            await Runner(provider, hooks=events).run("hi", Agent(name="A"), RunConfig(timeout=0.05))

        assert exc_info.value.timeout == 0.05
        assert events.errors == [("RunTimeout", "awaiting_model")]

    @pytest.mark.asyncio
    async def test_stop_before_run(self, scripted_provider):
        provider = scripted_provider("never")
        runner = Runner(provider)
        runner.stop()

        with pytest.raises(RunCancelled):
            await runner.run("hi", Agent(name="A"))

        assert provider.call_count == 0
        assert not runner.stop_requested

    @pytest.mark.asyncio
    async def test_stop_at_next_boundary(self, calculator_tool, scripted_provider):
        provider = scripted_provider(
            tool_call_response(("calculator", {"expression": "1+1"})),
            "never reached",
        )
        runner = Runner(provider)
        runner.hooks.register(lambda event: runner.stop(), HookEvent.TOOL_END)

        with pytest.raises(RunCancelled):
            await runner.run("hi", Agent(name="A", tools=[calculator_tool]))

        assert provider.call_count == 1

    @pytest.mark.asyncio
    async def test_runner_is_reusable_after_failure(self, scripted_provider):
        provider = scripted_provider(ServerError("down"), "recovered")
        runner = Runner(provider)
        with pytest.raises(ServerError):
            await runner.run("hi", Agent(name="A"))
        assert (await runner.run("hi", Agent(name="A"))).final_output == "recovered"


class TestHooksInLoop:
    """Test lifecycle hook ordering."""

    @pytest.mark.asyncio
    async def test_event_order(self, math_agent, scripted_provider, events):
        provider = scripted_provider(
            tool_call_response(("calculator", {"expression": "2+2"})),
            "4",
        )
        await Runner(provider, hooks=events).run("2+2?", math_agent)

        assert events.names == [
            "on_start",
            "on_agent_start",
            "on_llm_start",
            "on_llm_end",
            "on_tool_start",
            "on_tool_end",
            "on_llm_start",
            "on_llm_end",
            "on_end",
        ]

    @pytest.mark.asyncio
    async def test_agent_hooks_receive_events(self, scripted_provider):
        seen = []
        agent_hooks = HookDispatcher()
        agent_hooks.register(lambda event: seen.append(event.event), HookEvent.END)
        agent = Agent(name="A", hooks=agent_hooks)

        await Runner(scripted_provider("ok")).run("hi", agent)

        assert seen == [HookEvent.END]

    @pytest.mark.asyncio
    async def test_failing_hook_does_not_break_run(self, scripted_provider):
        def broken(event):
            raise RuntimeError("hook failed")

        result = await Runner(scripted_provider("fine"), hooks=[broken]).run("hi", Agent(name="A"))
        assert result.final_output == "fine"

    @pytest.mark.asyncio
    async def test_tool_end_carries_result_and_duration(self, math_agent, scripted_provider):
        ends = []
        hooks = HookDispatcher()
        hooks.register(ends.append, HookEvent.TOOL_END)
        provider = scripted_provider(tool_call_response(("calculator", {"expression": "3*3"})), "9")

        await Runner(provider, hooks=hooks).run("3*3", math_agent)

        assert ends[0].tool_name == "calculator"
        assert ends[0].result["result"] == 9
        assert ends[0].duration_ms >= 0

    @pytest.mark.asyncio
    async def test_streaming_chunks(self, scripted_provider, events):
        provider = scripted_provider("Hello there world")
        result = await Runner(provider, hooks=events).run("hi", Agent(name="A"), RunConfig(stream=True))

        assert events.deltas == ["Hello", " there", " world"]
        assert "".join(events.deltas) == result.final_output


class TestConcurrentRuns:
    """Test independent runs sharing agents and tools."""

    @pytest.mark.asyncio
    async def test_shared_agent_across_runners(self, math_agent):
        import asyncio

        def responder(messages, tools, settings):
            last = messages[-1]
            if last.role is Role.TOOL:
                return text_response(str(json.loads(last.content)["result"]))
            return tool_call_response(("calculator", {"expression": last.content}))

        provider = ScriptedProvider(responder)
        results = await asyncio.gather(
            *(Runner(provider).run(f"{i}*2", math_agent) for i in range(10))
        )

        assert [r.final_output for r in results] == [str(i * 2) for i in range(10)]
        assert len({r.run_id for r in results}) == 10
