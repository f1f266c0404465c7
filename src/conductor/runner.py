"""
Runner - the agent turn loop.

The runner drives a conversation between a Provider and the active agent's
tools. Each turn it asks the model for a response; tool calls are executed
and answered, handoff calls switch the active agent, and a response without
tool calls ends the run after output guardrails pass.

Example:
    agent = Agent(
        name="Assistant",
        instructions="You are a helpful assistant.",
        tools=[calculator],
    )

    runner = Runner(provider)
    result = await runner.run("What is 6 * 7?", agent)
    print(result.final_output)
"""

from __future__ import annotations

import asyncio
import json
import threading
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import structlog

from conductor.agent import Agent, AgentGraph
from conductor.config.logging import bound_run_context
from conductor.config.settings import ConductorSettings, get_settings
from conductor.context import RunContext, new_trace_id
from conductor.errors import MaxTurnsExceeded, ProviderError, RunCancelled, RunTimeout
from conductor.guardrails import GuardrailPipeline
from conductor.handoffs import HandoffController
from conductor.hooks import (
    AgentStartEvent,
    ErrorEvent,
    HandoffEvent,
    HookDispatcher,
    HookPayload,
    LLMEndEvent,
    LLMStartEvent,
    RunEndEvent,
    RunStartEvent,
    StreamChunkEvent,
    ToolEndEvent,
    ToolStartEvent,
)
from conductor.items import Message, ModelResponse, Role, validate_transcript
from conductor.providers.base import Provider
from conductor.result import RunResult
from conductor.run_config import ModelSettings, RunConfig
from conductor.tools.base import ToolDefinition
from conductor.tools.executor import ToolExecutionConfig, ToolExecutor

logger = structlog.get_logger(__name__)


# =============================================================================
# RUN STATE
# =============================================================================

class RunState(str, Enum):
    """Where the turn loop currently is."""

    INIT = "init"
    AWAITING_MODEL = "awaiting_model"
    TOOL_DISPATCH = "tool_dispatch"
    HANDOFF = "handoff"
    DONE = "done"


# =============================================================================
# NEXT STEP TYPES
# =============================================================================

@dataclass
class NextStepFinalOutput:
    """The model produced a final answer."""
    output: str | None


@dataclass
class NextStepHandoff:
    """Control moves to another agent."""
    new_agent: Agent


@dataclass
class NextStepRunAgain:
    """Tool results were appended; ask the model again."""
    pass


@dataclass
class SingleStepResult:
    """Result of a single step in the agent loop."""

    model_response: ModelResponse
    """The model response for the current step."""

    next_step: NextStepFinalOutput | NextStepHandoff | NextStepRunAgain
    """The next step to take."""


@dataclass
class _Progress:
    """Mutable bookkeeping for one run, used when reporting failures."""

    agent: Agent
    state: RunState = RunState.INIT
    messages: list[Message] = field(default_factory=list)


def serialize_result(result: Any) -> str:
    """Render a tool result as tool-message content."""
    if isinstance(result, str):
        return result
    return json.dumps(result, default=str)


def _input_text(messages: Sequence[Message]) -> str:
    for message in reversed(messages):
        if message.role is Role.USER:
            return message.content or ""
    return ""


# =============================================================================
# RUNNER
# =============================================================================

class Runner:
    """
    Executes agents against a provider.

    A runner may be reused for consecutive runs. ``stop()`` applies to the
    run in progress, or to the next one if called while idle; the request
    is cleared when that run ends. Use one runner per concurrent run when
    you need to stop runs individually.
    """

    def __init__(
        self,
        provider: Provider,
        *,
        hooks: Any = None,
        settings: ConductorSettings | None = None,
    ) -> None:
        self.provider = provider
        self.hooks = HookDispatcher.coerce(hooks)
        self.settings = settings or get_settings()
        self._tool_defaults = ToolExecutionConfig.from_settings(self.settings)
        self._stop_requested = threading.Event()
        self.state = RunState.INIT

    # -------------------------------------------------------------------------
    # Control
    # -------------------------------------------------------------------------

    def stop(self) -> None:
        """Ask the current run to stop at its next boundary (thread-safe)."""
        self._stop_requested.set()
        logger.info("runner_stop_requested")

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested.is_set()

    def _check_stop(self) -> None:
        if self._stop_requested.is_set():
            raise RunCancelled("Run cancelled")

    # -------------------------------------------------------------------------
    # Entry points
    # -------------------------------------------------------------------------

    async def run(
        self,
        input: str | Sequence[Message],
        agents: Agent | AgentGraph,
        config: RunConfig | None = None,
    ) -> RunResult:
        """
        Run a workflow starting at the graph's entry agent.

        The loop runs like so:
        1. Input guardrails check the user input (first turn only).
        2. The active agent is invoked with the conversation so far.
        3. If there is no tool call, output guardrails run and the loop ends.
        4. If there's a handoff, the loop runs again with the new agent.
        5. Else, tool calls are executed and the loop runs again.

        Args:
            input: User text, or a transcript to continue.
            agents: Entry agent or a prebuilt AgentGraph.
            config: Per-run settings.

        Returns:
            The final transcript, last agent, usage and turn count.

        Raises:
            MaxTurnsExceeded: If the turn limit is reached.
            InputGuardrailTripwireTriggered: If an input guardrail blocks the run.
            OutputGuardrailTripwireTriggered: If an output guardrail blocks the output.
            UnknownHandoffTarget: If the model requests an undeclared handoff.
            ToolNotFound: If the model calls a tool the agent does not have.
            ProviderError: As raised by the provider.
            RunTimeout: If the run exceeds its timeout.
            RunCancelled: If stop() was called.
        """
        config = config or RunConfig()
        graph = AgentGraph.coerce(agents)
        timeout = config.timeout or self.settings.runner.timeout

        context = RunContext(
            context=config.context,
            trace_id=config.trace_id or new_trace_id(),
            group_id=config.group_id,
            workflow_name=config.workflow_name,
            metadata=dict(config.metadata),
        )
        progress = _Progress(agent=graph.entry)

        try:
            with bound_run_context(run_id=context.run_id, trace_id=context.trace_id):
                if timeout is None:
                    return await self._run_loop(input, graph, config, context, progress)
                return await self._run_with_timeout(timeout, input, graph, config, context, progress)
        finally:
            self._stop_requested.clear()

    async def _run_with_timeout(
        self,
        timeout: float,
        input: str | Sequence[Message],
        graph: AgentGraph,
        config: RunConfig,
        context: RunContext,
        progress: _Progress,
    ) -> RunResult:
        deadline = asyncio.timeout(timeout)
        try:
            async with deadline:
                return await self._run_loop(input, graph, config, context, progress)
        except TimeoutError as e:
            if not deadline.expired():
                raise
            error = RunTimeout(timeout)
            logger.error(
                "run_timeout",
                timeout=timeout,
                agent=progress.agent.name,
                state=progress.state.value,
                turns=context.turn,
            )
            await self._fire(
                ErrorEvent(context=context, agent=progress.agent, error=error, stage=progress.state.value)
            )
            raise error from e

    def run_sync(
        self,
        input: str | Sequence[Message],
        agents: Agent | AgentGraph,
        config: RunConfig | None = None,
    ) -> RunResult:
        """
        Run a workflow synchronously.

        Note: This starts its own event loop and will not work inside an
        async function.
        """
        return asyncio.run(self.run(input, agents, config))

    # -------------------------------------------------------------------------
    # Turn loop
    # -------------------------------------------------------------------------

    async def _run_loop(
        self,
        input: str | Sequence[Message],
        graph: AgentGraph,
        config: RunConfig,
        context: RunContext,
        progress: _Progress,
    ) -> RunResult:
        messages = [Message.user(input)] if isinstance(input, str) else list(input)
        validate_transcript(messages)
        progress.messages = messages

        current_agent = graph.entry
        controller = HandoffController(graph)
        max_turns = config.max_turns or current_agent.max_turns or self.settings.runner.max_turns
        should_run_agent_start_hooks = True

        logger.info(
            "runner_started",
            agent=current_agent.name,
            agents=len(graph),
            max_turns=max_turns,
            workflow=context.workflow_name,
        )
        self._set_state(progress, RunState.INIT)
        await self._fire(RunStartEvent(context=context, agent=current_agent, input=input))

        try:
            while True:
                self._check_stop()

                if context.turn == 0:
                    await GuardrailPipeline.for_run(current_agent, config).check_input(
                        _input_text(messages), context
                    )

                if context.turn >= max_turns:
                    raise MaxTurnsExceeded(max_turns)

                if should_run_agent_start_hooks:
                    await self._fire(AgentStartEvent(context=context, agent=current_agent, turn=context.turn))
                    should_run_agent_start_hooks = False

                turn_result = await self._run_single_turn(
                    agent=current_agent,
                    messages=messages,
                    controller=controller,
                    config=config,
                    context=context,
                    progress=progress,
                )
                next_step = turn_result.next_step

                if isinstance(next_step, NextStepFinalOutput):
                    await GuardrailPipeline.for_run(current_agent, config).check_output(
                        next_step.output or "", context
                    )
                    self._set_state(progress, RunState.DONE)
                    result = RunResult(
                        messages=tuple(messages),
                        last_agent=current_agent,
                        usage=context.usage,
                        turns=context.turn,
                        run_id=context.run_id,
                        trace_id=context.trace_id,
                    )
                    logger.info(
                        "runner_completed",
                        agent=current_agent.name,
                        turns=context.turn,
                        total_tokens=context.usage.total_tokens,
                    )
                    await self._fire(RunEndEvent(context=context, agent=current_agent, result=result))
                    return result
                elif isinstance(next_step, NextStepHandoff):
                    previous_agent = current_agent
                    current_agent = next_step.new_agent
                    progress.agent = current_agent
                    await self._fire(
                        HandoffEvent(
                            context=context,
                            agent=current_agent,
                            from_agent=previous_agent,
                            to_agent=current_agent,
                        )
                    )
                    should_run_agent_start_hooks = True
                elif isinstance(next_step, NextStepRunAgain):
                    pass
                else:
                    raise TypeError(f"Unknown next step type: {type(next_step)}")
        except Exception as e:
            logger.error(
                "run_failed",
                agent=progress.agent.name,
                state=progress.state.value,
                turns=context.turn,
                error_type=type(e).__name__,
                error=str(e),
            )
            await self._fire(ErrorEvent(context=context, agent=progress.agent, error=e, stage=progress.state.value))
            raise

    async def _run_single_turn(
        self,
        *,
        agent: Agent,
        messages: list[Message],
        controller: HandoffController,
        config: RunConfig,
        context: RunContext,
        progress: _Progress,
    ) -> SingleStepResult:
        """Run a single turn of the agent loop."""
        instructions = agent.get_instructions(context.context)
        request = [Message.system(instructions, agent_name=agent.name), *messages] if instructions else list(messages)
        tools = [tool.get_definition() for tool in agent.tools] + controller.tools_for(agent)
        model_settings = (
            ModelSettings(model=agent.model or self.settings.default_model)
            .resolve(agent.model_settings)
            .resolve(config.model_settings)
        )

        context.turn += 1
        self._set_state(progress, RunState.AWAITING_MODEL)
        logger.debug("runner_turn_start", agent=agent.name, turn=context.turn)

        await self._fire(
            LLMStartEvent(
                context=context,
                agent=agent,
                turn=context.turn,
                message_count=len(request),
                tool_names=[t.name for t in tools],
            )
        )
        if config.stream:
            response = await self._stream_response(agent, request, tools, model_settings, context)
        else:
            response = await self.provider.complete(request, tools, model_settings)
        context.usage.add(response.usage)
        await self._fire(LLMEndEvent(context=context, agent=agent, turn=context.turn, response=response))

        messages.append(Message.assistant(response.content, response.tool_calls, agent_name=agent.name))

        if not response.tool_calls:
            return SingleStepResult(response, NextStepFinalOutput(response.content))

        next_step = await self._dispatch_tool_calls(
            agent=agent,
            response=response,
            messages=messages,
            controller=controller,
            context=context,
            progress=progress,
        )
        return SingleStepResult(response, next_step)

    async def _stream_response(
        self,
        agent: Agent,
        request: list[Message],
        tools: list[ToolDefinition],
        model_settings: ModelSettings,
        context: RunContext,
    ) -> ModelResponse:
        response: ModelResponse | None = None
        async for chunk in self.provider.stream(request, tools, model_settings):
            if chunk.delta:
                await self._fire(StreamChunkEvent(context=context, agent=agent, delta=chunk.delta))
            if chunk.response is not None:
                response = chunk.response
        if response is None:
            raise ProviderError("Stream ended without a final response", provider=self.provider.name)
        return response

    async def _dispatch_tool_calls(
        self,
        *,
        agent: Agent,
        response: ModelResponse,
        messages: list[Message],
        controller: HandoffController,
        context: RunContext,
        progress: _Progress,
    ) -> NextStepHandoff | NextStepRunAgain:
        """Execute requested calls in order; the first handoff wins."""
        executor = ToolExecutor(agent, agent.tool_execution or self._tool_defaults)
        new_agent: Agent | None = None

        for call in response.tool_calls:
            self._check_stop()

            if new_agent is not None:
                messages.append(
                    Message.tool(
                        call.id,
                        f"Skipped: control was transferred to {new_agent.name}",
                        agent_name=agent.name,
                    )
                )
                continue

            if controller.is_handoff(call, agent):
                self._set_state(progress, RunState.HANDOFF)
                new_agent = await controller.transfer(call, agent, context)
                messages.append(
                    Message.tool(call.id, json.dumps({"assistant": new_agent.name}), agent_name=agent.name)
                )
                continue

            self._set_state(progress, RunState.TOOL_DISPATCH)
            tool = executor.find_tool(call.name)
            await self._fire(
                ToolStartEvent(
                    context=context,
                    agent=agent,
                    tool=tool,
                    tool_name=call.name,
                    arguments=dict(call.arguments),
                )
            )
            start = time.perf_counter()
            result = await executor.execute(call.name, call.arguments)
            duration_ms = (time.perf_counter() - start) * 1000
            await self._fire(
                ToolEndEvent(
                    context=context,
                    agent=agent,
                    tool=tool,
                    tool_name=call.name,
                    result=result,
                    duration_ms=duration_ms,
                )
            )
            messages.append(Message.tool(call.id, serialize_result(result), agent_name=agent.name))

        if new_agent is not None:
            return NextStepHandoff(new_agent)
        return NextStepRunAgain()

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _set_state(self, progress: _Progress, state: RunState) -> None:
        progress.state = state
        self.state = state

    async def _fire(self, event: HookPayload) -> None:
        """Deliver to run-level listeners, then to the event agent's own hooks."""
        await self.hooks.fire(event.event, event)
        agent_hooks = getattr(event.agent, "hooks", None)
        if agent_hooks is not None:
            await HookDispatcher.coerce(agent_hooks).fire(event.event, event)
