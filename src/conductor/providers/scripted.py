"""
Deterministic provider for tests and examples.

ScriptedProvider returns queued responses in order, or computes each
response with a function of the request. Queued exceptions are raised in
place of a response.

Usage:
    provider = ScriptedProvider([
        tool_call_response(("add", {"a": 1, "b": 2})),
        text_response("The answer is 3."),
    ])
"""

from __future__ import annotations

import asyncio
import inspect
import threading
from collections import deque
from collections.abc import AsyncIterator, Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import Any, Union

from conductor.errors import ProviderError
from conductor.items import Message, ModelResponse, StreamChunk, ToolCall, Usage
from conductor.providers.base import Provider
from conductor.run_config import ModelSettings
from conductor.tools.base import ToolDefinition

ScriptItem = Union[ModelResponse, str, BaseException]
Responder = Callable[[Sequence[Message], Sequence[ToolDefinition], ModelSettings], Any]


def text_response(content: str, usage: Usage | None = None) -> ModelResponse:
    """A final answer with no tool calls."""
    return ModelResponse(content=content, usage=usage or Usage())


def tool_call_response(
    *calls: tuple[str, dict[str, Any]] | ToolCall,
    content: str | None = None,
    usage: Usage | None = None,
) -> ModelResponse:
    """A response requesting one or more tool calls."""
    tool_calls = [
        call if isinstance(call, ToolCall) else ToolCall(name=call[0], arguments=dict(call[1]))
        for call in calls
    ]
    return ModelResponse(
        content=content,
        tool_calls=tool_calls,
        usage=usage or Usage(),
        finish_reason="tool_calls",
    )


@dataclass(frozen=True)
class RecordedRequest:
    """What the provider was asked for."""

    messages: tuple[Message, ...]
    tool_names: tuple[str, ...]
    settings: ModelSettings

    @property
    def system_prompt(self) -> str | None:
        if self.messages and self.messages[0].role.value == "system":
            return self.messages[0].content
        return None


class ScriptedProvider(Provider):
    """Provider replaying a script of responses."""

    name = "scripted"

    def __init__(
        self,
        script: Iterable[ScriptItem] | Responder = (),
        *,
        delay: float = 0.0,
    ) -> None:
        if callable(script):
            self._responder: Responder | None = script
            self._queue: deque[ScriptItem] = deque()
        else:
            self._responder = None
            self._queue = deque(script)
        self.delay = delay
        self.requests: list[RecordedRequest] = []
        self._lock = threading.Lock()

    @property
    def call_count(self) -> int:
        with self._lock:
            return len(self.requests)

    def add(self, *items: ScriptItem) -> None:
        """Queue more responses."""
        with self._lock:
            self._queue.extend(items)

    async def _next(
        self,
        messages: Sequence[Message],
        tools: Sequence[ToolDefinition],
        settings: ModelSettings,
    ) -> ModelResponse:
        with self._lock:
            self.requests.append(
                RecordedRequest(
                    messages=tuple(messages),
                    tool_names=tuple(t.name for t in tools),
                    settings=settings,
                )
            )
            item: Any = None
            if self._responder is None:
                if not self._queue:
                    raise ProviderError("Scripted provider has no responses left", provider=self.name)
                item = self._queue.popleft()

        if self.delay:
            await asyncio.sleep(self.delay)

        if self._responder is not None:
            item = self._responder(messages, tools, settings)
            if inspect.isawaitable(item):
                item = await item

        if isinstance(item, BaseException):
            raise item
        if isinstance(item, str):
            return text_response(item)
        return item

    async def complete(
        self,
        messages: Sequence[Message],
        tools: Sequence[ToolDefinition],
        settings: ModelSettings,
    ) -> ModelResponse:
        return await self._next(messages, tools, settings)

    async def stream(
        self,
        messages: Sequence[Message],
        tools: Sequence[ToolDefinition],
        settings: ModelSettings,
    ) -> AsyncIterator[StreamChunk]:
        """Yield the content word by word, then the full response."""
        response = await self._next(messages, tools, settings)
        words = (response.content or "").split(" ")
        for index, word in enumerate(words):
            if not word and len(words) == 1:
                break
            yield StreamChunk(delta=word if index == 0 else f" {word}")
        yield StreamChunk(response=response)
