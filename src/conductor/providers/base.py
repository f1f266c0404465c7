"""
Provider interface.

A Provider turns a transcript plus tool definitions into a ModelResponse.
Vendor clients live outside Conductor; they implement this interface and
raise the ProviderError subtypes from conductor.errors.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Sequence

from conductor.items import Message, ModelResponse, StreamChunk
from conductor.run_config import ModelSettings
from conductor.tools.base import ToolDefinition


class Provider(ABC):
    """
    Abstract base class for model backends.

    Subclasses must implement ``complete``. ``stream`` defaults to a single
    chunk carrying the complete response.
    """

    name: str = "provider"

    @abstractmethod
    async def complete(
        self,
        messages: Sequence[Message],
        tools: Sequence[ToolDefinition],
        settings: ModelSettings,
    ) -> ModelResponse:
        """
        Request one completion.

        Args:
            messages: Transcript, starting with the active agent's system message.
            tools: Tool and handoff definitions the model may call.
            settings: Resolved model settings.

        Raises:
            ProviderError: Or one of its subtypes.
        """
        ...

    async def stream(
        self,
        messages: Sequence[Message],
        tools: Sequence[ToolDefinition],
        settings: ModelSettings,
    ) -> AsyncIterator[StreamChunk]:
        """Stream a completion; the last chunk carries the full response."""
        response = await self.complete(messages, tools, settings)
        yield StreamChunk(delta=response.content or "", response=response)
