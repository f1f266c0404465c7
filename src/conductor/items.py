"""
Conversation data model for Conductor.

Messages are immutable and the transcript is append-only: the runner
extends it, nothing rewrites it. Tool calls carry the id the matching tool
message refers back to.
"""

from __future__ import annotations

import json
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Role(str, Enum):
    """Message author roles."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


def parse_arguments(arguments: str | Mapping[str, Any] | None) -> dict[str, Any]:
    """Normalize tool-call arguments to a dict.

    Providers hand arguments over either as a JSON string or as an already
    decoded mapping.
    """
    if arguments is None or arguments == "":
        return {}
    if isinstance(arguments, Mapping):
        return dict(arguments)
    decoded = json.loads(arguments)
    if not isinstance(decoded, dict):
        raise ValueError(f"Tool arguments must decode to an object, got {type(decoded).__name__}")
    return decoded


@dataclass(frozen=True)
class ToolCall:
    """A tool invocation requested by the model."""

    name: str
    arguments: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: f"call_{uuid.uuid4().hex[:24]}")

    @classmethod
    def from_raw(
        cls,
        name: str,
        arguments: str | Mapping[str, Any] | None = None,
        id: str | None = None,
    ) -> ToolCall:
        """Build a ToolCall from provider output, decoding JSON arguments."""
        call_id = id or f"call_{uuid.uuid4().hex[:24]}"
        return cls(name=name, arguments=parse_arguments(arguments), id=call_id)

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "arguments": dict(self.arguments)}


@dataclass(frozen=True)
class Message:
    """A single entry of the conversation transcript."""

    role: Role
    content: str | None = None
    tool_calls: tuple[ToolCall, ...] = ()
    tool_call_id: str | None = None
    agent_name: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.role, Role):
            object.__setattr__(self, "role", Role(self.role))
        if not isinstance(self.tool_calls, tuple):
            object.__setattr__(self, "tool_calls", tuple(self.tool_calls))
        if self.role is Role.TOOL and not self.tool_call_id:
            raise ValueError("Tool messages require a tool_call_id")

    @classmethod
    def system(cls, content: str, agent_name: str | None = None) -> Message:
        return cls(role=Role.SYSTEM, content=content, agent_name=agent_name)

    @classmethod
    def user(cls, content: str) -> Message:
        return cls(role=Role.USER, content=content)

    @classmethod
    def assistant(
        cls,
        content: str | None = None,
        tool_calls: tuple[ToolCall, ...] | list[ToolCall] = (),
        agent_name: str | None = None,
    ) -> Message:
        return cls(
            role=Role.ASSISTANT,
            content=content,
            tool_calls=tuple(tool_calls),
            agent_name=agent_name,
        )

    @classmethod
    def tool(
        cls,
        tool_call_id: str,
        content: str,
        agent_name: str | None = None,
    ) -> Message:
        return cls(
            role=Role.TOOL,
            content=content,
            tool_call_id=tool_call_id,
            agent_name=agent_name,
        )

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a plain dictionary for providers and logs."""
        data: dict[str, Any] = {"role": self.role.value, "content": self.content}
        if self.tool_calls:
            data["tool_calls"] = [call.to_dict() for call in self.tool_calls]
        if self.tool_call_id:
            data["tool_call_id"] = self.tool_call_id
        if self.agent_name:
            data["agent_name"] = self.agent_name
        return data


@dataclass
class Usage:
    """Token usage tracking."""

    requests: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0

    def add(self, other: Usage) -> None:
        """Add another usage to this one."""
        self.requests += other.requests
        self.input_tokens += other.input_tokens
        self.output_tokens += other.output_tokens
        self.total_tokens += other.total_tokens

    def to_dict(self) -> dict[str, int]:
        return {
            "requests": self.requests,
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "total_tokens": self.total_tokens,
        }


@dataclass
class ModelResponse:
    """Response from the model for one round-trip."""

    content: str | None = None
    tool_calls: list[ToolCall] = field(default_factory=list)
    usage: Usage = field(default_factory=Usage)
    finish_reason: str = "stop"

    def __post_init__(self) -> None:
        if self.usage.requests == 0:
            self.usage.requests = 1


@dataclass
class StreamChunk:
    """A piece of a streamed response.

    The last chunk of a stream carries the assembled ``response``.
    """

    delta: str = ""
    response: ModelResponse | None = None

    @property
    def is_final(self) -> bool:
        return self.response is not None


def validate_transcript(messages: list[Message] | tuple[Message, ...]) -> None:
    """Check that every tool message answers an earlier assistant request.

    Raises:
        ValueError: If a tool message references an unknown tool-call id.
    """
    requested: set[str] = set()
    for message in messages:
        if message.role is Role.ASSISTANT:
            requested.update(call.id for call in message.tool_calls)
        elif message.role is Role.TOOL and message.tool_call_id not in requested:
            raise ValueError(
                f"Tool message references unknown tool call id '{message.tool_call_id}'"
            )


__all__ = [
    "Role",
    "ToolCall",
    "Message",
    "Usage",
    "ModelResponse",
    "StreamChunk",
    "parse_arguments",
    "validate_transcript",
]
