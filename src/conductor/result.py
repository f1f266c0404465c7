"""Result of a completed run."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from conductor.items import Message, Role, Usage

if TYPE_CHECKING:
    from conductor.agent import Agent


@dataclass(frozen=True)
class RunResult:
    """Result of an agent run."""

    messages: tuple[Message, ...]
    """The final transcript, without system messages."""

    last_agent: Agent
    """The agent that produced the final output."""

    usage: Usage = field(default_factory=Usage)
    """Total token usage across all model round-trips."""

    turns: int = 0
    """Model round-trips performed."""

    run_id: str = ""
    trace_id: str = ""
    success: bool = True

    @property
    def final_output(self) -> str | None:
        """Content of the last assistant message."""
        for message in reversed(self.messages):
            if message.role is Role.ASSISTANT:
                return message.content
        return None

    @property
    def new_messages(self) -> list[Message]:
        """Messages produced by the run (everything after the last user message)."""
        for index in range(len(self.messages) - 1, -1, -1):
            if self.messages[index].role is Role.USER:
                return list(self.messages[index + 1 :])
        return list(self.messages)

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "trace_id": self.trace_id,
            "success": self.success,
            "last_agent": self.last_agent.name,
            "turns": self.turns,
            "usage": self.usage.to_dict(),
            "final_output": self.final_output,
            "messages": [message.to_dict() for message in self.messages],
        }
