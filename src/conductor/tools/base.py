"""
Base tool interface for Conductor.

Every tool has a mandatory name and declares at construction time whether
it is already wrapped by an outer layer. Wrapped tools are invoked directly
by the executor without validation, logging or metadata.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class ToolDefinition:
    """Provider-facing description of a tool."""

    name: str
    description: str
    parameters: dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for providers."""
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters,
        }


class Tool(ABC):
    """
    Abstract base class for all tools.

    Subclasses must implement:
    - name: Tool identifier, unique within an agent
    - description: What the tool does
    - call: Tool execution logic

    ``parameters`` defaults to an empty object schema.
    """

    _already_wrapped: bool = False

    def __init__(self, *, already_wrapped: bool = False) -> None:
        self._already_wrapped = already_wrapped

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique tool name."""
        ...

    @property
    @abstractmethod
    def description(self) -> str:
        """Tool description for the model."""
        ...

    @property
    def parameters(self) -> dict[str, Any]:
        """JSON schema for tool arguments."""
        return {"type": "object", "properties": {}}

    @property
    def already_wrapped(self) -> bool:
        """Whether an outer layer already provides execution conveniences."""
        return self._already_wrapped

    @abstractmethod
    async def call(self, **kwargs: Any) -> Any:
        """
        Execute the tool with given arguments.

        Args:
            **kwargs: Tool-specific arguments matching ``parameters``.

        Returns:
            Any value. Mappings may receive execution metadata.
        """
        ...

    def get_definition(self) -> ToolDefinition:
        """Get the provider-facing definition."""
        return ToolDefinition(
            name=self.name,
            description=self.description,
            parameters=self.parameters,
        )

    def to_dict(self) -> dict[str, Any]:
        return self.get_definition().to_dict()

    def __repr__(self) -> str:
        return f"<{type(self).__name__} name={self.name!r} wrapped={self.already_wrapped}>"
