"""Base class for agent tools."""

from abc import ABC, abstractmethod
from typing import Any


class Tool(ABC):
    """
    Abstract base class for agent tools.

    A tool is a capability exposed to the language model: it has a name, a
    description and a JSON schema for its parameters, and is executed with
    keyword arguments decoded from the model's tool call.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Tool name used in function calls."""

    @property
    @abstractmethod
    def description(self) -> str:
        """Description of what the tool does."""

    @property
    @abstractmethod
    def parameters(self) -> dict[str, Any]:
        """JSON schema for the tool parameters."""

    @abstractmethod
    async def execute(self, **kwargs: Any) -> str:
        """
        Execute the tool.

        Args:
            **kwargs: Tool-specific parameters.

        Returns:
            Result string handed back to the model.
        """

    def to_schema(self) -> dict[str, Any]:
        """Tool definition in OpenAI function format."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }
