"""Tool registry for dynamic tool management."""

from typing import Any

from loguru import logger

from contextkeeper.agent.tools.base import Tool


def _extract_enum_values(schema: Any) -> list[Any] | None:
    """Extract enum-like values from a JSON schema fragment."""
    if not isinstance(schema, dict):
        return None
    if isinstance(schema.get("enum"), list):
        return list(schema["enum"])
    if "const" in schema:
        return [schema["const"]]
    return None


def _check_property(key: str, value: Any, schema: Any) -> str | None:
    """Check one argument against its property schema; return a problem or None."""
    if not isinstance(schema, dict):
        return None

    allowed = _extract_enum_values(schema)
    if allowed is not None and value not in allowed:
        return f"'{key}' must be one of: {', '.join(map(str, allowed))}"

    expected = schema.get("type")
    if expected == "integer":
        if isinstance(value, bool) or not isinstance(value, int):
            return f"'{key}' must be an integer"
        minimum = schema.get("minimum")
        if isinstance(minimum, (int, float)) and value < minimum:
            return f"'{key}' must be >= {minimum}"
    elif expected == "string" and not isinstance(value, str):
        return f"'{key}' must be a string"

    return None


class ToolRegistry:
    """
    Registry for agent tools.

    Allows dynamic registration and execution of tools.
    """

    def __init__(self):
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        """Register a tool."""
        self._tools[tool.name] = tool

    def unregister(self, name: str) -> None:
        """Unregister a tool by name."""
        self._tools.pop(name, None)

    def get(self, name: str) -> Tool | None:
        """Get a tool by name."""
        return self._tools.get(name)

    def has(self, name: str) -> bool:
        """Check if a tool is registered."""
        return name in self._tools

    def get_definitions(self) -> list[dict[str, Any]]:
        """Get all tool definitions in OpenAI format."""
        return [tool.to_schema() for tool in self._tools.values()]

    def validate_tool_call(self, name: str, params: dict[str, Any]) -> str | None:
        """Validate arguments against the tool's schema before execution."""
        tool = self._tools.get(name)
        if not tool:
            return f"Error: Tool '{name}' not found"

        if not isinstance(params, dict):
            return f"Error: Invalid parameters for tool '{name}'"

        schema = tool.parameters
        required = schema.get("required")
        if isinstance(required, list):
            missing = [
                key for key in required
                if isinstance(key, str)
                and (params.get(key) is None or (isinstance(params[key], str) and not params[key].strip()))
            ]
            if missing:
                joined = ", ".join(sorted(set(missing)))
                return f"Error: Missing required parameter(s) for '{name}': {joined}"

        properties = schema.get("properties")
        if isinstance(properties, dict):
            for key, value in params.items():
                if value is None:
                    continue
                problem = _check_property(key, value, properties.get(key))
                if problem:
                    return f"Error: Invalid parameter for '{name}': {problem}"

        return None

    async def execute(self, name: str, params: dict[str, Any]) -> str:
        """
        Execute a tool by name with given parameters.

        Args:
            name: Tool name.
            params: Tool parameters.

        Returns:
            Tool execution result as string. Lookup, validation and execution
            failures are reported in the string rather than raised.
        """
        tool = self._tools.get(name)
        if not tool:
            return f"Error: Tool '{name}' not found"

        validation_error = self.validate_tool_call(name, params)
        if validation_error:
            return validation_error

        try:
            return await tool.execute(**params)
        except Exception as e:
            logger.error(f"Tool {name} failed: {e}")
            return f"Error executing {name}: {str(e)}"

    @property
    def tool_names(self) -> list[str]:
        """Get list of registered tool names."""
        return list(self._tools.keys())

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: str) -> bool:
        return name in self._tools
