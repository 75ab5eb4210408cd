"""Agent tools."""

from contextkeeper.agent.tools.base import Tool
from contextkeeper.agent.tools.context import ManageContextTool
from contextkeeper.agent.tools.registry import ToolRegistry

__all__ = ["Tool", "ManageContextTool", "ToolRegistry"]
