"""
Tools package.
"""

from .registry import tool_registry, Tool, ToolRegistry
from .dispatcher import ToolContext, ToolDispatcher, ToolResponse

# Import builtin tools to register them
from . import builtin

__all__ = [
    "tool_registry",
    "Tool",
    "ToolRegistry",
    "ToolContext",
    "ToolDispatcher",
    "ToolResponse",
]


def list_tools():
    """List all registered tools."""
    return tool_registry.get_all_tools()
