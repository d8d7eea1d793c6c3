"""
Built-in tools package.
Import all tools to register them with the tool registry.
"""

# Import all tool modules to trigger registration
from . import memory_tools
from . import places_tools
from . import bookmark_tools

__all__ = [
    "memory_tools",
    "places_tools",
    "bookmark_tools",
]
