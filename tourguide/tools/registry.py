"""
Tool Registry System
Registration of the tools the live model may call, and their declarations.
"""
import asyncio
from dataclasses import dataclass, field
from typing import Callable, Any, Optional, get_type_hints
import inspect
import structlog

logger = structlog.get_logger()

# Handler parameters that are supplied by the dispatcher, not the model
_CONTEXT_PARAMS = ("self", "cls", "ctx")


@dataclass
class Tool:
    """Represents a registered tool."""
    name: str
    description: str
    handler: Callable
    parameters: dict  # JSON Schema
    category: str = "general"
    # Argument names the model uses that are not valid Python identifiers
    aliases: dict[str, str] = field(default_factory=dict)

    def bind_arguments(self, arguments: dict) -> dict:
        """Map model argument names onto handler keyword names."""
        return {self.aliases.get(key, key): value for key, value in arguments.items()}

    async def execute(self, ctx: Any, **kwargs) -> Any:
        """Execute the tool with the per-call context and given arguments."""
        kwargs = self.bind_arguments(kwargs)
        if asyncio.iscoroutinefunction(self.handler):
            return await self.handler(ctx, **kwargs)
        return await asyncio.to_thread(self.handler, ctx, **kwargs)


class ToolRegistry:
    """
    Central registry for all available tools.
    Provides registration, discovery, and the declarations sent upstream.
    """

    def __init__(self):
        self._tools: dict[str, Tool] = {}
        self._categories: dict[str, list[str]] = {}

    def register(
        self,
        name: str = None,
        description: str = None,
        parameters: dict = None,
        category: str = "general",
        aliases: dict = None,
    ) -> Callable:
        """
        Decorator to register a function as a tool.

        The handler takes the ToolContext as its first argument.

        Usage:
            @registry.register(
                description="Find attractions near a location",
                category="places",
            )
            async def get_nearby_attractions(ctx, location: str, radius: float = 5) -> str:
                ...
        """
        def decorator(func: Callable) -> Callable:
            tool_name = name or func.__name__
            tool_desc = description or func.__doc__ or "No description"
            tool_params = parameters or self._infer_parameters(func)

            tool = Tool(
                name=tool_name,
                description=tool_desc,
                handler=func,
                parameters=tool_params,
                category=category,
                aliases=dict(aliases or {}),
            )

            self._tools[tool_name] = tool

            if category not in self._categories:
                self._categories[category] = []
            if tool_name not in self._categories[category]:
                self._categories[category].append(tool_name)

            logger.debug("tool_registered", name=tool_name, category=category)

            return func

        return decorator

    def _infer_parameters(self, func: Callable) -> dict:
        """Infer JSON schema parameters from function signature."""
        sig = inspect.signature(func)
        hints = get_type_hints(func) if hasattr(func, '__annotations__') else {}

        properties = {}
        required = []

        for param_name, param in sig.parameters.items():
            if param_name in _CONTEXT_PARAMS:
                continue

            param_type = hints.get(param_name, str)
            json_type = self._python_type_to_json(param_type)

            properties[param_name] = {
                "type": json_type,
                "description": f"Parameter: {param_name}"
            }

            if param.default is inspect.Parameter.empty:
                required.append(param_name)

        return {
            "type": "object",
            "properties": properties,
            "required": required
        }

    def _python_type_to_json(self, python_type) -> str:
        """Convert Python type to JSON schema type."""
        # Optional[X] -> X
        args = getattr(python_type, "__args__", None)
        if args and type(None) in args:
            python_type = next(a for a in args if a is not type(None))
        type_map = {
            str: "string",
            int: "integer",
            float: "number",
            bool: "boolean",
            list: "array",
            dict: "object",
        }
        return type_map.get(python_type, "string")

    def get_tool(self, name: str) -> Optional[Tool]:
        """Get a tool by name."""
        return self._tools.get(name)

    def get_all_tools(self) -> list[Tool]:
        """Get all registered tools."""
        return list(self._tools.values())

    def get_tools_by_category(self, category: str) -> list[Tool]:
        """Get tools in a specific category."""
        tool_names = self._categories.get(category, [])
        return [self._tools[name] for name in tool_names]

    def get_function_declarations(self) -> list[dict]:
        """
        Get tool definitions for the live session config.

        Returns:
            List of {"name", "description", "parameters"} dicts (JSON schema parameters)
        """
        return [
            {
                "name": tool.name,
                "description": tool.description,
                "parameters": tool.parameters,
            }
            for tool in self._tools.values()
        ]

    def clear(self) -> None:
        """Clear all registered tools."""
        self._tools.clear()
        self._categories.clear()


# Global tool registry
tool_registry = ToolRegistry()
