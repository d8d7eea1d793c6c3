"""
Tool Dispatcher
Executes model tool calls against the registry and shapes the upstream response.
"""
import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Optional
import structlog

from ..tracing import start_tool_span
from ..upstream.events import FunctionCall
from .registry import ToolRegistry, tool_registry

logger = structlog.get_logger()

# Executed by the model service itself; no local response is sent
UPSTREAM_HANDLED_TOOLS = frozenset({
    "googleSearch",
    "google_search",
    "codeExecution",
    "code_execution",
})


@dataclass
class ToolContext:
    """Per-call collaborators handed to every tool handler."""
    user_id: str
    memory: Any = None   # MemoryBridge
    places: Any = None   # GoogleMapsClient
    options: dict = field(default_factory=dict)


@dataclass
class ToolResponse:
    """Result of one function call, ready to return upstream."""
    call_id: Optional[str]
    name: str
    response: dict
    execution_time: float = 0.0

    @property
    def result(self) -> str:
        return self.response.get("result", "")

    def to_function_response(self) -> dict:
        return {"id": self.call_id, "name": self.name, "response": self.response}


class ToolDispatcher:
    """
    Maps function calls to registered handlers.

    dispatch() never raises: unknown tools, bad arguments, handler errors and
    timeouts all come back as a result string the model can read.
    """

    def __init__(
        self,
        registry: ToolRegistry = None,
        memory: Any = None,
        places: Any = None,
        timeout: float = 20.0,
        options: dict = None,
    ):
        """
        Args:
            registry: Tool registry (defaults to the global one)
            memory: MemoryBridge given to handlers
            places: Places client given to handlers
            timeout: Per-call timeout in seconds
            options: Extra settings exposed to handlers via ToolContext.options
        """
        self.registry = registry or tool_registry
        self.memory = memory
        self.places = places
        self.timeout = timeout
        self.options = dict(options or {})

    def _respond(self, call: FunctionCall, result: str, started: float) -> ToolResponse:
        return ToolResponse(
            call_id=call.call_id,
            name=call.name,
            response={"result": result},
            execution_time=time.time() - started,
        )

    async def dispatch(self, call: FunctionCall, user_id: str) -> Optional[ToolResponse]:
        """
        Execute a single function call.

        Returns:
            ToolResponse, or None for tools the model service runs itself
        """
        if call.name in UPSTREAM_HANDLED_TOOLS:
            logger.debug("tool_handled_upstream", tool=call.name)
            return None

        started = time.time()
        args = call.args
        if not isinstance(args, dict):
            logger.warning("tool_args_not_mapping", tool=call.name, args_type=type(args).__name__)
            args = {}

        tool = self.registry.get_tool(call.name)
        if tool is None:
            logger.warning("tool_unknown", tool=call.name)
            return self._respond(call, f"Unknown function: {call.name}", started)

        ctx = ToolContext(user_id=user_id, memory=self.memory, places=self.places, options=self.options)
        logger.info("tool_executing", tool=call.name, call_id=call.call_id, user_id=user_id)

        with start_tool_span(call.name, args):
            try:
                result = await asyncio.wait_for(tool.execute(ctx, **args), timeout=self.timeout)
            except asyncio.TimeoutError:
                logger.warning("tool_timeout", tool=call.name, timeout=self.timeout)
                return self._respond(call, f"Tool {call.name} timed out after {self.timeout}s", started)
            except TypeError as e:
                logger.warning("tool_bad_arguments", tool=call.name, error=str(e))
                return self._respond(call, f"Invalid arguments for {call.name}: {e}", started)
            except Exception as e:
                logger.error("tool_error", tool=call.name, error=str(e))
                return self._respond(call, f"Error: {e}", started)

        text = result if isinstance(result, str) else str(result)
        response = self._respond(call, text, started)
        logger.info("tool_executed", tool=call.name, result_length=len(text), execution_time=round(response.execution_time, 3))
        return response
