"""
Detached Tasks
Fire-and-forget coroutines that are kept alive and never fail silently.
"""
import asyncio
from typing import Any, Coroutine
import structlog

logger = structlog.get_logger()

# Strong references; the event loop only keeps weak ones
_background_tasks: set[asyncio.Task] = set()


def spawn_detached(coro: Coroutine[Any, Any, Any], name: str, **log_context) -> asyncio.Task:
    """
    Run a coroutine in the background.

    Exceptions are logged with the task name and log_context, never re-raised.
    """
    task = asyncio.create_task(coro, name=name)
    _background_tasks.add(task)

    def _on_done(t: asyncio.Task) -> None:
        _background_tasks.discard(t)
        if t.cancelled():
            return
        exc = t.exception()
        if exc is not None:
            logger.error(
                "background_task_failed",
                task=name,
                error=str(exc),
                error_type=type(exc).__name__,
                **log_context,
            )

    task.add_done_callback(_on_done)
    return task


def pending_tasks() -> int:
    return len(_background_tasks)


async def drain(timeout: float = 5.0) -> None:
    """Wait for outstanding background tasks, e.g. at shutdown."""
    if not _background_tasks:
        return
    await asyncio.wait(list(_background_tasks), timeout=timeout)
