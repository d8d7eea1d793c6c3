"""
Long-term memory tools.

Lets the guide recall what it learned about the user in earlier sessions.
"""
import structlog

from ...memory.store import MemoryStoreError
from ..registry import tool_registry

logger = structlog.get_logger()

DEFAULT_TOP_K = 10


@tool_registry.register(
    description="Query the memory database to retrieve relevant past interactions with the user.",
    parameters={
        "type": "object",
        "properties": {
            "query": {"type": "string", "description": "The query string to search the memory."},
        },
        "required": ["query"],
    },
    category="memory",
)
async def query_memory(ctx, query: str) -> str:
    """
    Search the user's memories.

    Args:
        query: What to look for

    Returns:
        "Memory summary: a; b; ..." built from the best-scoring hits
    """
    if ctx.memory is None:
        return "Memory is not available right now."

    top_k = ctx.options.get("memory_top_k", DEFAULT_TOP_K)
    try:
        hits = await ctx.memory.search(query, ctx.user_id)
    except MemoryStoreError as e:
        logger.error("memory_query_failed", user_id=ctx.user_id, error=str(e))
        return "Memory query failed"

    best = sorted(hits, key=lambda h: h.score, reverse=True)[:top_k]
    points = [hit.text for hit in best if hit.text]
    if not points:
        return "No relevant memories found."

    logger.info("memory_queried", user_id=ctx.user_id, hits=len(hits), used=len(points))
    return "Memory summary: " + "; ".join(points)
