"""
Main FastAPI server for the Tour Guide gateway.
One WebSocket per browser client, bridged to a Gemini Live session.
"""
import asyncio
import json
import logging
import uuid
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
import structlog

from . import __version__
from .background import drain
from .config import settings
from .gateway import INVALID_MESSAGE, UNKNOWN_EVENT, ConnectionSessionManager
from .memory import MemoryBridge, MemoryStore
from .places import GoogleMapsClient
from .session import SessionCounter
from .tools import ToolDispatcher, tool_registry
from .tracing import init_tracing
from .upstream import LiveModelClient
from .upstream.events import FunctionCall


logging.basicConfig(format="%(message)s", level=getattr(logging, settings.log_level.upper(), logging.INFO))

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()

# Inbound event type -> manager method
EVENT_HANDLERS = {
    "setup": "handle_setup",
    "start_interaction": "handle_start_interaction",
    "stop_interaction": "handle_stop_interaction",
    "get_session_status": "handle_get_session_status",
    "realtime_input": "handle_realtime_input",
    "text": "handle_text",
}


def build_manager() -> ConnectionSessionManager:
    """Wire the gateway's collaborators from settings. No network access happens here."""
    memory = MemoryBridge(
        MemoryStore(settings.mem0_api_key, base_url=settings.mem0_url, timeout=settings.memory_request_timeout),
        base_dir=Path(settings.data_dir),
        anonymous_user_id=settings.anonymous_user_id,
    )
    places = GoogleMapsClient(settings.google_maps_api_key, timeout=settings.maps_request_timeout)
    dispatcher = ToolDispatcher(
        tool_registry,
        memory=memory,
        places=places,
        timeout=settings.tool_timeout_seconds,
        options={
            "memory_top_k": settings.memory_top_k,
            "bookmark_title_words": settings.bookmark_title_words,
        },
    )
    model_client = LiveModelClient(settings, function_declarations=tool_registry.get_function_declarations())
    return ConnectionSessionManager(
        model_client=model_client,
        dispatcher=dispatcher,
        memory=memory,
        counter=SessionCounter(settings.max_concurrent_sessions),
        config=settings,
    )


manager = build_manager()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle management."""
    logger.info("server_starting", version=__version__, port=settings.server_port)

    tools = tool_registry.get_all_tools()
    logger.info("tools_registered", count=len(tools), tools=[t.name for t in tools])

    init_tracing(service_name="tourguide-gateway")

    # Background counter audit
    audit_task = None
    interval = settings.session_audit_interval
    if interval > 0:
        async def _session_audit_worker():
            while True:
                await asyncio.sleep(interval)
                try:
                    manager.check_session_accounting()
                except Exception:
                    logger.exception("session_audit_failed")
        audit_task = asyncio.create_task(_session_audit_worker(), name="session_audit")
        logger.info("session_audit_started", interval=interval)

    yield

    logger.info("server_stopping")
    if audit_task:
        audit_task.cancel()
        await asyncio.wait([audit_task], timeout=1.0)

    for connection_id in list(manager.sessions):
        await manager.disconnect(connection_id)
    await drain(timeout=5.0)


# Create FastAPI app
app = FastAPI(
    title="Tour Guide Gateway",
    description="Real-time voice tour guide over a Gemini Live bridge",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {
        "status": "ok",
        "version": __version__,
        "model": settings.live_model,
        "memory": "mem0" if manager.memory.store.configured else "file-only",
        "places": "google-maps" if manager.dispatcher.places.configured else "not_configured",
        "tools_registered": len(tool_registry.get_all_tools()),
    }


@app.get("/api/sessions/status")
async def sessions_status():
    return manager.status_snapshot()


@app.post("/api/bookmarks")
async def create_bookmark(payload: dict):
    """Save a bookmark outside a voice session.

    Request body: {"content": "...", "userId": "..."}
    """
    content = payload.get("content")
    user_id = payload.get("userId")
    if not isinstance(content, str) or not content.strip():
        raise HTTPException(status_code=400, detail="content required")
    if not isinstance(user_id, str) or not user_id.strip():
        raise HTTPException(status_code=400, detail="userId required")

    response = await manager.dispatcher.dispatch(
        FunctionCall(name="save_bookmark", args={"content": content}),
        user_id.strip(),
    )
    return {"success": True, "result": response.result}


@app.get("/api/bookmarks/{user_id}")
async def list_bookmarks(user_id: str):
    records = await manager.memory.get_bookmarks(user_id)
    return {"bookmarks": [record.to_dict() for record in records]}


async def handle_client_message(connection_id: str, raw: str) -> None:
    """Decode one JSON frame and route it by its "type"."""
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("invalid_json", connection_id=connection_id)
        await manager.send_error(connection_id, "Invalid JSON message", INVALID_MESSAGE)
        return

    if not isinstance(data, dict) or not isinstance(data.get("type"), str):
        await manager.send_error(connection_id, "Message must be an object with a string 'type'", INVALID_MESSAGE)
        return

    event_type = data["type"]
    handler_name = EVENT_HANDLERS.get(event_type)
    if handler_name is None:
        logger.warning("unknown_event", connection_id=connection_id, type=event_type)
        await manager.send_error(connection_id, f"Unknown event: {event_type}", UNKNOWN_EVENT)
        return

    logger.debug("control_message", type=event_type, connection_id=connection_id)
    await getattr(manager, handler_name)(connection_id, data)


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """WebSocket endpoint for real-time audio communication."""
    connection_id = str(uuid.uuid4())[:8]

    await manager.connect(websocket, connection_id)

    try:
        while True:
            message = await websocket.receive()
            if message.get("type") == "websocket.disconnect":
                break

            if message.get("bytes") is not None:
                await manager.handle_audio_bytes(connection_id, message["bytes"])
            elif message.get("text") is not None:
                await handle_client_message(connection_id, message["text"])

    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.error("websocket_error", error=str(e), connection_id=connection_id)
    finally:
        await manager.disconnect(connection_id)


def main():
    """Run the server."""
    import uvicorn

    uvicorn.run(
        "tourguide.main:app",
        host=settings.server_host,
        port=settings.server_port,
        ws_per_message_deflate=False,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
