"""
Upstream Session Handle
Wraps one Gemini Live session: uniform sends, a receive task and an ordered event dispatch.
"""
import asyncio
import contextlib
from typing import Any, Awaitable, Callable, Optional

import structlog
from google.genai import types

from .events import UpstreamClosed, UpstreamEvent, decode_message

logger = structlog.get_logger()

# Called as on_event(handle, event) for every decoded upstream event, in order
EventCallback = Callable[["UpstreamSessionHandle", UpstreamEvent], Awaitable[None]]


class UpstreamSessionHandle:
    """
    Live model session as seen by the gateway.

    Sends never raise: transport errors are logged and reported as False.
    Inbound messages are decoded once, buffered in a queue and pushed to the
    callback one at a time. close() is idempotent and never raises.
    """

    def __init__(
        self,
        live_session: Any,
        on_event: EventCallback,
        context_manager: Any = None,
        label: str = "",
    ):
        self._session = live_session
        self._on_event = on_event
        self._ctx = context_manager
        self.label = label

        self._queue: asyncio.Queue[Optional[UpstreamEvent]] = asyncio.Queue()
        self._receive_task: Optional[asyncio.Task] = None
        self._dispatch_task: Optional[asyncio.Task] = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self) -> None:
        """Start receiving; call once after the session is open."""
        if self._receive_task is not None:
            return
        self._receive_task = asyncio.create_task(self._receive_loop(), name=f"upstream_recv:{self.label}")
        self._dispatch_task = asyncio.create_task(self._dispatch_loop(), name=f"upstream_dispatch:{self.label}")

    # -- Sends --

    async def _send(self, operation: str, coro_factory: Callable[[], Awaitable[Any]]) -> bool:
        if self._closed:
            logger.debug("upstream_send_after_close", label=self.label, operation=operation)
            return False
        try:
            await coro_factory()
            return True
        except Exception as e:
            logger.error("upstream_send_failed", label=self.label, operation=operation, error=str(e))
            return False

    async def send_text(self, content: str) -> bool:
        """Send a complete user text turn."""
        return await self._send(
            "send_text",
            lambda: self._session.send_client_content(
                turns=types.Content(role="user", parts=[types.Part(text=content)]),
                turn_complete=True,
            ),
        )

    async def send_audio_chunk(self, data: bytes, mime_type: str) -> bool:
        return await self._send(
            "send_audio_chunk",
            lambda: self._session.send_realtime_input(audio=types.Blob(data=data, mime_type=mime_type)),
        )

    async def send_inline_media(self, data: bytes, mime_type: str) -> bool:
        return await self._send(
            "send_inline_media",
            lambda: self._session.send_realtime_input(media=types.Blob(data=data, mime_type=mime_type)),
        )

    async def signal_audio_stream_end(self) -> bool:
        return await self._send(
            "audio_stream_end",
            lambda: self._session.send_realtime_input(audio_stream_end=True),
        )

    async def send_tool_result(self, responses: list[dict]) -> bool:
        """
        Return tool results to the model.

        Args:
            responses: Items shaped {"id", "name", "response": {"result": str}}
        """
        if not responses:
            return False
        function_responses = [
            types.FunctionResponse(id=r.get("id"), name=r.get("name"), response=r.get("response") or {})
            for r in responses
        ]
        return await self._send(
            "send_tool_result",
            lambda: self._session.send_tool_response(function_responses=function_responses),
        )

    # -- Lifecycle --

    async def close(self) -> None:
        """Close the live session. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True

        current = asyncio.current_task()
        if self._receive_task is not None and self._receive_task is not current:
            self._receive_task.cancel()
            with contextlib.suppress(asyncio.CancelledError, Exception):
                await self._receive_task

        # Stop dispatching; events still queued belong to a session nobody owns
        self._queue.put_nowait(None)
        if self._dispatch_task is not None and self._dispatch_task is not current:
            self._dispatch_task.cancel()

        try:
            if self._ctx is not None:
                await self._ctx.__aexit__(None, None, None)
            else:
                await self._session.close()
        except Exception as e:
            logger.warning("upstream_close_error", label=self.label, error=str(e))
        logger.info("upstream_session_closed", label=self.label)

    async def _receive_loop(self) -> None:
        reason = "stream ended"
        try:
            while not self._closed:
                received = 0
                # receive() yields until the end of one model turn
                async for message in self._session.receive():
                    received += 1
                    for event in decode_message(message):
                        self._queue.put_nowait(event)
                if received == 0:
                    break
        except asyncio.CancelledError:
            raise
        except Exception as e:
            reason = str(e) or type(e).__name__
            if "quota" in reason.lower() or "exceeded" in reason.lower():
                logger.error("upstream_quota_exceeded", label=self.label, reason=reason)
            else:
                logger.warning("upstream_receive_error", label=self.label, error=reason)

        if not self._closed:
            logger.info("upstream_stream_ended", label=self.label, reason=reason)
            self._queue.put_nowait(UpstreamClosed(reason=reason))
        self._queue.put_nowait(None)

    async def _dispatch_loop(self) -> None:
        while True:
            event = await self._queue.get()
            if event is None:
                return
            try:
                await self._on_event(self, event)
            except Exception:
                logger.exception("upstream_event_handler_error", label=self.label, event_type=type(event).__name__)
