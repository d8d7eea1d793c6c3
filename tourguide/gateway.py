"""
Connection Session Manager
Owns every client connection, its upstream live session and the traffic between them.
"""
import asyncio
from typing import Any, Awaitable, Callable, Optional

import structlog

from .audio.aggregator import AudioTurnAggregator
from .audio.wav import decode_base64, encode_base64, max_pcm_bytes, pcm_to_wav
from .background import spawn_detached
from .config import Settings, settings as default_settings
from .session import ConversationEntry, ConnectionSession, InteractionState, SessionCounter
from .upstream.client import NOT_RECOGNIZABLE, UpstreamConfig
from .upstream.events import (
    AudioFragment,
    FunctionCall,
    GoAway,
    InlineAudio,
    Interrupted,
    SetupComplete,
    TextPart,
    ToolCallRequest,
    Transcription,
    TurnComplete,
    UpstreamClosed,
    UpstreamEvent,
)

logger = structlog.get_logger()

# Error codes sent in "error" events
CONNECTION_LIMIT_REACHED = "CONNECTION_LIMIT_REACHED"
SESSION_CREATE_FAILED = "SESSION_CREATE_FAILED"
SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
UNKNOWN_EVENT = "UNKNOWN_EVENT"
INVALID_MESSAGE = "INVALID_MESSAGE"

USER_AUDIO_UNPROCESSED = "User audio could not be processed."
ASSISTANT_AUDIO_UNPROCESSED = "Assistant audio could not be processed."
_UNRECOVERED = frozenset({USER_AUDIO_UNPROCESSED, ASSISTANT_AUDIO_UNPROCESSED})

IMAGE_SHARED = "[Image shared by user]"

# Sends one client input through a live handle
Forwarder = Callable[[Any], Awaitable[None]]


def format_location(value: Any) -> Optional[str]:
    """Location as sent by the client: a string or {city, state, country}."""
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, dict):
        parts = [str(value[key]).strip() for key in ("city", "state", "country") if value.get(key)]
        return ", ".join(p for p in parts if p) or None
    return None


def welcome_message(location: Optional[str]) -> str:
    if location:
        return (
            f"Hello! I'm your AI tour guide. I see you're currently in {location}. "
            "How can I help you explore this area today?"
        )
    return (
        "Hello! I'm your AI tour guide. How can I help you explore today? "
        "Feel free to share your location for personalized recommendations."
    )


def _pcm_mime_type(mime_type: str, sample_rate: int) -> str:
    # The live API needs the rate on bare PCM
    if mime_type.lower().startswith("audio/pcm") and "rate=" not in mime_type:
        return f"audio/pcm;rate={sample_rate}"
    return mime_type


class ConnectionSessionManager:
    """
    Manages WebSocket connections and their upstream sessions.

    One ConnectionSession per socket. Upstream sessions are created on demand,
    at most one per connection, and at most counter.limit across the process.
    Events are sent to clients as {"type": <event>, ...payload}.
    """

    def __init__(
        self,
        model_client: Any,
        dispatcher: Any,
        memory: Any,
        counter: SessionCounter,
        config: Settings = None,
    ):
        """
        Args:
            model_client: Opens upstream sessions and transcribes audio (LiveModelClient)
            dispatcher: Executes tool calls (ToolDispatcher)
            memory: Conversation persistence and identity fallback (MemoryBridge)
            counter: Process-wide upstream session counter
            config: Settings (defaults to the module settings)
        """
        self.settings = config or default_settings
        self.model_client = model_client
        self.dispatcher = dispatcher
        self.memory = memory
        self.counter = counter

        self.active_connections: dict[str, Any] = {}
        self.sessions: dict[str, ConnectionSession] = {}
        # Reservations still waiting on an upstream open, keyed by connection
        self._pending_creations: dict[str, ConnectionSession] = {}

        self.aggregator = AudioTurnAggregator(
            self._emit_audio,
            sample_rate=self.settings.output_sample_rate,
            timeout_ms=self.settings.aggregation_timeout_ms,
            poll_ms=self.settings.aggregation_poll_ms,
        )
        self._max_user_audio = max_pcm_bytes(self.settings.max_turn_audio_seconds, self.settings.input_sample_rate)
        self._max_assistant_audio = max_pcm_bytes(self.settings.max_turn_audio_seconds, self.settings.output_sample_rate)

    # ---------- Connections ----------

    async def connect(self, websocket: Any, connection_id: str) -> ConnectionSession:
        await websocket.accept()
        session = ConnectionSession(connection_id=connection_id)
        self.active_connections[connection_id] = websocket
        self.sessions[connection_id] = session
        logger.info("client_connected", connection_id=connection_id, session_id=session.session_id)
        await self.send_event(
            connection_id,
            "connected",
            sessionId=session.session_id,
            userId=session.user_id,
            status="pending",
        )
        return session

    async def disconnect(self, connection_id: str) -> None:
        self.active_connections.pop(connection_id, None)
        session = self.sessions.pop(connection_id, None)
        if session is not None:
            session.closed = True
            await self._release_upstream(session, reason="disconnect")
            session.reset_turn()
            logger.info("client_disconnected", connection_id=connection_id, user_id=session.user_id)
        self.check_session_accounting()

    def get_session(self, connection_id: str) -> Optional[ConnectionSession]:
        return self.sessions.get(connection_id)

    async def send_event(self, connection_id: str, event_type: str, **payload) -> bool:
        websocket = self.active_connections.get(connection_id)
        if websocket is None:
            return False
        try:
            await websocket.send_json({"type": event_type, **payload})
            return True
        except Exception as e:
            logger.error("send_event_failed", connection_id=connection_id, event_type=event_type, error=str(e))
            return False

    async def send_error(self, connection_id: str, message: str, code: Optional[str] = None) -> bool:
        payload = {"message": message}
        if code:
            payload["code"] = code
        return await self.send_event(connection_id, "error", **payload)

    async def _require_session(self, connection_id: str) -> Optional[ConnectionSession]:
        session = self.sessions.get(connection_id)
        if session is None:
            logger.warning("session_not_found", connection_id=connection_id)
            await self.send_error(connection_id, "Session not found", SESSION_NOT_FOUND)
        return session

    # ---------- Client events ----------

    async def handle_setup(self, connection_id: str, data: dict) -> None:
        session = await self._require_session(connection_id)
        if session is None:
            return

        setup = data.get("setup")
        if not isinstance(setup, dict):
            setup = {}

        requested = setup.get("userId")
        requested = requested.strip() if isinstance(requested, str) else ""
        if session.identity_resolved:
            if requested and requested != session.user_id:
                logger.warning(
                    "setup_identity_locked",
                    connection_id=connection_id,
                    user_id=session.user_id,
                    requested=requested,
                )
        else:
            session.user_id = requested or self.memory.default_user_id(session.session_id)

        location = format_location(setup.get("location"))
        if location:
            session.location = location
        if session.state is InteractionState.PENDING:
            session.set_state(InteractionState.READY)

        logger.info("setup_complete", connection_id=connection_id, user_id=session.user_id, location=session.location)
        await self.send_event(
            connection_id,
            "setup_complete",
            userId=session.user_id,
            location=session.location,
            status="waiting_for_interaction",
        )

    async def handle_start_interaction(self, connection_id: str, data: dict) -> None:
        session = await self._require_session(connection_id)
        if session is None:
            return

        location = format_location(data.get("location"))
        if location:
            session.location = location
        language = data.get("language")
        if isinstance(language, str) and language.strip():
            session.language = language.strip()

        if session.upstream is not None:
            await self.send_event(
                connection_id, "interaction_started", status="already_active", sessionId=session.session_id
            )
            return
        if session.creation_in_flight:
            # A stop during creation is withdrawn by a new start
            if session.state is InteractionState.STOPPED:
                session.set_state(InteractionState.STARTING)
            await self.send_event(
                connection_id, "interaction_started", status="creating", sessionId=session.session_id
            )
            return

        if await self._reserve_creation(session, explicit=True):
            self._spawn_creation(session)

    async def handle_stop_interaction(self, connection_id: str, data: Optional[dict] = None) -> None:
        session = await self._require_session(connection_id)
        if session is None:
            return

        if await self._release_upstream(session, reason="stop"):
            await self.send_event(connection_id, "interaction_stopped", status="stopped")
        elif session.creation_in_flight:
            # The open completes into a closed handle
            session.set_state(InteractionState.STOPPED)
            await self.send_event(connection_id, "interaction_stopped", status="stopped")
        else:
            await self.send_event(connection_id, "interaction_stopped", status="not_active")

    async def handle_get_session_status(self, connection_id: str, data: Optional[dict] = None) -> None:
        session = await self._require_session(connection_id)
        if session is None:
            return
        await self.send_event(
            connection_id,
            "session_status",
            **self.counter.snapshot(),
            hasActiveSession=session.upstream is not None,
            creationInProgress=session.creation_in_flight,
            sessionId=session.session_id,
            userId=session.user_id,
            state=session.state.name.lower(),
        )

    async def handle_realtime_input(self, connection_id: str, data: dict) -> None:
        session = await self._require_session(connection_id)
        if session is None:
            return

        async def forward(handle: Any) -> None:
            realtime = data.get("realtime_input")
            if isinstance(realtime, dict):
                for chunk in realtime.get("media_chunks") or []:
                    if isinstance(chunk, dict):
                        await self._forward_media_chunk(session, handle, chunk)

            audio = data.get("audio")
            if audio:
                if isinstance(audio, dict):
                    chunk = {"data": audio.get("data"), "mime_type": audio.get("mimeType") or audio.get("mime_type")}
                else:
                    chunk = {"data": audio, "mime_type": "audio/pcm"}
                await self._forward_media_chunk(session, handle, chunk)

            media = data.get("media")
            if isinstance(media, dict):
                raw = decode_base64(media.get("data"))
                mime_type = media.get("mimeType") or media.get("mime_type") or "application/octet-stream"
                if raw is None:
                    logger.warning("media_decode_failed", connection_id=connection_id, mime_type=mime_type)
                else:
                    await handle.send_inline_media(raw, mime_type)

            if data.get("audioStreamEnd"):
                await handle.signal_audio_stream_end()

        await self._with_upstream(session, forward)

    async def handle_audio_bytes(self, connection_id: str, pcm: bytes) -> None:
        """Binary frames carry raw PCM16 at the input sample rate."""
        session = await self._require_session(connection_id)
        if session is None or not pcm:
            return

        async def forward(handle: Any) -> None:
            session.append_user_audio(pcm, self._max_user_audio)
            await handle.send_audio_chunk(pcm, f"audio/pcm;rate={self.settings.input_sample_rate}")

        await self._with_upstream(session, forward)

    async def handle_text(self, connection_id: str, data: dict) -> None:
        session = await self._require_session(connection_id)
        if session is None:
            return
        text = data.get("text")
        if not isinstance(text, str) or not text.strip():
            await self.send_error(connection_id, "Text message must be a non-empty string", INVALID_MESSAGE)
            return

        async def forward(handle: Any) -> None:
            session.log_message("user", text)
            await handle.send_text(text)

        await self._with_upstream(session, forward)

    async def _forward_media_chunk(self, session: ConnectionSession, handle: Any, chunk: dict) -> None:
        mime_type = chunk.get("mime_type") or chunk.get("mimeType") or ""
        raw = decode_base64(chunk.get("data"))
        if raw is None:
            logger.warning("media_chunk_decode_failed", connection_id=session.connection_id, mime_type=mime_type)
            return

        lowered = mime_type.lower()
        if lowered.startswith("audio/pcm"):
            session.append_user_audio(raw, self._max_user_audio)
            await handle.send_audio_chunk(raw, _pcm_mime_type(mime_type, self.settings.input_sample_rate))
        elif lowered.startswith("audio/webm"):
            await handle.send_audio_chunk(raw, mime_type)
        elif lowered.startswith("image/"):
            session.log_message("user", IMAGE_SHARED)
            await handle.send_inline_media(raw, mime_type)
        else:
            logger.debug("media_chunk_unsupported", connection_id=session.connection_id, mime_type=mime_type)

    # ---------- Upstream lifecycle ----------

    def _ensure_identity(self, session: ConnectionSession) -> None:
        if not session.identity_resolved:
            session.user_id = self.memory.default_user_id(session.session_id)
            logger.info("identity_defaulted", connection_id=session.connection_id, user_id=session.user_id)

    async def _with_upstream(self, session: ConnectionSession, forward: Forwarder) -> None:
        """
        Run forward(handle) against the live upstream.

        Without one, an on-demand open is started in the background and
        forward runs once it succeeds. Input arriving while an open is
        already in flight is dropped.
        """
        if session.upstream is not None:
            await forward(session.upstream)
            return
        if session.creation_in_flight:
            logger.debug("input_dropped_creation_in_flight", connection_id=session.connection_id)
            return
        if await self._reserve_creation(session, explicit=False):
            self._spawn_creation(session, forward)

    async def _reserve_creation(self, session: ConnectionSession, explicit: bool) -> bool:
        """
        Take a counter slot and mark the connection as creating.

        Everything up to the flags happens before the first await so
        concurrent callers see the reservation. At capacity, implicit
        (input-triggered) attempts report the error once per connection;
        explicit starts always do.
        """
        connection_id = session.connection_id
        if not self.counter.try_acquire():
            logger.warning(
                "session_limit_reached",
                connection_id=connection_id,
                active=self.counter.active,
                limit=self.counter.limit,
            )
            if explicit or not session.capacity_error_sent:
                session.capacity_error_sent = True
                await self.send_error(
                    connection_id,
                    f"Maximum concurrent sessions ({self.counter.limit}) reached. Please try again later.",
                    CONNECTION_LIMIT_REACHED,
                )
            return False
        session.capacity_error_sent = False
        session.creation_in_flight = True
        self._pending_creations[connection_id] = session
        self._ensure_identity(session)
        session.set_state(InteractionState.STARTING)
        return True

    def _spawn_creation(self, session: ConnectionSession, forward: Optional[Forwarder] = None) -> None:
        # The socket keeps being read while the open is pending
        spawn_detached(
            self._open_upstream(session, forward),
            name=f"upstream_open:{session.connection_id}",
            connection_id=session.connection_id,
        )

    async def _open_upstream(self, session: ConnectionSession, forward: Optional[Forwarder] = None) -> Optional[Any]:
        """Open the reserved upstream; the slot is released on every failure path."""
        connection_id = session.connection_id
        config = UpstreamConfig(
            session_id=session.session_id,
            user_id=session.user_id,
            location=session.location,
            language=session.language,
        )

        async def on_event(handle: Any, event: UpstreamEvent) -> None:
            await self._on_upstream_event(session, handle, event)

        try:
            handle = await self.model_client.open(config, on_event)
        except asyncio.CancelledError:
            self._end_creation(session)
            self.counter.release()
            raise
        except Exception as e:
            self._end_creation(session)
            self.counter.release()
            logger.error("upstream_open_failed", connection_id=connection_id, error=str(e), error_type=type(e).__name__)
            # A client that already stopped was told so; stay stopped
            if not session.closed and session.state is not InteractionState.STOPPED:
                session.set_state(InteractionState.READY)
                await self.send_error(connection_id, "Failed to start AI session", SESSION_CREATE_FAILED)
            return None

        self._end_creation(session)
        if session.closed or session.state is InteractionState.STOPPED:
            logger.info("upstream_open_abandoned", connection_id=connection_id, closed=session.closed)
            self.counter.release()
            await handle.close()
            return None

        session.upstream = handle
        session.set_state(InteractionState.ACTIVE)
        logger.info(
            "interaction_started",
            connection_id=connection_id,
            user_id=session.user_id,
            active=self.counter.active,
        )
        await self.send_event(connection_id, "interaction_started", status="active", sessionId=session.session_id)
        await self.send_event(connection_id, "text", text=welcome_message(session.location))
        if forward is not None:
            await forward(handle)
        return handle

    def _end_creation(self, session: ConnectionSession) -> None:
        session.creation_in_flight = False
        self._pending_creations.pop(session.connection_id, None)

    async def _release_upstream(self, session: ConnectionSession, reason: str) -> bool:
        """
        Detach and close the session's upstream.

        Returns False when there was nothing to release.
        """
        handle = session.upstream
        if handle is None:
            return False
        session.upstream = None
        self.counter.release()
        session.reset_turn()
        if not session.closed:
            session.set_state(InteractionState.STOPPED)
        logger.info(
            "upstream_released",
            connection_id=session.connection_id,
            reason=reason,
            active=self.counter.active,
        )
        await handle.close()
        return True

    def check_session_accounting(self) -> bool:
        """Compare the counter with live handles plus pending reservations; log drift."""
        live = sum(1 for s in self.sessions.values() if s.upstream is not None)
        creating = len(self._pending_creations)
        expected = live + creating
        if self.counter.active != expected:
            logger.warning(
                "session_count_drift",
                counter=self.counter.active,
                expected=expected,
                live=live,
                creating=creating,
            )
            return False
        return True

    def status_snapshot(self) -> dict:
        return {**self.counter.snapshot(), "connections": len(self.active_connections)}

    # ---------- Upstream events ----------

    async def _on_upstream_event(self, session: ConnectionSession, handle: Any, event: UpstreamEvent) -> None:
        current = session.upstream is handle or (session.upstream is None and session.creation_in_flight)
        if not current or session.closed:
            logger.debug("stale_upstream_event", connection_id=session.connection_id, event_type=type(event).__name__)
            return

        connection_id = session.connection_id
        if isinstance(event, Interrupted):
            self.aggregator.interrupt(session)
            await self.send_event(connection_id, "interrupted")
        elif isinstance(event, AudioFragment):
            session.append_assistant_audio(event.data, self._max_assistant_audio)
            self.aggregator.push(session, event.data)
        elif isinstance(event, InlineAudio):
            await self.send_event(connection_id, "audio", audio=encode_base64(event.data), mimeType=event.mime_type)
        elif isinstance(event, TextPart):
            session.log_message("assistant", event.text)
            await self.send_event(connection_id, "text", text=event.text)
        elif isinstance(event, Transcription):
            await self.send_event(
                connection_id, "transcription", speaker=event.speaker, text=event.text, finished=event.finished
            )
        elif isinstance(event, TurnComplete):
            await self._handle_turn_complete(session)
        elif isinstance(event, ToolCallRequest):
            spawn_detached(
                self._run_tool_calls(session, handle, event.calls),
                name=f"tool_calls:{connection_id}",
                connection_id=connection_id,
            )
        elif isinstance(event, UpstreamClosed):
            if await self._release_upstream(session, reason="upstream_closed"):
                await self.send_event(connection_id, "interaction_stopped", status="upstream_closed")
        elif isinstance(event, GoAway):
            logger.warning("upstream_go_away", connection_id=connection_id, time_left=event.time_left)
        elif isinstance(event, SetupComplete):
            logger.debug("upstream_setup_complete", connection_id=connection_id)

    async def _emit_audio(self, session: ConnectionSession, wav_b64: str) -> None:
        if session.closed:
            return
        await self.send_event(session.connection_id, "audio", audio=wav_b64, mimeType="audio/wav")

    async def _run_tool_calls(self, session: ConnectionSession, handle: Any, calls: tuple[FunctionCall, ...]) -> None:
        results = await asyncio.gather(*(self.dispatcher.dispatch(call, session.user_id) for call in calls))
        responses = [r.to_function_response() for r in results if r is not None]
        if not responses:
            return
        if session.upstream is not handle or session.closed:
            logger.info("tool_results_discarded", connection_id=session.connection_id, results=len(responses))
            return
        await handle.send_tool_result(responses)

    # ---------- Turn completion ----------

    async def _handle_turn_complete(self, session: ConnectionSession) -> None:
        await self.aggregator.finish_turn(session)
        # Reset now; the next turn's audio must not land in this snapshot
        user_pcm, assistant_pcm, entries = session.take_turn()
        if not user_pcm and not assistant_pcm and not entries:
            return
        spawn_detached(
            self._finalize_turn(session.connection_id, session.user_id, user_pcm, assistant_pcm, entries),
            name=f"turn_finalize:{session.connection_id}",
            connection_id=session.connection_id,
            user_id=session.user_id,
        )

    async def _transcribe(self, pcm: bytes, sample_rate: int, fallback: str) -> str:
        try:
            text = await self.model_client.transcribe(pcm_to_wav(pcm, sample_rate))
        except Exception as e:
            logger.error("transcription_failed", error=str(e), error_type=type(e).__name__)
            return fallback
        if not text or text == NOT_RECOGNIZABLE:
            return fallback
        return text

    async def _finalize_turn(
        self,
        connection_id: str,
        user_id: str,
        user_pcm: bytes,
        assistant_pcm: bytes,
        entries: list[ConversationEntry],
    ) -> None:
        user_text = None
        assistant_text = None
        if user_pcm:
            user_text = await self._transcribe(user_pcm, self.settings.input_sample_rate, USER_AUDIO_UNPROCESSED)
        if assistant_pcm:
            assistant_text = await self._transcribe(
                assistant_pcm, self.settings.output_sample_rate, ASSISTANT_AUDIO_UNPROCESSED
            )

        if user_text and assistant_text and user_text not in _UNRECOVERED and assistant_text not in _UNRECOVERED:
            messages = [
                {"role": "user", "content": user_text},
                {"role": "assistant", "content": assistant_text},
            ]
            self.memory.persist_async(messages, user_id)
            logger.info("turn_persisted", connection_id=connection_id, source="audio")
            return

        roles = {entry.role for entry in entries}
        if {"user", "assistant"} <= roles:
            self.memory.persist_async([entry.to_message() for entry in entries], user_id)
            logger.info("turn_persisted", connection_id=connection_id, source="text", entries=len(entries))
            return

        logger.info(
            "turn_not_persisted",
            connection_id=connection_id,
            user_text=bool(user_text) and user_text not in _UNRECOVERED,
            assistant_text=bool(assistant_text) and assistant_text not in _UNRECOVERED,
        )
