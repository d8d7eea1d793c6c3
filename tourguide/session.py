"""
Connection Session State
Per-connection state for the gateway plus the process-wide upstream session counter.
"""
import asyncio
import time
import uuid
from enum import Enum, auto
from dataclasses import dataclass, field
from typing import Any, Optional
import structlog

logger = structlog.get_logger()

# user_id placeholder until the client sends setup
PENDING_USER_ID = "pending"


class InteractionState(Enum):
    """Connection lifecycle states."""
    PENDING = auto()       # Connected, identity not resolved
    READY = auto()         # Setup done, no upstream session yet
    STARTING = auto()      # Upstream session being opened
    ACTIVE = auto()        # Upstream session open
    STOPPED = auto()       # Upstream session released


@dataclass
class ConversationEntry:
    """A role-tagged line of the running conversation."""
    role: str  # "user" or "assistant"
    content: str

    def to_message(self) -> dict:
        return {"role": self.role, "content": self.content}


@dataclass
class ConnectionSession:
    """
    State for one live client connection.

    The upstream handle is owned exclusively by this session. The two
    *_in_flight flags guard the awaited sections that must not run twice
    concurrently for one connection.
    """
    connection_id: str
    session_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str = PENDING_USER_ID
    location: Optional[str] = None
    language: Optional[str] = None
    state: InteractionState = InteractionState.PENDING

    upstream: Optional[Any] = None
    creation_in_flight: bool = False
    # CONNECTION_LIMIT_REACHED already sent for input-triggered creation
    capacity_error_sent: bool = False
    closed: bool = False

    conversation_log: list[ConversationEntry] = field(default_factory=list)

    # Audio response aggregation
    pending_audio_responses: list[bytes] = field(default_factory=list)
    aggregation_in_flight: bool = False
    aggregation_task: Optional[asyncio.Task] = None
    turn_complete_signaled: bool = False
    turn_generation: int = 0

    # Raw turn audio kept for transcription at turn end
    has_user_audio: bool = False
    user_audio_buffer: bytearray = field(default_factory=bytearray)
    has_assistant_audio: bool = False
    assistant_audio_buffer: bytearray = field(default_factory=bytearray)

    # Timing
    connected_at: float = field(default_factory=time.time)
    last_activity: float = field(default_factory=time.time)

    @property
    def identity_resolved(self) -> bool:
        return self.user_id != PENDING_USER_ID

    def set_state(self, new_state: InteractionState) -> None:
        """Update lifecycle state."""
        old_state = self.state
        self.state = new_state
        self.last_activity = time.time()
        logger.info(
            "state_change",
            connection_id=self.connection_id,
            old=old_state.name,
            new=new_state.name,
        )

    def log_message(self, role: str, content: str) -> None:
        self.conversation_log.append(ConversationEntry(role=role, content=content))
        self.last_activity = time.time()

    def append_user_audio(self, pcm: bytes, max_bytes: int) -> None:
        """Accumulate inbound PCM, keeping only the most recent max_bytes."""
        self.has_user_audio = True
        _append_bounded(self.user_audio_buffer, pcm, max_bytes)

    def append_assistant_audio(self, pcm: bytes, max_bytes: int) -> None:
        self.has_assistant_audio = True
        _append_bounded(self.assistant_audio_buffer, pcm, max_bytes)

    def clear_pending_audio(self) -> None:
        """
        Drop queued response audio and mark aggregation idle.

        Bumping the generation makes any cycle still waiting discard its result.
        """
        self.pending_audio_responses.clear()
        self.aggregation_in_flight = False
        self.aggregation_task = None
        self.turn_generation += 1

    def take_turn(self) -> tuple[bytes, bytes, list[ConversationEntry]]:
        """
        Snapshot and reset all per-turn state.

        Returns (user_pcm, assistant_pcm, conversation_log).
        """
        user_pcm = bytes(self.user_audio_buffer) if self.has_user_audio else b""
        assistant_pcm = bytes(self.assistant_audio_buffer) if self.has_assistant_audio else b""
        entries = list(self.conversation_log)
        self.reset_turn()
        return user_pcm, assistant_pcm, entries

    def reset_turn(self) -> None:
        """Return every per-turn buffer and flag to its initial value."""
        self.has_user_audio = False
        self.user_audio_buffer = bytearray()
        self.has_assistant_audio = False
        self.assistant_audio_buffer = bytearray()
        self.turn_complete_signaled = False
        self.conversation_log.clear()
        self.clear_pending_audio()


def _append_bounded(buffer: bytearray, data: bytes, max_bytes: int) -> None:
    buffer.extend(data)
    overflow = len(buffer) - max_bytes
    if overflow > 0:
        # Keep PCM16 frames aligned
        overflow += overflow % 2
        del buffer[:overflow]


class SessionCounter:
    """
    Count of upstream sessions open (or being opened) across all connections.

    try_acquire() reserves a slot synchronously so concurrent start attempts
    see the reservation before any of them awaits the upstream open.
    """

    def __init__(self, limit: int):
        self.limit = limit
        self._active = 0

    @property
    def active(self) -> int:
        return self._active

    @property
    def at_capacity(self) -> bool:
        return self._active >= self.limit

    def try_acquire(self) -> bool:
        """Reserve a slot; False when the limit is reached."""
        if self.at_capacity:
            return False
        self._active += 1
        logger.debug("session_slot_acquired", active=self._active, limit=self.limit)
        return True

    def release(self) -> None:
        """Free a slot, floored at zero."""
        if self._active <= 0:
            logger.warning("session_counter_underflow", active=self._active)
            self._active = 0
            return
        self._active -= 1
        logger.debug("session_slot_released", active=self._active, limit=self.limit)

    def snapshot(self) -> dict:
        return {"activeSessions": self._active, "maxSessions": self.limit}
