"""
Audio Turn Aggregator
Collects streamed PCM response fragments and emits one playable WAV per cycle.
"""
import asyncio
from typing import Awaitable, Callable
import structlog

from ..session import ConnectionSession
from .wav import pcm_to_wav_base64

logger = structlog.get_logger()

# Receives (session, base64 WAV)
AudioEmitter = Callable[[ConnectionSession, str], Awaitable[None]]


class AudioTurnAggregator:
    """
    Buffers audio response fragments per connection.

    A cycle starts on the first fragment and waits until the turn is signalled
    complete or the deadline passes, then concatenates every queued fragment in
    arrival order and emits them as a single WAV. At most one cycle runs per
    connection; interrupting bumps the session's turn generation so a waiting
    cycle drops its result.
    """

    def __init__(
        self,
        emit: AudioEmitter,
        sample_rate: int = 24000,
        timeout_ms: int = 2000,
        poll_ms: int = 100,
    ):
        """
        Args:
            emit: Coroutine called with the session and the base64 WAV payload
            sample_rate: Sample rate of the upstream PCM
            timeout_ms: Longest a cycle waits before emitting what it has
            poll_ms: Poll interval of the wait loop
        """
        self.emit = emit
        self.sample_rate = sample_rate
        self.timeout = timeout_ms / 1000.0
        self.poll_interval = poll_ms / 1000.0

    def push(self, session: ConnectionSession, fragment: bytes) -> None:
        """Queue a fragment, starting a cycle if none is running."""
        if not fragment:
            return
        session.pending_audio_responses.append(fragment)
        if not session.aggregation_in_flight:
            self._start_cycle(session)

    def _start_cycle(self, session: ConnectionSession) -> None:
        session.aggregation_in_flight = True
        session.aggregation_task = asyncio.create_task(
            self._run_cycle(session, session.turn_generation),
            name=f"audio_aggregation:{session.connection_id}",
        )

    def interrupt(self, session: ConnectionSession) -> None:
        """Discard queued audio and leave the connection ready for a fresh cycle."""
        dropped = len(session.pending_audio_responses)
        session.clear_pending_audio()
        logger.info("audio_aggregation_interrupted", connection_id=session.connection_id, dropped_fragments=dropped)

    async def finish_turn(self, session: ConnectionSession) -> None:
        """End the running wait early and emit whatever is queued."""
        session.turn_complete_signaled = True
        task = session.aggregation_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            await task
        await self.flush(session)

    async def flush(self, session: ConnectionSession) -> bool:
        """
        Drain the queue and emit it as one WAV.

        Returns True if audio was emitted.
        """
        fragments = session.pending_audio_responses
        session.pending_audio_responses = []
        if not fragments:
            return False

        combined = b"".join(fragments)
        wav_b64 = pcm_to_wav_base64(combined, self.sample_rate)
        logger.info(
            "audio_response_combined",
            connection_id=session.connection_id,
            fragments=len(fragments),
            pcm_bytes=len(combined),
        )
        await self.emit(session, wav_b64)
        return True

    async def _wait_for_turn_end(self, session: ConnectionSession, generation: int) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout
        while loop.time() < deadline:
            if session.turn_complete_signaled or session.turn_generation != generation:
                return
            await asyncio.sleep(self.poll_interval)

    async def _run_cycle(self, session: ConnectionSession, generation: int) -> None:
        try:
            await self._wait_for_turn_end(session, generation)
            if session.turn_generation != generation or session.closed:
                return
            await self.flush(session)
        except Exception as e:
            logger.error("audio_aggregation_error", connection_id=session.connection_id, error=str(e))
        finally:
            if session.turn_generation == generation:
                session.aggregation_in_flight = False
                session.aggregation_task = None
                # Fragments that arrived while the last batch was being emitted
                if session.pending_audio_responses and not session.closed and not session.turn_complete_signaled:
                    self._start_cycle(session)
