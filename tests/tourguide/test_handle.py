"""
Tests for the upstream session handle.
"""
import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest


class FakeLiveSession:
    """
    Minimal live session.

    Each receive() call yields the next round of messages. With `hold`
    set, receive() blocks once the rounds run out instead of ending.
    """

    def __init__(self, rounds=(), hold=False, error=None):
        self.rounds = list(rounds)
        self.hold = hold
        self.error = error
        self.send_client_content = AsyncMock()
        self.send_realtime_input = AsyncMock()
        self.send_tool_response = AsyncMock()
        self.close = AsyncMock()

    async def receive(self):
        if self.rounds:
            for message in self.rounds.pop(0):
                yield message
            return
        if self.error is not None:
            raise self.error
        if self.hold:
            await asyncio.Event().wait()


def _text_message(text, turn_complete=False):
    return SimpleNamespace(server_content=SimpleNamespace(
        model_turn=SimpleNamespace(parts=[SimpleNamespace(text=text, inline_data=None)]),
        turn_complete=turn_complete,
    ))


class Recorder:
    def __init__(self):
        self.events = []
        self.closed = asyncio.Event()

    async def __call__(self, handle, event):
        from tourguide.upstream.events import UpstreamClosed

        self.events.append(event)
        if isinstance(event, UpstreamClosed):
            self.closed.set()


class TestSends:
    """Sends report success as a bool and never raise."""

    @pytest.mark.asyncio
    async def test_send_text(self):
        from tourguide.upstream.handle import UpstreamSessionHandle

        live = FakeLiveSession()
        handle = UpstreamSessionHandle(live, Recorder())

        assert await handle.send_text("hello") is True
        kwargs = live.send_client_content.await_args.kwargs
        assert kwargs["turn_complete"] is True
        assert kwargs["turns"].parts[0].text == "hello"

    @pytest.mark.asyncio
    async def test_send_audio_chunk(self):
        from tourguide.upstream.handle import UpstreamSessionHandle

        live = FakeLiveSession()
        handle = UpstreamSessionHandle(live, Recorder())

        assert await handle.send_audio_chunk(b"\x00\x01", "audio/pcm;rate=16000")
        blob = live.send_realtime_input.await_args.kwargs["audio"]
        assert blob.data == b"\x00\x01"
        assert blob.mime_type == "audio/pcm;rate=16000"

    @pytest.mark.asyncio
    async def test_send_failure_returns_false(self):
        from tourguide.upstream.handle import UpstreamSessionHandle

        live = FakeLiveSession()
        live.send_realtime_input.side_effect = ConnectionError("reset by peer")
        handle = UpstreamSessionHandle(live, Recorder())

        assert await handle.send_inline_media(b"img", "image/jpeg") is False
        assert await handle.signal_audio_stream_end() is False

    @pytest.mark.asyncio
    async def test_tool_result(self):
        from tourguide.upstream.handle import UpstreamSessionHandle

        live = FakeLiveSession()
        handle = UpstreamSessionHandle(live, Recorder())

        ok = await handle.send_tool_result([
            {"id": "fc-1", "name": "get_bookmarks", "response": {"result": "none"}}
        ])

        assert ok
        response = live.send_tool_response.await_args.kwargs["function_responses"][0]
        assert response.id == "fc-1"
        assert response.name == "get_bookmarks"
        assert response.response == {"result": "none"}

    @pytest.mark.asyncio
    async def test_empty_tool_result_not_sent(self):
        from tourguide.upstream.handle import UpstreamSessionHandle

        live = FakeLiveSession()
        handle = UpstreamSessionHandle(live, Recorder())

        assert await handle.send_tool_result([]) is False
        live.send_tool_response.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_send_after_close(self):
        from tourguide.upstream.handle import UpstreamSessionHandle

        live = FakeLiveSession()
        handle = UpstreamSessionHandle(live, Recorder())
        await handle.close()

        assert await handle.send_text("late") is False
        live.send_client_content.assert_not_awaited()


class TestReceive:
    """Receive and dispatch loops."""

    @pytest.mark.asyncio
    async def test_events_dispatched_in_order_then_closed(self):
        from tourguide.upstream.events import TextPart, TurnComplete, UpstreamClosed
        from tourguide.upstream.handle import UpstreamSessionHandle

        live = FakeLiveSession(rounds=[[_text_message("one"), _text_message("two", turn_complete=True)]])
        recorder = Recorder()
        handle = UpstreamSessionHandle(live, recorder, label="t")

        handle.start()
        await asyncio.wait_for(recorder.closed.wait(), timeout=1.0)

        assert recorder.events == [
            TextPart(text="one"),
            TextPart(text="two"),
            TurnComplete(),
            UpstreamClosed(reason="stream ended"),
        ]
        await handle.close()

    @pytest.mark.asyncio
    async def test_receive_error_reports_reason(self):
        from tourguide.upstream.events import UpstreamClosed
        from tourguide.upstream.handle import UpstreamSessionHandle

        live = FakeLiveSession(error=RuntimeError("quota exceeded"))
        recorder = Recorder()
        handle = UpstreamSessionHandle(live, recorder)

        handle.start()
        await asyncio.wait_for(recorder.closed.wait(), timeout=1.0)

        assert recorder.events == [UpstreamClosed(reason="quota exceeded")]
        await handle.close()

    @pytest.mark.asyncio
    async def test_local_close_emits_nothing(self):
        from tourguide.upstream.handle import UpstreamSessionHandle

        live = FakeLiveSession(hold=True)
        recorder = Recorder()
        handle = UpstreamSessionHandle(live, recorder)

        handle.start()
        await asyncio.sleep(0)
        await handle.close()
        await asyncio.sleep(0.01)

        assert recorder.events == []
        live.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_handler_error_does_not_stop_dispatch(self):
        from tourguide.upstream.events import TextPart, UpstreamClosed
        from tourguide.upstream.handle import UpstreamSessionHandle

        seen = []
        finished = asyncio.Event()

        async def on_event(handle, event):
            seen.append(event)
            if isinstance(event, UpstreamClosed):
                finished.set()
            elif event.text == "bad":
                raise ValueError("handler bug")

        live = FakeLiveSession(rounds=[[_text_message("bad"), _text_message("good")]])
        handle = UpstreamSessionHandle(live, on_event)

        handle.start()
        await asyncio.wait_for(finished.wait(), timeout=1.0)

        assert seen[:2] == [TextPart(text="bad"), TextPart(text="good")]
        await handle.close()


class TestClose:
    """close() is idempotent and never raises."""

    @pytest.mark.asyncio
    async def test_close_twice_exits_context_once(self):
        from tourguide.upstream.handle import UpstreamSessionHandle

        ctx = SimpleNamespace(__aexit__=AsyncMock())
        handle = UpstreamSessionHandle(FakeLiveSession(), Recorder(), context_manager=ctx)

        await handle.close()
        await handle.close()

        assert handle.closed
        ctx.__aexit__.assert_awaited_once_with(None, None, None)

    @pytest.mark.asyncio
    async def test_close_error_is_swallowed(self):
        from tourguide.upstream.handle import UpstreamSessionHandle

        ctx = SimpleNamespace(__aexit__=AsyncMock(side_effect=OSError("already gone")))
        handle = UpstreamSessionHandle(FakeLiveSession(hold=True), Recorder(), context_manager=ctx)
        handle.start()

        await handle.close()

        assert handle.closed
