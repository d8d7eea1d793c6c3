"""
Shared fakes for gateway tests.
"""
import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest


class FakeWebSocket:
    """Records everything the manager sends."""

    def __init__(self):
        self.accepted = False
        self.sent: list[dict] = []

    async def accept(self):
        self.accepted = True

    async def send_json(self, data):
        self.sent.append(data)

    def events(self, event_type: str) -> list[dict]:
        return [m for m in self.sent if m.get("type") == event_type]


class ScriptedWebSocket(FakeWebSocket):
    """A FakeWebSocket whose inbound frames are queued by the test."""

    def __init__(self):
        super().__init__()
        self.inbox: asyncio.Queue = asyncio.Queue()

    async def receive(self):
        return await self.inbox.get()

    def send_frame(self, data: dict) -> None:
        self.inbox.put_nowait({"type": "websocket.receive", "text": json.dumps(data)})

    def hang_up(self) -> None:
        self.inbox.put_nowait({"type": "websocket.disconnect", "code": 1000})


class FakeHandle:
    """Stands in for UpstreamSessionHandle."""

    def __init__(self):
        self.send_text = AsyncMock(return_value=True)
        self.send_audio_chunk = AsyncMock(return_value=True)
        self.send_inline_media = AsyncMock(return_value=True)
        self.signal_audio_stream_end = AsyncMock(return_value=True)
        self.send_tool_result = AsyncMock(return_value=True)
        self.close_calls = 0
        self.closed = False

    async def close(self):
        self.close_calls += 1
        self.closed = True


class FakeModelClient:
    """
    Opens FakeHandles.

    Set `gate` to an asyncio.Event to hold open() until it is set, or
    `fail` to make open() raise.
    """

    def __init__(self):
        self.opened: list[FakeHandle] = []
        self.configs = []
        self.callbacks = []
        self.gate = None
        self.fail = False
        self.transcribe = AsyncMock(return_value="transcript")

    async def open(self, config, on_event):
        self.configs.append(config)
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise RuntimeError("upstream unavailable")
        handle = FakeHandle()
        self.opened.append(handle)
        self.callbacks.append(on_event)
        return handle

    async def emit(self, event, index: int = -1):
        """Deliver an upstream event through the manager's callback."""
        await self.callbacks[index](self.opened[index], event)


@pytest.fixture
def test_settings(tmp_path):
    from tourguide.config import Settings

    return Settings(
        _env_file=None,
        max_concurrent_sessions=3,
        aggregation_timeout_ms=300,
        aggregation_poll_ms=10,
        session_audit_interval=0,
        data_dir=str(tmp_path),
    )


@pytest.fixture
def model_client():
    return FakeModelClient()


@pytest.fixture
def memory():
    fake = MagicMock()
    fake.default_user_id = MagicMock(side_effect=lambda session_id: f"anonymous-{session_id}")
    fake.persist_async = MagicMock()
    return fake


@pytest.fixture
def dispatcher():
    fake = MagicMock()
    fake.dispatch = AsyncMock(return_value=None)
    return fake


@pytest.fixture
def manager(test_settings, model_client, memory, dispatcher):
    from tourguide.gateway import ConnectionSessionManager
    from tourguide.session import SessionCounter

    return ConnectionSessionManager(
        model_client=model_client,
        dispatcher=dispatcher,
        memory=memory,
        counter=SessionCounter(test_settings.max_concurrent_sessions),
        config=test_settings,
    )


@pytest.fixture
def connect(manager):
    """Connect a FakeWebSocket and return it."""
    async def _connect(connection_id: str) -> FakeWebSocket:
        websocket = FakeWebSocket()
        await manager.connect(websocket, connection_id)
        return websocket
    return _connect


@pytest.fixture
def start(manager):
    """Send start_interaction and wait for the background open to finish."""
    async def _start(connection_id: str, data: dict = None) -> None:
        from tourguide.background import drain

        await manager.handle_start_interaction(connection_id, data or {})
        await drain()
    return _start


@pytest.fixture
def scripted_socket():
    return ScriptedWebSocket()
