"""
Tests for the live model client configuration and transcription.
"""
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest


def _client(declarations=None):
    from tourguide.config import Settings
    from tourguide.upstream.client import LiveModelClient

    return LiveModelClient(Settings(_env_file=None, google_api_key="test"), function_declarations=declarations)


class TestLiveConfig:
    """Session configuration sent when a live session opens."""

    def test_instruction_names_location(self):
        from tourguide.upstream.client import build_system_instruction

        assert "CURRENT USER LOCATION: Kyoto" in build_system_instruction("Kyoto")
        assert "CURRENT USER LOCATION" not in build_system_instruction(None)

    def test_tools_and_transcription(self):
        from tourguide.upstream.client import UpstreamConfig

        declarations = [{
            "name": "get_bookmarks",
            "description": "List bookmarks",
            "parameters": {"type": "object", "properties": {}, "required": []},
        }]
        config = _client(declarations).build_live_config(UpstreamConfig(session_id="s", user_id="u", location="Kyoto"))

        assert len(config.tools) == 3
        assert config.tools[0].google_search is not None
        assert config.tools[1].code_execution is not None
        assert config.tools[2].function_declarations[0].name == "get_bookmarks"
        assert config.input_audio_transcription is not None
        assert config.output_audio_transcription is not None
        assert "Kyoto" in config.system_instruction.parts[0].text
        assert config.speech_config is None

    def test_language_sets_speech_config(self):
        from tourguide.upstream.client import UpstreamConfig

        config = _client().build_live_config(UpstreamConfig(session_id="s", user_id="u", language="ja-JP"))

        assert config.speech_config.language_code == "ja-JP"
        assert len(config.tools) == 2


class TestTranscribe:
    """Post-turn transcription."""

    @pytest.mark.asyncio
    async def test_returns_text(self):
        client = _client()
        genai_client = MagicMock()
        genai_client.aio.models.generate_content = AsyncMock(return_value=SimpleNamespace(text="  hello there \n"))
        client._client = genai_client

        assert await client.transcribe(b"RIFF....") == "hello there"
        contents = genai_client.aio.models.generate_content.await_args.kwargs["contents"]
        assert contents[1].inline_data.mime_type == "audio/wav"

    @pytest.mark.asyncio
    async def test_empty_response(self):
        client = _client()
        genai_client = MagicMock()
        genai_client.aio.models.generate_content = AsyncMock(return_value=SimpleNamespace(text=None))
        client._client = genai_client

        assert await client.transcribe(b"RIFF....") is None


class TestOpen:
    """Opening a live session."""

    @pytest.mark.asyncio
    async def test_open_returns_started_handle(self):
        from tourguide.upstream.client import UpstreamConfig

        live_session = MagicMock()

        async def receive():
            if False:
                yield None

        live_session.receive = receive
        ctxmgr = MagicMock()
        ctxmgr.__aenter__ = AsyncMock(return_value=live_session)
        ctxmgr.__aexit__ = AsyncMock(return_value=None)
        genai_client = MagicMock()
        genai_client.aio.live.connect.return_value = ctxmgr

        client = _client()
        client._client = genai_client
        on_event = AsyncMock()

        handle = await client.open(UpstreamConfig(session_id="s1", user_id="u1"), on_event)
        await handle.close()

        assert genai_client.aio.live.connect.call_args.kwargs["model"] == client.settings.live_model
        ctxmgr.__aexit__.assert_awaited_once()
        assert handle.closed
