"""
Tests for decoding live server messages.
"""
from types import SimpleNamespace


def _content(**kwargs):
    return SimpleNamespace(server_content=SimpleNamespace(**kwargs))


def _part(text=None, data=None, mime_type=None, thought=None):
    inline = SimpleNamespace(data=data, mime_type=mime_type) if data is not None else None
    return SimpleNamespace(text=text, inline_data=inline, thought=thought)


class TestDecodeMessage:
    """Tests for decode_message."""

    def test_pcm_part_is_audio_fragment(self):
        from tourguide.upstream.events import AudioFragment, decode_message

        message = _content(model_turn=SimpleNamespace(parts=[_part(data=b"\x01\x00", mime_type="audio/pcm;rate=24000")]))

        assert decode_message(message) == [AudioFragment(data=b"\x01\x00", mime_type="audio/pcm;rate=24000")]

    def test_container_audio_is_inline(self):
        from tourguide.upstream.events import InlineAudio, decode_message

        message = _content(model_turn=SimpleNamespace(parts=[_part(data=b"RIFF", mime_type="audio/wav")]))

        assert decode_message(message) == [InlineAudio(data=b"RIFF", mime_type="audio/wav")]

    def test_text_and_thought_parts(self):
        from tourguide.upstream.events import TextPart, decode_message

        message = _content(model_turn=SimpleNamespace(parts=[
            _part(text="planning...", thought=True),
            _part(text="Welcome to Porto."),
        ]))

        assert decode_message(message) == [TextPart(text="Welcome to Porto.")]

    def test_interrupted_short_circuits(self):
        from tourguide.upstream.events import Interrupted, decode_message

        message = _content(
            interrupted=True,
            model_turn=SimpleNamespace(parts=[_part(text="ignored")]),
            turn_complete=True,
        )

        assert decode_message(message) == [Interrupted()]

    def test_turn_complete_comes_last(self):
        from tourguide.upstream.events import TextPart, Transcription, TurnComplete, decode_message

        message = _content(
            model_turn=SimpleNamespace(parts=[_part(text="Done.")]),
            output_transcription=SimpleNamespace(text="Done.", finished=True),
            turn_complete=True,
        )

        assert decode_message(message) == [
            TextPart(text="Done."),
            Transcription(speaker="assistant", text="Done.", finished=True),
            TurnComplete(),
        ]

    def test_input_transcription(self):
        from tourguide.upstream.events import Transcription, decode_message

        message = _content(input_transcription=SimpleNamespace(text="where am i", finished=None))

        assert decode_message(message) == [Transcription(speaker="user", text="where am i", finished=False)]

    def test_tool_call(self):
        from tourguide.upstream.events import FunctionCall, ToolCallRequest, decode_message

        message = SimpleNamespace(tool_call=SimpleNamespace(function_calls=[
            SimpleNamespace(name="get_directions", args={"from": "A", "to": "B"}, id="fc-1"),
            SimpleNamespace(name=None, args={}, id="fc-2"),
            SimpleNamespace(name="get_bookmarks", args=None, id="fc-3"),
        ]))

        assert decode_message(message) == [ToolCallRequest(calls=(
            FunctionCall(name="get_directions", args={"from": "A", "to": "B"}, call_id="fc-1"),
            FunctionCall(name="get_bookmarks", args={}, call_id="fc-3"),
        ))]

    def test_setup_and_go_away(self):
        from tourguide.upstream.events import GoAway, SetupComplete, decode_message

        message = SimpleNamespace(setup_complete=SimpleNamespace(), go_away=SimpleNamespace(time_left="10s"))

        assert decode_message(message) == [SetupComplete(), GoAway(time_left="10s")]

    def test_empty_message(self):
        from tourguide.upstream.events import decode_message

        assert decode_message(SimpleNamespace()) == []
