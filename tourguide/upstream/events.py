"""
Upstream Message Decoding
Turns Gemini Live server messages into a small tagged union the gateway routes on.
"""
from dataclasses import dataclass, field
from typing import Any, Optional, Union


@dataclass(frozen=True)
class FunctionCall:
    """A single tool invocation requested by the model."""
    name: str
    args: dict = field(default_factory=dict)
    call_id: Optional[str] = None


@dataclass(frozen=True)
class Interrupted:
    """The user barged in; anything queued for playback is stale."""


@dataclass(frozen=True)
class AudioFragment:
    """Raw PCM16 from the model, to be aggregated before playback."""
    data: bytes
    mime_type: str = "audio/pcm"


@dataclass(frozen=True)
class InlineAudio:
    """Audio already in a playable container; forwarded as is."""
    data: bytes
    mime_type: str


@dataclass(frozen=True)
class TextPart:
    text: str


@dataclass(frozen=True)
class Transcription:
    speaker: str  # "user" or "assistant"
    text: str
    finished: bool = False


@dataclass(frozen=True)
class TurnComplete:
    pass


@dataclass(frozen=True)
class ToolCallRequest:
    calls: tuple[FunctionCall, ...]


@dataclass(frozen=True)
class SetupComplete:
    pass


@dataclass(frozen=True)
class GoAway:
    time_left: Optional[str] = None


@dataclass(frozen=True)
class UpstreamClosed:
    """The live connection ended without a local close."""
    reason: str = ""


UpstreamEvent = Union[
    Interrupted,
    AudioFragment,
    InlineAudio,
    TextPart,
    Transcription,
    TurnComplete,
    ToolCallRequest,
    SetupComplete,
    GoAway,
    UpstreamClosed,
]


def _is_raw_pcm(mime_type: Optional[str]) -> bool:
    # Live sessions stream "audio/pcm;rate=24000"
    return not mime_type or mime_type.lower().startswith(("audio/pcm", "audio/l16"))


def _decode_parts(parts: Any) -> list[UpstreamEvent]:
    events: list[UpstreamEvent] = []
    for part in parts or []:
        if getattr(part, "thought", None):
            continue
        text = getattr(part, "text", None)
        if text:
            events.append(TextPart(text=text))
        inline = getattr(part, "inline_data", None)
        if inline is None:
            continue
        data = getattr(inline, "data", None)
        mime_type = getattr(inline, "mime_type", None) or ""
        if not data:
            continue
        if _is_raw_pcm(mime_type):
            events.append(AudioFragment(data=bytes(data), mime_type=mime_type or "audio/pcm"))
        elif mime_type.lower().startswith("audio/"):
            events.append(InlineAudio(data=bytes(data), mime_type=mime_type))
    return events


def _decode_transcription(speaker: str, transcription: Any) -> Optional[Transcription]:
    if transcription is None:
        return None
    text = getattr(transcription, "text", None)
    finished = getattr(transcription, "finished", None)
    if text is None and finished is None:
        return None
    return Transcription(speaker=speaker, text=text or "", finished=bool(finished))


def _decode_tool_call(tool_call: Any) -> Optional[ToolCallRequest]:
    calls = []
    for fc in getattr(tool_call, "function_calls", None) or []:
        name = getattr(fc, "name", None)
        if not name:
            continue
        args = getattr(fc, "args", None)
        calls.append(FunctionCall(
            name=name,
            args=dict(args) if isinstance(args, dict) else {},
            call_id=getattr(fc, "id", None),
        ))
    if not calls:
        return None
    return ToolCallRequest(calls=tuple(calls))


def decode_message(message: Any) -> list[UpstreamEvent]:
    """
    Decode one live server message into gateway events, in processing order.

    An interruption short-circuits the rest of the message. Model-turn parts
    come first, then transcriptions, then the turn-complete marker, so text and
    audio are routed before the turn is closed.
    """
    events: list[UpstreamEvent] = []

    server_content = getattr(message, "server_content", None)
    if server_content is not None:
        if getattr(server_content, "interrupted", None):
            return [Interrupted()]

        model_turn = getattr(server_content, "model_turn", None)
        if model_turn is not None:
            events.extend(_decode_parts(getattr(model_turn, "parts", None)))

        for speaker, attr in (("user", "input_transcription"), ("assistant", "output_transcription")):
            transcription = _decode_transcription(speaker, getattr(server_content, attr, None))
            if transcription is not None:
                events.append(transcription)

        if getattr(server_content, "turn_complete", None):
            events.append(TurnComplete())

    tool_call = getattr(message, "tool_call", None)
    if tool_call is not None:
        request = _decode_tool_call(tool_call)
        if request is not None:
            events.append(request)

    if getattr(message, "setup_complete", None) is not None:
        events.append(SetupComplete())

    go_away = getattr(message, "go_away", None)
    if go_away is not None:
        time_left = getattr(go_away, "time_left", None)
        events.append(GoAway(time_left=str(time_left) if time_left is not None else None))

    return events
