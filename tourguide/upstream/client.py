"""
Gemini Live Client
Opens realtime tour-guide sessions and transcribes finished turns.
"""
import asyncio
from dataclasses import dataclass
from typing import Optional

import structlog
from google import genai
from google.genai import types

from ..config import Settings, settings as default_settings
from ..tracing import start_session_span, start_transcription_span
from .handle import EventCallback, UpstreamSessionHandle

logger = structlog.get_logger()

TRANSCRIPTION_PROMPT = (
    "Generate a transcript of the speech. "
    "Please do not include any other text in the response. "
    "If you cannot hear the speech, please only say '<Not recognizable>'."
)
NOT_RECOGNIZABLE = "<Not recognizable>"

SYSTEM_INSTRUCTION = """You are an expert tour guide assistant with access to tools and real-time information.{location_context}

CORE CAPABILITIES:
- Provide travel and tourism information with vivid descriptions of destinations
- Look up current information with Google Search
- Offer personalized recommendations based on what you remember about the user
- Be friendly, enthusiastic and professional

AVAILABLE TOOLS:
1. Google Search for current events, opening hours, prices, weather and local news
2. Code Execution for calculations
3. Memory (query_memory) for the user's preferences and past conversations
4. Location services: nearby attractions, directions, dining recommendations and transportation options
5. Bookmarks (save_bookmark, get_bookmarks) so the user can keep places, tips and moments

PRESENTATION STYLE:
- Give practical, actionable advice with historical facts, local customs and insider tips
- Include opening hours, ticket prices and accessibility when you know them
- Ask follow-up questions to understand what the user enjoys

INTERACTION APPROACH:
- Start from the user's known location and narrow down as you learn more
- When you need a more precise location, ask politely and explain how it helps
- Never pressure users to share more than they are comfortable with"""

LOCATION_CONTEXT = """

CURRENT USER LOCATION: {location}

LOCATION-SPECIFIC GUIDANCE:
- You know the user's general location; search for current events, attractions and activities in this area
- Ask for the city or neighbourhood when you need it for precise recommendations
- Consider local customs, languages and the current season"""


def build_system_instruction(location: Optional[str]) -> str:
    location_context = LOCATION_CONTEXT.format(location=location) if location else ""
    return SYSTEM_INSTRUCTION.format(location_context=location_context)


@dataclass
class UpstreamConfig:
    """What the gateway knows about a connection when it opens a session."""
    session_id: str
    user_id: str
    location: Optional[str] = None
    language: Optional[str] = None


class LiveModelClient:
    """
    Factory for upstream sessions.

    The genai client is created on first use so the app can start without
    credentials.
    """

    def __init__(self, config: Settings = None, function_declarations: list[dict] = None):
        """
        Args:
            config: Settings (defaults to the module settings)
            function_declarations: {"name", "description", "parameters"} dicts for local tools
        """
        self.settings = config or default_settings
        self.function_declarations = list(function_declarations or [])
        self._client: Optional[genai.Client] = None

    def _get_client(self) -> genai.Client:
        if self._client is None:
            self._client = genai.Client(api_key=self.settings.google_api_key)
        return self._client

    def build_live_config(self, config: UpstreamConfig) -> types.LiveConnectConfig:
        tools = [
            types.Tool(google_search=types.GoogleSearch()),
            types.Tool(code_execution=types.ToolCodeExecution()),
        ]
        if self.function_declarations:
            tools.append(types.Tool(function_declarations=[
                types.FunctionDeclaration(
                    name=decl["name"],
                    description=decl.get("description", ""),
                    parameters_json_schema=decl.get("parameters"),
                )
                for decl in self.function_declarations
            ]))

        kwargs = {
            "response_modalities": [types.Modality.AUDIO],
            "input_audio_transcription": types.AudioTranscriptionConfig(),
            "output_audio_transcription": types.AudioTranscriptionConfig(),
            "system_instruction": types.Content(parts=[types.Part(text=build_system_instruction(config.location))]),
            "tools": tools,
        }
        if config.language:
            kwargs["speech_config"] = types.SpeechConfig(language_code=config.language)
        return types.LiveConnectConfig(**kwargs)

    async def open(self, config: UpstreamConfig, on_event: EventCallback) -> UpstreamSessionHandle:
        """
        Open a live session and start receiving.

        Raises whatever the SDK raises, or asyncio.TimeoutError after
        live_connect_timeout seconds.
        """
        live_config = self.build_live_config(config)
        model = self.settings.live_model

        with start_session_span(config.session_id, config.user_id, model):
            ctxmgr = self._get_client().aio.live.connect(model=model, config=live_config)
            live_session = await asyncio.wait_for(
                ctxmgr.__aenter__(),
                timeout=self.settings.live_connect_timeout,
            )

        handle = UpstreamSessionHandle(live_session, on_event, context_manager=ctxmgr, label=config.session_id)
        handle.start()
        logger.info(
            "upstream_session_opened",
            session_id=config.session_id,
            user_id=config.user_id,
            model=model,
            location=config.location,
            language=config.language,
        )
        return handle

    async def transcribe(self, wav_bytes: bytes) -> Optional[str]:
        """
        Transcribe one WAV clip.

        Returns:
            The transcript, or None when the model returned no text
        """
        model = self.settings.transcription_model
        with start_transcription_span(len(wav_bytes), model):
            response = await self._get_client().aio.models.generate_content(
                model=model,
                contents=[
                    TRANSCRIPTION_PROMPT,
                    types.Part.from_bytes(data=wav_bytes, mime_type="audio/wav"),
                ],
            )
        text = (response.text or "").strip()
        return text or None
