"""
Tour Guide Gateway Configuration
Loads settings from environment variables with sensible defaults.
"""
from pydantic_settings import BaseSettings
from pydantic import Field
from typing import Optional
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Model service (Gemini Live)
    google_api_key: str = Field(default="", description="API key for the Gemini API")
    live_model: str = Field(
        default="gemini-2.5-flash-preview-native-audio-dialog",
        description="Model used for realtime audio sessions",
    )
    transcription_model: str = Field(default="gemini-2.5-flash-lite", description="Model used for turn transcription")
    live_connect_timeout: float = Field(default=15.0, gt=0, description="Seconds to wait for a live session to open")

    # Long-term memory (mem0 platform)
    mem0_api_key: str = Field(default="", description="API key for the mem0 platform")
    mem0_url: str = Field(default="https://api.mem0.ai", description="mem0 API base URL")
    memory_top_k: int = Field(default=10, ge=1, description="Memories folded into a query_memory answer")
    memory_request_timeout: float = Field(default=30.0, gt=0)

    # Places / directions (Google Maps web services)
    google_maps_api_key: str = Field(default="", description="API key for Google Maps web services")
    maps_request_timeout: float = Field(default=10.0, gt=0)

    # Server Settings
    server_host: str = Field(default="0.0.0.0")
    server_port: int = Field(default=9084)
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])

    # Session limits
    max_concurrent_sessions: int = Field(default=3, ge=1, description="Upstream sessions allowed across all clients")
    session_audit_interval: int = Field(
        default=60,
        description="Seconds between counter consistency checks (0 disables the background audit)",
    )
    anonymous_user_id: Optional[str] = Field(
        default=None,
        description="Shared identity for clients that never send a userId (pools their memory; leave empty for per-session ids)",
    )

    # Audio Settings
    input_sample_rate: int = Field(default=16000)
    output_sample_rate: int = Field(default=24000)
    aggregation_timeout_ms: int = Field(default=2000, ge=1, description="Upper bound on one audio aggregation wait")
    aggregation_poll_ms: int = Field(default=100, ge=1)
    max_turn_audio_seconds: float = Field(default=120.0, gt=0, description="Cap on raw audio kept per turn for transcription")

    # Tools
    tool_timeout_seconds: float = Field(default=20.0, gt=0)
    bookmark_title_words: int = Field(default=8, ge=1)

    # Logging
    log_level: str = Field(default="INFO")

    # Tracing
    otel_enabled: bool = Field(default=False, description="Enable OpenTelemetry tracing")
    otel_endpoint: str = Field(default="http://localhost:4318/v1/traces", description="OTLP endpoint")

    # Data persistence
    data_dir: str = Field(default="data", description="Directory to store per-user fallback data")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience access
settings = get_settings()
