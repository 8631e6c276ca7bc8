"""Application configuration."""
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # OpenAI
    openai_api_key: str
    openai_model: str = "gpt-4o"
    openai_analysis_model: str = "gpt-4o-mini"

    # Twilio
    twilio_account_sid: str
    twilio_auth_token: str
    twilio_phone_number: str
    transfer_number: Optional[str] = None

    # Database
    database_url: str

    # Session store (in-process store when unset)
    redis_url: Optional[str] = None
    session_ttl_seconds: int = 3600

    # Business
    business_name: str = "Restaurant"
    business_timezone: str = "America/New_York"
    business_opening_hour: str = "11:00"
    business_closing_hour: str = "22:00"
    max_party_size: int = 20
    max_reservations_per_slot: int = 2

    # Speech
    tts_provider: str = "openai"  # openai, elevenlabs
    openai_tts_voice: str = "nova"
    openai_tts_model: str = "tts-1"
    openai_tts_format: str = "mp3"
    elevenlabs_api_key: Optional[str] = None
    elevenlabs_voice_id: str = "21m00Tcm4TlvDq8ikWAM"
    elevenlabs_model: str = "eleven_turbo_v2"
    elevenlabs_output_format: str = "ulaw_8000"
    deepgram_api_key: Optional[str] = None
    deepgram_model: str = "nova-2"
    deepgram_language: str = "en-US"

    # Voice transport: "stream" (media stream + live STT) or "gather" (Twilio speech recognition)
    voice_mode: str = "stream"

    # Server
    base_url: Optional[str] = None
    host: str = "0.0.0.0"
    port: int = 8000

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )


settings = Settings()
