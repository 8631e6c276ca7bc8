"""Text-to-speech service."""
import logging
import time
from typing import AsyncIterator, Optional
import httpx
from openai import AsyncOpenAI

from app.core.config import settings
from app.core.errors import UpstreamUnavailableError
from app.core.logging import log_api_timing
from app.services.booking.formatting import clean_text_for_speech

logger = logging.getLogger(__name__)

ELEVENLABS_API_URL = "https://api.elevenlabs.io/v1/text-to-speech"
OPENAI_VOICES = ("alloy", "echo", "fable", "onyx", "nova", "shimmer")


class TextToSpeechService:
    """
    Converts reply text to audio with the configured provider.

    ``openai`` returns ``openai_tts_format`` audio (mp3 by default).
    ``elevenlabs`` returns ``elevenlabs_output_format`` audio; the default
    ``ulaw_8000`` is what Twilio media streams play back directly.
    """

    def __init__(
        self,
        provider: Optional[str] = None,
        client: Optional[AsyncOpenAI] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.provider = (provider or settings.tts_provider).lower()
        self.client = client or AsyncOpenAI(api_key=settings.openai_api_key)
        self.http_client = http_client or httpx.AsyncClient(timeout=30.0)

    async def synthesize_speech(self, text: str) -> bytes:
        """
        Synthesize speech from text.

        Args:
            text: Reply text; markdown markers and URLs are stripped first

        Returns:
            Audio bytes

        Raises:
            UpstreamUnavailableError: if the provider call fails
        """
        cleaned = clean_text_for_speech(text)
        if not cleaned:
            return b""
        if self.provider == "elevenlabs":
            return await self._elevenlabs(cleaned)
        return await self._openai(cleaned)

    async def synthesize_speech_stream(self, text: str) -> AsyncIterator[bytes]:
        """Yield audio chunks as the provider produces them."""
        cleaned = clean_text_for_speech(text)
        if not cleaned:
            return
        try:
            if self.provider == "elevenlabs":
                async with self.http_client.stream(
                    "POST",
                    f"{ELEVENLABS_API_URL}/{settings.elevenlabs_voice_id}/stream",
                    params={"output_format": settings.elevenlabs_output_format},
                    headers=self._elevenlabs_headers(),
                    json=self._elevenlabs_body(cleaned),
                ) as response:
                    response.raise_for_status()
                    async for chunk in response.aiter_bytes():
                        yield chunk
            else:
                async with self.client.audio.speech.with_streaming_response.create(
                    model=settings.openai_tts_model,
                    voice=settings.openai_tts_voice,
                    input=cleaned,
                    response_format=settings.openai_tts_format,
                ) as response:
                    async for chunk in response.iter_bytes():
                        yield chunk
        except Exception as e:
            raise UpstreamUnavailableError("tts", f"{type(e).__name__}: {e}") from e

    async def _openai(self, text: str) -> bytes:
        started_at = time.perf_counter()
        try:
            response = await self.client.audio.speech.create(
                model=settings.openai_tts_model,
                voice=settings.openai_tts_voice,
                input=text,
                response_format=settings.openai_tts_format,
            )
        except Exception as e:
            log_api_timing("OpenAI", "TTS", started_at, False)
            raise UpstreamUnavailableError("tts", f"{type(e).__name__}: {e}") from e
        log_api_timing("OpenAI", "TTS", started_at, True)
        return response.content

    def _elevenlabs_headers(self) -> dict:
        if not settings.elevenlabs_api_key:
            raise UpstreamUnavailableError("tts", "ElevenLabs API key not configured")
        return {"xi-api-key": settings.elevenlabs_api_key, "Content-Type": "application/json"}

    def _elevenlabs_body(self, text: str) -> dict:
        return {
            "text": text,
            "model_id": settings.elevenlabs_model,
            "voice_settings": {"stability": 0.5, "similarity_boost": 0.75},
        }

    async def _elevenlabs(self, text: str) -> bytes:
        headers = self._elevenlabs_headers()
        started_at = time.perf_counter()
        try:
            response = await self.http_client.post(
                f"{ELEVENLABS_API_URL}/{settings.elevenlabs_voice_id}",
                params={"output_format": settings.elevenlabs_output_format},
                headers=headers,
                json=self._elevenlabs_body(text),
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            log_api_timing("ElevenLabs", "TTS", started_at, False)
            raise UpstreamUnavailableError("tts", f"{type(e).__name__}: {e}") from e
        log_api_timing("ElevenLabs", "TTS", started_at, True)
        return response.content

    async def close(self) -> None:
        await self.http_client.aclose()
