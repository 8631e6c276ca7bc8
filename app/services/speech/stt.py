"""Speech-to-text service (Deepgram live transcription)."""
import asyncio
import json
import logging
from typing import Awaitable, Callable, Optional
from urllib.parse import urlencode
import websockets

from app.core.config import settings
from app.core.errors import UpstreamUnavailableError

logger = logging.getLogger(__name__)

DEEPGRAM_LISTEN_URL = "wss://api.deepgram.com/v1/listen"

FinalHandler = Callable[[str, float], Awaitable[None]]
InterimHandler = Callable[[str], Awaitable[None]]


def build_listen_url(model: str, language: str) -> str:
    """Live options for Twilio media streams: 8 kHz mono mu-law."""
    params = {
        "encoding": "mulaw",
        "sample_rate": 8000,
        "channels": 1,
        "model": model,
        "language": language,
        "smart_format": "true",
        "punctuate": "true",
        "interim_results": "true",
        "utterance_end_ms": 1000,
        "vad_events": "true",
    }
    return f"{DEEPGRAM_LISTEN_URL}?{urlencode(params)}"


class DeepgramTranscriber:
    """
    One live transcription stream per call.

    Audio goes in through ``send_audio``; final results go to ``on_final``
    and interim results to ``on_interim``.
    """

    def __init__(
        self,
        call_id: str,
        on_final: FinalHandler,
        on_interim: Optional[InterimHandler] = None,
        api_key: Optional[str] = None,
    ):
        self.call_id = call_id
        self.on_final = on_final
        self.on_interim = on_interim
        self.api_key = api_key or settings.deepgram_api_key
        self._websocket = None
        self._receiver: Optional[asyncio.Task] = None

    @property
    def is_connected(self) -> bool:
        return self._websocket is not None

    async def connect(self) -> None:
        if not self.api_key:
            raise UpstreamUnavailableError("stt", "Deepgram API key not configured")
        url = build_listen_url(settings.deepgram_model, settings.deepgram_language)
        try:
            self._websocket = await websockets.connect(
                url,
                additional_headers={"Authorization": f"Token {self.api_key}"},
                ping_interval=20,
                ping_timeout=10,
            )
        except Exception as e:
            raise UpstreamUnavailableError("stt", f"{type(e).__name__}: {e}") from e
        self._receiver = asyncio.create_task(self._receive_loop())
        logger.info(f"[STT] Deepgram stream opened - CallSid: {self.call_id}")

    async def send_audio(self, audio: bytes) -> None:
        if self._websocket is None:
            return
        try:
            await self._websocket.send(audio)
        except websockets.ConnectionClosed:
            logger.warning(f"[STT] Deepgram stream closed while sending audio - CallSid: {self.call_id}")
            self._websocket = None

    async def handle_message(self, message: str) -> None:
        """Dispatch one Deepgram message to the final or interim handler."""
        try:
            data = json.loads(message)
        except (json.JSONDecodeError, TypeError):
            return
        if data.get("type") != "Results":
            return

        alternatives = data.get("channel", {}).get("alternatives", [])
        if not alternatives:
            return
        transcript = (alternatives[0].get("transcript") or "").strip()
        if not transcript:
            return

        if data.get("is_final"):
            confidence = float(alternatives[0].get("confidence", 0.0))
            await self.on_final(transcript, confidence)
        elif self.on_interim is not None:
            await self.on_interim(transcript)

    async def _receive_loop(self) -> None:
        try:
            async for message in self._websocket:
                await self.handle_message(message)
        except websockets.ConnectionClosed:
            logger.info(f"[STT] Deepgram stream closed - CallSid: {self.call_id}")
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.error(f"[STT] Deepgram receive loop error - CallSid: {self.call_id}, Error: {e}", exc_info=True)

    async def close(self) -> None:
        websocket, self._websocket = self._websocket, None
        if websocket is not None:
            try:
                await websocket.send(json.dumps({"type": "CloseStream"}))
                await websocket.close()
            except websockets.ConnectionClosed:
                pass
        if self._receiver is not None:
            self._receiver.cancel()
            self._receiver = None
        logger.info(f"[STT] Deepgram stream closed by us - CallSid: {self.call_id}")
