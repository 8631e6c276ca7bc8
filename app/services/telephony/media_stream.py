"""Bridge between a Twilio media stream and the turn coordinator."""
import asyncio
import base64
import json
import logging
from typing import Callable, Optional, Set

from fastapi import WebSocket, WebSocketDisconnect

from app.core.errors import SessionAlreadyExistsError, SessionMissingError, UpstreamUnavailableError
from app.services.call_session.coordinator import TurnCoordinator
from app.services.call_session.events import TurnResponse
from app.services.speech.stt import DeepgramTranscriber
from app.services.telephony.call_control import TwilioCallControl
from app.services.telephony.twiml import TRANSFER_UNAVAILABLE_MESSAGE

logger = logging.getLogger(__name__)

TranscriberFactory = Callable[..., DeepgramTranscriber]


class MediaStreamSession:
    """
    One Twilio media stream.

    Inbound audio goes to the live transcriber; each final transcript runs as
    its own task so the receive loop never waits on a turn. Replies go back
    as base64 media messages.
    """

    def __init__(
        self,
        websocket: WebSocket,
        coordinator: TurnCoordinator,
        call_control: TwilioCallControl,
        transcriber_factory: TranscriberFactory = DeepgramTranscriber,
    ):
        self.websocket = websocket
        self.coordinator = coordinator
        self.call_control = call_control
        self.transcriber_factory = transcriber_factory
        self.call_sid: Optional[str] = None
        self.stream_sid: Optional[str] = None
        self.transcriber: Optional[DeepgramTranscriber] = None
        self._turn_tasks: Set[asyncio.Task] = set()
        self._closed = False

    async def run(self) -> None:
        try:
            while not self._closed:
                message = await self.websocket.receive_text()
                if not await self.handle_message(message):
                    break
        except WebSocketDisconnect:
            logger.info(f"[MEDIA STREAM] Websocket disconnected - CallSid: {self.call_sid}")
        finally:
            await self.cleanup()

    async def handle_message(self, message: str) -> bool:
        """Process one Twilio message; False once the stream has stopped."""
        try:
            data = json.loads(message)
        except json.JSONDecodeError:
            logger.warning(f"[MEDIA STREAM] Ignoring non-JSON message - CallSid: {self.call_sid}")
            return True

        event = data.get("event")
        if event == "connected":
            logger.info("[MEDIA STREAM] Twilio connected")
        elif event == "start":
            await self._on_start(data.get("start", {}))
        elif event == "media":
            payload = data.get("media", {}).get("payload")
            if payload and self.call_sid:
                await self.coordinator.on_audio_frame(self.call_sid, base64.b64decode(payload))
        elif event == "stop":
            logger.info(f"[MEDIA STREAM] Stream stopped - CallSid: {self.call_sid}")
            return False
        return True

    async def _on_start(self, start: dict) -> None:
        self.stream_sid = start.get("streamSid")
        params = start.get("customParameters", {}) or {}
        self.call_sid = start.get("callSid") or params.get("callSid")
        logger.info(f"[MEDIA STREAM] Stream started - CallSid: {self.call_sid}, StreamSid: {self.stream_sid}")

        self.transcriber = self.transcriber_factory(
            self.call_sid, on_final=self._on_final, on_interim=self._on_interim
        )
        try:
            await self.transcriber.connect()
            self.coordinator.attach_transcriber(self.call_sid, self.transcriber)
        except UpstreamUnavailableError as e:
            logger.error(f"[MEDIA STREAM] Live transcription unavailable: {e} - CallSid: {self.call_sid}")

        try:
            response = await self.coordinator.on_call_start(
                self.call_sid, caller_number=params.get("from"), to_number=params.get("to")
            )
        except SessionAlreadyExistsError:
            logger.warning(f"[MEDIA STREAM] Session already started - CallSid: {self.call_sid}")
            return
        await self.send_audio(response.audio)

    async def _on_final(self, text: str, confidence: float) -> None:
        task = asyncio.create_task(self._run_turn(text, confidence))
        self._turn_tasks.add(task)
        task.add_done_callback(self._turn_tasks.discard)

    async def _on_interim(self, text: str) -> None:
        await self.coordinator.on_interim_transcript(self.call_sid, text)

    async def _run_turn(self, text: str, confidence: float) -> None:
        try:
            response = await self.coordinator.on_final_transcript(self.call_sid, text, confidence)
        except SessionMissingError:
            logger.warning(f"[MEDIA STREAM] Session gone, closing stream - CallSid: {self.call_sid}")
            await self.close()
            return
        except Exception as e:
            logger.error(
                f"[MEDIA STREAM] Turn failed - CallSid: {self.call_sid}, Error: {type(e).__name__}: {e}",
                exc_info=True,
            )
            return
        if response is not None:
            await self.deliver(response)

    async def deliver(self, response: TurnResponse) -> None:
        """Play the reply, then hang up or transfer if asked."""
        await self.send_audio(response.audio)
        if response.should_end:
            await self.call_control.hangup(self.call_sid)
        elif response.should_transfer:
            if not await self.call_control.transfer(self.call_sid):
                logger.warning(f"[MEDIA STREAM] Transfer failed, ending call - CallSid: {self.call_sid}")
                await self.call_control.hangup(self.call_sid, message=TRANSFER_UNAVAILABLE_MESSAGE)

    async def send_audio(self, audio: Optional[bytes]) -> None:
        if not audio or not self.stream_sid or self._closed:
            return
        await self.websocket.send_text(
            json.dumps(
                {
                    "event": "media",
                    "streamSid": self.stream_sid,
                    "media": {"payload": base64.b64encode(audio).decode("ascii")},
                }
            )
        )
        await self.websocket.send_text(
            json.dumps({"event": "mark", "streamSid": self.stream_sid, "mark": {"name": "reply_end"}})
        )

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self.websocket.close()
        except RuntimeError:
            pass

    async def cleanup(self) -> None:
        """Stop transcription and pending turns, then finalize the call."""
        self._closed = True
        for task in list(self._turn_tasks):
            task.cancel()
        if self.transcriber is not None:
            await self.transcriber.close()
        if self.call_sid:
            self.coordinator.detach_transcriber(self.call_sid)
            try:
                await self.coordinator.on_call_stop(self.call_sid, status="completed", reason="stream_stopped")
            except Exception as e:
                logger.error(
                    f"[MEDIA STREAM] Finalization failed - CallSid: {self.call_sid}, Error: {e}",
                    exc_info=True,
                )
