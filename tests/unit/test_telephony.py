"""Unit tests for TwiML, Twilio call control and the media stream bridge."""
import asyncio
import base64
import json
from typing import List
from urllib.parse import parse_qs

import httpx
import pytest
from fastapi import WebSocketDisconnect

from app.core.errors import UpstreamUnavailableError
from app.services.agent.agent import ActionCall, AgentReply
from app.services.persistence.calls import CallPersistenceService
from app.services.telephony.call_control import TwilioCallControl
from app.services.telephony.media_stream import MediaStreamSession
from app.services.telephony.twiml import (
    TRANSFER_UNAVAILABLE_MESSAGE,
    connect_stream_twiml,
    gather_twiml,
    hangup_twiml,
    transfer_twiml,
)

CALL_ID = "CA-stream"


class TestTwiml:
    def test_connect_stream(self):
        twiml = connect_stream_twiml(
            "wss://example.com/webhooks/voice/media-stream",
            {"callSid": CALL_ID, "from": "+15557654321", "to": None},
        )

        assert '<Stream url="wss://example.com/webhooks/voice/media-stream">' in twiml
        assert f'<Parameter name="callSid" value="{CALL_ID}" />' in twiml
        assert '<Parameter name="from" value="+15557654321" />' in twiml
        assert 'name="to"' not in twiml

    def test_gather_escapes_text(self):
        twiml = gather_twiml("Fish & chips <today>", "https://example.com/gather?CallSid=CA1")

        assert "Fish &amp; chips &lt;today&gt;" in twiml
        assert 'input="speech"' in twiml
        assert "<Redirect" in twiml

    def test_hangup_and_transfer(self):
        assert "<Hangup/>" in hangup_twiml("Goodbye!")
        assert "<Dial>+15559998888</Dial>" in transfer_twiml("One moment.", "+15559998888")
        assert "<Say" not in transfer_twiml(None, "+15559998888")


class TestTwilioCallControl:
    """Test REST call updates over a mocked transport."""

    def _control(self, handler):
        return TwilioCallControl(
            account_sid="ACtest",
            auth_token="token",
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )

    @pytest.mark.asyncio
    async def test_hangup(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"sid": "CA1"})

        control = self._control(handler)

        assert await control.hangup("CA1") is True
        assert seen[0].url.path == "/2010-04-01/Accounts/ACtest/Calls/CA1.json"
        assert parse_qs(seen[0].content.decode()) == {"Status": ["completed"]}
        await control.close()

    @pytest.mark.asyncio
    async def test_hangup_with_message(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"sid": "CA1"})

        control = self._control(handler)

        assert await control.hangup("CA1", message="Sorry, goodbye.") is True
        twiml = parse_qs(seen[0].content.decode())["Twiml"][0]
        assert "<Say" in twiml
        assert "Sorry, goodbye." in twiml
        assert "<Hangup/>" in twiml

    @pytest.mark.asyncio
    async def test_hangup_failure(self):
        control = self._control(lambda request: httpx.Response(404, json={"message": "not found"}))

        assert await control.hangup("CA1") is False

    @pytest.mark.asyncio
    async def test_transfer(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"sid": "CA1"})

        control = self._control(handler)

        assert await control.transfer("CA1", "+15559998888") is True
        twiml = parse_qs(seen[0].content.decode())["Twiml"][0]
        assert "<Dial>+15559998888</Dial>" in twiml

    @pytest.mark.asyncio
    async def test_transfer_without_number(self, monkeypatch):
        from app.core.config import settings

        monkeypatch.setattr(settings, "transfer_number", None)
        seen = []
        control = self._control(lambda request: seen.append(request) or httpx.Response(200))

        assert await control.transfer("CA1") is False
        assert seen == []


class FakeWebSocket:
    """Feeds queued Twilio messages and records what is sent back."""

    def __init__(self, messages: List[dict]):
        self.incoming = [json.dumps(message) for message in messages]
        self.sent: List[dict] = []
        self.closed = False

    async def receive_text(self) -> str:
        if not self.incoming:
            raise WebSocketDisconnect()
        return self.incoming.pop(0)

    async def send_text(self, text: str) -> None:
        self.sent.append(json.loads(text))

    async def close(self) -> None:
        self.closed = True

    def media_payloads(self) -> List[bytes]:
        return [base64.b64decode(m["media"]["payload"]) for m in self.sent if m["event"] == "media"]


class FakeTranscriber:
    instances: List["FakeTranscriber"] = []

    def __init__(self, call_id, on_final, on_interim=None, fail=False):
        self.call_id = call_id
        self.on_final = on_final
        self.on_interim = on_interim
        self.fail = fail
        self.audio: List[bytes] = []
        self.closed = False
        FakeTranscriber.instances.append(self)

    async def connect(self):
        if self.fail:
            raise UpstreamUnavailableError("stt", "connection refused")

    async def send_audio(self, audio: bytes):
        self.audio.append(audio)

    async def close(self):
        self.closed = True


def _start_message(stream_sid="MZ1"):
    return {
        "event": "start",
        "start": {
            "streamSid": stream_sid,
            "callSid": CALL_ID,
            "customParameters": {"callSid": CALL_ID, "from": "+15557654321", "to": "+15550000000"},
        },
    }


class TestMediaStreamSession:
    """Test the media stream bridge with a fake websocket and transcriber."""

    @pytest.fixture(autouse=True)
    def reset_transcribers(self):
        FakeTranscriber.instances = []

    def _stream(self, websocket, coordinator, call_control, factory=FakeTranscriber):
        return MediaStreamSession(websocket, coordinator, call_control, transcriber_factory=factory)

    async def _wait_for_turns(self, stream):
        await asyncio.gather(*list(stream._turn_tasks))

    @pytest.mark.asyncio
    async def test_full_stream(self, coordinator, session_store, session_factory, mock_call_control):
        """Start, audio and stop: greeting is played and the call is finalized."""
        websocket = FakeWebSocket([
            {"event": "connected"},
            _start_message(),
            {"event": "media", "media": {"payload": base64.b64encode(b"\xff\x7f").decode()}},
            {"event": "stop"},
        ])
        stream = self._stream(websocket, coordinator, mock_call_control)

        await stream.run()

        transcriber = FakeTranscriber.instances[0]
        assert transcriber.audio == [b"\xff\x7f"]
        assert transcriber.closed is True
        assert websocket.media_payloads()[0].decode().startswith("audio:Thank you for calling Test Bistro!")
        assert websocket.sent[1] == {"event": "mark", "streamSid": "MZ1", "mark": {"name": "reply_end"}}
        assert await session_store.get(CALL_ID) is None
        async with session_factory() as db:
            call = await CallPersistenceService(db).get_call_by_sid(CALL_ID)
        assert call.end_reason == "stream_stopped"
        assert call.from_number == "+15557654321"

    @pytest.mark.asyncio
    async def test_final_transcript_plays_reply(self, coordinator, mock_call_control):
        websocket = FakeWebSocket([])
        stream = self._stream(websocket, coordinator, mock_call_control)
        await stream.handle_message(json.dumps(_start_message()))

        await FakeTranscriber.instances[0].on_final("Do you have parking?", 0.9)
        await self._wait_for_turns(stream)

        assert websocket.media_payloads()[-1] == b"audio:What else can I do for you?"
        mock_call_control.hangup.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_end_call_hangs_up(self, coordinator, fake_agent, mock_call_control):
        fake_agent.replies = [AgentReply(action=ActionCall(call_ref="call_1", name="end_call", arguments={}))]
        fake_agent.followups = ["Goodbye!"]
        websocket = FakeWebSocket([])
        stream = self._stream(websocket, coordinator, mock_call_control)
        await stream.handle_message(json.dumps(_start_message()))

        await FakeTranscriber.instances[0].on_final("That's all, thanks", 0.9)
        await self._wait_for_turns(stream)

        assert websocket.media_payloads()[-1] == b"audio:Goodbye!"
        mock_call_control.hangup.assert_awaited_once_with(CALL_ID)

    @pytest.mark.asyncio
    async def test_transfer(self, coordinator, fake_agent, mock_call_control):
        fake_agent.replies = [
            AgentReply(action=ActionCall(call_ref="call_1", name="transfer_to_human", arguments={"reason": "complaint"})),
        ]
        stream = self._stream(FakeWebSocket([]), coordinator, mock_call_control)
        await stream.handle_message(json.dumps(_start_message()))

        await FakeTranscriber.instances[0].on_final("Let me talk to a manager", 0.9)
        await self._wait_for_turns(stream)

        mock_call_control.transfer.assert_awaited_once_with(CALL_ID)
        mock_call_control.hangup.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failed_transfer_apologizes_and_hangs_up(self, coordinator, fake_agent, mock_call_control):
        mock_call_control.transfer.return_value = False
        fake_agent.replies = [
            AgentReply(action=ActionCall(call_ref="call_1", name="transfer_to_human", arguments={"reason": "complaint"})),
        ]
        stream = self._stream(FakeWebSocket([]), coordinator, mock_call_control)
        await stream.handle_message(json.dumps(_start_message()))

        await FakeTranscriber.instances[0].on_final("Let me talk to a manager", 0.9)
        await self._wait_for_turns(stream)

        mock_call_control.transfer.assert_awaited_once_with(CALL_ID)
        mock_call_control.hangup.assert_awaited_once_with(CALL_ID, message=TRANSFER_UNAVAILABLE_MESSAGE)

    @pytest.mark.asyncio
    async def test_missing_session_closes_stream(self, coordinator, mock_call_control):
        websocket = FakeWebSocket([])
        stream = self._stream(websocket, coordinator, mock_call_control)
        stream.call_sid = "CA-gone"

        await stream._run_turn("Hello?", 0.8)

        assert websocket.closed is True

    @pytest.mark.asyncio
    async def test_transcriber_failure_keeps_call_alive(self, coordinator, session_store, mock_call_control):
        def failing_factory(call_id, on_final, on_interim=None):
            return FakeTranscriber(call_id, on_final, on_interim, fail=True)

        websocket = FakeWebSocket([])
        stream = self._stream(websocket, coordinator, mock_call_control, factory=failing_factory)

        await stream.handle_message(json.dumps(_start_message()))

        assert websocket.media_payloads()
        assert await session_store.get(CALL_ID) is not None
        assert coordinator.detach_transcriber(CALL_ID) is None

    @pytest.mark.asyncio
    async def test_non_json_message_ignored(self, coordinator, mock_call_control):
        stream = self._stream(FakeWebSocket([]), coordinator, mock_call_control)

        assert await stream.handle_message("not json") is True
        assert await stream.handle_message(json.dumps({"event": "stop"})) is False

