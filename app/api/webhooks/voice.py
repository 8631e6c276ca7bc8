"""Twilio voice webhook endpoints."""
import logging
from typing import Optional
from fastapi import APIRouter, Request, Form, Depends, Query
from fastapi.responses import Response

from app.core.config import settings
from app.core.dependencies import get_coordinator
from app.core.errors import SessionAlreadyExistsError, SessionMissingError
from app.services.call_session.coordinator import TurnCoordinator
from app.services.telephony.twiml import (
    TRANSFER_UNAVAILABLE_MESSAGE,
    connect_stream_twiml,
    gather_twiml,
    hangup_twiml,
    transfer_twiml,
)

router = APIRouter()
logger = logging.getLogger(__name__)

TERMINAL_STATUSES = ("completed", "failed", "busy", "no-answer", "canceled")
UNAVAILABLE_MESSAGE = "We're sorry, we can't take your call right now. Please try again later."
ERROR_MESSAGE = "I'm sorry, I encountered an error. Please try again."
NO_SPEECH_MESSAGE = "I didn't catch that. Could you repeat?"
EXPIRED_MESSAGE = "I'm sorry, I lost track of our conversation. Please call us again."


def get_base_url(request: Request) -> str:
    """
    Get the base URL for constructing absolute URLs.

    Uses BASE_URL if set (e.g. behind a proxy), otherwise the request's own.
    """
    if settings.base_url:
        return settings.base_url.rstrip("/")
    return str(request.base_url).rstrip("/")


def get_stream_url(request: Request) -> str:
    base_url = get_base_url(request)
    if base_url.startswith("https://"):
        base_url = "wss://" + base_url[len("https://"):]
    elif base_url.startswith("http://"):
        base_url = "ws://" + base_url[len("http://"):]
    return f"{base_url}/webhooks/voice/media-stream"


def get_gather_url(request: Request, call_sid: str) -> str:
    return f"{get_base_url(request)}/webhooks/voice/gather?CallSid={call_sid}"


def twiml_response(twiml: str) -> Response:
    return Response(content=twiml, media_type="application/xml")


@router.post("/voice/incoming")
async def handle_incoming_call(
    request: Request,
    CallSid: str = Form(...),
    From: Optional[str] = Form(None),
    To: Optional[str] = Form(None),
    coordinator: TurnCoordinator = Depends(get_coordinator),
):
    """
    Handle incoming call from Twilio.

    Stream mode connects the call to the media stream endpoint, which starts
    the conversation. Gather mode starts it here and speaks the greeting.
    """
    logger.info(
        f"[INCOMING CALL] Received incoming call webhook - CallSid: {CallSid}, "
        f"Mode: {settings.voice_mode}, "
        f"Client: {request.client.host if request.client else 'unknown'}"
    )

    if settings.voice_mode == "stream":
        twiml = connect_stream_twiml(
            get_stream_url(request),
            {"callSid": CallSid, "from": From, "to": To},
        )
        return twiml_response(twiml)

    try:
        response = await coordinator.on_call_start(CallSid, caller_number=From, to_number=To)
        greeting = response.text
    except SessionAlreadyExistsError:
        logger.warning(f"[INCOMING CALL] Duplicate incoming webhook - CallSid: {CallSid}")
        greeting = "How can I help you today?"
    except Exception as e:
        logger.error(
            f"[INCOMING CALL] Error processing incoming call - CallSid: {CallSid}, "
            f"Error: {type(e).__name__}: {str(e)}",
            exc_info=True,
        )
        return twiml_response(hangup_twiml(UNAVAILABLE_MESSAGE))

    return twiml_response(gather_twiml(greeting, get_gather_url(request, CallSid)))


@router.post("/voice/gather")
async def handle_gather(
    request: Request,
    CallSid: str = Query(...),
    SpeechResult: Optional[str] = Form(None),
    Confidence: Optional[float] = Form(None),
    coordinator: TurnCoordinator = Depends(get_coordinator),
):
    """
    Handle gathered speech from Twilio.

    Twilio's speech result is treated as a final transcript.
    """
    logger.info(
        f"[GATHER] Received speech input - CallSid: {CallSid}, "
        f"SpeechResult length: {len(SpeechResult) if SpeechResult else 0}"
    )
    gather_url = get_gather_url(request, CallSid)

    if not SpeechResult or not SpeechResult.strip():
        logger.warning(f"[GATHER] No speech result provided - CallSid: {CallSid}")
        return twiml_response(gather_twiml(NO_SPEECH_MESSAGE, gather_url))

    try:
        response = await coordinator.on_final_transcript(
            CallSid, SpeechResult, confidence=Confidence if Confidence is not None else 1.0
        )
    except SessionMissingError:
        logger.warning(f"[GATHER] No live session for speech input - CallSid: {CallSid}")
        return twiml_response(hangup_twiml(EXPIRED_MESSAGE))
    except Exception as e:
        logger.error(
            f"[GATHER] Error processing speech input - CallSid: {CallSid}, "
            f"Error: {type(e).__name__}: {str(e)}",
            exc_info=True,
        )
        return twiml_response(gather_twiml(ERROR_MESSAGE, gather_url))

    if response is None:
        return twiml_response(gather_twiml(NO_SPEECH_MESSAGE, gather_url))
    if response.should_end:
        return twiml_response(hangup_twiml(response.text))
    if response.should_transfer:
        if settings.transfer_number:
            return twiml_response(transfer_twiml(response.text, settings.transfer_number))
        logger.warning(f"[GATHER] TRANSFER_NUMBER not configured, ending call - CallSid: {CallSid}")
        return twiml_response(hangup_twiml(f"{response.text} {TRANSFER_UNAVAILABLE_MESSAGE}"))
    return twiml_response(gather_twiml(response.text, gather_url))


@router.post("/voice/status")
async def handle_call_status(
    request: Request,
    CallSid: str = Form(...),
    CallStatus: str = Form(...),
    CallDuration: Optional[int] = Form(None),
    coordinator: TurnCoordinator = Depends(get_coordinator),
):
    """
    Handle call status updates from Twilio.

    Terminal statuses finalize the call. Always answers OK so Twilio does not retry.
    """
    logger.info(
        f"[CALL STATUS] Received status update - CallSid: {CallSid}, "
        f"CallStatus: {CallStatus}, CallDuration: {CallDuration}"
    )

    try:
        if CallStatus in TERMINAL_STATUSES:
            await coordinator.on_call_stop(
                CallSid, status=CallStatus, duration_seconds=CallDuration, reason="status_callback"
            )
    except Exception as e:
        logger.error(
            f"[CALL STATUS] Error handling call status update - CallSid: {CallSid}, "
            f"CallStatus: {CallStatus}, Error: {type(e).__name__}: {str(e)}",
            exc_info=True,
        )

    return Response(content="OK", media_type="text/plain")
