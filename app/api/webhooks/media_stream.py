"""Twilio media stream websocket endpoint."""
import logging
from fastapi import APIRouter, WebSocket

from app.services.telephony.media_stream import MediaStreamSession

router = APIRouter()
logger = logging.getLogger(__name__)


@router.websocket("/voice/media-stream")
async def handle_media_stream(websocket: WebSocket):
    """Bidirectional audio for one call."""
    await websocket.accept()
    services = websocket.app.state.services
    session = MediaStreamSession(websocket, services.coordinator, services.call_control)
    await session.run()
