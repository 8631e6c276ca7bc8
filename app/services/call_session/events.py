"""Transport events consumed by the turn coordinator."""
from typing import Optional, Union
from pydantic import BaseModel


class CallStarted(BaseModel):
    call_id: str
    caller_number: Optional[str] = None
    to_number: Optional[str] = None


class AudioFrame(BaseModel):
    call_id: str
    payload: bytes


class InterimTranscript(BaseModel):
    call_id: str
    text: str


class FinalTranscript(BaseModel):
    call_id: str
    text: str
    confidence: float = 1.0


class CallStopped(BaseModel):
    call_id: str
    status: str = "completed"
    duration_seconds: Optional[int] = None
    reason: Optional[str] = None


TransportEvent = Union[CallStarted, AudioFrame, InterimTranscript, FinalTranscript, CallStopped]


class TurnResponse(BaseModel):
    """What the transport should play back, and whether to hang up or transfer."""

    call_id: str
    text: str
    audio: Optional[bytes] = None
    should_end: bool = False
    should_transfer: bool = False
    transfer_reason: Optional[str] = None
