"""Call session models."""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field


class TurnState(str, Enum):
    """Where the call is in the turn-taking cycle."""

    GREETING = "greeting"
    LISTENING = "listening"
    PROCESSING = "processing"
    ENDING = "ending"


class MessageRole(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    ACTION_RESULT = "action-result"


class ActionRecord(BaseModel):
    """An action invoked while producing an assistant turn."""

    call_ref: str
    name: str
    arguments: Dict[str, Any] = {}
    result: Dict[str, Any] = {}


class MessageTurn(BaseModel):
    """One entry of the conversation history."""

    role: MessageRole
    content: str
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    action: Optional[ActionRecord] = None


class CallerSnapshot(BaseModel):
    """Caller identity captured at session start."""

    customer_id: int
    phone: str
    full_name: Optional[str] = None
    total_reservations: int = 0


class UpcomingReservation(BaseModel):
    """Read-only view of a booking the caller already holds."""

    id: int
    date: str
    time: str
    party_size: int
    status: str
    confirmation_code: str
    special_requests: Optional[str] = None


class PendingFlags(BaseModel):
    transfer_requested: bool = False
    transfer_reason: Optional[str] = None
    end_requested: bool = False


class CallSession(BaseModel):
    """Durable state of one in-progress call."""

    call_id: str
    caller: Optional[CallerSnapshot] = None
    caller_number: Optional[str] = None
    upcoming_reservations: List[UpcomingReservation] = []
    turn_state: TurnState = TurnState.GREETING
    greeting: Optional[str] = None
    message_history: List[MessageTurn] = []
    collected_data: Dict[str, Any] = {}
    pending_flags: PendingFlags = Field(default_factory=PendingFlags)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    def add_turn(
        self,
        role: MessageRole,
        content: str,
        action: Optional[ActionRecord] = None,
    ) -> None:
        """Append to the history; entries are never removed or rewritten."""
        self.message_history.append(MessageTurn(role=role, content=content, action=action))

    def get_transcript_text(self) -> str:
        """Flatten greeting and history into '[role]: content' lines."""
        lines = []
        if self.greeting:
            lines.append(f"[{MessageRole.ASSISTANT.value}]: {self.greeting}")
        for turn in self.message_history:
            if turn.action is not None:
                lines.append(
                    f"[{MessageRole.ACTION_RESULT.value}]: {turn.action.name} -> {turn.action.result}"
                )
            lines.append(f"[{turn.role.value}]: {turn.content}")
        return "\n".join(lines)
