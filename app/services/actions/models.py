"""Action argument and result models."""
from typing import Any, Dict, Optional, Type
from pydantic import BaseModel, ConfigDict, Field


class ActionArguments(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)


class CheckAvailabilityArgs(ActionArguments):
    date: str
    time: str
    party_size: int


class CreateReservationArgs(ActionArguments):
    date: str
    time: str
    party_size: int
    special_requests: Optional[str] = None


class ModifyReservationArgs(ActionArguments):
    reservation_id: int
    new_date: Optional[str] = None
    new_time: Optional[str] = None
    new_party_size: Optional[int] = None
    special_requests: Optional[str] = None


class CancelReservationArgs(ActionArguments):
    reservation_id: int
    reason: Optional[str] = None


class GetCustomerReservationsArgs(ActionArguments):
    pass


class UpdateCustomerNameArgs(ActionArguments):
    name: str = Field(min_length=1)


class AnswerFaqArgs(ActionArguments):
    question: str = Field(min_length=1)


class TransferToHumanArgs(ActionArguments):
    reason: str
    notes: Optional[str] = None


class EndCallArgs(ActionArguments):
    reason: str = "caller said goodbye"


ACTION_ARGUMENTS: Dict[str, Type[ActionArguments]] = {
    "check_availability": CheckAvailabilityArgs,
    "create_reservation": CreateReservationArgs,
    "modify_reservation": ModifyReservationArgs,
    "cancel_reservation": CancelReservationArgs,
    "get_customer_reservations": GetCustomerReservationsArgs,
    "update_customer_name": UpdateCustomerNameArgs,
    "answer_faq": AnswerFaqArgs,
    "transfer_to_human": TransferToHumanArgs,
    "end_call": EndCallArgs,
}


class ActionResult(BaseModel):
    """Normalized outcome of one action, plus call-control signals."""

    success: bool
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    should_end: bool = False
    should_transfer: bool = False
    transfer_reason: Optional[str] = None

    def to_model_payload(self) -> Dict[str, Any]:
        """What the model sees as the tool result."""
        payload: Dict[str, Any] = {"success": self.success}
        if self.data is not None:
            payload.update(self.data)
        if self.error is not None:
            payload["error"] = self.error
        return payload
