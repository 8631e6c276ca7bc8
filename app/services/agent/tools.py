"""Function-calling tool definitions offered to the model."""
from typing import Any, Dict, List


def _tool(name: str, description: str, properties: Dict[str, Any], required: List[str]) -> Dict[str, Any]:
    return {
        "type": "function",
        "function": {
            "name": name,
            "description": description,
            "parameters": {
                "type": "object",
                "properties": properties,
                "required": required,
            },
        },
    }


DATE_FIELD = {"type": "string", "description": "Date in YYYY-MM-DD format"}
TIME_FIELD = {"type": "string", "description": "Time in HH:MM 24-hour format"}
PARTY_SIZE_FIELD = {"type": "integer", "description": "Number of guests"}
RESERVATION_ID_FIELD = {"type": "integer", "description": "ID of the caller's reservation"}

TOOLS: List[Dict[str, Any]] = [
    _tool(
        "check_availability",
        "Check whether a date and time can take a reservation. Call this before creating one.",
        {"date": DATE_FIELD, "time": TIME_FIELD, "party_size": PARTY_SIZE_FIELD},
        ["date", "time", "party_size"],
    ),
    _tool(
        "create_reservation",
        "Book a table once availability is confirmed and the caller has agreed to the details.",
        {
            "date": DATE_FIELD,
            "time": TIME_FIELD,
            "party_size": PARTY_SIZE_FIELD,
            "special_requests": {"type": "string", "description": "Allergies, occasions, seating wishes"},
        },
        ["date", "time", "party_size"],
    ),
    _tool(
        "modify_reservation",
        "Change the date, time, party size or notes of an existing reservation.",
        {
            "reservation_id": RESERVATION_ID_FIELD,
            "new_date": DATE_FIELD,
            "new_time": TIME_FIELD,
            "new_party_size": PARTY_SIZE_FIELD,
            "special_requests": {"type": "string", "description": "Updated notes"},
        },
        ["reservation_id"],
    ),
    _tool(
        "cancel_reservation",
        "Cancel one of the caller's reservations after they confirm.",
        {
            "reservation_id": RESERVATION_ID_FIELD,
            "reason": {"type": "string", "description": "Why the caller is cancelling"},
        },
        ["reservation_id"],
    ),
    _tool(
        "get_customer_reservations",
        "List the caller's upcoming reservations.",
        {},
        [],
    ),
    _tool(
        "update_customer_name",
        "Save the caller's name once they tell you.",
        {"name": {"type": "string", "description": "Caller's full name"}},
        ["name"],
    ),
    _tool(
        "answer_faq",
        "Look up restaurant information such as hours, parking, menu or policies.",
        {"question": {"type": "string", "description": "The caller's question"}},
        ["question"],
    ),
    _tool(
        "transfer_to_human",
        "Hand the call to a staff member.",
        {
            "reason": {"type": "string", "description": "Why the call is being transferred"},
            "notes": {"type": "string", "description": "Context for the staff member"},
        },
        ["reason"],
    ),
    _tool(
        "end_call",
        "End the call after the caller says goodbye or has nothing else.",
        {"reason": {"type": "string", "description": "Why the call is ending"}},
        ["reason"],
    ),
]


def get_tool_names() -> List[str]:
    return [tool["function"]["name"] for tool in TOOLS]
