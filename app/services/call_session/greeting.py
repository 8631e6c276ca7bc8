"""Opening line for a new call."""
from datetime import date, time
from typing import List, Optional

from app.services.booking.formatting import format_date_for_speech, format_time_for_display
from app.services.call_session.models import CallerSnapshot, UpcomingReservation


def build_greeting(
    business_name: str,
    caller: Optional[CallerSnapshot],
    upcoming_reservations: List[UpcomingReservation],
) -> str:
    """Personalize by name and next reservation when the caller is known."""
    name = caller.full_name if caller else None
    if name and upcoming_reservations:
        next_reservation = upcoming_reservations[0]
        when = format_date_for_speech(date.fromisoformat(next_reservation.date))
        at = format_time_for_display(time.fromisoformat(next_reservation.time))
        return (
            f"Hello {name}! Thank you for calling {business_name}. "
            f"I see you have a reservation coming up {when} at {at}. "
            "How can I help you today?"
        )
    if name:
        return f"Hello {name}! Welcome back to {business_name}. How can I help you today?"
    return (
        f"Thank you for calling {business_name}! I can help you make a reservation "
        "or answer questions about the restaurant. How can I help you today?"
    )
