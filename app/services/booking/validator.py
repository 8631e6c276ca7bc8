"""Reservation request validation."""
import re
from datetime import date, datetime, time
from typing import Callable, Optional, Tuple
from zoneinfo import ZoneInfo

from app.core.config import settings
from app.core.errors import ValidationFailedError
from app.services.booking.formatting import format_time_for_display

DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
TIME_PATTERN = re.compile(r"^\d{2}:\d{2}$")

Clock = Callable[[], datetime]


def business_now() -> datetime:
    """Current wall-clock time at the restaurant (naive)."""
    return datetime.now(ZoneInfo(settings.business_timezone)).replace(tzinfo=None)


def parse_date(value: str) -> date:
    """Parse a YYYY-MM-DD date."""
    if not isinstance(value, str) or not DATE_PATTERN.match(value.strip()):
        raise ValidationFailedError("Invalid date format")
    try:
        return date.fromisoformat(value.strip())
    except ValueError:
        raise ValidationFailedError("Invalid date format")


def parse_time(value: str) -> time:
    """Parse an HH:MM 24-hour time."""
    if not isinstance(value, str) or not TIME_PATTERN.match(value.strip()):
        raise ValidationFailedError("Invalid time format")
    hours, minutes = (int(part) for part in value.strip().split(":"))
    if hours > 23 or minutes > 59:
        raise ValidationFailedError("Invalid time format")
    return time(hours, minutes)


class ReservationValidator:
    """Validates requested dates, times and party sizes against business rules."""

    def __init__(
        self,
        opening_time: time,
        closing_time: time,
        max_party_size: int,
        clock: Optional[Clock] = None,
    ):
        self.opening_time = opening_time
        self.closing_time = closing_time
        self.max_party_size = max_party_size
        self.clock = clock or business_now

    @classmethod
    def from_settings(cls, clock: Optional[Clock] = None) -> "ReservationValidator":
        return cls(
            opening_time=parse_time(settings.business_opening_hour.zfill(5)),
            closing_time=parse_time(settings.business_closing_hour.zfill(5)),
            max_party_size=settings.max_party_size,
            clock=clock,
        )

    def today(self) -> date:
        return self.clock().date()

    def is_within_business_hours(self, value: time) -> bool:
        return self.opening_time <= value <= self.closing_time

    def hours_description(self) -> str:
        return f"{format_time_for_display(self.opening_time)} to {format_time_for_display(self.closing_time)}"

    def validate_party_size(self, party_size: int) -> int:
        if isinstance(party_size, bool) or not isinstance(party_size, int):
            raise ValidationFailedError("Party size must be a whole number")
        if party_size < 1:
            raise ValidationFailedError("Party size must be at least 1")
        if party_size > self.max_party_size:
            raise ValidationFailedError(
                f"Party size cannot exceed {self.max_party_size}. "
                "For larger groups, please speak with a manager."
            )
        return party_size

    def validate_slot(self, date_value: str, time_value: str) -> Tuple[date, time]:
        """
        Validate a requested date and time.

        Returns:
            Parsed (date, time)

        Raises:
            ValidationFailedError: with a caller-facing reason
        """
        requested_date = parse_date(date_value)
        requested_time = parse_time(time_value)

        now = self.clock()
        if requested_date < now.date():
            raise ValidationFailedError("Cannot make reservations for past dates")
        if requested_date == now.date() and requested_time <= now.time():
            raise ValidationFailedError("That time has already passed today")
        if not self.is_within_business_hours(requested_time):
            raise ValidationFailedError(f"We're only open from {self.hours_description()}")
        return requested_date, requested_time

    def validate(self, date_value: str, time_value: str, party_size: int) -> Tuple[date, time, int]:
        requested_date, requested_time = self.validate_slot(date_value, time_value)
        return requested_date, requested_time, self.validate_party_size(party_size)
