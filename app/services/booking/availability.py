"""Slot availability and alternative suggestions."""
import logging
from datetime import date, datetime, time
from typing import List, Optional
from pydantic import BaseModel

from app.services.booking.validator import ReservationValidator
from app.services.persistence.reservations import ReservationPersistenceService

logger = logging.getLogger(__name__)

ALTERNATIVE_OFFSETS_HOURS = (1, -1, 2, -2, 3, -3)
MAX_ALTERNATIVES = 3
FULLY_BOOKED_REASON = "This time slot is fully booked"
BLOCKED_REASON = "This date/time is not available"


class AlternativeSlot(BaseModel):
    """An open slot offered instead of the requested one."""

    date: str
    time: str
    available: bool = True


class AvailabilityResult(BaseModel):
    """Outcome of an availability check."""

    available: bool
    reason: Optional[str] = None
    current_bookings: Optional[int] = None
    max_capacity: Optional[int] = None
    alternative_slots: List[AlternativeSlot] = []


class AvailabilityService:
    """
    Checks whether a slot can take another reservation.

    A slot is full when the number of active reservations within 30 minutes
    of the requested time reaches the per-slot cap. Party size does not
    count against the cap.
    """

    def __init__(
        self,
        reservations: ReservationPersistenceService,
        validator: ReservationValidator,
        max_per_slot: int,
    ):
        self.reservations = reservations
        self.validator = validator
        self.max_per_slot = max_per_slot

    async def check_availability(
        self,
        requested_date: date,
        requested_time: time,
        party_size: int,
        exclude_reservation_id: Optional[int] = None,
    ) -> AvailabilityResult:
        """``exclude_reservation_id`` keeps a reservation being moved from counting against itself."""
        block = await self.reservations.find_block(requested_date, requested_time)
        if block is not None:
            return AvailabilityResult(available=False, reason=block.reason or BLOCKED_REASON)

        current = await self.reservations.count_bookings_near(
            requested_date, requested_time, exclude_reservation_id=exclude_reservation_id
        )
        if current >= self.max_per_slot:
            logger.info(
                f"[AVAILABILITY] {requested_date} {requested_time:%H:%M} full "
                f"({current}/{self.max_per_slot}), looking for alternatives"
            )
            return AvailabilityResult(
                available=False,
                reason=FULLY_BOOKED_REASON,
                current_bookings=current,
                max_capacity=self.max_per_slot,
                alternative_slots=await self.suggest_alternatives(
                    requested_date, requested_time, exclude_reservation_id=exclude_reservation_id
                ),
            )

        return AvailabilityResult(
            available=True,
            current_bookings=current,
            max_capacity=self.max_per_slot,
        )

    async def _is_slot_open(
        self, slot_date: date, slot_time: time, exclude_reservation_id: Optional[int] = None
    ) -> bool:
        if await self.reservations.find_block(slot_date, slot_time) is not None:
            return False
        booked = await self.reservations.count_bookings_near(
            slot_date, slot_time, exclude_reservation_id=exclude_reservation_id
        )
        return booked < self.max_per_slot

    async def suggest_alternatives(
        self,
        requested_date: date,
        requested_time: time,
        limit: int = MAX_ALTERNATIVES,
        exclude_reservation_id: Optional[int] = None,
    ) -> List[AlternativeSlot]:
        """
        Probe +1h, -1h, +2h, -2h, +3h, -3h around the requested time.

        Minutes are kept; candidates outside the day, outside business hours
        or already in the past are skipped.
        """
        now = self.validator.clock()
        suggestions: List[AlternativeSlot] = []
        for offset in ALTERNATIVE_OFFSETS_HOURS:
            hour = requested_time.hour + offset
            if hour < 0 or hour > 23:
                continue
            candidate = time(hour, requested_time.minute)
            if not self.validator.is_within_business_hours(candidate):
                continue
            if datetime.combine(requested_date, candidate) <= now:
                continue
            if await self._is_slot_open(requested_date, candidate, exclude_reservation_id):
                suggestions.append(
                    AlternativeSlot(date=requested_date.isoformat(), time=candidate.strftime("%H:%M"))
                )
                if len(suggestions) >= limit:
                    break
        return suggestions
