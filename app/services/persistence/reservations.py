"""Reservation persistence service."""
import logging
from datetime import date, datetime, time
from typing import List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, or_

from app.db.models import BlockedTime, Reservation
from app.services.booking.formatting import generate_confirmation_code

logger = logging.getLogger(__name__)

INACTIVE_STATUSES = ("cancelled", "no-show")
COLLISION_WINDOW_MINUTES = 30


def _minutes(value: time) -> int:
    return value.hour * 60 + value.minute


class ReservationPersistenceService:
    """Service for persisting reservations and reading booking constraints."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def count_bookings_near(
        self,
        reservation_date: date,
        reservation_time: time,
        window_minutes: int = COLLISION_WINDOW_MINUTES,
        exclude_reservation_id: Optional[int] = None,
    ) -> int:
        """Count active reservations within +/- window_minutes of the requested time."""
        query = select(Reservation.reservation_time).where(
            Reservation.reservation_date == reservation_date,
            Reservation.status.not_in(INACTIVE_STATUSES),
        )
        if exclude_reservation_id is not None:
            query = query.where(Reservation.id != exclude_reservation_id)
        result = await self.db.execute(query)
        requested = _minutes(reservation_time)
        return sum(
            1 for booked in result.scalars().all()
            if abs(_minutes(booked) - requested) <= window_minutes
        )

    async def find_block(
        self, reservation_date: date, reservation_time: time
    ) -> Optional[BlockedTime]:
        """
        Find a blocked period covering the requested date and time.

        Recurring blocks match on month and day of any year. A block without
        start_time covers the whole day.
        """
        result = await self.db.execute(
            select(BlockedTime).where(
                or_(
                    BlockedTime.blocked_date == reservation_date,
                    BlockedTime.is_recurring.is_(True),
                )
            )
        )
        for block in result.scalars().all():
            same_day = block.blocked_date == reservation_date or (
                block.is_recurring
                and block.blocked_date.month == reservation_date.month
                and block.blocked_date.day == reservation_date.day
            )
            if not same_day:
                continue
            if block.start_time is None:
                return block
            end_time = block.end_time or time(23, 59)
            if block.start_time <= reservation_time <= end_time:
                return block
        return None

    async def _unique_confirmation_code(self) -> str:
        for _ in range(10):
            code = generate_confirmation_code()
            existing = await self.db.execute(
                select(Reservation.id).where(Reservation.confirmation_code == code)
            )
            if existing.scalar_one_or_none() is None:
                return code
        raise RuntimeError("Could not generate a unique confirmation code")

    async def create_reservation(
        self,
        customer_id: int,
        reservation_date: date,
        reservation_time: time,
        party_size: int,
        special_requests: Optional[str] = None,
        source: str = "phone_ai",
    ) -> Reservation:
        """Create a confirmed reservation with a fresh confirmation code."""
        reservation = Reservation(
            customer_id=customer_id,
            reservation_date=reservation_date,
            reservation_time=reservation_time,
            party_size=party_size,
            special_requests=special_requests,
            source=source,
            status="confirmed",
            confirmation_code=await self._unique_confirmation_code(),
        )
        self.db.add(reservation)
        await self.db.commit()
        await self.db.refresh(reservation)
        logger.info(
            f"[RESERVATIONS] Created reservation {reservation.id} "
            f"({reservation.confirmation_code}) for customer {customer_id}"
        )
        return reservation

    async def get_by_id(self, reservation_id: int) -> Optional[Reservation]:
        """Get reservation by ID."""
        return await self.db.get(Reservation, reservation_id)

    async def get_upcoming_for_customer(
        self, customer_id: int, today: date, limit: int = 5
    ) -> List[Reservation]:
        """Get a customer's active reservations from today onward, soonest first."""
        result = await self.db.execute(
            select(Reservation)
            .where(
                Reservation.customer_id == customer_id,
                Reservation.reservation_date >= today,
                Reservation.status.in_(("pending", "confirmed")),
            )
            .order_by(Reservation.reservation_date, Reservation.reservation_time)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def update_reservation(
        self,
        reservation_id: int,
        reservation_date: Optional[date] = None,
        reservation_time: Optional[time] = None,
        party_size: Optional[int] = None,
        special_requests: Optional[str] = None,
    ) -> Optional[Reservation]:
        """Patch a reservation; only provided fields change."""
        reservation = await self.get_by_id(reservation_id)
        if not reservation:
            return None

        if reservation_date is not None:
            reservation.reservation_date = reservation_date
        if reservation_time is not None:
            reservation.reservation_time = reservation_time
        if party_size is not None:
            reservation.party_size = party_size
        if special_requests is not None:
            reservation.special_requests = special_requests
        await self.db.commit()
        await self.db.refresh(reservation)
        return reservation

    async def cancel_reservation(
        self, reservation_id: int, reason: Optional[str] = None
    ) -> Optional[Reservation]:
        """Mark a reservation cancelled."""
        reservation = await self.get_by_id(reservation_id)
        if not reservation:
            return None

        reservation.status = "cancelled"
        reservation.cancelled_at = datetime.utcnow()
        reservation.cancellation_reason = reason
        await self.db.commit()
        await self.db.refresh(reservation)
        logger.info(f"[RESERVATIONS] Cancelled reservation {reservation_id}")
        return reservation
