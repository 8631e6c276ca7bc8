"""Action dispatcher: runs the side effects the model asks for."""
import logging
from typing import Any, Dict, Optional
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.errors import ValidationFailedError
from app.db.models import Reservation
from app.services.actions.models import (
    ACTION_ARGUMENTS,
    ActionResult,
    AnswerFaqArgs,
    CancelReservationArgs,
    CheckAvailabilityArgs,
    CreateReservationArgs,
    EndCallArgs,
    GetCustomerReservationsArgs,
    ModifyReservationArgs,
    TransferToHumanArgs,
    UpdateCustomerNameArgs,
)
from app.services.booking.availability import AvailabilityService
from app.services.booking.validator import ReservationValidator
from app.services.call_session.finalizer import CallFinalizer
from app.services.call_session.models import CallSession
from app.services.call_session.store import SessionStore
from app.services.persistence.calls import CallPersistenceService
from app.services.persistence.customers import CustomerPersistenceService
from app.services.persistence.faq import FaqPersistenceService
from app.services.persistence.reservations import ReservationPersistenceService

logger = logging.getLogger(__name__)

NO_FAQ_MATCH_MESSAGE = "No specific information found. Please transfer to staff if needed."


def serialize_reservation(reservation: Reservation) -> Dict[str, Any]:
    return {
        "id": reservation.id,
        "date": reservation.reservation_date.isoformat(),
        "time": reservation.reservation_time.strftime("%H:%M"),
        "party_size": reservation.party_size,
        "status": reservation.status,
        "confirmation_code": reservation.confirmation_code,
        "special_requests": reservation.special_requests,
    }


def _format_validation_error(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        field = ".".join(str(loc) for loc in item.get("loc", ())) or "arguments"
        parts.append(f"{field}: {item.get('msg')}")
    return "Invalid arguments - " + "; ".join(parts)


class ActionDispatcher:
    """
    Maps an action name and argument bag to its handler.

    Every failure becomes ``ActionResult(success=False, error=...)``; nothing
    raised by a handler escapes ``dispatch``.
    """

    def __init__(
        self,
        store: SessionStore,
        finalizer: CallFinalizer,
        validator: Optional[ReservationValidator] = None,
        max_per_slot: Optional[int] = None,
    ):
        self.store = store
        self.finalizer = finalizer
        self.validator = validator or ReservationValidator.from_settings()
        self.max_per_slot = max_per_slot or settings.max_reservations_per_slot
        self._handlers = {
            "check_availability": self._check_availability,
            "create_reservation": self._create_reservation,
            "modify_reservation": self._modify_reservation,
            "cancel_reservation": self._cancel_reservation,
            "get_customer_reservations": self._get_customer_reservations,
            "update_customer_name": self._update_customer_name,
            "answer_faq": self._answer_faq,
            "transfer_to_human": self._transfer_to_human,
            "end_call": self._end_call,
        }

    async def dispatch(
        self,
        session: CallSession,
        name: str,
        arguments: Dict[str, Any],
        db: AsyncSession,
    ) -> ActionResult:
        handler = self._handlers.get(name)
        if handler is None:
            logger.warning(f"[ACTIONS] Unknown action '{name}' - CallSid: {session.call_id}")
            return ActionResult(success=False, error=f"Unknown action: {name}")

        try:
            args = ACTION_ARGUMENTS[name].model_validate(arguments or {})
        except ValidationError as e:
            logger.info(f"[ACTIONS] Rejected arguments for {name} - CallSid: {session.call_id}")
            return ActionResult(success=False, error=_format_validation_error(e))

        logger.info(f"[ACTIONS] Dispatching {name} - CallSid: {session.call_id}")
        try:
            return await handler(session, args, db)
        except ValidationFailedError as e:
            return ActionResult(success=False, error=str(e))
        except Exception as e:
            logger.error(
                f"[ACTIONS] {name} failed - CallSid: {session.call_id}, "
                f"Error: {type(e).__name__}: {str(e)}",
                exc_info=True,
            )
            return ActionResult(success=False, error=f"Could not complete {name}")

    def _availability(self, db: AsyncSession) -> AvailabilityService:
        return AvailabilityService(ReservationPersistenceService(db), self.validator, self.max_per_slot)

    async def _check_availability(
        self, session: CallSession, args: CheckAvailabilityArgs, db: AsyncSession
    ) -> ActionResult:
        requested_date, requested_time, party_size = self.validator.validate(
            args.date, args.time, args.party_size
        )
        result = await self._availability(db).check_availability(requested_date, requested_time, party_size)
        return ActionResult(success=True, data=result.model_dump(exclude_none=True))

    async def _create_reservation(
        self, session: CallSession, args: CreateReservationArgs, db: AsyncSession
    ) -> ActionResult:
        if session.caller is None:
            return ActionResult(
                success=False,
                error="Cannot book without a caller phone number. Please transfer to staff.",
            )
        requested_date, requested_time, party_size = self.validator.validate(
            args.date, args.time, args.party_size
        )
        availability = await self._availability(db).check_availability(
            requested_date, requested_time, party_size
        )
        if not availability.available:
            return ActionResult(
                success=False,
                error=availability.reason,
                data={"alternative_slots": [slot.model_dump() for slot in availability.alternative_slots]},
            )

        reservations = ReservationPersistenceService(db)
        reservation = await reservations.create_reservation(
            customer_id=session.caller.customer_id,
            reservation_date=requested_date,
            reservation_time=requested_time,
            party_size=party_size,
            special_requests=args.special_requests,
        )
        await CustomerPersistenceService(db).increment_reservation_count(session.caller.customer_id)
        await CallPersistenceService(db).link_reservation(session.call_id, reservation.id)

        booked = serialize_reservation(reservation)

        def record_booking(current: CallSession) -> None:
            current.collected_data["last_reservation"] = booked
            if current.caller is not None:
                current.caller.total_reservations += 1

        await self.store.update(session.call_id, record_booking)
        return ActionResult(success=True, data={"reservation": booked})

    async def _owned_reservation(
        self, session: CallSession, reservation_id: int, db: AsyncSession
    ) -> Optional[Reservation]:
        reservation = await ReservationPersistenceService(db).get_by_id(reservation_id)
        if reservation is None or session.caller is None:
            return None
        if reservation.customer_id != session.caller.customer_id:
            logger.warning(
                f"[ACTIONS] Reservation {reservation_id} belongs to another customer - "
                f"CallSid: {session.call_id}"
            )
            return None
        return reservation

    async def _modify_reservation(
        self, session: CallSession, args: ModifyReservationArgs, db: AsyncSession
    ) -> ActionResult:
        reservation = await self._owned_reservation(session, args.reservation_id, db)
        if reservation is None or reservation.status == "cancelled":
            return ActionResult(success=False, error="Reservation not found")

        if args.new_party_size is not None:
            self.validator.validate_party_size(args.new_party_size)

        new_date = new_time = None
        if args.new_date is not None or args.new_time is not None:
            new_date, new_time = self.validator.validate_slot(
                args.new_date or reservation.reservation_date.isoformat(),
                args.new_time or reservation.reservation_time.strftime("%H:%M"),
            )
            availability = await self._availability(db).check_availability(
                new_date,
                new_time,
                args.new_party_size or reservation.party_size,
                exclude_reservation_id=reservation.id,
            )
            if not availability.available:
                return ActionResult(
                    success=False,
                    error=availability.reason,
                    data={"alternative_slots": [slot.model_dump() for slot in availability.alternative_slots]},
                )

        updated = await ReservationPersistenceService(db).update_reservation(
            reservation.id,
            reservation_date=new_date,
            reservation_time=new_time,
            party_size=args.new_party_size,
            special_requests=args.special_requests,
        )
        return ActionResult(success=True, data={"reservation": serialize_reservation(updated)})

    async def _cancel_reservation(
        self, session: CallSession, args: CancelReservationArgs, db: AsyncSession
    ) -> ActionResult:
        reservation = await self._owned_reservation(session, args.reservation_id, db)
        if reservation is None:
            return ActionResult(success=False, error="Reservation not found")
        if reservation.status == "cancelled":
            return ActionResult(success=False, error="Reservation is already cancelled")

        await ReservationPersistenceService(db).cancel_reservation(reservation.id, args.reason)
        return ActionResult(success=True, data={"cancelled": True, "reservation_id": reservation.id})

    async def _get_customer_reservations(
        self, session: CallSession, args: GetCustomerReservationsArgs, db: AsyncSession
    ) -> ActionResult:
        if session.caller is None:
            return ActionResult(success=True, data={"reservations": []})
        reservations = await ReservationPersistenceService(db).get_upcoming_for_customer(
            session.caller.customer_id, self.validator.today()
        )
        return ActionResult(
            success=True,
            data={"reservations": [serialize_reservation(r) for r in reservations]},
        )

    async def _update_customer_name(
        self, session: CallSession, args: UpdateCustomerNameArgs, db: AsyncSession
    ) -> ActionResult:
        if session.caller is None:
            return ActionResult(success=False, error="No caller record to update")

        await CustomerPersistenceService(db).update_name(session.caller.customer_id, args.name)

        def mirror_name(current: CallSession) -> None:
            current.collected_data["name"] = args.name
            if current.caller is not None:
                current.caller.full_name = args.name

        await self.store.update(session.call_id, mirror_name)
        return ActionResult(success=True, data={"name": args.name})

    async def _answer_faq(
        self, session: CallSession, args: AnswerFaqArgs, db: AsyncSession
    ) -> ActionResult:
        faq = await FaqPersistenceService(db).find_match(args.question)
        if faq is None:
            return ActionResult(success=True, data={"found": False, "message": NO_FAQ_MATCH_MESSAGE})
        return ActionResult(
            success=True,
            data={"found": True, "answer": faq.answer_short or faq.answer, "category": faq.category},
        )

    async def _transfer_to_human(
        self, session: CallSession, args: TransferToHumanArgs, db: AsyncSession
    ) -> ActionResult:
        reason = args.reason if not args.notes else f"{args.reason} ({args.notes})"
        await CallPersistenceService(db).mark_transferred(session.call_id, reason)

        def flag_transfer(current: CallSession) -> None:
            current.pending_flags.transfer_requested = True
            current.pending_flags.transfer_reason = reason

        await self.store.update(session.call_id, flag_transfer)
        return ActionResult(
            success=True,
            data={"transferring": True},
            should_transfer=True,
            transfer_reason=reason,
        )

    async def _end_call(
        self, session: CallSession, args: EndCallArgs, db: AsyncSession
    ) -> ActionResult:
        await self.finalizer.finalize(session.call_id, status="completed", reason=args.reason)
        return ActionResult(success=True, data={"ending": True}, should_end=True)
