"""Unit tests for the action dispatcher."""
import pytest
from datetime import date, time

from app.db.models import Customer, FaqResponse
from app.services.actions.dispatcher import NO_FAQ_MATCH_MESSAGE
from app.services.booking.availability import FULLY_BOOKED_REASON
from app.services.call_session.models import CallerSnapshot, CallSession, TurnState
from app.services.persistence.calls import CallPersistenceService
from app.services.persistence.customers import CustomerPersistenceService
from app.services.persistence.reservations import ReservationPersistenceService


@pytest.fixture
async def caller_session(test_db, session_store, known_customer):
    """Live session for the known caller, with an open call record."""
    session = CallSession(
        call_id="CA-dispatch",
        caller=CallerSnapshot(
            customer_id=known_customer.id,
            phone=known_customer.phone,
            full_name=known_customer.full_name,
            total_reservations=known_customer.total_reservations,
        ),
        caller_number=known_customer.phone,
        turn_state=TurnState.PROCESSING,
    )
    await session_store.create(session)
    await CallPersistenceService(test_db).create_call(session.call_id, customer_id=known_customer.id)
    return session


@pytest.fixture
async def anonymous_session(session_store):
    session = CallSession(call_id="CA-anon", turn_state=TurnState.PROCESSING)
    await session_store.create(session)
    return session


class TestDispatchErrors:
    """Failures come back as results, never as exceptions."""

    @pytest.mark.asyncio
    async def test_unknown_action(self, dispatcher, caller_session, test_db):
        result = await dispatcher.dispatch(caller_session, "order_pizza", {}, test_db)

        assert result.success is False
        assert result.error == "Unknown action: order_pizza"

    @pytest.mark.asyncio
    async def test_invalid_arguments(self, dispatcher, caller_session, test_db):
        result = await dispatcher.dispatch(
            caller_session, "create_reservation", {"date": "2025-05-21"}, test_db
        )

        assert result.success is False
        assert result.error.startswith("Invalid arguments")
        assert "time" in result.error
        assert "party_size" in result.error

    @pytest.mark.asyncio
    async def test_validation_failure(self, dispatcher, caller_session, test_db):
        result = await dispatcher.dispatch(
            caller_session,
            "create_reservation",
            {"date": "2025-05-21", "time": "19:00", "party_size": 30},
            test_db,
        )

        assert result.success is False
        assert "cannot exceed 20" in result.error

    @pytest.mark.asyncio
    async def test_past_date(self, dispatcher, caller_session, test_db):
        result = await dispatcher.dispatch(
            caller_session,
            "check_availability",
            {"date": "2025-05-01", "time": "19:00", "party_size": 2},
            test_db,
        )

        assert result.success is False
        assert result.error == "Cannot make reservations for past dates"


class TestReservationActions:
    """Test booking actions."""

    @pytest.mark.asyncio
    async def test_check_availability(self, dispatcher, caller_session, test_db):
        result = await dispatcher.dispatch(
            caller_session,
            "check_availability",
            {"date": "2025-05-21", "time": "19:00", "party_size": 4},
            test_db,
        )

        assert result.success is True
        assert result.data["available"] is True

    @pytest.mark.asyncio
    async def test_create_reservation(self, dispatcher, caller_session, session_store, test_db, known_customer):
        """Booking writes the reservation, links the call and updates the session."""
        result = await dispatcher.dispatch(
            caller_session,
            "create_reservation",
            {"date": "2025-05-21", "time": "19:00", "party_size": 4, "special_requests": "birthday"},
            test_db,
        )

        assert result.success is True
        booked = result.data["reservation"]
        assert booked["date"] == "2025-05-21"
        assert booked["time"] == "19:00"
        assert booked["party_size"] == 4
        assert len(booked["confirmation_code"]) == 6
        assert result.to_model_payload()["success"] is True

        call = await CallPersistenceService(test_db).get_call_by_sid(caller_session.call_id)
        assert call.reservation_id == booked["id"]

        customer = await CustomerPersistenceService(test_db).get_by_id(known_customer.id)
        await test_db.refresh(customer)
        assert customer.total_reservations == 4

        stored = await session_store.get(caller_session.call_id)
        assert stored.collected_data["last_reservation"]["confirmation_code"] == booked["confirmation_code"]
        assert stored.caller.total_reservations == 4

    @pytest.mark.asyncio
    async def test_create_reservation_when_full(self, dispatcher, caller_session, test_db, known_customer):
        reservations = ReservationPersistenceService(test_db)
        for _ in range(2):
            await reservations.create_reservation(known_customer.id, date(2025, 5, 21), time(19, 0), 2)

        result = await dispatcher.dispatch(
            caller_session,
            "create_reservation",
            {"date": "2025-05-21", "time": "19:00", "party_size": 4},
            test_db,
        )

        assert result.success is False
        assert result.error == FULLY_BOOKED_REASON
        assert [slot["time"] for slot in result.data["alternative_slots"]] == ["20:00", "18:00", "21:00"]

    @pytest.mark.asyncio
    async def test_create_reservation_needs_caller(self, dispatcher, anonymous_session, test_db):
        result = await dispatcher.dispatch(
            anonymous_session,
            "create_reservation",
            {"date": "2025-05-21", "time": "19:00", "party_size": 2},
            test_db,
        )

        assert result.success is False
        assert "phone number" in result.error

    @pytest.mark.asyncio
    async def test_get_customer_reservations(self, dispatcher, caller_session, anonymous_session, test_db):
        result = await dispatcher.dispatch(caller_session, "get_customer_reservations", {}, test_db)
        empty = await dispatcher.dispatch(anonymous_session, "get_customer_reservations", {}, test_db)

        assert [r["confirmation_code"] for r in result.data["reservations"]] == ["ABC234"]
        assert empty.data == {"reservations": []}

    @pytest.mark.asyncio
    async def test_modify_reservation(self, dispatcher, caller_session, test_db, known_customer):
        upcoming = await ReservationPersistenceService(test_db).get_upcoming_for_customer(
            known_customer.id, date(2025, 5, 20)
        )

        result = await dispatcher.dispatch(
            caller_session,
            "modify_reservation",
            {"reservation_id": upcoming[0].id, "new_time": "20:30", "new_party_size": 6},
            test_db,
        )

        assert result.success is True
        assert result.data["reservation"]["date"] == "2025-06-01"
        assert result.data["reservation"]["time"] == "20:30"
        assert result.data["reservation"]["party_size"] == 6

    @pytest.mark.asyncio
    async def test_modify_within_own_window(self, dispatcher, caller_session, test_db, known_customer):
        """Moving a booking by a few minutes does not collide with itself."""
        reservations = ReservationPersistenceService(test_db)
        upcoming = await reservations.get_upcoming_for_customer(known_customer.id, date(2025, 5, 20))
        await reservations.create_reservation(known_customer.id, date(2025, 6, 1), time(19, 0), 2)

        result = await dispatcher.dispatch(
            caller_session,
            "modify_reservation",
            {"reservation_id": upcoming[0].id, "new_time": "19:15"},
            test_db,
        )

        assert result.success is True

    @pytest.mark.asyncio
    async def test_cancel_reservation(self, dispatcher, caller_session, test_db, known_customer):
        reservations = ReservationPersistenceService(test_db)
        upcoming = await reservations.get_upcoming_for_customer(known_customer.id, date(2025, 5, 20))
        reservation_id = upcoming[0].id

        result = await dispatcher.dispatch(
            caller_session, "cancel_reservation", {"reservation_id": reservation_id, "reason": "sick"}, test_db
        )
        again = await dispatcher.dispatch(
            caller_session, "cancel_reservation", {"reservation_id": reservation_id}, test_db
        )

        assert result.data == {"cancelled": True, "reservation_id": reservation_id}
        assert (await reservations.get_by_id(reservation_id)).status == "cancelled"
        assert again.success is False

    @pytest.mark.asyncio
    async def test_cannot_touch_other_customers_reservation(self, dispatcher, caller_session, test_db):
        stranger = Customer(phone="+15559990000", full_name="Someone Else")
        test_db.add(stranger)
        await test_db.commit()
        await test_db.refresh(stranger)
        theirs = await ReservationPersistenceService(test_db).create_reservation(
            stranger.id, date(2025, 5, 22), time(18, 0), 2
        )

        cancel = await dispatcher.dispatch(
            caller_session, "cancel_reservation", {"reservation_id": theirs.id}, test_db
        )
        modify = await dispatcher.dispatch(
            caller_session, "modify_reservation", {"reservation_id": theirs.id, "new_party_size": 3}, test_db
        )

        assert cancel.error == "Reservation not found"
        assert modify.error == "Reservation not found"
        assert (await ReservationPersistenceService(test_db).get_by_id(theirs.id)).status == "confirmed"


class TestCallActions:
    """Test name, FAQ, transfer and end-of-call actions."""

    @pytest.mark.asyncio
    async def test_update_customer_name(self, dispatcher, caller_session, session_store, test_db, known_customer):
        result = await dispatcher.dispatch(
            caller_session, "update_customer_name", {"name": "  Maria L. Lopez "}, test_db
        )

        assert result.success is True
        stored = await session_store.get(caller_session.call_id)
        assert stored.caller.full_name == "Maria L. Lopez"
        assert stored.collected_data["name"] == "Maria L. Lopez"
        customer = await CustomerPersistenceService(test_db).get_by_id(known_customer.id)
        await test_db.refresh(customer)
        assert customer.full_name == "Maria L. Lopez"

    @pytest.mark.asyncio
    async def test_update_customer_name_rejects_blank(self, dispatcher, caller_session, test_db):
        result = await dispatcher.dispatch(caller_session, "update_customer_name", {"name": "   "}, test_db)

        assert result.success is False
        assert result.error.startswith("Invalid arguments")

    @pytest.mark.asyncio
    async def test_answer_faq(self, dispatcher, caller_session, test_db):
        test_db.add(FaqResponse(
            question_pattern="is there parking",
            answer="Free parking is available behind the restaurant.",
            answer_short="Free parking out back.",
            category="parking",
        ))
        await test_db.commit()

        found = await dispatcher.dispatch(caller_session, "answer_faq", {"question": "is there parking"}, test_db)
        missing = await dispatcher.dispatch(caller_session, "answer_faq", {"question": "do you sell gift cards"}, test_db)

        assert found.data == {"found": True, "answer": "Free parking out back.", "category": "parking"}
        assert missing.success is True
        assert missing.data == {"found": False, "message": NO_FAQ_MATCH_MESSAGE}

    @pytest.mark.asyncio
    async def test_transfer_to_human(self, dispatcher, caller_session, session_store, test_db):
        result = await dispatcher.dispatch(
            caller_session, "transfer_to_human", {"reason": "party of 30", "notes": "corporate event"}, test_db
        )

        assert result.should_transfer is True
        assert result.transfer_reason == "party of 30 (corporate event)"
        stored = await session_store.get(caller_session.call_id)
        assert stored.pending_flags.transfer_requested is True
        call = await CallPersistenceService(test_db).get_call_by_sid(caller_session.call_id)
        assert call.was_transferred is True

    @pytest.mark.asyncio
    async def test_end_call_finalizes(self, dispatcher, caller_session, session_store, test_db):
        result = await dispatcher.dispatch(caller_session, "end_call", {}, test_db)

        assert result.success is True
        assert result.should_end is True
        assert await session_store.get(caller_session.call_id) is None
        call = await CallPersistenceService(test_db).get_call_by_sid(caller_session.call_id)
        await test_db.refresh(call)
        assert call.ended_at is not None
        assert call.end_reason == "caller said goodbye"
