"""Turn coordinator: drives one conversation turn at a time per call."""
import logging
from typing import Callable, Dict, Optional, Set, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.errors import SessionAlreadyExistsError, SessionMissingError, UpstreamUnavailableError
from app.services.actions.dispatcher import ActionDispatcher, serialize_reservation
from app.services.actions.models import ActionResult
from app.services.agent.agent import AgentService
from app.services.agent.prompt import PromptContext
from app.services.booking.formatting import format_time_for_display, normalize_phone
from app.services.booking.validator import ReservationValidator
from app.services.call_session.events import (
    AudioFrame,
    CallStarted,
    CallStopped,
    FinalTranscript,
    InterimTranscript,
    TransportEvent,
    TurnResponse,
)
from app.services.call_session.finalizer import CallFinalizer
from app.services.call_session.greeting import build_greeting
from app.services.call_session.models import (
    ActionRecord,
    CallerSnapshot,
    CallSession,
    MessageRole,
    TurnState,
    UpcomingReservation,
)
from app.services.call_session.store import SessionStore
from app.services.persistence.calls import CallPersistenceService
from app.services.persistence.customers import CustomerPersistenceService
from app.services.persistence.reservations import ReservationPersistenceService
from app.services.speech.stt import DeepgramTranscriber
from app.services.speech.tts import TextToSpeechService

logger = logging.getLogger(__name__)

FALLBACK_UTTERANCE = "I'm having trouble processing that. Could you try again?"
ACTION_DONE_UTTERANCE = "All right, that's taken care of. Is there anything else I can help you with?"
TRANSFER_UTTERANCE = "Let me transfer you to a member of our staff. One moment please."
GOODBYE_UTTERANCE = "Thank you for calling. Goodbye!"


class TurnCoordinator:
    """
    Per-call state machine: greeting -> listening -> processing -> listening ... -> ending.

    At most one turn per call is in flight in this process. A final transcript
    that arrives while a turn is running, or while the call is not listening,
    is dropped rather than queued.
    """

    def __init__(
        self,
        store: SessionStore,
        agent_service: AgentService,
        dispatcher: ActionDispatcher,
        finalizer: CallFinalizer,
        session_factory: Callable[[], AsyncSession],
        tts_service: Optional[TextToSpeechService] = None,
        validator: Optional[ReservationValidator] = None,
        business_name: Optional[str] = None,
    ):
        self.store = store
        self.agent_service = agent_service
        self.dispatcher = dispatcher
        self.finalizer = finalizer
        self.session_factory = session_factory
        self.tts_service = tts_service
        self.validator = validator or dispatcher.validator
        self.business_name = business_name or settings.business_name
        self._active_turns: Set[str] = set()
        self._transcribers: Dict[str, DeepgramTranscriber] = {}

    async def handle_event(self, event: TransportEvent) -> Optional[TurnResponse]:
        """Single entry point for transport events."""
        if isinstance(event, CallStarted):
            return await self.on_call_start(event.call_id, event.caller_number, event.to_number)
        if isinstance(event, AudioFrame):
            await self.on_audio_frame(event.call_id, event.payload)
            return None
        if isinstance(event, InterimTranscript):
            await self.on_interim_transcript(event.call_id, event.text)
            return None
        if isinstance(event, FinalTranscript):
            return await self.on_final_transcript(event.call_id, event.text, event.confidence)
        if isinstance(event, CallStopped):
            await self.on_call_stop(event.call_id, event.status, event.duration_seconds, event.reason)
            return None
        raise TypeError(f"Unsupported transport event: {type(event).__name__}")

    def attach_transcriber(self, call_id: str, transcriber: DeepgramTranscriber) -> None:
        self._transcribers[call_id] = transcriber

    def detach_transcriber(self, call_id: str) -> Optional[DeepgramTranscriber]:
        return self._transcribers.pop(call_id, None)

    # ------------------------------------------------------------------ call start

    async def on_call_start(
        self,
        call_id: str,
        caller_number: Optional[str] = None,
        to_number: Optional[str] = None,
    ) -> TurnResponse:
        """
        Resolve the caller, open the session and produce the greeting.

        Raises:
            SessionAlreadyExistsError: if the transport starts the same call twice
        """
        logger.info(f"[CALL START] Starting call - CallSid: {call_id}")
        if await self.store.get(call_id) is not None:
            raise SessionAlreadyExistsError(call_id)

        caller: Optional[CallerSnapshot] = None
        upcoming = []
        phone = normalize_phone(caller_number)
        async with self.session_factory() as db:
            if phone:
                customer = await CustomerPersistenceService(db).find_or_create(phone)
                caller = CallerSnapshot(
                    customer_id=customer.id,
                    phone=customer.phone,
                    full_name=customer.full_name,
                    total_reservations=customer.total_reservations or 0,
                )
                reservations = await ReservationPersistenceService(db).get_upcoming_for_customer(
                    customer.id, self.validator.today()
                )
                upcoming = [UpcomingReservation(**serialize_reservation(r)) for r in reservations]
            else:
                logger.info(f"[CALL START] Caller number unavailable, continuing anonymously - CallSid: {call_id}")

            await CallPersistenceService(db).create_call(
                call_id,
                from_number=caller_number,
                to_number=to_number,
                customer_id=caller.customer_id if caller else None,
            )

        await self.store.create(
            CallSession(
                call_id=call_id,
                caller=caller,
                caller_number=caller_number,
                upcoming_reservations=upcoming,
                turn_state=TurnState.GREETING,
            )
        )

        greeting = build_greeting(self.business_name, caller, upcoming)
        audio = None
        if self.tts_service is not None:
            try:
                audio = await self.tts_service.synthesize_speech(greeting)
            except UpstreamUnavailableError as e:
                logger.warning(f"[CALL START] Greeting audio failed, continuing text-only: {e} - CallSid: {call_id}")

        def finish_greeting(session: CallSession) -> None:
            session.greeting = greeting
            session.turn_state = TurnState.LISTENING

        await self.store.update(call_id, finish_greeting)
        logger.info(
            f"[CALL START] Greeting ready (known caller: {bool(caller and caller.full_name)}, "
            f"upcoming reservations: {len(upcoming)}) - CallSid: {call_id}"
        )
        return TurnResponse(call_id=call_id, text=greeting, audio=audio)

    # ------------------------------------------------------------------ transcripts

    async def on_audio_frame(self, call_id: str, payload: bytes) -> None:
        transcriber = self._transcribers.get(call_id)
        if transcriber is not None:
            await transcriber.send_audio(payload)

    async def on_interim_transcript(self, call_id: str, text: str) -> None:
        logger.debug(f"[TURN] Interim transcript: '{text}' - CallSid: {call_id}")

    async def on_final_transcript(
        self, call_id: str, text: str, confidence: float = 1.0
    ) -> Optional[TurnResponse]:
        """
        Run one turn for a finished utterance.

        Returns:
            The reply to play, or None if the transcript was dropped

        Raises:
            SessionMissingError: if the call has no live session
        """
        text = (text or "").strip()
        if not text:
            return None
        if call_id in self._active_turns:
            logger.info(f"[TURN] Turn already in flight, dropping transcript '{text}' - CallSid: {call_id}")
            return None

        self._active_turns.add(call_id)
        try:
            return await self._run_turn(call_id, text, confidence)
        finally:
            self._active_turns.discard(call_id)

    async def _run_turn(self, call_id: str, text: str, confidence: float) -> Optional[TurnResponse]:
        session = await self.store.get(call_id)
        if session is None:
            raise SessionMissingError(call_id)
        if session.turn_state != TurnState.LISTENING:
            logger.info(
                f"[TURN] Not listening (state: {session.turn_state.value}), dropping transcript - CallSid: {call_id}"
            )
            return None

        logger.info("=" * 80)
        logger.info(f"[TURN] User said: '{text}' (confidence: {confidence:.2f}) - CallSid: {call_id}")

        def begin_turn(current: CallSession) -> None:
            current.turn_state = TurnState.PROCESSING
            current.add_turn(MessageRole.USER, text)

        session = await self.store.update(call_id, begin_turn)

        try:
            async with self.session_factory() as db:
                reply_text, action_record, result = await self._reason(session, db)

            audio = await self._synthesize(call_id, reply_text)

            should_end = bool(result and result.should_end)
            should_transfer = bool(result and result.should_transfer)
            if not should_end:
                next_state = TurnState.ENDING if should_transfer else TurnState.LISTENING

                def finish_turn(current: CallSession) -> None:
                    current.add_turn(MessageRole.ASSISTANT, reply_text, action=action_record)
                    current.turn_state = next_state

                await self.store.update(call_id, finish_turn)
        except Exception:
            await self._recover(call_id)
            raise

        logger.info(
            f"[TURN] Reply: '{reply_text}' (end: {should_end}, transfer: {should_transfer}) - CallSid: {call_id}"
        )
        logger.info("=" * 80)
        return TurnResponse(
            call_id=call_id,
            text=reply_text,
            audio=audio,
            should_end=should_end,
            should_transfer=should_transfer,
            transfer_reason=result.transfer_reason if result else None,
        )

    async def _reason(
        self, session: CallSession, db: AsyncSession
    ) -> Tuple[str, Optional[ActionRecord], Optional[ActionResult]]:
        """One reasoning round, plus at most one action and one follow-up round."""
        context = self._prompt_context(session)
        try:
            reply = await self.agent_service.chat(session, context)
        except UpstreamUnavailableError as e:
            logger.warning(f"[TURN] Reasoning failed: {e} - CallSid: {session.call_id}")
            await CallPersistenceService(db).log_error(session.call_id, str(e))
            return FALLBACK_UTTERANCE, None, None

        if reply.action is None:
            return reply.content or FALLBACK_UTTERANCE, None, None

        action = reply.action
        if action.name == "end_call":
            def mark_ending(current: CallSession) -> None:
                current.turn_state = TurnState.ENDING
                current.pending_flags.end_requested = True

            await self.store.update(session.call_id, mark_ending)

        result = await self.dispatcher.dispatch(session, action.name, action.arguments, db)
        payload = result.to_model_payload()
        logger.info(f"[TURN] Action {action.name} -> {payload} - CallSid: {session.call_id}")

        try:
            reply_text = await self.agent_service.continue_after_action(session, context, action, payload)
        except UpstreamUnavailableError as e:
            logger.warning(f"[TURN] Follow-up reasoning failed: {e} - CallSid: {session.call_id}")
            if not result.should_end:
                await CallPersistenceService(db).log_error(session.call_id, str(e))
            reply_text = ""

        record = ActionRecord(
            call_ref=action.call_ref,
            name=action.name,
            arguments=action.arguments,
            result=payload,
        )
        return reply_text or self._fallback_after_action(result), record, result

    @staticmethod
    def _fallback_after_action(result: ActionResult) -> str:
        if result.should_end:
            return GOODBYE_UTTERANCE
        if result.should_transfer:
            return TRANSFER_UTTERANCE
        if result.success:
            return ACTION_DONE_UTTERANCE
        return FALLBACK_UTTERANCE

    async def _synthesize(self, call_id: str, text: str) -> Optional[bytes]:
        """Reply audio; falls back to the fallback utterance, then to text-only."""
        if self.tts_service is None:
            return None
        try:
            return await self.tts_service.synthesize_speech(text)
        except UpstreamUnavailableError as e:
            logger.warning(f"[TURN] Reply audio failed: {e} - CallSid: {call_id}")
        try:
            return await self.tts_service.synthesize_speech(FALLBACK_UTTERANCE)
        except UpstreamUnavailableError as e:
            logger.error(f"[TURN] Fallback audio failed, replying text-only: {e} - CallSid: {call_id}")
            return None

    async def _recover(self, call_id: str) -> None:
        """Put a failed turn back to listening with a fallback reply in the history."""

        def back_to_listening(current: CallSession) -> None:
            if current.message_history and current.message_history[-1].role == MessageRole.USER:
                current.add_turn(MessageRole.ASSISTANT, FALLBACK_UTTERANCE)
            if current.turn_state == TurnState.PROCESSING:
                current.turn_state = TurnState.LISTENING

        try:
            await self.store.update(call_id, back_to_listening)
        except SessionMissingError:
            pass
        except Exception as e:
            logger.error(f"[TURN] Could not restore listening state: {e} - CallSid: {call_id}", exc_info=True)

    def _prompt_context(self, session: CallSession) -> PromptContext:
        today = self.validator.today()
        caller = session.caller
        return PromptContext(
            business_name=self.business_name,
            customer_phone=caller.phone if caller else (session.caller_number or "Unknown"),
            customer_name=caller.full_name if caller else None,
            reservation_count=caller.total_reservations if caller else 0,
            current_date=f"{today.isoformat()} ({today.strftime('%A')})",
            opening_hour=format_time_for_display(self.validator.opening_time),
            closing_hour=format_time_for_display(self.validator.closing_time),
        )

    # ------------------------------------------------------------------ call stop

    async def on_call_stop(
        self,
        call_id: str,
        status: str = "completed",
        duration_seconds: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> None:
        """Transport says the call is over; finalize whatever state it is in."""
        logger.info(f"[CALL STOP] Call stopped (status: {status}, duration: {duration_seconds}) - CallSid: {call_id}")

        def mark_ending(current: CallSession) -> None:
            current.turn_state = TurnState.ENDING

        try:
            await self.store.update(call_id, mark_ending)
        except SessionMissingError:
            logger.info(f"[CALL STOP] Session already released - CallSid: {call_id}")

        self._transcribers.pop(call_id, None)
        await self.finalizer.finalize(call_id, status=status, duration_seconds=duration_seconds, reason=reason)
