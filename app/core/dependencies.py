"""Shared service handles and FastAPI dependencies."""
import logging
from typing import Callable, Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.services.actions.dispatcher import ActionDispatcher
from app.services.agent.agent import AgentService
from app.services.booking.validator import ReservationValidator
from app.services.call_session.coordinator import TurnCoordinator
from app.services.call_session.finalizer import CallFinalizer
from app.services.call_session.store import RedisSessionStore, SessionStore, create_session_store
from app.services.speech.tts import TextToSpeechService
from app.services.telephony.call_control import TwilioCallControl

logger = logging.getLogger(__name__)


class ServiceContainer:
    """Long-lived clients and services, built once per application."""

    def __init__(
        self,
        store: SessionStore,
        coordinator: TurnCoordinator,
        call_control: TwilioCallControl,
        tts_service: Optional[TextToSpeechService] = None,
    ):
        self.store = store
        self.coordinator = coordinator
        self.call_control = call_control
        self.tts_service = tts_service

    async def close(self) -> None:
        if isinstance(self.store, RedisSessionStore):
            await self.store.close()
        if self.tts_service is not None:
            await self.tts_service.close()
        await self.call_control.close()


def build_services(session_factory: Callable[[], AsyncSession]) -> ServiceContainer:
    """Wire the call pipeline from settings."""
    store = create_session_store(settings.redis_url, settings.session_ttl_seconds)
    agent_service = AgentService()
    finalizer = CallFinalizer(store, agent_service, session_factory)
    validator = ReservationValidator.from_settings()
    dispatcher = ActionDispatcher(store, finalizer, validator, settings.max_reservations_per_slot)

    # Gather mode speaks through Twilio <Say>, so no audio is synthesized
    tts_service = TextToSpeechService() if settings.voice_mode == "stream" else None
    coordinator = TurnCoordinator(
        store,
        agent_service,
        dispatcher,
        finalizer,
        session_factory,
        tts_service=tts_service,
        validator=validator,
    )
    logger.info(f"[STARTUP] Call pipeline ready - voice mode: {settings.voice_mode}")
    return ServiceContainer(store, coordinator, TwilioCallControl(), tts_service)


def get_services(request: Request) -> ServiceContainer:
    """Get the application service container."""
    return request.app.state.services


def get_coordinator(request: Request) -> TurnCoordinator:
    """Get the turn coordinator."""
    return request.app.state.services.coordinator
