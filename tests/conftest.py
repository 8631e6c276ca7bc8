"""Shared test fixtures and configuration."""
import asyncio
import os
from datetime import date, datetime, time
from typing import List, Optional
from unittest.mock import AsyncMock, Mock

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Set test environment variables before importing app
os.environ.setdefault("OPENAI_API_KEY", "test-key")
os.environ.setdefault("TWILIO_ACCOUNT_SID", "ACtest")
os.environ.setdefault("TWILIO_AUTH_TOKEN", "test-token")
os.environ.setdefault("TWILIO_PHONE_NUMBER", "+15550000000")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("BUSINESS_NAME", "Test Bistro")
os.environ.setdefault("BUSINESS_OPENING_HOUR", "11:00")
os.environ.setdefault("BUSINESS_CLOSING_HOUR", "22:00")

from app.main import app
from app.core.dependencies import ServiceContainer
from app.core.errors import UpstreamUnavailableError
from app.db.database import get_db
from app.db.models import Base, Customer, Reservation
from app.services.actions.dispatcher import ActionDispatcher
from app.services.agent.agent import AgentReply
from app.services.booking.validator import ReservationValidator
from app.services.call_session.coordinator import TurnCoordinator
from app.services.call_session.finalizer import CallFinalizer
from app.services.call_session.store import InMemorySessionStore

# Test database URL (in-memory SQLite)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Tuesday, noon at the restaurant
FIXED_NOW = datetime(2025, 5, 20, 12, 0)


class FakeAgentService:
    """Scripted stand-in for the LLM agent."""

    def __init__(self):
        self.replies: List[object] = []
        self.followups: List[object] = []
        self.chat_calls = 0
        self.seen_history_lengths: List[int] = []
        self.followup_payloads: List[dict] = []
        self.gate: Optional[asyncio.Event] = None
        self.summary: object = "Caller asked about a table."
        self.intent: object = "new_reservation"
        self.sentiment: object = ("positive", 0.6)
        self.analysis_calls = 0

    async def chat(self, session, context):
        self.chat_calls += 1
        self.seen_history_lengths.append(len(session.message_history))
        if self.gate is not None:
            await self.gate.wait()
        reply = self.replies.pop(0) if self.replies else AgentReply(content="What else can I do for you?")
        if isinstance(reply, Exception):
            raise reply
        return reply

    async def continue_after_action(self, session, context, action, result):
        self.followup_payloads.append(result)
        reply = self.followups.pop(0) if self.followups else "Done."
        if isinstance(reply, Exception):
            raise reply
        return reply

    async def _answer(self, value):
        self.analysis_calls += 1
        if isinstance(value, Exception):
            raise value
        return value

    async def generate_call_summary(self, transcript):
        return await self._answer(self.summary)

    async def detect_intent(self, transcript):
        return await self._answer(self.intent)

    async def analyze_sentiment(self, transcript):
        return await self._answer(self.sentiment)


class FakeTTS:
    """Returns predictable audio bytes; can be told to fail."""

    def __init__(self):
        self.calls: List[str] = []
        self.failing_texts: set = set()
        self.fail_all = False

    async def synthesize_speech(self, text: str) -> bytes:
        self.calls.append(text)
        if self.fail_all or text in self.failing_texts:
            raise UpstreamUnavailableError("tts", "synthesis failed")
        return f"audio:{text}".encode()

    async def close(self):
        pass


@pytest.fixture
async def test_db_engine():
    """Create test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # Create all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    # Drop all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_factory(test_db_engine):
    """Session factory bound to the test engine."""
    return async_sessionmaker(
        test_db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest.fixture
async def test_db(session_factory):
    """Create test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def validator():
    return ReservationValidator(
        opening_time=time(11, 0),
        closing_time=time(22, 0),
        max_party_size=20,
        clock=lambda: FIXED_NOW,
    )


@pytest.fixture
def session_store():
    return InMemorySessionStore(ttl_seconds=3600)


@pytest.fixture
def fake_agent():
    return FakeAgentService()


@pytest.fixture
def fake_tts():
    return FakeTTS()


@pytest.fixture
def finalizer(session_store, fake_agent, session_factory):
    return CallFinalizer(session_store, fake_agent, session_factory)


@pytest.fixture
def dispatcher(session_store, finalizer, validator):
    return ActionDispatcher(session_store, finalizer, validator, max_per_slot=2)


@pytest.fixture
def coordinator(session_store, fake_agent, dispatcher, finalizer, session_factory, fake_tts, validator):
    return TurnCoordinator(
        session_store,
        fake_agent,
        dispatcher,
        finalizer,
        session_factory,
        tts_service=fake_tts,
        validator=validator,
        business_name="Test Bistro",
    )


@pytest.fixture
async def known_customer(test_db):
    """Returning caller with an upcoming reservation on Sunday, June 1 at 7 PM."""
    customer = Customer(phone="+15551234567", full_name="Maria Lopez", total_reservations=3)
    test_db.add(customer)
    await test_db.commit()
    await test_db.refresh(customer)

    reservation = Reservation(
        customer_id=customer.id,
        reservation_date=date(2025, 6, 1),
        reservation_time=time(19, 0),
        party_size=2,
        status="confirmed",
        confirmation_code="ABC234",
    )
    test_db.add(reservation)
    await test_db.commit()
    return customer


@pytest.fixture
def mock_call_control():
    control = Mock()
    control.hangup = AsyncMock(return_value=True)
    control.transfer = AsyncMock(return_value=True)
    control.close = AsyncMock()
    return control


@pytest.fixture
def override_get_db(test_db):
    """Override get_db dependency with test database."""
    async def _override_get_db():
        yield test_db
    return _override_get_db


@pytest.fixture
async def test_client(override_get_db, session_store, coordinator, mock_call_control):
    """Create an HTTP client for the app, wired to the test call pipeline."""
    app.dependency_overrides[get_db] = override_get_db
    app.state.services = ServiceContainer(session_store, coordinator, mock_call_control)

    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def mock_openai():
    """Mock OpenAI API client."""
    mock_client = Mock()
    mock_completion = Mock()
    mock_completion.choices = [Mock(message=Mock(content="Sure, what date works for you?", tool_calls=None))]
    mock_client.chat.completions.create = AsyncMock(return_value=mock_completion)
    return mock_client
