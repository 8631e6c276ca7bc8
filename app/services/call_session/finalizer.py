"""Call finalization: summarize, persist and release a finished call."""
import asyncio
import logging
from datetime import datetime
from typing import Callable, Optional, Set

from sqlalchemy.ext.asyncio import AsyncSession

from app.services.agent.agent import AgentService
from app.services.call_session.store import SessionStore
from app.services.persistence.calls import CallPersistenceService

logger = logging.getLogger(__name__)

SUMMARY_FALLBACK = "Unable to generate summary"
INTENT_FALLBACK = "unknown"
SENTIMENT_FALLBACK = ("neutral", 0.0)


class CallFinalizer:
    """
    Runs the terminal sequence for a call exactly once.

    Concurrent calls for the same call id collapse to the first one. Once the
    session is gone, later calls only close a call record that is still open.
    """

    def __init__(
        self,
        store: SessionStore,
        agent_service: AgentService,
        session_factory: Callable[[], AsyncSession],
    ):
        self.store = store
        self.agent_service = agent_service
        self.session_factory = session_factory
        self._finalizing: Set[str] = set()

    async def finalize(
        self,
        call_id: str,
        status: str = "completed",
        duration_seconds: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> bool:
        """
        Returns:
            True if this invocation wrote the completed call record
        """
        if call_id in self._finalizing:
            logger.info(f"[FINALIZE] Already finalizing, skipping - CallSid: {call_id}")
            return False
        self._finalizing.add(call_id)
        try:
            session = await self.store.get(call_id)
            if session is None:
                async with self.session_factory() as db:
                    await CallPersistenceService(db).mark_ended_if_open(
                        call_id, status, duration_seconds, reason
                    )
                logger.info(f"[FINALIZE] No live session, nothing to summarize - CallSid: {call_id}")
                return False

            transcript = session.get_transcript_text()
            summary, intent, (sentiment, sentiment_score) = await self._analyze(call_id, transcript)

            if duration_seconds is None:
                duration_seconds = int((datetime.utcnow() - session.created_at).total_seconds())

            async with self.session_factory() as db:
                await CallPersistenceService(db).complete_call(
                    call_id,
                    status=status,
                    transcript=transcript,
                    summary=summary,
                    intent=intent,
                    sentiment=sentiment,
                    sentiment_score=sentiment_score,
                    duration_seconds=duration_seconds,
                    end_reason=reason,
                )
            await self.store.delete(call_id)
            logger.info(
                f"[FINALIZE] Call finalized - CallSid: {call_id}, status: {status}, "
                f"duration: {duration_seconds}s, intent: {intent}, sentiment: {sentiment}"
            )
            return True
        finally:
            self._finalizing.discard(call_id)

    async def _analyze(self, call_id: str, transcript: str):
        if not transcript:
            return SUMMARY_FALLBACK, INTENT_FALLBACK, SENTIMENT_FALLBACK

        summary, intent, sentiment = await asyncio.gather(
            self.agent_service.generate_call_summary(transcript),
            self.agent_service.detect_intent(transcript),
            self.agent_service.analyze_sentiment(transcript),
            return_exceptions=True,
        )
        if isinstance(summary, Exception):
            logger.warning(f"[FINALIZE] Summary failed: {summary} - CallSid: {call_id}")
            summary = SUMMARY_FALLBACK
        if isinstance(intent, Exception):
            logger.warning(f"[FINALIZE] Intent detection failed: {intent} - CallSid: {call_id}")
            intent = INTENT_FALLBACK
        if isinstance(sentiment, Exception):
            logger.warning(f"[FINALIZE] Sentiment analysis failed: {sentiment} - CallSid: {call_id}")
            sentiment = SENTIMENT_FALLBACK
        return summary, intent, sentiment
