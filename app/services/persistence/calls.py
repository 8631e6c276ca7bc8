"""Call persistence service."""
import logging
from datetime import datetime
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from app.db.models import CallLog

logger = logging.getLogger(__name__)


class CallPersistenceService:
    """Service for persisting call data."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_call(
        self,
        call_sid: str,
        from_number: Optional[str] = None,
        to_number: Optional[str] = None,
        customer_id: Optional[int] = None,
    ) -> CallLog:
        """Create a new call record or return existing one."""
        existing_call = await self.get_call_by_sid(call_sid)
        if existing_call:
            return existing_call

        call = CallLog(
            call_sid=call_sid,
            from_number=from_number,
            to_number=to_number,
            customer_id=customer_id,
            status="in_progress",
        )
        self.db.add(call)
        await self.db.commit()
        await self.db.refresh(call)
        return call

    async def get_call_by_sid(self, call_sid: str) -> Optional[CallLog]:
        """Get call by Twilio call SID."""
        result = await self.db.execute(
            select(CallLog).where(CallLog.call_sid == call_sid)
        )
        return result.scalar_one_or_none()

    async def link_reservation(self, call_sid: str, reservation_id: int) -> Optional[CallLog]:
        """Attach the reservation made during this call."""
        call = await self.get_call_by_sid(call_sid)
        if call:
            call.reservation_id = reservation_id
            await self.db.commit()
        return call

    async def mark_transferred(self, call_sid: str, reason: str) -> Optional[CallLog]:
        """Flag the call as handed over to staff."""
        call = await self.get_call_by_sid(call_sid)
        if call:
            call.was_transferred = True
            call.transfer_reason = reason
            await self.db.commit()
        return call

    async def log_error(self, call_sid: str, message: str) -> Optional[CallLog]:
        """Record the last error seen on this call."""
        call = await self.get_call_by_sid(call_sid)
        if call:
            call.error_message = message
            await self.db.commit()
        return call

    async def complete_call(
        self,
        call_sid: str,
        status: str,
        transcript: str,
        summary: str,
        intent: str,
        sentiment: str,
        sentiment_score: float,
        duration_seconds: Optional[int] = None,
        end_reason: Optional[str] = None,
    ) -> Optional[CallLog]:
        """
        Write the final call record.

        A call that already has ended_at set is left untouched, so the
        first completion wins. The linked reservation is never overwritten.
        """
        call = await self.get_call_by_sid(call_sid)
        if not call:
            logger.warning(f"[CALLS] No call record to complete - CallSid: {call_sid}")
            return None
        if call.ended_at is not None:
            logger.info(f"[CALLS] Call already completed, keeping first record - CallSid: {call_sid}")
            return call

        call.status = status
        call.ended_at = datetime.utcnow()
        call.duration_seconds = duration_seconds
        call.transcript = transcript
        call.summary = summary
        call.intent = intent
        call.sentiment = sentiment
        call.sentiment_score = sentiment_score
        call.end_reason = end_reason
        await self.db.commit()
        await self.db.refresh(call)
        return call

    async def mark_ended_if_open(
        self,
        call_sid: str,
        status: str,
        duration_seconds: Optional[int] = None,
        end_reason: Optional[str] = None,
    ) -> Optional[CallLog]:
        """Close a call record that was never completed; no-op once ended."""
        call = await self.get_call_by_sid(call_sid)
        if not call or call.ended_at is not None:
            return call

        call.status = status
        call.ended_at = datetime.utcnow()
        call.duration_seconds = duration_seconds
        call.end_reason = end_reason
        await self.db.commit()
        await self.db.refresh(call)
        return call
