"""Call history API endpoints."""
import logging
from typing import List, Optional
from fastapi import APIRouter, Depends, Request, HTTPException
from pydantic import BaseModel, ConfigDict
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc
from sqlalchemy.orm import selectinload

from app.db.database import get_db
from app.db.models import CallLog, Reservation

router = APIRouter()
logger = logging.getLogger(__name__)


class ReservationResponse(BaseModel):
    """Reservation response model."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    reservation_date: str
    reservation_time: str
    party_size: int
    status: str
    confirmation_code: str
    special_requests: Optional[str] = None


class CallResponse(BaseModel):
    """Call response model."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    call_sid: str
    from_number: Optional[str] = None
    started_at: str
    ended_at: Optional[str] = None
    duration_seconds: Optional[int] = None
    status: str
    end_reason: Optional[str] = None
    transcript: Optional[str] = None
    summary: Optional[str] = None
    intent: Optional[str] = None
    sentiment: Optional[str] = None
    sentiment_score: Optional[float] = None
    was_transferred: bool = False
    transfer_reason: Optional[str] = None
    error_message: Optional[str] = None
    reservation: Optional[ReservationResponse] = None


def to_reservation_response(reservation: Optional[Reservation]) -> Optional[ReservationResponse]:
    if reservation is None:
        return None
    return ReservationResponse(
        id=reservation.id,
        reservation_date=reservation.reservation_date.isoformat(),
        reservation_time=reservation.reservation_time.strftime("%H:%M"),
        party_size=reservation.party_size,
        status=reservation.status,
        confirmation_code=reservation.confirmation_code,
        special_requests=reservation.special_requests,
    )


def to_call_response(call: CallLog) -> CallResponse:
    return CallResponse(
        id=call.id,
        call_sid=call.call_sid,
        from_number=call.from_number,
        started_at=call.started_at.isoformat() if call.started_at else "",
        ended_at=call.ended_at.isoformat() if call.ended_at else None,
        duration_seconds=call.duration_seconds,
        status=call.status,
        end_reason=call.end_reason,
        transcript=call.transcript,
        summary=call.summary,
        intent=call.intent,
        sentiment=call.sentiment,
        sentiment_score=call.sentiment_score,
        was_transferred=bool(call.was_transferred),
        transfer_reason=call.transfer_reason,
        error_message=call.error_message,
        reservation=to_reservation_response(call.reservation),
    )


@router.get("/api/calls/history", response_model=List[CallResponse])
async def get_call_history(
    request: Request,
    limit: int = 100,
    db: AsyncSession = Depends(get_db),
):
    """Get recent calls with the reservation made on each."""
    logger.info(
        f"[CALLS HISTORY] Request received - limit: {limit}, "
        f"Client: {request.client.host if request.client else 'unknown'}"
    )

    try:
        result = await db.execute(
            select(CallLog)
            .options(selectinload(CallLog.reservation))
            .order_by(desc(CallLog.started_at))
            .limit(limit)
        )
        calls = result.scalars().all()
        logger.info(f"[CALLS HISTORY] Found {len(calls)} calls in database")
        return [to_call_response(call) for call in calls]

    except Exception as e:
        logger.error(
            f"[CALLS HISTORY] Error fetching call history - "
            f"limit: {limit}, Error: {type(e).__name__}: {str(e)}",
            exc_info=True,
        )
        raise HTTPException(status_code=500, detail=f"Error fetching call history: {str(e)}")


@router.get("/api/calls/{call_sid}", response_model=CallResponse)
async def get_call(call_sid: str, db: AsyncSession = Depends(get_db)):
    """Get one call by Twilio call SID."""
    result = await db.execute(
        select(CallLog)
        .options(selectinload(CallLog.reservation))
        .where(CallLog.call_sid == call_sid)
    )
    call = result.scalar_one_or_none()
    if call is None:
        raise HTTPException(status_code=404, detail="Call not found")
    return to_call_response(call)
