"""Health check endpoint."""
import logging
from fastapi import APIRouter, Depends, Request

from app.core.dependencies import ServiceContainer, get_services

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/health")
async def health_check(request: Request, services: ServiceContainer = Depends(get_services)):
    """Health check endpoint; also reports how many calls hold a live session."""
    logger.debug(
        f"[HEALTH] Health check requested - Client: {request.client.host if request.client else 'unknown'}"
    )
    active_calls = await services.store.list_active()
    return {"status": "healthy", "active_calls": len(active_calls)}
