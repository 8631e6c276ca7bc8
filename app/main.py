"""Main FastAPI application."""
from contextlib import asynccontextmanager
from fastapi import FastAPI

from app.core.dependencies import build_services
from app.core.logging import setup_logging
from app.db.database import AsyncSessionLocal, init_db
from app.api import calls, health
from app.api.webhooks import media_stream, voice


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    setup_logging()
    await init_db()
    app.state.services = build_services(AsyncSessionLocal)
    yield
    # Shutdown
    await app.state.services.close()


app = FastAPI(
    title="Reservation Voice Agent",
    description="AI voice agent for restaurant table reservations",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(health.router, tags=["health"])
app.include_router(voice.router, prefix="/webhooks", tags=["webhooks"])
app.include_router(media_stream.router, prefix="/webhooks", tags=["webhooks"])
app.include_router(calls.router, tags=["calls"])


@app.get("/")
async def root():
    return {
        "message": "Reservation Voice Agent API",
        "version": "0.1.0",
    }
