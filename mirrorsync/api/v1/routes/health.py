"""
Health Check Routes
System status and diagnostics
"""
import logging
from fastapi import APIRouter

from mirrorsync.core.config import settings
from mirrorsync.models.schemas import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])

VERSION = "1.0.0"


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse(status="healthy", version=VERSION, environment=settings.environment)


@router.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "name": "MirrorSync API",
        "version": VERSION,
        "description": "Keeps a local mirror of Google Calendar and Gmail current via push channels and delta sync",
        "endpoints": {
            "health": "/health",
            "webhooks": {
                "calendar": "/webhooks/google/calendar",
                "mailbox": "/webhooks/google/mailbox"
            },
            "watch": "/watch/{resource_type}",
            "sync": "/sync/{resource_type}",
            "events": "/events",
            "auth": "/auth/google/exchange"
        }
    }
