"""
Pydantic Schemas
All request/response models for API endpoints
"""

# Auth schemas
from .auth import CodeExchangeRequest, ConnectionResponse

# Event schemas
from .events import EventResponse, EventListResponse, TaskLinkRequest, TaskLinkResponse

# Health check schemas
from .health import HealthResponse

# Sync schemas
from .sync import SyncResponse

# Watch schemas
from .watch import WatchStatus, WatchResponse, RenewalSummary

# Webhook schemas
from .webhook import WebhookAck

__all__ = [
    # Auth
    "CodeExchangeRequest",
    "ConnectionResponse",
    # Events
    "EventResponse",
    "EventListResponse",
    "TaskLinkRequest",
    "TaskLinkResponse",
    # Health
    "HealthResponse",
    # Sync
    "SyncResponse",
    # Watch
    "WatchStatus",
    "WatchResponse",
    "RenewalSummary",
    # Webhook
    "WebhookAck",
]
