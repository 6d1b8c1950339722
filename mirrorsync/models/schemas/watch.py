"""
Watch Schemas
Models for enabling, disabling and inspecting push channels
"""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel


class WatchStatus(BaseModel):
    """
    State of a user's push channel for one resource type.

    state is one of "none", "active", "expired", "flagged".
    """
    resource_type: str
    state: str
    active: bool
    channel_id: Optional[str] = None
    expiration: Optional[datetime] = None
    has_cursor: bool = False
    consecutive_failures: int = 0


class WatchResponse(BaseModel):
    status: str  # "watching", "stopped"
    resource_type: str
    channel_id: Optional[str] = None
    expiration: Optional[datetime] = None


class RenewalSummary(BaseModel):
    """Counts from one renewal sweep."""
    due: int = 0
    renewed: int = 0
    failed: int = 0
    flagged: int = 0
    removed: int = 0
    pruned_notifications: int = 0
