"""
Domain Records
The four persisted records of the sync engine plus the values passed between its components.

Rows never leave the store as dicts: everything above the store speaks these types.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ResourceType(str, Enum):
    CALENDAR = "calendar"
    MAILBOX = "mailbox"


GOOGLE = "google"


# ============================================================================
# PERSISTED RECORDS
# ============================================================================

class Credential(BaseModel):
    """OAuth credential for one (user, provider). Owned by the Token Broker."""
    user_id: str
    provider: str = GOOGLE
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    scopes: List[str] = Field(default_factory=list)
    needs_reauth: bool = False
    updated_at: Optional[datetime] = None

    def is_fresh(self, now: datetime, margin_seconds: float) -> bool:
        if not self.access_token or self.expires_at is None:
            return False
        return (self.expires_at - now).total_seconds() > margin_seconds


class WatchSubscription(BaseModel):
    """Active push channel for one (user, resource_type)."""
    user_id: str
    resource_type: ResourceType
    channel_id: str
    resource_id: Optional[str] = None
    expiration: Optional[datetime] = None
    cursor: Optional[str] = None
    consecutive_failures: int = 0
    needs_reauth: bool = False
    updated_at: Optional[datetime] = None

    def is_expired(self, now: datetime) -> bool:
        return self.expiration is not None and self.expiration <= now


class MirrorRecord(BaseModel):
    """Local copy of one remote event or message."""
    user_id: str
    resource_type: ResourceType
    external_id: str
    title: str = ""
    description: Optional[str] = None
    start_time: datetime
    end_time: datetime
    all_day: bool = False
    location: Optional[str] = None
    linked_task_id: Optional[str] = None
    updated_at: Optional[datetime] = None


class ProcessedNotification(BaseModel):
    user_id: str
    message_id: str
    resource_type: ResourceType
    processed_at: datetime = Field(default_factory=utcnow)


# ============================================================================
# VALUES EXCHANGED BETWEEN COMPONENTS
# ============================================================================

class RemoteItem(BaseModel):
    """
    One change reported by the provider, already normalized.

    deleted=True means the item was cancelled/removed remotely; the other fields
    may then be empty. start/end may be missing on live items the provider could
    not date (those are skipped by the engine).
    """
    external_id: str
    deleted: bool = False
    title: str = ""
    description: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    all_day: bool = False
    location: Optional[str] = None


class ChangePage(BaseModel):
    """One page of a delta or window listing. Items stay raw until the engine parses them one by one."""
    items: List[Dict[str, Any]] = Field(default_factory=list)
    next_page_token: Optional[str] = None
    next_cursor: Optional[str] = None


class WatchChannel(BaseModel):
    """What the provider confirmed when a push channel was opened."""
    channel_id: str
    resource_id: Optional[str] = None
    expiration: Optional[datetime] = None


class TokenGrant(BaseModel):
    """Result of a token endpoint call (refresh or code exchange)."""
    access_token: str
    expires_at: datetime
    refresh_token: Optional[str] = None
    scopes: List[str] = Field(default_factory=list)


class SyncResult(BaseModel):
    user_id: str
    resource_type: ResourceType
    applied: int = 0
    upserted: int = 0
    deleted: int = 0
    skipped: int = 0
    pruned: int = 0
    cursor: Optional[str] = None
    full_resync: bool = False
