"""
Sync Schemas
Models for manual refresh
"""
from typing import Optional
from pydantic import BaseModel


class SyncResponse(BaseModel):
    """
    Response for manual sync endpoint.
    Counts from the engine run that just finished.
    """
    status: str  # "success"
    resource_type: str
    applied: int
    upserted: int
    deleted: int
    skipped: int
    pruned: int = 0
    full_resync: bool = False
    has_cursor: bool = False
    cursor: Optional[str] = None
