"""
Event Schemas
Read contract of the local mirror for the rest of the product
"""
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field

from mirrorsync.models.domain import ResourceType


class EventResponse(BaseModel):
    external_id: str
    resource_type: str
    title: str
    description: Optional[str] = None
    start_time: datetime
    end_time: datetime
    all_day: bool = False
    location: Optional[str] = None
    linked_task_id: Optional[str] = None


class EventListResponse(BaseModel):
    events: List[EventResponse]
    count: int


class TaskLinkRequest(BaseModel):
    """Link (or with task_id null, unlink) a mirrored item to a task."""
    task_id: Optional[str] = Field(default=None, max_length=200)
    resource_type: ResourceType = ResourceType.CALENDAR


class TaskLinkResponse(BaseModel):
    external_id: str
    linked_task_id: Optional[str] = None
