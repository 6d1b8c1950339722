"""
Event Routes
Read access to the local mirror, plus the task link (the one field other features may write)
"""
import logging
from datetime import datetime, timezone
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query, status

from mirrorsync.core.dependencies import SyncServices, get_sync_services
from mirrorsync.core.security import get_current_user_id
from mirrorsync.models.domain import ResourceType
from mirrorsync.models.schemas import EventListResponse, EventResponse, TaskLinkRequest, TaskLinkResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/events", tags=["events"])


def _utc(value: datetime) -> datetime:
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


@router.get("", response_model=EventListResponse)
async def list_events(
    start: datetime = Query(..., description="Window start (ISO 8601)"),
    end: datetime = Query(..., description="Window end (ISO 8601)"),
    resource_type: Optional[ResourceType] = Query(ResourceType.CALENDAR),
    user_id: str = Depends(get_current_user_id),
    services: SyncServices = Depends(get_sync_services),
):
    start, end = _utc(start), _utc(end)
    if end <= start:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="end must be after start")

    records = services.engine.list_events(user_id, start, end, resource_type)
    events = [
        EventResponse(
            external_id=r.external_id,
            resource_type=r.resource_type.value,
            title=r.title,
            description=r.description,
            start_time=r.start_time,
            end_time=r.end_time,
            all_day=r.all_day,
            location=r.location,
            linked_task_id=r.linked_task_id,
        )
        for r in records
    ]
    return EventListResponse(events=events, count=len(events))


@router.put("/{external_id}/task-link", response_model=TaskLinkResponse)
async def set_task_link(
    external_id: str,
    body: TaskLinkRequest,
    user_id: str = Depends(get_current_user_id),
    services: SyncServices = Depends(get_sync_services),
):
    if not services.engine.set_task_link(user_id, external_id, body.task_id, body.resource_type):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Mirrored item not found")

    logger.info(f"Linked {body.resource_type.value} item {external_id} to task {body.task_id} for user {user_id}")
    return TaskLinkResponse(external_id=external_id, linked_task_id=body.task_id)
