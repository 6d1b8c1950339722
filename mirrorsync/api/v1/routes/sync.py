"""
Sync Routes
Manual "refresh now", running the same engine the webhooks use
"""
import logging
from fastapi import APIRouter, Depends, Query, Request

from mirrorsync.core.config import settings
from mirrorsync.core.dependencies import SyncServices, get_sync_services
from mirrorsync.core.security import get_current_user_id
from mirrorsync.middleware.rate_limit import limiter
from mirrorsync.models.domain import ResourceType
from mirrorsync.models.schemas import SyncResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sync", tags=["sync"])


@router.post("/{resource_type}", response_model=SyncResponse)
@limiter.limit(settings.manual_sync_rate_limit)
async def manual_sync(
    resource_type: ResourceType,
    request: Request,
    force_full: bool = Query(False, description="Ignore the stored cursor and resync the bounded window"),
    user_id: str = Depends(get_current_user_id),
    services: SyncServices = Depends(get_sync_services),
):
    """
    Sync now instead of waiting for the next push notification.

    Queues behind any sync already running for this user.
    """
    logger.info(f"Manual {resource_type.value} sync requested by user {user_id} (force_full={force_full})")
    result = await services.engine.sync(user_id, resource_type, force_full=force_full)

    return SyncResponse(
        status="success",
        resource_type=resource_type.value,
        applied=result.applied,
        upserted=result.upserted,
        deleted=result.deleted,
        skipped=result.skipped,
        pruned=result.pruned,
        full_resync=result.full_resync,
        has_cursor=result.cursor is not None,
    )
