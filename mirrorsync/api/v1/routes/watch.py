"""
Watch Routes
Enable, disable and inspect push channels for the current user
"""
import logging
from fastapi import APIRouter, Depends

from mirrorsync.core.dependencies import SyncServices, get_sync_services
from mirrorsync.core.security import get_current_user_id
from mirrorsync.models.domain import ResourceType
from mirrorsync.models.schemas import WatchResponse, WatchStatus

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/watch", tags=["watch"])


@router.post("/{resource_type}", response_model=WatchResponse)
async def start_watch(
    resource_type: ResourceType,
    user_id: str = Depends(get_current_user_id),
    services: SyncServices = Depends(get_sync_services),
):
    """Open (or renew) the push channel; the first one also seeds the mirror."""
    watch = await services.watch_manager.create_or_renew(user_id, resource_type)
    return WatchResponse(
        status="watching",
        resource_type=resource_type.value,
        channel_id=watch.channel_id,
        expiration=watch.expiration,
    )


@router.delete("/{resource_type}", response_model=WatchResponse)
async def stop_watch(
    resource_type: ResourceType,
    user_id: str = Depends(get_current_user_id),
    services: SyncServices = Depends(get_sync_services),
):
    """Stop the channel and drop the mirrored items for this resource type."""
    await services.watch_manager.stop(user_id, resource_type)
    return WatchResponse(status="stopped", resource_type=resource_type.value)


@router.get("/{resource_type}", response_model=WatchStatus)
async def watch_status(
    resource_type: ResourceType,
    user_id: str = Depends(get_current_user_id),
    services: SyncServices = Depends(get_sync_services),
):
    return services.watch_manager.status(user_id, resource_type)
