"""
Auth Routes
Connect a Google account (authorization-code exchange) and disconnect it
"""
import logging
from fastapi import APIRouter, Depends

from mirrorsync.core.dependencies import SyncServices, get_sync_services
from mirrorsync.core.security import get_current_user_id
from mirrorsync.models.schemas import CodeExchangeRequest, ConnectionResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth/google", tags=["auth"])


@router.post("/exchange", response_model=ConnectionResponse)
async def exchange_code(
    body: CodeExchangeRequest,
    user_id: str = Depends(get_current_user_id),
    services: SyncServices = Depends(get_sync_services),
):
    """Store the tokens Google issues for an authorization code."""
    grant = await services.oauth_client.exchange_code(body.code, body.redirect_uri)
    credential = services.token_broker.store_grant(user_id, grant)
    logger.info(f"✅ Google connected for user {user_id}")
    return ConnectionResponse(status="connected", scopes=credential.scopes)


@router.post("/disconnect", response_model=ConnectionResponse)
async def disconnect(
    user_id: str = Depends(get_current_user_id),
    services: SyncServices = Depends(get_sync_services),
):
    """Stop every channel, revoke the grant, and forget the tokens."""
    await services.watch_manager.disconnect(user_id)
    logger.info(f"Google disconnected for user {user_id}")
    return ConnectionResponse(status="disconnected")
